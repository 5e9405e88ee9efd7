import logging
import os


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


class Config:
    """Runtime switches read from the environment at process start."""

    # Set to 1 to create missing tables when the app starts.
    INIT_DB_ON_STARTUP: bool = _env_bool("INIT_DB_ON_STARTUP", False)

    # Mark runs left 'running' by a dead process as failed on startup.
    RECOVER_RUNS_ON_STARTUP: bool = _env_bool("RECOVER_RUNS_ON_STARTUP", True)

    # Slow request threshold in ms; 0 disables.
    SLOW_REQUEST_MS: int = _env_int("SLOW_REQUEST_MS", 250)


def configure_logging(app_logger: logging.Logger, level_name: str) -> None:
    """Align Flask's own logger with the application log level."""

    level = getattr(logging, level_name, logging.INFO)

    # Avoid duplicate handlers (e.g., in tests or reload scenarios)
    if app_logger.handlers:
        app_logger.setLevel(level)
        return

    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)

    app_logger.addHandler(handler)
    app_logger.setLevel(level)
