"""Application logging utilities.

- One shared app logger (``exhibit_crawler``); modules get children of it
  through ``get_logger(__name__)``.
- Each module also writes to its own file under the logs directory
  (``./logs`` or ``$CRAWLER_LOG_DIR``), rotated daily at UTC midnight.
- Timestamps are UTC and every line carries the pid, since crawls run in
  background threads of the web process as well as from the CLI.
"""

from __future__ import annotations

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler

_APP_LOGGER_NAME = "exhibit_crawler"
_FORMAT = "%(asctime)sZ %(levelname)s pid=%(process)d %(threadName)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class _UTCFormatter(logging.Formatter):
    converter = staticmethod(time.gmtime)


def logs_dir() -> str:
    configured = (os.getenv("CRAWLER_LOG_DIR") or "").strip()
    if configured:
        return configured
    return os.path.join(os.path.dirname(__file__), "logs")


def _sanitize_filename(name: str) -> str:
    # "jobs.exhibit_crawler" -> "jobs_exhibit_crawler"
    name = (name or "app").strip() or "app"
    return "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "_" for ch in name)


def _file_handler(path: str, level: int) -> TimedRotatingFileHandler:
    fh = TimedRotatingFileHandler(
        path,
        when="midnight",
        interval=1,
        backupCount=14,
        utc=True,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(_UTCFormatter(fmt=_FORMAT, datefmt=_DATEFMT))
    return fh


def configure_app_logging(level_name: str = "INFO") -> logging.Logger:
    """Configure and return the root application logger.

    Safe to call multiple times; later calls only adjust the level.
    """

    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    app_logger = logging.getLogger(_APP_LOGGER_NAME)
    app_logger.setLevel(level)

    if getattr(app_logger, "_configured", False):
        for h in app_logger.handlers:
            h.setLevel(level)
        return app_logger

    os.makedirs(logs_dir(), exist_ok=True)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(_UTCFormatter(fmt=_FORMAT, datefmt=_DATEFMT))

    app_logger.addHandler(sh)
    app_logger.addHandler(_file_handler(os.path.join(logs_dir(), "app.log"), level))

    # Do not propagate to the global root logger (prevents double logging).
    app_logger.propagate = False
    app_logger._configured = True  # type: ignore[attr-defined]
    return app_logger


def get_logger(module_name: str | None = None) -> logging.Logger:
    """Return a module logger that writes to the shared handlers and its own file.

    Example:
        logger = get_logger(__name__)
    """

    base = configure_app_logging(os.getenv("LOG_LEVEL", "INFO"))

    child_name = module_name or "app"
    logger = logging.getLogger(f"{_APP_LOGGER_NAME}.{child_name}")

    if not getattr(logger, "_file_configured", False):
        logger.setLevel(logging.NOTSET)
        log_path = os.path.join(logs_dir(), _sanitize_filename(child_name) + ".log")
        logger.addHandler(_file_handler(log_path, base.level))
        # Child lines also reach the console/app.log handlers on the parent.
        logger.propagate = True
        logger._file_configured = True  # type: ignore[attr-defined]

    return logger
