"""App settings.

Flask loads this module on startup via ``app.config.from_pyfile(...)``; the
crawler CLI imports ``SETTINGS`` directly.

Every value comes from the environment with a development default. Credentials
(the SEC contact User-Agent, database URLs) must never be hard-coded here.
"""

import os


def _env(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


# Single source of truth for app configuration.
SETTINGS: dict[str, object] = {
    # Flask
    "SECRET_KEY": _env("SECRET_KEY", "dev-not-secret"),
    # Logging
    "LOG_LEVEL": _env("LOG_LEVEL", "INFO").upper(),
    # Storage
    "DATABASE_URL": _env("DATABASE_URL", ""),
    # SEC EDGAR
    # SEC requires a descriptive User-Agent that includes contact info.
    # Example: "MiningIntel your.name@domain.com"
    "SEC_USER_AGENT": _env("SEC_USER_AGENT", "exhibit_crawler/0.1 (contact: unset)"),
    "SEC_MAX_REQUESTS": int(_env("SEC_MAX_REQUESTS", "8")),
    "SEC_WINDOW_SECONDS": float(_env("SEC_WINDOW_SECONDS", "1.0")),
    "SEC_COOLDOWN_SECONDS": float(_env("SEC_COOLDOWN_SECONDS", "600")),
    "SEC_TIMEOUT_SECONDS": float(_env("SEC_TIMEOUT_SECONDS", "30")),
    "SEC_MAX_ATTEMPTS": int(_env("SEC_MAX_ATTEMPTS", "3")),
    # Crawler
    "CRAWL_WORKERS": int(_env("CRAWL_WORKERS", "5")),
    "CRAWL_PROGRESS_EVERY": int(_env("CRAWL_PROGRESS_EVERY", "25")),
    "CRAWL_DEFAULT_LOOKBACK_DAYS": int(_env("CRAWL_DEFAULT_LOOKBACK_DAYS", "30")),
    # Comma-separated CIKs; empty means the built-in mining issuer list.
    "CRAWL_TARGET_CIKS": _env("CRAWL_TARGET_CIKS", ""),
    # Pick targets from the EDGAR ticker directory instead; 0 means no limit.
    "CRAWL_DISCOVER": _env("CRAWL_DISCOVER", "0").lower() in {"1", "true", "yes", "on"},
    "CRAWL_DISCOVER_LIMIT": int(_env("CRAWL_DISCOVER_LIMIT", "0")),
}

# Optional convenience exports (mirrors earlier style).
SECRET_KEY = SETTINGS["SECRET_KEY"]
LOG_LEVEL = SETTINGS["LOG_LEVEL"]
SEC_USER_AGENT = SETTINGS["SEC_USER_AGENT"]
