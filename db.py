import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from settings import SETTINGS


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Let crawler worker threads write while the API reads."""
    cursor = dbapi_connection.cursor()
    # Wait for locks instead of failing immediately.
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


DB_PATH = os.path.join(os.path.dirname(__file__), "data", "crawler.db")
SQLALCHEMY_DATABASE_URL = str(SETTINGS.get("DATABASE_URL") or f"sqlite:///{DB_PATH}")


def make_engine(url: str):
    """Create an engine; SQLite gets thread-friendly connect args and pragmas."""

    if url.startswith("sqlite"):
        if url.startswith("sqlite:///") and ":memory:" not in url:
            os.makedirs(os.path.dirname(os.path.abspath(url[len("sqlite:///") :])), exist_ok=True)
        eng = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            pool_pre_ping=True,
        )
        event.listen(eng, "connect", _set_sqlite_pragmas)
        return eng
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
