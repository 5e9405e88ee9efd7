"""Shared helpers for tests.

Intended usage:
- spin up a temporary SQLite database
- create all SQLAlchemy tables
- point the app's db module at it
- build EDGAR payloads (submissions, filing index) without network access

These utilities keep tests small and consistent.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db
from models import Base

__all__ = [
    "make_sqlite_engine",
    "create_empty_sqlite_db",
    "patch_app_db",
    "add_dicts",
    "submissions_payload",
    "manifest_payload",
]


def make_sqlite_engine(db_path: Path | str) -> Engine:
    """Create a SQLite engine suitable for tests (same pragmas as the app)."""

    return db.make_engine(f"sqlite:///{db_path}")


def create_empty_sqlite_db(db_path: Path) -> tuple[Session, Engine]:
    """Create an empty SQLite DB file and initialize all models.

    Returns (session, engine).
    """

    engine = make_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal(), engine


def patch_app_db(monkeypatch, engine: Engine) -> sessionmaker:
    """Point ``db.engine`` / ``db.SessionLocal`` at a test engine."""

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", SessionLocal)
    return SessionLocal


def add_dicts(session: Session, model, rows: Iterable[dict[str, Any]]) -> None:
    """Bulk insert a list of dicts into a SQLAlchemy model table."""

    objs = [model(**row) for row in rows]
    session.add_all(objs)
    session.commit()


def submissions_payload(
    cik: str | int,
    name: str,
    filings: Iterable[tuple[str, str, str]],
    *,
    tickers: Iterable[str] = (),
) -> dict:
    """Minimal ``submissions/CIK##########.json`` body.

    `filings` are (accession_number, form, filing_date) tuples.
    """

    rows = list(filings)
    return {
        "cik": str(cik),
        "name": name,
        "tickers": list(tickers),
        "filings": {
            "recent": {
                "accessionNumber": [r[0] for r in rows],
                "form": [r[1] for r in rows],
                "filingDate": [r[2] for r in rows],
                "primaryDocument": [f"doc{i}.htm" for i in range(len(rows))],
                "primaryDocDescription": [r[1] for r in rows],
            }
        },
    }


def manifest_payload(*items: str | tuple[str, str | None]) -> dict:
    """Minimal filing ``index.json``; items are names or (name, description)."""

    out = []
    for it in items:
        name, desc = (it, None) if isinstance(it, str) else it
        row: dict[str, Any] = {"name": name, "type": "text.gif", "size": "1024"}
        if desc is not None:
            row["description"] = desc
        out.append(row)
    return {"directory": {"name": "/Archives/edgar/data/x", "item": out}}
