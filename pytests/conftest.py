from __future__ import annotations

import pytest

from pytests.common import create_empty_sqlite_db, patch_app_db


@pytest.fixture()
def sqlite_db(tmp_path, monkeypatch):
    """Temp SQLite DB wired into ``db``; yields the session factory."""

    session, engine = create_empty_sqlite_db(tmp_path / "test.sqlite")
    session.close()
    SessionLocal = patch_app_db(monkeypatch, engine)
    try:
        yield SessionLocal
    finally:
        engine.dispose()
