"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import path for the backend package and an
    in-memory database fixture patched into sharetips.database.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_TESTS_DIR = _THIS_FILE.parent

for candidate in (str(_BACKEND_DIR), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

from fakes import FakeDB  # noqa: E402

NOW = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def fake_db(monkeypatch):
    import sharetips.database as _db

    db = FakeDB()
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db


@pytest.fixture
def now():
    return NOW
