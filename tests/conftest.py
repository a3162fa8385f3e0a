"""Pytest configuration shared by the ``statement_parsing`` tests.

- Puts ``packages/`` and ``libs/db/src`` ahead of the repo root on
  ``sys.path`` so the workspace packages import without installation.
- Pins the sandbox strategy to ``restricted`` so tests never depend on a
  subprocess sandbox unless they build one explicitly.
- Provides a file-backed SQLite database per test and a session bound to it.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PATHS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]

from db.client import get_session, reset_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Force deterministic configuration and a fresh shared engine per test."""

    monkeypatch.setenv("STATEMENT_PARSING_SANDBOX", "restricted")
    monkeypatch.delenv("STATEMENT_PARSING_MAX_ITEMS", raising=False)
    monkeypatch.delenv("STATEMENT_PARSING_MODEL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def db_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = bootstrap_sqlite_db(tmp_path / "statements.db")
    monkeypatch.setenv("DATABASE_URL", url)
    return url


@pytest.fixture
def session(db_url: str) -> Iterator[Session]:
    s = get_session(database_url=db_url)
    try:
        yield s
    finally:
        s.rollback()
        s.close()
