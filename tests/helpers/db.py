"""DB helpers for tests: bootstrap a temporary SQLite DB and seed rows."""

from __future__ import annotations

import os
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from pathlib import Path

from db import Base, Transaction
from db.client import get_engine, session_scope


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default). The shared
    engine installs the ``now()`` shim and SAVEPOINT handling for SQLite.
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)
    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_transactions(
    *,
    database_url: str,
    statement_id: str,
    rows: Sequence[tuple[str, str, str, str]],
    account_id: str = "acct-1",
) -> list[str]:
    """Insert ``(id, date, amount, description)`` debit rows; return their ids."""

    ids: list[str] = []
    with session_scope(database_url=database_url) as session:
        for position, (row_id, d, amount, description) in enumerate(rows):
            session.add(
                Transaction(
                    id=row_id,
                    account_id=account_id,
                    statement_id=statement_id,
                    date=date.fromisoformat(d),
                    type="debit",
                    amount=Decimal(amount),
                    original_description=description,
                    hash=f"{statement_id}-{position}".ljust(64, "0"),
                )
            )
            ids.append(row_id)
    return ids
