"""Persistence of extracted transactions and categorization results.

Functions here write to the ``transactions`` table owned by ``libs/db``
through an active SQLAlchemy ``Session``; committing is left to the caller.

Scope:
- Insert normalized transactions, deduplicated by a positional hash.
- Write back categories, summaries and confidences per transaction id.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from db.models.statements import Transaction
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import (
    CategorizationDecision,
    InsertResult,
    NormalizedRecord,
    StatementContext,
)

INSERT_BATCH_SIZE = 100

_logger = get_logger("statement_parsing.persistence")


def _to_decimal_2(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_transaction_hash(
    account_id: str,
    txn_date: str,
    amount: Any,
    description: str,
    position: int,
) -> str:
    """Return the SHA-256 dedup hash for one transaction.

    ``position`` is the ordinal of the transaction within its statement, so
    identical purchases on the same day remain distinct rows. Amounts are
    rendered with two decimals so ``12.5`` and ``12.50`` hash alike.
    """

    amt = _to_decimal_2(amount)
    amount_s = f"{amt:.2f}" if amt is not None else ""
    data = f"{account_id}|{txn_date}|{amount_s}|{description}|{position}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hash_exists(session: Session, digest: str) -> bool:
    stmt = select(Transaction.id).where(Transaction.hash == digest).limit(1)
    return session.scalar(stmt) is not None


def insert_raw_transactions(
    session: Session,
    records: Sequence[NormalizedRecord],
    context: StatementContext,
) -> InsertResult:
    """Insert normalized transactions for one statement.

    Records are processed in batches of :data:`INSERT_BATCH_SIZE`. Each
    record whose hash already exists is skipped; each insert runs inside a
    SAVEPOINT so a unique-constraint race only skips that row. New rows start
    uncategorized (``category='other'``, ``summary=NULL``).
    """

    inserted_ids: list[str] = []
    skipped = 0

    for start in range(0, len(records), INSERT_BATCH_SIZE):
        batch = records[start : start + INSERT_BATCH_SIZE]
        for offset, rec in enumerate(batch):
            position = start + offset
            description = str(rec["description"])
            digest = compute_transaction_hash(
                context.account_id, str(rec["date"]), rec["amount"], description, position
            )
            if _hash_exists(session, digest):
                skipped += 1
                continue

            row = Transaction(
                account_id=context.account_id,
                statement_id=context.statement_id,
                profile_id=context.profile_id,
                user_id=context.user_id,
                date=date.fromisoformat(str(rec["date"])),
                type=str(rec["type"]),
                amount=_to_decimal_2(rec["amount"]),
                currency=context.currency,
                balance=_to_decimal_2(rec.get("balance")),
                original_description=description,
                summary=None,
                category="other",
                category_confidence=None,
                hash=digest,
            )
            try:
                with session.begin_nested():
                    session.add(row)
            except IntegrityError:
                _logger.debug(
                    "persistence:duplicate_skipped position=%d date=%s", position, rec["date"]
                )
                skipped += 1
                continue
            inserted_ids.append(row.id)

    _logger.info(
        "persistence:inserted statement_id=%s inserted=%d skipped=%d",
        context.statement_id,
        len(inserted_ids),
        skipped,
    )
    return InsertResult(
        inserted_count=len(inserted_ids),
        skipped_duplicates=skipped,
        transaction_ids=inserted_ids,
    )


def update_transaction_categories(
    session: Session, decisions: Iterable[CategorizationDecision]
) -> int:
    """Apply categorization decisions by transaction id; return rows updated.

    Each update runs in its own SAVEPOINT. A failing row is logged and
    skipped; it is not retried.
    """

    now = func.now()
    updated = 0
    for d in decisions:
        stmt = (
            update(Transaction)
            .where(Transaction.id == d.id)
            .values(
                category=d.category,
                category_confidence=_to_decimal_2(d.confidence),
                summary=d.summary,
                is_subscription=d.is_subscription,
                updated_at=now,
            )
        )
        try:
            with session.begin_nested():
                result = session.execute(stmt)
        except SQLAlchemyError as e:
            _logger.warning("persistence:category_update_failed id=%s error=%s", d.id, e)
            continue
        updated += result.rowcount or 0
    _logger.debug("persistence:categories_updated rows=%d", updated)
    return updated


__all__ = [
    "INSERT_BATCH_SIZE",
    "compute_transaction_hash",
    "insert_raw_transactions",
    "update_transaction_categories",
]
