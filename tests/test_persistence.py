from datetime import date
from decimal import Decimal

from db import Transaction
from sqlalchemy import func, select

from statement_parsing.models import CategorizationDecision, StatementContext
from statement_parsing.persistence import (
    compute_transaction_hash,
    insert_raw_transactions,
    update_transaction_categories,
)

CTX = StatementContext(account_id="acct-1", statement_id="stmt-1", currency="INR")


def _rec(desc: str = "SWIGGY", amount: float = 250.0, d: str = "2024-01-05") -> dict:
    return {"date": d, "amount": amount, "type": "debit", "description": desc, "balance": None}


def test_hash_is_stable_and_amount_format_insensitive() -> None:
    a = compute_transaction_hash("acct-1", "2024-01-05", 12.5, "SWIGGY", 0)
    b = compute_transaction_hash("acct-1", "2024-01-05", "12.50", "SWIGGY", 0)

    assert a == b
    assert len(a) == 64
    assert a != compute_transaction_hash("acct-1", "2024-01-05", 12.5, "SWIGGY", 1)
    assert a != compute_transaction_hash("acct-2", "2024-01-05", 12.5, "SWIGGY", 0)


def test_identical_rows_in_one_statement_are_kept_apart(session) -> None:
    result = insert_raw_transactions(session, [_rec(), _rec()], CTX)

    assert result.inserted_count == 2
    assert result.skipped_duplicates == 0
    assert len(set(result.transaction_ids)) == 2


def test_reinserting_a_statement_skips_every_row(session) -> None:
    records = [_rec("A"), _rec("B"), _rec("C")]
    insert_raw_transactions(session, records, CTX)

    again = insert_raw_transactions(session, records, CTX)

    assert again.inserted_count == 0
    assert again.skipped_duplicates == 3
    assert again.transaction_ids == []
    assert session.scalar(select(func.count()).select_from(Transaction)) == 3


def test_new_rows_start_uncategorized(session) -> None:
    rec = _rec(amount=99.999)
    rec["balance"] = 1000.5
    (row_id,) = insert_raw_transactions(session, [rec], CTX).transaction_ids

    row = session.get(Transaction, row_id)

    assert row.category == "other"
    assert row.summary is None
    assert row.category_confidence is None
    assert row.is_subscription is False
    assert row.original_description == "SWIGGY"
    assert row.date == date(2024, 1, 5)
    assert row.amount == Decimal("100.00")
    assert row.balance == Decimal("1000.50")
    assert row.currency == "INR"
    assert row.statement_id == "stmt-1"


def test_inserts_span_multiple_batches(session) -> None:
    records = [_rec(desc=f"row {i}") for i in range(205)]

    result = insert_raw_transactions(session, records, CTX)

    assert result.inserted_count == 205
    assert session.scalar(select(func.count()).select_from(Transaction)) == 205


def test_update_categories_by_id(session) -> None:
    ids = insert_raw_transactions(session, [_rec("NETFLIX"), _rec("ZOMATO")], CTX).transaction_ids

    updated = update_transaction_categories(
        session,
        [
            CategorizationDecision(
                id=ids[0],
                category="entertainment",
                confidence=0.93,
                summary="Netflix subscription",
                is_subscription=True,
            ),
            CategorizationDecision(
                id="missing-id", category="other", confidence=0.5, summary="x"
            ),
        ],
    )
    session.expire_all()

    assert updated == 1
    netflix = session.get(Transaction, ids[0])
    assert netflix.category == "entertainment"
    assert netflix.category_confidence == Decimal("0.93")
    assert netflix.summary == "Netflix subscription"
    assert netflix.is_subscription is True
    assert netflix.original_description == "NETFLIX"
    assert session.get(Transaction, ids[1]).summary is None
