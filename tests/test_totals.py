from statement_parsing.models import ExpectedHoldingSummary, ExpectedSummary
from statement_parsing.totals import (
    calculate_holding_totals,
    calculate_totals,
    check_records,
    has_validation_data,
)


def _t(amount: float, kind: str = "debit") -> dict:
    return {"date": "2024-01-01", "amount": amount, "type": kind, "description": "x"}


RECORDS = [_t(100.10), _t(200.20), _t(1000.0, "credit")]


def test_calculate_totals_rounds_to_cents() -> None:
    totals = calculate_totals(RECORDS)
    assert totals.debit_count == 2
    assert totals.credit_count == 1
    assert totals.total_debits == 300.3
    assert totals.total_credits == 1000.0


def test_amount_difference_at_tolerance_is_accepted() -> None:
    expected = ExpectedSummary(debit_count=2, total_debits=310.30)
    assert check_records(RECORDS, expected).is_valid


def test_amount_difference_above_tolerance_is_rejected() -> None:
    expected = ExpectedSummary(total_debits=310.31)

    check = check_records(RECORDS, expected)

    assert not check.is_valid
    assert check.issues == (
        "Total debits mismatch: extracted 300.30, expected 310.31 (diff: 10.01)",
    )


def test_counts_must_match_exactly() -> None:
    check = check_records(RECORDS, ExpectedSummary(debit_count=3, credit_count=1))
    assert check.issues == ("Debit count mismatch: extracted 2, expected 3",)


def test_unset_expected_fields_are_not_checked() -> None:
    assert check_records(RECORDS, ExpectedSummary(credit_count=1)).is_valid


def test_expected_summary_accepts_camel_case() -> None:
    expected = ExpectedSummary.model_validate({"debitCount": 2, "totalCredits": 1000})
    assert expected.debit_count == 2
    assert check_records(RECORDS, expected).is_valid


def test_holding_totals_use_wider_tolerance() -> None:
    holdings = [
        {"name": "A", "current_value": 1000.0, "invested_value": 900.0},
        {"name": "B", "current_value": 500.0, "invested_value": None},
    ]
    totals = calculate_holding_totals(holdings)
    assert (totals.holdings_count, totals.total_current, totals.total_invested) == (
        2,
        1500.0,
        900.0,
    )

    assert check_records(holdings, ExpectedHoldingSummary(total_current=1599.0)).is_valid
    check = check_records(holdings, ExpectedHoldingSummary(holdings_count=3, total_current=1650))
    assert not check.is_valid
    assert len(check.issues) == 2


def test_has_validation_data() -> None:
    assert not has_validation_data(None)
    assert not has_validation_data(ExpectedSummary())
    assert not has_validation_data(ExpectedSummary(closing_balance=12.0))
    assert has_validation_data(ExpectedSummary(credit_count=0))
    assert has_validation_data(ExpectedHoldingSummary(total_invested=1.0))
