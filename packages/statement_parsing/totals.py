"""Totals computed from extracted records and checked against a statement.

Counts must match exactly. Monetary sums must match within a fixed absolute
tolerance, which absorbs rounding in the statement's own summary.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    Expected,
    ExpectedHoldingSummary,
    ExpectedSummary,
    ExtractedHoldingTotals,
    ExtractedTotals,
    NormalizedRecord,
    TotalsCheck,
)

TRANSACTION_AMOUNT_TOLERANCE: float = 10.0
HOLDING_VALUE_TOLERANCE: float = 100.0


def has_validation_data(expected: Expected | None) -> bool:
    return expected is not None and expected.has_validation_data()


def calculate_totals(records: Sequence[NormalizedRecord]) -> ExtractedTotals:
    """Return per-type counts and sums (rounded to cents) for transactions."""

    debit_count = credit_count = 0
    total_debits = total_credits = 0.0
    for r in records:
        if r.get("type") == "debit":
            debit_count += 1
            total_debits += float(r["amount"])
        elif r.get("type") == "credit":
            credit_count += 1
            total_credits += float(r["amount"])
    return ExtractedTotals(
        debit_count=debit_count,
        credit_count=credit_count,
        total_debits=round(total_debits, 2),
        total_credits=round(total_credits, 2),
    )


def calculate_holding_totals(records: Sequence[NormalizedRecord]) -> ExtractedHoldingTotals:
    """Return count, total current value and total invested value for holdings."""

    total_current = sum(float(r.get("current_value") or 0.0) for r in records)
    total_invested = sum(float(r.get("invested_value") or 0.0) for r in records)
    return ExtractedHoldingTotals(
        holdings_count=len(records),
        total_invested=round(total_invested, 2),
        total_current=round(total_current, 2),
    )


def _check_count(issues: list[str], label: str, extracted: int, expected: int | None) -> None:
    if expected is not None and extracted != expected:
        issues.append(f"{label} mismatch: extracted {extracted}, expected {expected}")


def _check_sum(
    issues: list[str],
    label: str,
    extracted: float,
    expected: float | None,
    tolerance: float,
) -> None:
    if expected is None:
        return
    diff = abs(extracted - expected)
    if diff > tolerance:
        issues.append(
            f"{label} mismatch: extracted {extracted:.2f}, expected {expected:.2f} "
            f"(diff: {diff:.2f})"
        )


def validate_totals(
    extracted: ExtractedTotals,
    expected: ExpectedSummary,
    *,
    tolerance: float = TRANSACTION_AMOUNT_TOLERANCE,
) -> TotalsCheck:
    issues: list[str] = []
    _check_count(issues, "Debit count", extracted.debit_count, expected.debit_count)
    _check_count(issues, "Credit count", extracted.credit_count, expected.credit_count)
    _check_sum(issues, "Total debits", extracted.total_debits, expected.total_debits, tolerance)
    _check_sum(issues, "Total credits", extracted.total_credits, expected.total_credits, tolerance)
    return TotalsCheck(is_valid=not issues, issues=tuple(issues))


def validate_holding_totals(
    extracted: ExtractedHoldingTotals,
    expected: ExpectedHoldingSummary,
    *,
    tolerance: float = HOLDING_VALUE_TOLERANCE,
) -> TotalsCheck:
    issues: list[str] = []
    _check_count(issues, "Holdings count", extracted.holdings_count, expected.holdings_count)
    _check_sum(
        issues, "Total invested", extracted.total_invested, expected.total_invested, tolerance
    )
    _check_sum(
        issues, "Total current value", extracted.total_current, expected.total_current, tolerance
    )
    return TotalsCheck(is_valid=not issues, issues=tuple(issues))


def check_records(records: Sequence[NormalizedRecord], expected: Expected) -> TotalsCheck:
    """Compute totals for ``records`` and compare them with ``expected``.

    The record kind follows the type of ``expected``.
    """

    if isinstance(expected, ExpectedHoldingSummary):
        return validate_holding_totals(calculate_holding_totals(records), expected)
    return validate_totals(calculate_totals(records), expected)


__all__ = [
    "HOLDING_VALUE_TOLERANCE",
    "TRANSACTION_AMOUNT_TOLERANCE",
    "calculate_holding_totals",
    "calculate_totals",
    "check_records",
    "has_validation_data",
    "validate_holding_totals",
    "validate_totals",
]
