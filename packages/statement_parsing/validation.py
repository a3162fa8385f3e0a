"""Validation and normalization of records emitted by generated parsers.

Generated code is untrusted, so every item it returns passes through this
module before anything else sees it.

Policy
------
- A violation of a *required* field rejects the whole record.
- A violation of an *optional* field degrades that field to ``None``.
- Normalization is idempotent: ``normalize(normalize(r)) == normalize(r)``
  for every accepted record.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from .logging_setup import get_logger
from .models import NormalizedRecord, ParsingMode

MAX_DESCRIPTION_LENGTH: int = 500
MAX_NAME_LENGTH: int = 500
VALID_CURRENCIES: frozenset[str] = frozenset(
    {"USD", "INR", "EUR", "GBP", "JPY", "AUD", "CAD", "SGD", "AED"}
)
TRANSACTION_TYPES: frozenset[str] = frozenset({"credit", "debit"})

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
# Number of rejected items echoed at debug level per execution.
_INVALID_SAMPLE_LOG_LIMIT = 3

_HOLDING_OPTIONAL_NUMBERS: tuple[str, ...] = (
    "units",
    "average_cost",
    "current_price",
    "invested_value",
    "interest_rate",
)
_HOLDING_OPTIONAL_STRINGS: tuple[str, ...] = (
    "symbol",
    "isin",
    "folio_number",
    "maturity_date",
)

_logger = get_logger("statement_parsing.validation")


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    # bool is an int subclass; a True amount is never meaningful here.
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    # Signaling NaN refuses float conversion; Decimal can also overflow float.
    if isinstance(value, Decimal) and not value.is_finite():
        return False
    return math.isfinite(value)


def _to_float_or_none(value: Any) -> float | None:
    return float(value) if _is_number(value) else None


def _clean_str_or_none(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s or None


def _truncate(value: str, limit: int) -> str:
    # rstrip after slicing so a cut landing on whitespace stays idempotent
    return value.strip()[:limit].rstrip()


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str) or not _DATE_RE.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def is_valid_transaction(obj: Any) -> bool:
    """Return True when ``obj`` carries every required transaction field."""

    if not isinstance(obj, Mapping):
        return False
    amount = obj.get("amount")
    return (
        _is_iso_date(obj.get("date"))
        and _is_number(amount)
        and amount > 0
        and obj.get("type") in TRANSACTION_TYPES
        and isinstance(obj.get("description"), str)
    )


def normalize_transaction(obj: Mapping[str, Any]) -> NormalizedRecord:
    """Return the canonical form of an accepted transaction.

    Only the five known fields survive; anything else the parser emitted is
    dropped.
    """

    return {
        "date": str(obj["date"]).strip(),
        "amount": abs(float(obj["amount"])),
        "type": obj["type"],
        "description": _truncate(obj["description"], MAX_DESCRIPTION_LENGTH),
        "balance": _to_float_or_none(obj.get("balance")),
    }


# ---------------------------------------------------------------------------
# Holdings
# ---------------------------------------------------------------------------


def is_valid_holding(obj: Any) -> bool:
    """Return True when ``obj`` carries every required holding field.

    ``units`` may be absent or ``None`` (balance-only instruments such as
    deposits), but when present it must be a finite number.
    """

    if not isinstance(obj, Mapping):
        return False
    investment_type = obj.get("investment_type")
    name = obj.get("name")
    units = obj.get("units")
    return (
        isinstance(investment_type, str)
        and bool(investment_type.strip())
        and isinstance(name, str)
        and bool(name.strip())
        and _is_number(obj.get("current_value"))
        and (units is None or _is_number(units))
    )


def normalize_holding(obj: Mapping[str, Any]) -> NormalizedRecord:
    """Return the canonical form of an accepted holding."""

    out: NormalizedRecord = {
        "investment_type": str(obj["investment_type"]).strip().lower(),
        "name": _truncate(obj["name"], MAX_NAME_LENGTH),
        "current_value": float(obj["current_value"]),
    }
    for key in _HOLDING_OPTIONAL_NUMBERS:
        out[key] = _to_float_or_none(obj.get(key))
    for key in _HOLDING_OPTIONAL_STRINGS:
        out[key] = _clean_str_or_none(obj.get(key))

    currency = _clean_str_or_none(obj.get("currency"))
    currency = currency.upper() if currency else None
    out["currency"] = currency if currency in VALID_CURRENCIES else None
    return out


# ---------------------------------------------------------------------------
# Batch collection
# ---------------------------------------------------------------------------


def validate_and_normalize(obj: Any, mode: ParsingMode) -> NormalizedRecord | None:
    """Return the normalized record, or ``None`` when ``obj`` is rejected."""

    if mode == "holding":
        return normalize_holding(obj) if is_valid_holding(obj) else None
    return normalize_transaction(obj) if is_valid_transaction(obj) else None


def collect_records(
    result: list[Any],
    mode: ParsingMode,
    *,
    max_items: int,
) -> tuple[list[NormalizedRecord], int]:
    """Validate and normalize a parser's list output.

    Returns ``(records, invalid_count)``. Invalid items are counted, never
    fatal; the first few are logged at debug level. Collection stops once
    ``max_items`` records have been accepted.
    """

    records: list[NormalizedRecord] = []
    invalid = 0
    for item in result:
        if len(records) >= max_items:
            _logger.warning(
                "collect_records:truncated mode=%s max_items=%d total_items=%d",
                mode,
                max_items,
                len(result),
            )
            break
        normalized = validate_and_normalize(item, mode)
        if normalized is None:
            invalid += 1
            if invalid <= _INVALID_SAMPLE_LOG_LIMIT:
                _logger.debug(
                    "collect_records:invalid_item mode=%s sample=%.200r", mode, item
                )
            continue
        records.append(normalized)

    if invalid:
        _logger.info(
            "collect_records:skipped_invalid mode=%s skipped=%d accepted=%d",
            mode,
            invalid,
            len(records),
        )
    return records, invalid


__all__ = [
    "MAX_DESCRIPTION_LENGTH",
    "MAX_NAME_LENGTH",
    "TRANSACTION_TYPES",
    "VALID_CURRENCIES",
    "collect_records",
    "is_valid_holding",
    "is_valid_transaction",
    "normalize_holding",
    "normalize_transaction",
    "validate_and_normalize",
]
