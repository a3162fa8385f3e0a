"""Prompt construction and strict schemas for the OpenAI Responses API.

This module builds:
- The system instructions and user input for parser code generation, with
  institution-specific hints and the statement's declared totals.
- The strict function tool definitions (``submit_code``, ``done``) and the
  feedback text returned to the model after each submission.
- The system and user prompts plus the strict ``response_format`` for the
  single-call categorization pass.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from openai.types.responses import FunctionToolParam
from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import (
    Category,
    account_type_hint,
    country_hints,
    render_category_list,
)
from .code_checks import PARSER_FUNCTION_NAME
from .models import (
    Expected,
    ExpectedHoldingSummary,
    ExpectedSummary,
    NormalizedRecord,
    ParsingMode,
    TotalsCheck,
)
from .totals import calculate_holding_totals, calculate_totals, has_validation_data

MAX_PROMPT_TEXT_CHARS = 80_000
TRUNCATION_MARKER = "\n\n[...TEXT TRUNCATED...]"
SAMPLE_ROWS = 5

SUBMIT_CODE_TOOL = "submit_code"
DONE_TOOL = "done"


def truncate_statement_text(text: str, limit: int = MAX_PROMPT_TEXT_CHARS) -> str:
    """Cap statement text for the prompt; execution always sees the full text."""

    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


# ---------------------------------------------------------------------------
# Generation prompts
# ---------------------------------------------------------------------------

_RUNTIME_NOTES = f"""\
RUNTIME:
- Your code is the BODY of `def {PARSER_FUNCTION_NAME}(text):`. Do not write the `def` line.
- `text` is the full statement text as one string.
- These names are already available: re, math, json, datetime, date, timedelta, Decimal.
- Builtins are limited to plain data handling (len, range, enumerate, zip, sorted, min, max,
  sum, abs, round, int, float, str, list, dict, set, tuple, isinstance, any, all ...).
- Do NOT use import statements, open(), eval(), exec(), getattr(), global/nonlocal,
  classes, generators (yield), async code, or any name or attribute starting with `_`.
- Catch specific exceptions (ValueError, IndexError, KeyError, InvalidOperation);
  a bare `except:` is rejected.
- The code MUST end with an explicit `return` of a list. A body without `return`
  returns None and fails.
"""

_TRANSACTION_BASE = f"""\
You are a bank statement parsing expert. Write Python code that extracts every
transaction from the bank or credit card statement text shown by the user.

{_RUNTIME_NOTES}
OUTPUT: a list of dicts, one per transaction, with keys:
- date: 'YYYY-MM-DD' string (a real calendar date)
- amount: positive number (never negative, never zero)
- type: 'credit' or 'debit'
- description: merchant / narration text
- balance: running balance as a number, or None when the statement has none

RULES:
1. Parse every transaction line; skip headers, page footers and summary rows
   (Opening Balance, Closing Balance, Total, B/F, C/F, Summary).
2. Convert every date to YYYY-MM-DD. Infer a missing year from the statement period.
3. Strip currency symbols and thousands separators before converting amounts.
4. Return an empty list if no transactions are found.

CREDIT VS DEBIT DETECTION:
- Explicit markers: 'Cr'/'CR' means credit, 'Dr'/'DR' means debit.
- Separate withdrawal/deposit columns: a value in the withdrawal column is a debit.
- Balance-based: compare each running balance with the previous one. Check whether
  the statement lists dates ascending or descending before deciding the direction.
- Credit cards: purchases are debits; payments, refunds and cashback are credits.
"""

_HOLDING_BASE = f"""\
You are an investment statement parsing expert. Write Python code that extracts
every holding from the portfolio statement text shown by the user.

{_RUNTIME_NOTES}
OUTPUT: a list of dicts, one per holding, with keys:
- investment_type: one of 'stock', 'mutual_fund', 'etf', 'bond', 'ppf', 'epf',
  'nps', 'fd', 'gold', 'reit', 'other'
- name: instrument / scheme name
- current_value: current market value as a number
- units: quantity held as a number, or None for balance-based holdings (PPF, EPF, FD)
- optional: symbol, isin, average_cost, current_price, invested_value,
  folio_number, maturity_date ('YYYY-MM-DD'), interest_rate, currency (ISO code)

RULES:
1. Prefer a holdings/positions table over a transaction history.
2. If only transactions are present, aggregate buys and sells per instrument.
3. Skip portfolio totals, sub-totals and header rows.
4. Strip currency symbols and thousands separators before converting numbers.
5. Return an empty list if no holdings are found.
"""

_INSTITUTION_HINTS: dict[str, str] = {
    "hdfc": """\
HDFC BANK FORMAT:
- Columns: Date | Narration | Chq./Ref.No. | Value Dt | Withdrawal Amt. | Deposit Amt. |
  Closing Balance.
- Text extraction often merges the withdrawal and deposit columns; detect the type by
  comparing each closing balance with the previous one.
- Skip lines containing 'Opening Balance', 'Closing Balance', 'STATEMENT SUMMARY' or
  'Total'.
- Dates appear as DD/MM/YY or DD/MM/YYYY.""",
    "amex": """\
AMERICAN EXPRESS FORMAT:
- Dates appear as 'Month Day' (e.g. 'January 15'); take the year from the statement
  period.
- A credit is marked by 'CR' at the end of the line or on the following line.
- Skip summary lines such as 'New domestic transactions for ...' and 'Total of ...'.
- When a line carries several decimal numbers, the LAST one is the amount.""",
    "zerodha": """\
ZERODHA FORMAT:
- The holdings table has Instrument, Qty., Avg. cost, LTP, Cur. val, P&L, Net chg.
- investment_type is 'stock' for equities and 'etf' for ETF symbols.""",
    "cams": """\
CAMS / KFINTECH CAS FORMAT:
- Each scheme block has a Folio No., closing unit balance, NAV and market value.
- investment_type is always 'mutual_fund'.""",
}


def institution_hint(institution_id: str | None) -> str | None:
    """Return the format hint whose name occurs in ``institution_id``."""

    if not institution_id:
        return None
    needle = institution_id.strip().lower()
    for name, hint in _INSTITUTION_HINTS.items():
        if name in needle:
            return hint
    return None


def _fmt(value: Any) -> str:
    return "unknown" if value is None else str(value)


def _validation_section(expected: Expected) -> str:
    if isinstance(expected, ExpectedHoldingSummary):
        return (
            "VALIDATION (the statement declares these totals):\n"
            f"- Holdings count: {_fmt(expected.holdings_count)}\n"
            f"- Total invested: {_fmt(expected.total_invested)}\n"
            f"- Total current value: {_fmt(expected.total_current)}\n"
            "Your extracted holdings must match these values."
        )
    lines = [
        "VALIDATION (the statement summary declares these totals):",
        f"- Debit count: {_fmt(expected.debit_count)}",
        f"- Credit count: {_fmt(expected.credit_count)}",
        f"- Total debits: {_fmt(expected.total_debits)}",
        f"- Total credits: {_fmt(expected.total_credits)}",
    ]
    if expected.opening_balance is not None:
        lines.append(f"- Opening balance: {expected.opening_balance}")
    if expected.closing_balance is not None:
        lines.append(f"- Closing balance: {expected.closing_balance}")
    lines.extend(
        [
            "Your extracted transactions must match these totals. Common issues:",
            "- Counting summary or header rows as transactions",
            "- Inverted credit/debit detection",
            "- A date regex that misses some rows",
        ]
    )
    return "\n".join(lines)


def build_generation_instructions(
    mode: ParsingMode = "transaction",
    *,
    institution_id: str | None = None,
    expected: Expected | None = None,
) -> str:
    """Return the system instructions for one generation loop."""

    parts = [_HOLDING_BASE if mode == "holding" else _TRANSACTION_BASE]
    hint = institution_hint(institution_id)
    if hint:
        parts.append(hint)
    if expected is not None and has_validation_data(expected):
        parts.append(_validation_section(expected))
    parts.append(
        f"WORKFLOW: call `{SUBMIT_CODE_TOOL}` to test your code against the full statement. "
        f"Fix and resubmit on errors or validation failures. Call `{DONE_TOOL}` when the "
        "code works and validation passed (or no validation data is available)."
    )
    return "\n\n".join(parts)


def build_generation_input(text: str, mode: ParsingMode = "transaction") -> str:
    """Return the user input carrying the (truncated) statement text."""

    kind = "holdings" if mode == "holding" else "transactions"
    return (
        f"Analyze this statement and write Python code that extracts all {kind}.\n\n"
        "STATEMENT TEXT:\n---\n"
        f"{truncate_statement_text(text)}\n"
        "---\n\n"
        f"Submit the function body with `{SUBMIT_CODE_TOOL}`. When it works and validates, "
        f"call `{DONE_TOOL}`."
    )


def build_generation_tools() -> list[FunctionToolParam]:
    """Return the strict function tools offered to the model."""

    submit: FunctionToolParam = {
        "type": "function",
        "name": SUBMIT_CODE_TOOL,
        "description": (
            "Submit parser code to test. Returns success with record counts, totals and "
            "validation results, or an error message to fix."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "parser_code": {
                    "type": "string",
                    "description": f"Python body of `def {PARSER_FUNCTION_NAME}(text):`",
                },
                "detected_format": {
                    "type": "string",
                    "description": 'Statement format identified (e.g. "HDFC Bank Statement")',
                },
                "date_format": {
                    "type": "string",
                    "description": 'Date format found (e.g. "DD/MM/YY")',
                },
                "confidence": {
                    "type": "number",
                    "description": "Confidence in the parsing approach, 0 to 1",
                },
            },
            "required": ["parser_code", "detected_format", "date_format", "confidence"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    done: FunctionToolParam = {
        "type": "function",
        "name": DONE_TOOL,
        "description": (
            "Call when the parser code works AND validation passed "
            "(or no validation data is available)."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": "Brief summary of what the parser does",
                },
            },
            "required": ["summary"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return [submit, done]


# ---------------------------------------------------------------------------
# Tool feedback
# ---------------------------------------------------------------------------


def _sample_rows(records: Sequence[NormalizedRecord], mode: ParsingMode) -> str:
    rows: list[str] = []
    for r in records[:SAMPLE_ROWS]:
        if mode == "holding":
            rows.append(
                f"  {str(r.get('investment_type')):<11} | {str(r.get('units')):>10} | "
                f"{str(r.get('current_value')):>12} | {str(r.get('name'))[:40]}"
            )
        else:
            rows.append(
                f"  {r.get('date')} | {str(r.get('type')):<6} | {str(r.get('amount')):>10} | "
                f"{str(r.get('description'))[:40]}"
            )
    return "\n".join(rows)


def _transaction_diagnosis(records: Sequence[NormalizedRecord], expected: ExpectedSummary) -> str:
    totals = calculate_totals(records)
    found = totals.debit_count + totals.credit_count
    wanted = (expected.debit_count or 0) + (expected.credit_count or 0)
    debit_diff = totals.debit_count - (expected.debit_count or 0)
    if found == wanted and debit_diff != 0:
        direction = (
            f"{debit_diff} transactions marked DEBIT should be CREDIT."
            if debit_diff > 0
            else f"{-debit_diff} transactions marked CREDIT should be DEBIT."
        )
        return (
            f"DIAGNOSIS: the transaction count is correct ({found}) but the credit/debit "
            f"split is wrong. {direction}\n"
            "LIKELY CAUSE: inverted balance comparison or wrong date order "
            "(ascending vs descending)."
        )
    if found != wanted:
        if found > wanted:
            detail = f"{found - wanted} extra rows, likely summary or header lines."
        else:
            detail = f"{wanted - found} rows missing, the date regex may be too strict."
        return (
            f"DIAGNOSIS: transaction count mismatch, found {found} but expected {wanted}: "
            f"{detail}\n"
            "FIX: skip 'Opening Balance', 'Closing Balance', 'Total', 'Summary', 'B/F' "
            "lines and make sure every transaction date format matches."
        )
    return "DIAGNOSIS: counts match; check amount parsing (decimals, separators, signs)."


def render_submission_feedback(
    records: Sequence[NormalizedRecord],
    mode: ParsingMode,
    *,
    expected: Expected | None,
    check: TotalsCheck | None,
) -> str:
    """Return the ``submit_code`` output for a run that produced records."""

    kind = "holdings" if mode == "holding" else "transactions"
    lines = [f"SUCCESS: Found {len(records)} {kind}.", "", "EXTRACTED TOTALS:"]
    if mode == "holding":
        ht = calculate_holding_totals(records)
        lines.extend(
            [
                f"- Holdings count: {ht.holdings_count}",
                f"- Total invested: {ht.total_invested}",
                f"- Total current value: {ht.total_current}",
            ]
        )
    else:
        tt = calculate_totals(records)
        lines.extend(
            [
                f"- Debit count: {tt.debit_count}",
                f"- Credit count: {tt.credit_count}",
                f"- Total debits: {tt.total_debits}",
                f"- Total credits: {tt.total_credits}",
            ]
        )
    lines.extend(["", "Sample rows:", _sample_rows(records, mode), ""])

    if check is None or expected is None:
        lines.append(
            "No statement summary available for validation. If these look correct, "
            f"call `{DONE_TOOL}`; otherwise fix the code and resubmit."
        )
        return "\n".join(lines)

    if check.is_valid:
        lines.append(
            f"VALIDATION: PASSED - all totals match the statement summary. Call `{DONE_TOOL}`."
        )
        return "\n".join(lines)

    lines.append("VALIDATION: FAILED - totals do not match the statement summary.")
    lines.extend(f"- {issue}" for issue in check.issues)
    if isinstance(expected, ExpectedSummary):
        lines.extend(["", _transaction_diagnosis(records, expected)])
    lines.extend(["", f"Fix the code and call `{SUBMIT_CODE_TOOL}` again."])
    return "\n".join(lines)


def render_error_feedback(error: str | None) -> str:
    """Return the ``submit_code`` output for a run that produced nothing."""

    message = error or "No records found - check your regex patterns"
    return f"ERROR: {message}\n\nFix the code and call `{SUBMIT_CODE_TOOL}` again."


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


def build_categorization_instructions(
    categories: Sequence[Category],
    *,
    country: str | None = None,
    account_type: str | None = None,
) -> str:
    """Return system instructions for the single categorization call."""

    parts = [
        "You categorize bank transactions. Choose exactly one category code per "
        "transaction from the list below; never invent codes. Output JSON only that "
        "conforms to the specified schema.",
        "CATEGORIES:\n" + render_category_list(categories),
        country_hints(country),
    ]
    hint = account_type_hint(account_type)
    if hint:
        parts.append(hint)
    parts.append(
        "For each transaction also return:\n"
        "- summary: 2-5 words naming the merchant or purpose (e.g. 'Swiggy food order')\n"
        "- confidence: 0 to 1\n"
        "- is_subscription: true for recurring same-amount charges such as streaming, "
        "software or memberships"
    )
    return "\n\n".join(parts)


def build_categorization_input(rows: Sequence[Mapping[str, Any]]) -> str:
    """Return user content embedding the transactions as JSON."""

    payload = [
        {
            "id": r.get("id"),
            "date": r.get("date"),
            "type": r.get("type"),
            "amount": r.get("amount"),
            "description": r.get("description"),
        }
        for r in rows
    ]
    return (
        "Categorize these bank transactions. Look for patterns like recurring payments "
        "to identify subscriptions. Return one result per id.\n\n"
        "BEGIN_TRANSACTIONS_JSON\n"
        f"{json.dumps(payload, ensure_ascii=False, default=str)}\n"
        "END_TRANSACTIONS_JSON"
    )


def build_categorization_response_format(
    codes: Sequence[str],
) -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``response_format`` for categorization."""

    allowed = [c for c in dict.fromkeys(str(c).strip() for c in codes) if c]
    if not allowed:
        raise ValueError("codes must contain at least one non-blank category code")

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "transaction_categories",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "category": {"type": "string", "enum": allowed},
                            "confidence": {"type": "number"},
                            "summary": {"type": "string"},
                            "is_subscription": {"type": "boolean"},
                        },
                        "required": [
                            "id",
                            "category",
                            "confidence",
                            "summary",
                            "is_subscription",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "DONE_TOOL",
    "MAX_PROMPT_TEXT_CHARS",
    "SUBMIT_CODE_TOOL",
    "TRUNCATION_MARKER",
    "build_categorization_input",
    "build_categorization_instructions",
    "build_categorization_response_format",
    "build_generation_input",
    "build_generation_instructions",
    "build_generation_tools",
    "institution_hint",
    "render_error_feedback",
    "render_submission_feedback",
    "truncate_statement_text",
]
