"""Single-call categorization of a statement's stored transactions.

Public API:
    - :func:`categorize_statement_transactions`
    - :func:`parse_categorization_results`

All of a statement's rows go to the model in ONE Responses API call with a
strict JSON schema. Results are validated with pydantic against the country's
category allow-list; anything outside it becomes ``other``. Rows the model
did not return get a neutral fallback decision so every row is written back.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Mapping, Sequence
from typing import Any

from db.models.statements import Transaction
from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config, prompting
from .categories import FALLBACK_CATEGORY, allowed_codes, categories_for_country
from .logging_setup import get_logger
from .models import CategorizationDecision
from .persistence import update_transaction_categories

FALLBACK_CONFIDENCE = 0.5
FALLBACK_SUMMARY_CHARS = 50
MAX_SUMMARY_CHARS = 100

_logger = get_logger("statement_parsing.categorize")


def _create_client() -> OpenAI:
    return OpenAI()


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from an OpenAI Responses SDK result.

    Prefers ``resp.output_text`` and falls back to the first content block of
    the first output item. Raises ``ValueError`` when no text is found or it
    is not a JSON object.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Invalid response: expected a JSON object at top level")
    return decoded


class _ResultItem(BaseModel):
    """One categorization result.

    ``ValidationInfo.context`` carries ``allowed_set``; categories outside it
    are coerced to ``other``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    category: str
    confidence: float = FALLBACK_CONFIDENCE
    summary: str = ""
    is_subscription: bool = False

    @field_validator("category")
    @classmethod
    def _category_in_allowlist(cls, v: str, info: ValidationInfo) -> str:
        allowed_set = info.context.get("allowed_set") if info.context else None
        if not allowed_set or v in allowed_set:
            return v
        return FALLBACK_CATEGORY

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        if not math.isfinite(v):
            return FALLBACK_CONFIDENCE
        return min(1.0, max(0.0, v))

    @field_validator("summary")
    @classmethod
    def _cap(cls, v: str) -> str:
        return v[:MAX_SUMMARY_CHARS].rstrip()


class _ResultBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[_ResultItem]


def _fallback(row_id: str, description: str) -> CategorizationDecision:
    return CategorizationDecision(
        id=row_id,
        category=FALLBACK_CATEGORY,
        confidence=FALLBACK_CONFIDENCE,
        summary=description.strip()[:FALLBACK_SUMMARY_CHARS],
    )


def parse_categorization_results(
    body: Mapping[str, Any],
    rows: Sequence[Mapping[str, Any]],
    *,
    allowed_categories: Sequence[str],
) -> list[CategorizationDecision]:
    """Validate ``body`` and align it with ``rows`` by id.

    Unknown ids are dropped, duplicate ids keep the first result, and rows
    without a result get ``(other, 0.5, description[:50])``. The output
    follows the order of ``rows``.
    """

    parsed = _ResultBody.model_validate(
        body, context={"allowed_set": set(allowed_categories)}
    )
    known = {str(r["id"]) for r in rows}
    by_id: dict[str, _ResultItem] = {}
    dropped = 0
    for item in parsed.results:
        if item.id not in known:
            dropped += 1
            continue
        by_id.setdefault(item.id, item)
    if dropped:
        _logger.warning("categorize:unknown_ids_dropped count=%d", dropped)

    decisions: list[CategorizationDecision] = []
    missing = 0
    for r in rows:
        row_id = str(r["id"])
        description = str(r.get("description") or "")
        item = by_id.get(row_id)
        if item is None:
            missing += 1
            decisions.append(_fallback(row_id, description))
            continue
        decisions.append(
            CategorizationDecision(
                id=row_id,
                category=item.category,
                confidence=item.confidence,
                summary=item.summary or description.strip()[:FALLBACK_SUMMARY_CHARS],
                is_subscription=item.is_subscription,
            )
        )
    if missing:
        _logger.warning("categorize:missing_results count=%d", missing)
    return decisions


def _load_rows(
    session: Session, statement_id: str, *, only_uncategorized: bool
) -> list[dict[str, Any]]:
    stmt = (
        select(Transaction)
        .where(Transaction.statement_id == statement_id)
        .order_by(Transaction.date, Transaction.created_at, Transaction.id)
    )
    if only_uncategorized:
        stmt = stmt.where(Transaction.summary.is_(None))
    return [
        {
            "id": t.id,
            "date": t.date.isoformat(),
            "type": t.type,
            "amount": float(t.amount),
            "description": t.original_description,
        }
        for t in session.scalars(stmt)
    ]


def categorize_statement_transactions(
    session: Session,
    statement_id: str,
    *,
    country: str | None = None,
    account_type: str | None = None,
    client: OpenAI | None = None,
    model: str | None = None,
    only_uncategorized: bool = True,
) -> list[CategorizationDecision]:
    """Categorize a statement's transactions and write the results back.

    Parameters
    ----------
    session:
        Active SQLAlchemy session; the caller commits.
    statement_id:
        Statement whose rows are categorized.
    country:
        ISO country code selecting the category list (default ``US``).
    account_type:
        Optional account type (``credit_card``, ``savings_account`` ...) used
        for prompt hints.
    client, model:
        OpenAI client and model name; default to ``OpenAI()`` and
        ``STATEMENT_PARSING_MODEL``.
    only_uncategorized:
        When True, only rows whose ``summary`` is still NULL are sent.

    Returns
    -------
    list[CategorizationDecision]
        One decision per row sent, in row order.

    Raises
    ------
    RuntimeError
        When the model call fails or its output cannot be parsed.
    """

    rows = _load_rows(session, statement_id, only_uncategorized=only_uncategorized)
    if not rows:
        _logger.info("categorize:nothing_to_do statement_id=%s", statement_id)
        return []

    categories = categories_for_country(country)
    codes = allowed_codes(country)
    instructions = prompting.build_categorization_instructions(
        categories, country=country, account_type=account_type
    )
    user_content = prompting.build_categorization_input(rows)
    text_cfg = ResponseTextConfigParam(
        format=prompting.build_categorization_response_format(codes),
    )

    _logger.info(
        "categorize:llm statement_id=%s num_transactions=%d", statement_id, len(rows)
    )
    client = client or _create_client()
    t0 = time.perf_counter()
    try:
        resp = client.responses.create(
            model=model or config.model_name(),
            instructions=instructions,
            input=user_content,
            text=text_cfg,
        )
        body = _extract_response_json_mapping(resp)
        decisions = parse_categorization_results(body, rows, allowed_categories=codes)
    except (ValueError, ValidationError) as e:
        _logger.error("categorize:invalid_output statement_id=%s error=%s", statement_id, e)
        raise RuntimeError(
            f"Categorization output for statement {statement_id} was invalid: {e}"
        ) from e
    except Exception as e:  # noqa: BLE001 - surface transport errors with context
        _logger.error("categorize:llm_failed statement_id=%s error=%s", statement_id, e)
        raise RuntimeError(
            f"Categorization call failed for statement {statement_id}: {e}"
        ) from e

    updated = update_transaction_categories(session, decisions)
    dt_ms = (time.perf_counter() - t0) * 1000.0
    _logger.info(
        "categorize:done statement_id=%s decisions=%d updated=%d latency_ms=%.2f",
        statement_id,
        len(decisions),
        updated,
        dt_ms,
    )
    return decisions


__all__ = ["categorize_statement_transactions", "parse_categorization_results"]
