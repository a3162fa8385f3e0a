"""End-to-end statement extraction: cached parsers first, generation second.

Flow for one statement:

1. Build the cache key from the institution and account type (or source).
2. Try every cached parser version newest-first.
3. When none works, generate a new parser and cache it as the next version.
4. Optionally insert the resulting transactions.
"""

from __future__ import annotations

from openai import OpenAI
from sqlalchemy.orm import Session

from . import codegen, parser_cache
from .errors import ExtractionExhaustedError, ParserGenerationError
from .logging_setup import get_logger
from .models import (
    Expected,
    InsertResult,
    ParsingMode,
    StatementContext,
    StatementExtraction,
)
from .persistence import insert_raw_transactions
from .runner import run_parser_with_versions
from .sandbox import SandboxExecutor, select_executor

_logger = get_logger("statement_parsing.pipeline")


def cache_key_for(
    institution_id: str, account_type: str, *, mode: ParsingMode = "transaction"
) -> str:
    """Return the parser cache key; holding mode keys by source and file type."""

    if mode == "holding":
        return parser_cache.generate_source_key(institution_id, account_type)
    return parser_cache.generate_bank_key(institution_id, account_type)


def extract_statement(
    session: Session,
    text: str,
    *,
    institution_id: str,
    account_type: str,
    mode: ParsingMode = "transaction",
    expected: Expected | None = None,
    executor: SandboxExecutor | None = None,
    client: OpenAI | None = None,
    model: str | None = None,
    max_steps: int = codegen.MAX_STEPS,
) -> StatementExtraction:
    """Extract records from ``text`` using cached or freshly generated code.

    In holding mode ``account_type`` is the statement file type (``pdf``,
    ``csv`` ...).

    Raises
    ------
    ExtractionExhaustedError
        When every cached version failed and generation produced nothing.
    """

    if not text.strip():
        raise ValueError("statement text is empty")

    key = cache_key_for(institution_id, account_type, mode=mode)
    runner = executor or select_executor()

    entries = parser_cache.get_parser_codes(session, key, mode=mode)
    tried: tuple[int, ...] = ()
    if entries:
        cached = run_parser_with_versions(
            session, entries, text, key, expected=expected, executor=runner, mode=mode
        )
        if cached.success:
            _logger.info(
                "pipeline:cache_hit key=%s version=%s records=%d",
                key,
                cached.used_version,
                len(cached.records),
            )
            return StatementExtraction(
                records=cached.records,
                source="cache",
                bank_key=key,
                version=cached.used_version,
                tried_versions=cached.tried_versions,
                validation_passed=cached.validation_passed,
            )
        tried = cached.tried_versions
        _logger.info("pipeline:cache_exhausted key=%s error=%s", key, cached.error)
    else:
        _logger.info("pipeline:cache_miss key=%s", key)

    try:
        generated = codegen.generate_and_cache(
            session,
            key,
            text,
            executor=runner,
            mode=mode,
            institution_id=institution_id,
            expected=expected,
            client=client,
            model=model,
            max_steps=max_steps,
        )
    except ParserGenerationError as e:
        _logger.error(
            "pipeline:exhausted key=%s tried=%s attempts=%d",
            key,
            ",".join(str(v) for v in tried) or "-",
            e.attempts,
        )
        raise ExtractionExhaustedError(
            f"No parser could extract records for {key!r}: {e.last_error or e}",
            tried_versions=tried,
            generation_attempts=e.attempts,
        ) from e

    return StatementExtraction(
        records=generated.records,
        source="generated",
        bank_key=key,
        version=generated.saved_version,
        tried_versions=tried,
        validation_passed=generated.validation_passed,
        generation_attempts=generated.attempts,
    )


def ingest_statement(
    session: Session,
    text: str,
    context: StatementContext,
    *,
    institution_id: str,
    account_type: str,
    expected: Expected | None = None,
    executor: SandboxExecutor | None = None,
    client: OpenAI | None = None,
    model: str | None = None,
) -> tuple[StatementExtraction, InsertResult]:
    """Extract transactions from ``text`` and insert them for ``context``."""

    extraction = extract_statement(
        session,
        text,
        institution_id=institution_id,
        account_type=account_type,
        mode="transaction",
        expected=expected,
        executor=executor,
        client=client,
        model=model,
    )
    inserted = insert_raw_transactions(session, extraction.records, context)
    return extraction, inserted


__all__ = ["cache_key_for", "extract_statement", "ingest_statement"]
