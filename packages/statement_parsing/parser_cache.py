"""Versioned cache of generated parser code.

Parser code lives in the generic ``app_config`` key/value table under
namespaced keys:

- ``parser_code:{bank_key}:v{version}`` for bank/card statements;
- ``inv_parser_code:{source_key}:v{version}`` for investment statements.

Versions per key start at 1 and only ever increase. A saved row's ``code`` is
never rewritten; only the success/failure counters change, via
read-modify-write. Concurrent counter updates may lose increments, which is
acceptable for what are only ranking hints.

All functions take an active SQLAlchemy ``Session`` and leave committing to
the caller.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, datetime

from db.models.statements import AppConfig
from pydantic import ValidationError
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import (
    CachedKeySummary,
    ParserCodeEntry,
    ParserMetadata,
    ParsingMode,
    StoredParserCode,
)

TRANSACTION_KEY_PREFIX = "parser_code"
HOLDING_KEY_PREFIX = "inv_parser_code"
# Attempts at claiming a fresh version number under concurrent writers.
_SAVE_ATTEMPTS = 5

_SLUG_RE = re.compile(r"[^a-z0-9]+")

_logger = get_logger("statement_parsing.parser_cache")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def _slug(value: str) -> str:
    return _SLUG_RE.sub("_", value.strip().lower()).strip("_")


def generate_bank_key(institution_id: str, account_type: str) -> str:
    """Return the cache key for an institution/account-type pair.

    >>> generate_bank_key("HDFC Bank", "Savings")
    'hdfc_bank_savings'
    """

    return f"{_slug(institution_id)}_{_slug(account_type)}"


def generate_source_key(source_type: str, file_type: str = "pdf") -> str:
    """Return the cache key for an investment statement source.

    >>> generate_source_key("Zerodha", "PDF")
    'zerodha:pdf'
    """

    return f"{_slug(source_type)}:{_slug(file_type)}"


def _namespace(mode: ParsingMode) -> str:
    return HOLDING_KEY_PREFIX if mode == "holding" else TRANSACTION_KEY_PREFIX


def _version_prefix(bank_key: str, mode: ParsingMode) -> str:
    return f"{_namespace(mode)}:{bank_key}:v"


def config_key(bank_key: str, version: int, *, mode: ParsingMode = "transaction") -> str:
    return f"{_version_prefix(bank_key, mode)}{version}"


def _version_of(key: str, prefix: str) -> int | None:
    suffix = key[len(prefix) :]
    return int(suffix) if suffix.isdigit() else None


def _keys_with_prefix(session: Session, prefix: str) -> list[str]:
    stmt = select(AppConfig.key).where(AppConfig.key.startswith(prefix, autoescape=True))
    return list(session.scalars(stmt))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_parser_codes(
    session: Session, bank_key: str, *, mode: ParsingMode = "transaction"
) -> list[ParserCodeEntry]:
    """Return every cached version for ``bank_key``, newest first.

    Rows whose JSON value does not decode are logged and skipped.
    """

    prefix = _version_prefix(bank_key, mode)
    stmt = select(AppConfig.key, AppConfig.value).where(
        AppConfig.key.startswith(prefix, autoescape=True)
    )
    entries: list[ParserCodeEntry] = []
    for key, value in session.execute(stmt):
        version = _version_of(key, prefix)
        if version is None:
            continue
        try:
            stored = StoredParserCode.model_validate_json(value)
        except ValidationError as e:
            _logger.warning(
                "parser_cache:malformed_row key=%s errors=%d", key, e.error_count()
            )
            continue
        entries.append(
            ParserCodeEntry(
                bank_key=bank_key,
                version=version,
                code=stored.code,
                detected_format=stored.detected_format,
                date_format=stored.date_format,
                confidence=stored.confidence,
                created_at=stored.created_at,
                success_count=stored.success_count,
                fail_count=stored.fail_count,
            )
        )
    entries.sort(key=lambda e: e.version, reverse=True)
    return entries


def get_latest_version(
    session: Session, bank_key: str, *, mode: ParsingMode = "transaction"
) -> int:
    """Return the highest stored version number, or ``0`` when none exist.

    Computed from keys alone so a malformed row still reserves its number.
    """

    prefix = _version_prefix(bank_key, mode)
    versions = [
        v for v in (_version_of(k, prefix) for k in _keys_with_prefix(session, prefix)) if v
    ]
    return max(versions, default=0)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def save_parser_code(
    session: Session,
    bank_key: str,
    code: str,
    metadata: ParserMetadata,
    *,
    mode: ParsingMode = "transaction",
) -> int:
    """Store ``code`` as the next version for ``bank_key`` and return it.

    The insert runs inside a SAVEPOINT. When a concurrent writer claimed the
    same number first, the unique key rejects the insert and the next number
    is tried; existing versions are never overwritten.
    """

    stored = StoredParserCode(
        code=code,
        detected_format=metadata.detected_format,
        date_format=metadata.date_format,
        confidence=metadata.confidence,
        created_at=datetime.now(UTC).isoformat(),
    )
    payload = stored.model_dump_json(by_alias=True)

    for attempt in range(1, _SAVE_ATTEMPTS + 1):
        version = get_latest_version(session, bank_key, mode=mode) + 1
        stmt = insert(AppConfig).values(key=config_key(bank_key, version, mode=mode), value=payload)
        try:
            with session.begin_nested():
                session.execute(stmt)
        except IntegrityError:
            _logger.warning(
                "parser_cache:version_conflict bank_key=%s version=%d attempt=%d",
                bank_key,
                version,
                attempt,
            )
            continue
        _logger.info(
            "parser_cache:saved bank_key=%s mode=%s version=%d format=%s",
            bank_key,
            mode,
            version,
            metadata.detected_format,
        )
        return version

    raise RuntimeError(
        f"could not claim a parser version for {bank_key!r} after {_SAVE_ATTEMPTS} attempts"
    )


def _bump_counter(
    session: Session,
    bank_key: str,
    version: int,
    *,
    mode: ParsingMode,
    success: bool,
) -> None:
    key = config_key(bank_key, version, mode=mode)
    value = session.scalar(select(AppConfig.value).where(AppConfig.key == key))
    if value is None:
        return
    try:
        stored = StoredParserCode.model_validate_json(value)
    except ValidationError:
        _logger.warning("parser_cache:counter_skipped_malformed key=%s", key)
        return

    if success:
        stored = stored.model_copy(update={"success_count": stored.success_count + 1})
    else:
        stored = stored.model_copy(update={"fail_count": stored.fail_count + 1})
    session.execute(
        update(AppConfig)
        .where(AppConfig.key == key)
        .values(value=stored.model_dump_json(by_alias=True), updated_at=func.now())
    )


def record_success(
    session: Session, bank_key: str, version: int, *, mode: ParsingMode = "transaction"
) -> None:
    """Increment the success counter; a missing version is a no-op."""

    _bump_counter(session, bank_key, version, mode=mode, success=True)


def record_failure(
    session: Session, bank_key: str, version: int, *, mode: ParsingMode = "transaction"
) -> None:
    """Increment the failure counter; a missing version is a no-op."""

    _bump_counter(session, bank_key, version, mode=mode, success=False)


def clear_parser_cache(
    session: Session, bank_key: str, *, mode: ParsingMode = "transaction"
) -> int:
    """Delete every cached version for ``bank_key`` and return how many went."""

    prefix = _version_prefix(bank_key, mode)
    keys = [k for k in _keys_with_prefix(session, prefix) if _version_of(k, prefix) is not None]
    if not keys:
        return 0
    session.execute(delete(AppConfig).where(AppConfig.key.in_(keys)))
    _logger.info("parser_cache:cleared bank_key=%s mode=%s count=%d", bank_key, mode, len(keys))
    return len(keys)


def _summaries(keys: Iterable[str], namespace: str) -> list[CachedKeySummary]:
    versions_by_key: dict[str, list[int]] = {}
    head = f"{namespace}:"
    for key in keys:
        rest = key[len(head) :]
        bank_key, sep, version = rest.rpartition(":v")
        if not sep or not bank_key or not version.isdigit():
            continue
        versions_by_key.setdefault(bank_key, []).append(int(version))
    return [
        CachedKeySummary(bank_key=k, version_count=len(vs), latest_version=max(vs))
        for k, vs in sorted(versions_by_key.items())
    ]


def list_cached_banks(
    session: Session, *, mode: ParsingMode = "transaction"
) -> list[CachedKeySummary]:
    """Return one summary per cached key: version count and latest version."""

    namespace = _namespace(mode)
    return _summaries(_keys_with_prefix(session, f"{namespace}:"), namespace)


__all__ = [
    "HOLDING_KEY_PREFIX",
    "TRANSACTION_KEY_PREFIX",
    "clear_parser_cache",
    "config_key",
    "generate_bank_key",
    "generate_source_key",
    "get_latest_version",
    "get_parser_codes",
    "list_cached_banks",
    "record_failure",
    "record_success",
    "save_parser_code",
]
