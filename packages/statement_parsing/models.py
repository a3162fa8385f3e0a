"""Data models and type aliases for ``statement_parsing``.

Records produced by generated parser code are untrusted and travel as plain
mappings until :mod:`statement_parsing.validation` accepts and normalizes
them. Everything downstream of validation works on plain ``dict`` records
whose values are JSON-friendly (``str``, ``float``, ``None``).

Value objects crossing module seams are frozen dataclasses. Shapes decoded
from JSON (expected summaries, the stored cache value) are pydantic models so
that malformed input is rejected at the boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

type ParsingMode = Literal["transaction", "holding"]
"""``transaction`` for bank/card statements, ``holding`` for investment ones."""

type RawRecord = Mapping[str, Any]
"""One untrusted item emitted by generated parser code."""

type NormalizedRecord = dict[str, Any]
"""One accepted, normalized record (transaction or holding)."""


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


class FailureKind(StrEnum):
    """Why a single parser execution produced no records."""

    DENIED = "denied"
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    MISSING_MARKERS = "missing_markers"
    MALFORMED_JSON = "malformed_json"
    NOT_A_LIST = "not_a_list"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of running one candidate parser against one statement text.

    ``success`` is True whenever the code ran and returned a list, even if
    every item was rejected (``records`` is then empty and ``skipped_invalid``
    counts the rejects). Callers that need at least one record check
    ``records`` themselves.
    """

    success: bool
    records: list[NormalizedRecord] = field(default_factory=list)
    error: str | None = None
    execution_time_ms: float = 0.0
    failure: FailureKind | None = None
    skipped_invalid: int = 0

    @classmethod
    def failed(
        cls, kind: FailureKind, error: str, *, execution_time_ms: float = 0.0
    ) -> ExecutionResult:
        return cls(
            success=False,
            error=error,
            failure=kind,
            execution_time_ms=execution_time_ms,
        )


@dataclass(frozen=True, slots=True)
class MultiVersionResult:
    """Outcome of trying cached parser versions newest-first."""

    success: bool
    records: list[NormalizedRecord] = field(default_factory=list)
    error: str | None = None
    execution_time_ms: float = 0.0
    used_version: int | None = None
    tried_versions: tuple[int, ...] = ()
    validation_passed: bool = False


# ---------------------------------------------------------------------------
# Expected / extracted totals
# ---------------------------------------------------------------------------


class _SummaryModel(BaseModel):
    # Accept both snake_case and the camelCase used by upstream extractors.
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ExpectedSummary(_SummaryModel):
    """Totals a statement declares about itself; ``None`` means unknown."""

    debit_count: int | None = None
    credit_count: int | None = None
    total_debits: float | None = None
    total_credits: float | None = None
    opening_balance: float | None = None
    closing_balance: float | None = None

    def has_validation_data(self) -> bool:
        return any(
            v is not None
            for v in (self.debit_count, self.credit_count, self.total_debits, self.total_credits)
        )


class ExpectedHoldingSummary(_SummaryModel):
    """Portfolio-level totals an investment statement declares."""

    holdings_count: int | None = None
    total_invested: float | None = None
    total_current: float | None = None

    def has_validation_data(self) -> bool:
        return any(
            v is not None for v in (self.holdings_count, self.total_invested, self.total_current)
        )


type Expected = ExpectedSummary | ExpectedHoldingSummary


@dataclass(frozen=True, slots=True)
class ExtractedTotals:
    debit_count: int
    credit_count: int
    total_debits: float
    total_credits: float


@dataclass(frozen=True, slots=True)
class ExtractedHoldingTotals:
    holdings_count: int
    total_invested: float
    total_current: float


@dataclass(frozen=True, slots=True)
class TotalsCheck:
    """Result of comparing extracted totals with a declared summary."""

    is_valid: bool
    issues: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Parser code cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParserMetadata:
    """Descriptive metadata stored alongside generated parser code."""

    detected_format: str
    date_format: str
    confidence: float


@dataclass(frozen=True, slots=True)
class ParserCodeEntry:
    bank_key: str
    version: int
    code: str
    detected_format: str
    date_format: str
    confidence: float
    created_at: str
    success_count: int = 0
    fail_count: int = 0


class StoredParserCode(BaseModel):
    """JSON value persisted under a ``parser_code:{key}:v{n}`` config row.

    Serialized with camelCase keys (``detectedFormat``, ``successCount`` ...)
    so rows written by other services stay readable.
    """

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    code: str
    detected_format: str = "unknown"
    date_format: str = "unknown"
    confidence: float = 0.0
    created_at: str
    success_count: int = 0
    fail_count: int = 0


@dataclass(frozen=True, slots=True)
class CachedKeySummary:
    bank_key: str
    version_count: int
    latest_version: int


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of one generation loop.

    ``code`` and ``records`` come from the last submission that returned at
    least one record. ``final_state`` is the loop state at exit
    (``done`` or ``step_limit_exceeded``).
    """

    code: str
    detected_format: str
    date_format: str
    confidence: float
    attempts: int
    steps: int
    final_state: str
    records: list[NormalizedRecord] = field(default_factory=list)
    final_error: str | None = None
    validation_passed: bool = False
    saved_version: int | None = None


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementContext:
    """Ownership identifiers attached to every inserted transaction."""

    account_id: str
    statement_id: str
    profile_id: str | None = None
    user_id: str | None = None
    currency: str = "USD"


@dataclass(frozen=True, slots=True)
class InsertResult:
    inserted_count: int
    skipped_duplicates: int
    transaction_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CategorizationDecision:
    """Category and summary assigned to one stored transaction."""

    id: str
    category: str
    confidence: float
    summary: str
    is_subscription: bool = False


@dataclass(frozen=True, slots=True)
class StatementExtraction:
    """Records extracted from one statement and where the parser came from."""

    records: list[NormalizedRecord]
    source: Literal["cache", "generated"]
    bank_key: str
    version: int | None
    tried_versions: tuple[int, ...] = ()
    validation_passed: bool = False
    generation_attempts: int = 0


__all__ = [
    "CachedKeySummary",
    "CategorizationDecision",
    "ExecutionResult",
    "Expected",
    "ExpectedHoldingSummary",
    "ExpectedSummary",
    "ExtractedHoldingTotals",
    "ExtractedTotals",
    "FailureKind",
    "GenerationResult",
    "InsertResult",
    "MultiVersionResult",
    "NormalizedRecord",
    "ParserCodeEntry",
    "ParserMetadata",
    "ParsingMode",
    "RawRecord",
    "StatementContext",
    "StatementExtraction",
    "StoredParserCode",
    "TotalsCheck",
]
