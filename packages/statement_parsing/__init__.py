"""Public interface for the ``statement_parsing`` package.

This module exposes the pipeline entry points, the building blocks they are
made of and the public models/types as the stable import surface. There is no
runtime logic here, only symbol re-exports.
"""

from .categorize import categorize_statement_transactions
from .codegen import generate_and_cache, generate_parser_code
from .errors import ExtractionExhaustedError, ParserGenerationError
from .models import (
    CategorizationDecision,
    ExecutionResult,
    ExpectedHoldingSummary,
    ExpectedSummary,
    FailureKind,
    GenerationResult,
    InsertResult,
    MultiVersionResult,
    ParserCodeEntry,
    ParserMetadata,
    ParsingMode,
    StatementContext,
    StatementExtraction,
)
from .parser_cache import (
    clear_parser_cache,
    generate_bank_key,
    generate_source_key,
    get_latest_version,
    get_parser_codes,
    list_cached_banks,
    record_failure,
    record_success,
    save_parser_code,
)
from .persistence import (
    compute_transaction_hash,
    insert_raw_transactions,
    update_transaction_categories,
)
from .pipeline import extract_statement, ingest_statement
from .runner import run_parser_with_versions
from .sandbox import (
    IsolatedProcessExecutor,
    RestrictedLocalExecutor,
    SandboxExecutor,
    run_parser,
    select_executor,
)
from .validation import (
    is_valid_holding,
    is_valid_transaction,
    normalize_holding,
    normalize_transaction,
)

__all__ = [
    # Pipeline
    "extract_statement",
    "ingest_statement",
    # Generation
    "generate_and_cache",
    "generate_parser_code",
    # Cache
    "clear_parser_cache",
    "generate_bank_key",
    "generate_source_key",
    "get_latest_version",
    "get_parser_codes",
    "list_cached_banks",
    "record_failure",
    "record_success",
    "save_parser_code",
    # Execution
    "IsolatedProcessExecutor",
    "RestrictedLocalExecutor",
    "SandboxExecutor",
    "run_parser",
    "run_parser_with_versions",
    "select_executor",
    # Validation
    "is_valid_holding",
    "is_valid_transaction",
    "normalize_holding",
    "normalize_transaction",
    # Ingestion
    "categorize_statement_transactions",
    "compute_transaction_hash",
    "insert_raw_transactions",
    "update_transaction_categories",
    # Errors
    "ExtractionExhaustedError",
    "ParserGenerationError",
    # Models
    "CategorizationDecision",
    "ExecutionResult",
    "ExpectedHoldingSummary",
    "ExpectedSummary",
    "FailureKind",
    "GenerationResult",
    "InsertResult",
    "MultiVersionResult",
    "ParserCodeEntry",
    "ParserMetadata",
    "ParsingMode",
    "StatementContext",
    "StatementExtraction",
]
