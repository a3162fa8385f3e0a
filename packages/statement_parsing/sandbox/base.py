"""Executor contract shared by every sandbox strategy."""

from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable

from ..logging_setup import get_logger
from ..models import ExecutionResult, FailureKind, ParsingMode
from ..validation import collect_records

_logger = get_logger("statement_parsing.sandbox")


@runtime_checkable
class SandboxExecutor(Protocol):
    """Run one untrusted parser against one statement text.

    Implementations never raise for candidate-code failures; they return an
    :class:`~statement_parsing.models.ExecutionResult` carrying a
    :class:`~statement_parsing.models.FailureKind` instead.
    """

    name: str

    def run(self, code: str, text: str, mode: ParsingMode = "transaction") -> ExecutionResult: ...


def elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def finish_execution(
    result: Any,
    *,
    mode: ParsingMode,
    max_items: int,
    started: float,
    strategy: str,
) -> ExecutionResult:
    """Turn a parser's raw return value into an ``ExecutionResult``."""

    if not isinstance(result, list):
        _logger.warning(
            "sandbox:not_a_list strategy=%s got=%s", strategy, type(result).__name__
        )
        return ExecutionResult.failed(
            FailureKind.NOT_A_LIST,
            f"Parser did not return a list (got {type(result).__name__})",
            execution_time_ms=elapsed_ms(started),
        )

    records, invalid = collect_records(result, mode, max_items=max_items)
    dt_ms = elapsed_ms(started)
    _logger.info(
        "sandbox:done strategy=%s mode=%s records=%d skipped_invalid=%d latency_ms=%.2f",
        strategy,
        mode,
        len(records),
        invalid,
        dt_ms,
    )
    return ExecutionResult(
        success=True,
        records=records,
        execution_time_ms=dt_ms,
        skipped_invalid=invalid,
    )


__all__ = ["SandboxExecutor", "elapsed_ms", "finish_execution"]
