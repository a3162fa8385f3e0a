"""Try cached parser versions newest-first until one yields valid records.

For each candidate version:

1. Execute it in the sandbox.
2. An execution failure or zero records marks the version failed; move on.
3. With no expected summary data, the first version producing records wins
   (``validation_passed=False``).
4. With expected data, extracted totals must agree with the statement
   (exact counts, sums within tolerance) for the version to win.

Success and failure counters are bumped on the cache row of every version
tried. When every version fails the result carries all tried version numbers.
"""

from __future__ import annotations

import time
from collections.abc import Sequence

from sqlalchemy.orm import Session

from . import parser_cache
from .logging_setup import get_logger
from .models import Expected, MultiVersionResult, ParserCodeEntry, ParsingMode
from .sandbox import SandboxExecutor, select_executor
from .totals import check_records, has_validation_data

_logger = get_logger("statement_parsing.runner")


def run_parser_with_versions(
    session: Session,
    entries: Sequence[ParserCodeEntry],
    text: str,
    bank_key: str,
    *,
    expected: Expected | None = None,
    executor: SandboxExecutor | None = None,
    mode: ParsingMode = "transaction",
) -> MultiVersionResult:
    """Run ``entries`` (already ordered newest-first) against ``text``.

    Parameters
    ----------
    session:
        Session used to record per-version success/failure counters.
    entries:
        Cached versions to try, in order.
    text:
        Full statement text.
    bank_key:
        Cache key the entries belong to.
    expected:
        Declared statement totals; ``None`` or all-null skips totals checks.
    executor:
        Sandbox strategy; defaults to :func:`statement_parsing.sandbox.select_executor`.
    mode:
        ``transaction`` or ``holding``; selects validation and key namespace.
    """

    if not entries:
        return MultiVersionResult(success=False, error="No cached parser versions available")

    runner = executor or select_executor()
    # Narrowed to the summary only when it declares something to check.
    declared = expected if has_validation_data(expected) else None
    tried: list[int] = []
    t0 = time.perf_counter()

    for entry in entries:
        tried.append(entry.version)
        result = runner.run(entry.code, text, mode)

        if not result.success or not result.records:
            _logger.warning(
                "runner:version_failed bank_key=%s version=%d reason=%s",
                bank_key,
                entry.version,
                result.error or "no records",
            )
            parser_cache.record_failure(session, bank_key, entry.version, mode=mode)
            continue

        if declared is None:
            _logger.info(
                "runner:version_accepted bank_key=%s version=%d records=%d validated=false",
                bank_key,
                entry.version,
                len(result.records),
            )
            parser_cache.record_success(session, bank_key, entry.version, mode=mode)
            return MultiVersionResult(
                success=True,
                records=result.records,
                execution_time_ms=result.execution_time_ms,
                used_version=entry.version,
                tried_versions=tuple(tried),
                validation_passed=False,
            )

        check = check_records(result.records, declared)
        if check.is_valid:
            _logger.info(
                "runner:version_accepted bank_key=%s version=%d records=%d validated=true",
                bank_key,
                entry.version,
                len(result.records),
            )
            parser_cache.record_success(session, bank_key, entry.version, mode=mode)
            return MultiVersionResult(
                success=True,
                records=result.records,
                execution_time_ms=result.execution_time_ms,
                used_version=entry.version,
                tried_versions=tuple(tried),
                validation_passed=True,
            )

        _logger.warning(
            "runner:totals_mismatch bank_key=%s version=%d issues=%s",
            bank_key,
            entry.version,
            "; ".join(check.issues),
        )
        parser_cache.record_failure(session, bank_key, entry.version, mode=mode)

    dt_ms = (time.perf_counter() - t0) * 1000.0
    suffix = "failed execution or validation" if declared is not None else "failed"
    _logger.warning(
        "runner:exhausted bank_key=%s tried=%s latency_ms=%.2f",
        bank_key,
        ",".join(str(v) for v in tried),
        dt_ms,
    )
    return MultiVersionResult(
        success=False,
        error=f"All {len(entries)} cached parser versions {suffix}",
        execution_time_ms=dt_ms,
        tried_versions=tuple(tried),
    )


__all__ = ["run_parser_with_versions"]
