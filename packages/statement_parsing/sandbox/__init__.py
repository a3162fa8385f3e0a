"""Sandboxed execution of LLM-generated parser code.

Two strategies implement :class:`SandboxExecutor`:

- :class:`IsolatedProcessExecutor`: a separate interpreter per execution,
  without network or filesystem access (preferred).
- :class:`RestrictedLocalExecutor`: in-process execution behind a static
  deny-list and a deadline (fallback).

:func:`select_executor` picks one from configuration; an unavailable isolated
sandbox degrades to the restricted strategy instead of failing.
"""

from __future__ import annotations

from .. import config
from ..config import SandboxStrategy
from ..logging_setup import get_logger
from ..models import ExecutionResult, ParsingMode
from .base import SandboxExecutor
from .isolated import IsolatedProcessExecutor, isolated_available
from .restricted import RestrictedLocalExecutor

_logger = get_logger("statement_parsing.sandbox")


def select_executor(strategy: SandboxStrategy | None = None) -> SandboxExecutor:
    """Return the executor for ``strategy`` (``STATEMENT_PARSING_SANDBOX`` by default)."""

    chosen = strategy or config.sandbox_strategy()
    if chosen == "restricted":
        _logger.info("sandbox:selected strategy=restricted reason=configured")
        return RestrictedLocalExecutor()

    python = config.sandbox_python()
    if isolated_available(python):
        _logger.info("sandbox:selected strategy=isolated python=%s", python)
        return IsolatedProcessExecutor(python=python)

    log = _logger.warning if chosen == "isolated" else _logger.info
    log("sandbox:selected strategy=restricted reason=isolated_unavailable python=%s", python)
    return RestrictedLocalExecutor()


def run_parser(
    code: str,
    text: str,
    mode: ParsingMode = "transaction",
    *,
    executor: SandboxExecutor | None = None,
) -> ExecutionResult:
    """Run ``code`` against ``text`` with ``executor`` or the configured one."""

    return (executor or select_executor()).run(code, text, mode)


__all__ = [
    "IsolatedProcessExecutor",
    "RestrictedLocalExecutor",
    "SandboxExecutor",
    "run_parser",
    "select_executor",
]
