"""Restricted in-process execution of generated parser code.

This is the fallback strategy when no isolated interpreter is available. The
candidate is checked by :func:`statement_parsing.code_checks.validate_code`,
compiled as ``parse_statement(text)`` against a namespace holding only a
small builtins subset plus a few parsing helpers, and run in a daemon worker
thread raced against a wall-clock timeout.

A per-thread trace function aborts pure-Python loops once the deadline
passes. Work stuck inside a single C call (a pathological regex, a huge
allocation) cannot be interrupted in-process: the caller still gets a timeout
result and the daemon thread is abandoned.
"""

from __future__ import annotations

import builtins
import json
import math
import re
import sys
import threading
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from types import FrameType, SimpleNamespace
from typing import Any

from .. import config
from ..code_checks import PARSER_FUNCTION_NAME, validate_code
from ..logging_setup import get_logger
from ..models import ExecutionResult, FailureKind, ParsingMode
from .base import elapsed_ms, finish_execution

DEFAULT_TIMEOUT_S: float = 5.0
# Extra wait for the worker to unwind after the trace deadline fires.
_JOIN_GRACE_S: float = 1.0

_SAFE_BUILTIN_NAMES: tuple[str, ...] = (
    "abs",
    "all",
    "any",
    "bool",
    "chr",
    "dict",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "format",
    "frozenset",
    "int",
    "isinstance",
    "len",
    "list",
    "map",
    "max",
    "min",
    "ord",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "slice",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "ArithmeticError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "StopIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

# Facades expose functions only; the real modules carry references to other
# modules (``re.enum``, ``json.codecs``) that would leak ``sys``.
_RE_FACADE = SimpleNamespace(
    compile=re.compile,
    search=re.search,
    match=re.match,
    fullmatch=re.fullmatch,
    findall=re.findall,
    finditer=re.finditer,
    sub=re.sub,
    subn=re.subn,
    split=re.split,
    escape=re.escape,
    IGNORECASE=re.IGNORECASE,
    I=re.IGNORECASE,
    MULTILINE=re.MULTILINE,
    M=re.MULTILINE,
    DOTALL=re.DOTALL,
    S=re.DOTALL,
    VERBOSE=re.VERBOSE,
    X=re.VERBOSE,
    ASCII=re.ASCII,
    A=re.ASCII,
)
_JSON_FACADE = SimpleNamespace(loads=json.loads, dumps=json.dumps)

_logger = get_logger("statement_parsing.sandbox.restricted")


class ExecutionTimeout(BaseException):
    """Raised inside the worker when the deadline passes.

    Derives from ``BaseException`` so ``except Exception`` in candidate code
    cannot swallow it (bare ``except`` is rejected by the deny-list).
    """


def _safe_globals() -> dict[str, Any]:
    return {
        "__builtins__": {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES},
        "re": _RE_FACADE,
        "math": math,
        "json": _JSON_FACADE,
        "datetime": datetime,
        "date": date,
        "timedelta": timedelta,
        "Decimal": Decimal,
        "InvalidOperation": InvalidOperation,
    }


class _ParserThread(threading.Thread):
    def __init__(self, fn: Callable[[str], Any], text: str, deadline: float) -> None:
        super().__init__(name="parser-restricted", daemon=True)
        self._fn = fn
        self._text = text
        self._deadline = deadline
        self.result: Any = None
        self.error: BaseException | None = None

    def _trace(self, frame: FrameType, event: str, arg: Any) -> Any:
        if time.monotonic() > self._deadline:
            raise ExecutionTimeout()
        return self._trace

    def run(self) -> None:
        sys.settrace(self._trace)
        try:
            self.result = self._fn(self._text)
        except BaseException as e:  # noqa: BLE001 - handed back to the calling thread
            self.error = e
        finally:
            sys.settrace(None)


class RestrictedLocalExecutor:
    """In-process executor guarded by a static deny-list and a deadline."""

    name = "restricted"

    def __init__(self, *, timeout_s: float = DEFAULT_TIMEOUT_S, max_items: int | None = None):
        self.timeout_s = timeout_s
        self.max_items = max_items if max_items is not None else config.max_items()

    def run(self, code: str, text: str, mode: ParsingMode = "transaction") -> ExecutionResult:
        started = time.perf_counter()

        check = validate_code(code)
        if not check.valid or check.tree is None:
            kind = FailureKind.SYNTAX if check.syntax_error else FailureKind.DENIED
            _logger.warning(
                "restricted:code_rejected kind=%s errors=%d first=%s",
                kind.value,
                len(check.errors),
                check.errors[0] if check.errors else "",
            )
            label = "Syntax check failed" if check.syntax_error else "Code validation failed"
            return ExecutionResult.failed(
                kind,
                f"{label}: {'; '.join(check.errors)}",
                execution_time_ms=elapsed_ms(started),
            )

        try:
            code_obj = compile(check.tree, "<parser>", "exec")
        except SyntaxError as e:
            # Scope errors (stray break/return) only surface at compile time.
            return ExecutionResult.failed(
                FailureKind.SYNTAX,
                f"Syntax check failed: {e.msg}",
                execution_time_ms=elapsed_ms(started),
            )
        namespace = _safe_globals()
        exec(code_obj, namespace)  # noqa: S102 - defines parse_statement only
        parse_fn = namespace[PARSER_FUNCTION_NAME]

        worker = _ParserThread(parse_fn, text, time.monotonic() + self.timeout_s)
        worker.start()
        worker.join(self.timeout_s + _JOIN_GRACE_S)

        timeout_msg = f"Execution timeout ({int(self.timeout_s * 1000)}ms)"
        if worker.is_alive():
            _logger.warning(
                "restricted:worker_abandoned timeout_s=%.1f thread=%s",
                self.timeout_s,
                worker.name,
            )
            return ExecutionResult.failed(
                FailureKind.TIMEOUT, timeout_msg, execution_time_ms=elapsed_ms(started)
            )
        if isinstance(worker.error, ExecutionTimeout):
            _logger.warning("restricted:timeout timeout_s=%.1f", self.timeout_s)
            return ExecutionResult.failed(
                FailureKind.TIMEOUT, timeout_msg, execution_time_ms=elapsed_ms(started)
            )
        if worker.error is not None:
            err = worker.error
            _logger.warning("restricted:runtime_error error=%s", err.__class__.__name__)
            return ExecutionResult.failed(
                FailureKind.RUNTIME,
                f"{err.__class__.__name__}: {err}",
                execution_time_ms=elapsed_ms(started),
            )

        return finish_execution(
            worker.result,
            mode=mode,
            max_items=self.max_items,
            started=started,
            strategy=self.name,
        )


__all__ = ["DEFAULT_TIMEOUT_S", "ExecutionTimeout", "RestrictedLocalExecutor"]
