"""Process-isolated execution of generated parser code.

Each execution acquires a fresh sandbox from a factory, ships it a small
bootstrap program wrapping the candidate parser, and reads the result back
from stdout between per-run sentinel markers. The default sandbox is a
separate interpreter (``python -I -S -X utf8 -``) started with an empty
environment in a throwaway working directory. On POSIX it also runs under
CPU, address-space and file-size limits. Inside the child an audit hook
(:func:`sys.addaudithook`) rejects ``open``, ``os.*``, ``subprocess.*``,
``socket.*``, ``import`` and related events once the bootstrap has loaded
what the parser may use, so the candidate has no filesystem or network
access.

The sandbox is released exactly once per execution regardless of how the
execution ends.
"""

from __future__ import annotations

import json
import os
import secrets
import shutil
import subprocess
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .. import config
from ..code_checks import PARSER_FUNCTION_NAME, wrap_parser_source
from ..logging_setup import get_logger
from ..models import ExecutionResult, FailureKind, ParsingMode
from .base import elapsed_ms, finish_execution

EXECUTION_TIMEOUT_S: float = 30.0
# Headroom between the code-run timeout and the overall sandbox budget.
RUN_BUFFER_S: float = 5.0
MEMORY_LIMIT_BYTES: int = 2 * 1024**3

_MARKER_PREFIX = "___SANDBOX_JSON"

_logger = get_logger("statement_parsing.sandbox.isolated")


class SandboxUnavailableError(RuntimeError):
    """The sandbox could not be created (missing interpreter, platform)."""


class SandboxTimeoutError(RuntimeError):
    """The code run exceeded its timeout; the sandbox was terminated."""


@dataclass(frozen=True, slots=True)
class SandboxRun:
    stdout: str
    stderr: str
    exit_code: int


class Sandbox(Protocol):
    def run_code(self, source: str, *, timeout: float) -> SandboxRun: ...

    def kill(self) -> None: ...


type SandboxFactory = Callable[[], Sandbox]


# ---------------------------------------------------------------------------
# Default subprocess sandbox
# ---------------------------------------------------------------------------


def isolated_available(python: str) -> bool:
    """Return True when a subprocess sandbox can be started with ``python``."""

    if os.name != "posix":
        return False
    if shutil.which(python):
        return True
    return os.path.isfile(python) and os.access(python, os.X_OK)


def _limit_resources(cpu_seconds: int, memory_bytes: int) -> Callable[[], None]:
    def _apply() -> None:  # pragma: no cover - runs in the forked child
        import resource

        limits = (
            (resource.RLIMIT_CPU, cpu_seconds),
            (resource.RLIMIT_AS, memory_bytes),
            (resource.RLIMIT_FSIZE, 0),
        )
        for which, value in limits:
            # Some kernels/containers refuse particular limits; the audit hook
            # still applies.
            try:
                resource.setrlimit(which, (value, value))
            except (ValueError, OSError):
                continue

    return _apply


class SubprocessSandbox:
    """One-shot child interpreter with no environment and a private cwd."""

    def __init__(
        self,
        python: str,
        *,
        cpu_seconds: int = int(EXECUTION_TIMEOUT_S),
        memory_bytes: int = MEMORY_LIMIT_BYTES,
    ) -> None:
        if not isolated_available(python):
            raise SandboxUnavailableError(f"interpreter not available for sandboxing: {python}")
        self._python = shutil.which(python) or python
        self._cpu_seconds = cpu_seconds
        self._memory_bytes = memory_bytes
        self._workdir = tempfile.mkdtemp(prefix="statement-sandbox-")
        self._proc: subprocess.Popen[str] | None = None

    def run_code(self, source: str, *, timeout: float) -> SandboxRun:
        self._proc = subprocess.Popen(
            [self._python, "-I", "-S", "-X", "utf8", "-"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self._workdir,
            env={},
            text=True,
            encoding="utf-8",
            errors="replace",
            close_fds=True,
            preexec_fn=_limit_resources(self._cpu_seconds, self._memory_bytes),  # noqa: PLW1509
        )
        try:
            stdout, stderr = self._proc.communicate(source, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self._proc.kill()
            self._proc.communicate()
            raise SandboxTimeoutError(f"Execution timeout ({int(timeout * 1000)}ms)") from e
        return SandboxRun(stdout=stdout, stderr=stderr, exit_code=self._proc.returncode)

    def kill(self) -> None:
        try:
            if self._proc is not None and self._proc.poll() is None:
                self._proc.kill()
                self._proc.wait(timeout=5)
        finally:
            shutil.rmtree(self._workdir, ignore_errors=True)


# ---------------------------------------------------------------------------
# Bootstrap program
# ---------------------------------------------------------------------------

_BOOTSTRAP_PRELUDE = """\
import json
import math
import re
import sys
import _strptime
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

_BLOCKED_EVENTS = (
    "open", "os.", "subprocess.", "socket.", "shutil.", "ctypes.", "import",
    "compile", "exec", "urllib.", "http.", "ftplib.", "smtplib.", "pty.",
    "glob.", "sqlite3.", "webbrowser.", "sys.addaudithook",
)


def _guard(event, args):
    if event.startswith(_BLOCKED_EVENTS):
        raise PermissionError("sandbox: " + event + " is not permitted")

"""


def build_sandbox_source(code: str, text: str, start_marker: str, end_marker: str) -> str:
    """Return the complete program executed inside the sandbox."""

    parts = [
        _BOOTSTRAP_PRELUDE,
        f"TEXT = {text!r}\n",
        "sys.addaudithook(_guard)\n\n",
        wrap_parser_source(code),
        "\n\n",
        "try:\n",
        f"    _payload = json.dumps({PARSER_FUNCTION_NAME}(TEXT), default=str)\n",
        "except BaseException as _exc:\n",
        "    sys.stderr.write(type(_exc).__name__ + ': ' + str(_exc) + '\\n')\n",
        "    sys.stderr.flush()\n",
        "    raise SystemExit(1)\n",
        f"sys.stdout.write({start_marker!r} + _payload + {end_marker!r} + '\\n')\n",
        "sys.stdout.flush()\n",
    ]
    return "".join(parts)


def new_markers() -> tuple[str, str]:
    token = secrets.token_hex(8)
    return f"{_MARKER_PREFIX}_START_{token}___", f"{_MARKER_PREFIX}_END_{token}___"


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class IsolatedProcessExecutor:
    """Executor that runs each candidate in a freshly acquired sandbox.

    Parameters
    ----------
    sandbox_factory:
        Zero-argument callable returning a :class:`Sandbox`. Defaults to a
        :class:`SubprocessSandbox` bound to ``python``.
    python:
        Interpreter for the default factory (``STATEMENT_PARSING_SANDBOX_PYTHON``
        or the running interpreter).
    timeout_s:
        Overall budget; the code run gets ``timeout_s - RUN_BUFFER_S``.
    max_items:
        Cap on accepted records (``STATEMENT_PARSING_MAX_ITEMS`` by default).
    """

    name = "isolated"

    def __init__(
        self,
        *,
        sandbox_factory: SandboxFactory | None = None,
        python: str | None = None,
        timeout_s: float = EXECUTION_TIMEOUT_S,
        max_items: int | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.max_items = max_items if max_items is not None else config.max_items()
        self._python = python or config.sandbox_python()
        self._sandbox_factory: SandboxFactory = sandbox_factory or self._default_sandbox

    def _default_sandbox(self) -> Sandbox:
        return SubprocessSandbox(self._python, cpu_seconds=int(self.timeout_s))

    def run(self, code: str, text: str, mode: ParsingMode = "transaction") -> ExecutionResult:
        started = time.perf_counter()
        start_marker, end_marker = new_markers()
        source = build_sandbox_source(code, text, start_marker, end_marker)
        run_timeout = max(self.timeout_s - RUN_BUFFER_S, 1.0)

        sandbox: Sandbox | None = None
        try:
            sandbox = self._sandbox_factory()
            run = sandbox.run_code(source, timeout=run_timeout)
        except SandboxUnavailableError as e:
            _logger.warning("isolated:unavailable error=%s", e)
            return ExecutionResult.failed(
                FailureKind.UNAVAILABLE, str(e), execution_time_ms=elapsed_ms(started)
            )
        except SandboxTimeoutError as e:
            _logger.warning("isolated:timeout run_timeout_s=%.1f", run_timeout)
            return ExecutionResult.failed(
                FailureKind.TIMEOUT, str(e), execution_time_ms=elapsed_ms(started)
            )
        except Exception as e:  # noqa: BLE001 - surfaced as a failed execution
            _logger.warning("isolated:sandbox_error error=%s", e.__class__.__name__)
            return ExecutionResult.failed(
                FailureKind.RUNTIME,
                f"Sandbox execution error: {e.__class__.__name__}: {e}",
                execution_time_ms=elapsed_ms(started),
            )
        else:
            return self._interpret(run, start_marker, end_marker, mode=mode, started=started)
        finally:
            if sandbox is not None:
                self._release(sandbox)

    def _interpret(
        self,
        run: SandboxRun,
        start_marker: str,
        end_marker: str,
        *,
        mode: ParsingMode,
        started: float,
    ) -> ExecutionResult:
        if run.exit_code != 0:
            lines = [ln for ln in run.stderr.strip().splitlines() if ln.strip()]
            detail = lines[-1] if lines else f"exited with code {run.exit_code}"
            _logger.warning("isolated:runtime_error exit_code=%d", run.exit_code)
            return ExecutionResult.failed(
                FailureKind.RUNTIME,
                f"Sandbox execution error: {detail}",
                execution_time_ms=elapsed_ms(started),
            )

        start = run.stdout.find(start_marker)
        end = run.stdout.find(end_marker, start + len(start_marker)) if start != -1 else -1
        if start == -1 or end == -1:
            _logger.warning("isolated:missing_markers stdout_len=%d", len(run.stdout))
            return ExecutionResult.failed(
                FailureKind.MISSING_MARKERS,
                "Parser did not return valid output (missing markers)",
                execution_time_ms=elapsed_ms(started),
            )

        payload = run.stdout[start + len(start_marker) : end]
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as e:
            _logger.warning("isolated:malformed_json payload_len=%d", len(payload))
            return ExecutionResult.failed(
                FailureKind.MALFORMED_JSON,
                f"Failed to parse result as JSON: {e}",
                execution_time_ms=elapsed_ms(started),
            )

        return finish_execution(
            decoded,
            mode=mode,
            max_items=self.max_items,
            started=started,
            strategy=self.name,
        )

    @staticmethod
    def _release(sandbox: Sandbox) -> None:
        try:
            sandbox.kill()
        except Exception as e:  # noqa: BLE001 - release failures must not mask results
            _logger.warning("isolated:release_failed error=%s", e)


__all__ = [
    "EXECUTION_TIMEOUT_S",
    "IsolatedProcessExecutor",
    "MEMORY_LIMIT_BYTES",
    "RUN_BUFFER_S",
    "Sandbox",
    "SandboxFactory",
    "SandboxRun",
    "SandboxTimeoutError",
    "SandboxUnavailableError",
    "SubprocessSandbox",
    "build_sandbox_source",
    "isolated_available",
    "new_markers",
]
