import json
import os
import sys

import pytest

from statement_parsing.models import FailureKind
from statement_parsing.sandbox import isolated
from statement_parsing.sandbox.isolated import (
    IsolatedProcessExecutor,
    SandboxRun,
    SandboxTimeoutError,
    SandboxUnavailableError,
    build_sandbox_source,
)

START = "___START___"
END = "___END___"

ROW = {"date": "2024-02-01", "amount": 10.0, "type": "debit", "description": "x"}


class FakeSandbox:
    def __init__(self, outcome, *, kill_error: Exception | None = None) -> None:
        self._outcome = outcome
        self._kill_error = kill_error
        self.kills = 0
        self.sources: list[str] = []

    def run_code(self, source: str, *, timeout: float) -> SandboxRun:
        self.sources.append(source)
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome

    def kill(self) -> None:
        self.kills += 1
        if self._kill_error is not None:
            raise self._kill_error


@pytest.fixture(autouse=True)
def _fixed_markers(monkeypatch):
    monkeypatch.setattr(isolated, "new_markers", lambda: (START, END))


def _executor(sandbox: FakeSandbox) -> IsolatedProcessExecutor:
    return IsolatedProcessExecutor(sandbox_factory=lambda: sandbox, max_items=10_000)


def _stdout(payload) -> str:
    return f"noise from parser\n{START}{json.dumps(payload)}{END}\n"


def test_success_parses_payload_and_releases_sandbox() -> None:
    box = FakeSandbox(SandboxRun(stdout=_stdout([ROW, {"bad": 1}]), stderr="", exit_code=0))

    result = _executor(box).run("return []", "statement text")

    assert result.success
    assert result.records == [{**ROW, "balance": None}]
    assert result.skipped_invalid == 1
    assert box.kills == 1
    assert "TEXT = 'statement text'" in box.sources[0]


def test_nonzero_exit_reports_last_stderr_line() -> None:
    stderr = "Traceback (most recent call last):\n  ...\nKeyError: 'amount'\n"
    box = FakeSandbox(SandboxRun(stdout="", stderr=stderr, exit_code=1))

    result = _executor(box).run("return []", "t")

    assert result.failure is FailureKind.RUNTIME
    assert result.error == "Sandbox execution error: KeyError: 'amount'"
    assert box.kills == 1


def test_nonzero_exit_without_stderr_reports_exit_code() -> None:
    box = FakeSandbox(SandboxRun(stdout="", stderr="", exit_code=137))
    result = _executor(box).run("return []", "t")
    assert result.error == "Sandbox execution error: exited with code 137"


def test_missing_markers() -> None:
    box = FakeSandbox(SandboxRun(stdout="[]\n", stderr="", exit_code=0))

    result = _executor(box).run("return []", "t")

    assert result.failure is FailureKind.MISSING_MARKERS
    assert result.error == "Parser did not return valid output (missing markers)"
    assert box.kills == 1


def test_malformed_json_between_markers() -> None:
    box = FakeSandbox(SandboxRun(stdout=f"{START}[{{oops{END}", stderr="", exit_code=0))

    result = _executor(box).run("return []", "t")

    assert result.failure is FailureKind.MALFORMED_JSON
    assert result.error.startswith("Failed to parse result as JSON:")


def test_non_list_payload() -> None:
    box = FakeSandbox(SandboxRun(stdout=_stdout({"rows": []}), stderr="", exit_code=0))
    result = _executor(box).run("return []", "t")
    assert result.failure is FailureKind.NOT_A_LIST


def test_timeout_is_reported_and_sandbox_released() -> None:
    box = FakeSandbox(SandboxTimeoutError("Execution timeout (25000ms)"))

    result = _executor(box).run("return []", "t")

    assert result.failure is FailureKind.TIMEOUT
    assert result.error == "Execution timeout (25000ms)"
    assert box.kills == 1


def test_unavailable_factory_has_nothing_to_release() -> None:
    def factory():
        raise SandboxUnavailableError("no interpreter")

    result = IsolatedProcessExecutor(sandbox_factory=factory).run("return []", "t")

    assert result.failure is FailureKind.UNAVAILABLE
    assert result.error == "no interpreter"


def test_unexpected_sandbox_error_becomes_runtime_failure() -> None:
    box = FakeSandbox(OSError("broken pipe"))

    result = _executor(box).run("return []", "t")

    assert result.failure is FailureKind.RUNTIME
    assert result.error == "Sandbox execution error: OSError: broken pipe"
    assert box.kills == 1


def test_release_failure_does_not_mask_result() -> None:
    box = FakeSandbox(
        SandboxRun(stdout=_stdout([ROW]), stderr="", exit_code=0),
        kill_error=RuntimeError("already gone"),
    )

    result = _executor(box).run("return []", "t")

    assert result.success
    assert len(result.records) == 1
    assert box.kills == 1


def test_bootstrap_wraps_parser_and_markers() -> None:
    src = build_sandbox_source("return [1]", "abc", START, END)

    assert "def parse_statement(text):\n    return [1]" in src
    assert "sys.addaudithook(_guard)" in src
    assert repr(START) in src and repr(END) in src
    compile(src, "<sandbox>", "exec")


# ---- Real subprocess sandbox ----------------------------------------------------

posix_only = pytest.mark.skipif(os.name != "posix", reason="subprocess sandbox needs POSIX")


@posix_only
def test_subprocess_sandbox_runs_parser() -> None:
    code = (
        "rows = []\n"
        "for m in re.finditer(r'(\\d{4}-\\d{2}-\\d{2}) (\\w+) (\\d+\\.\\d{2})', text):\n"
        "    rows.append({'date': m.group(1), 'amount': float(m.group(3)),\n"
        "                 'type': 'debit', 'description': m.group(2)})\n"
        "return rows\n"
    )
    ex = IsolatedProcessExecutor(python=sys.executable, timeout_s=30.0)

    result = ex.run(code, "2024-01-02 COFFEE 4.50\n2024-01-03 BOOKS 12.00\n")

    assert result.success, result.error
    assert [r["description"] for r in result.records] == ["COFFEE", "BOOKS"]


@posix_only
def test_subprocess_sandbox_blocks_file_access() -> None:
    # Reaches ``open`` indirectly; the audit hook still refuses it.
    code = "f = json.__builtins__['open']('/etc/hostname')\nreturn []\n"
    ex = IsolatedProcessExecutor(python=sys.executable, timeout_s=30.0)

    result = ex.run(code, "t")

    assert not result.success
    assert result.failure is FailureKind.RUNTIME
    assert "PermissionError" in result.error
