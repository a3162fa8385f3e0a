"""Test helpers to stub the OpenAI Responses client.

Two stubs match the slice of ``openai.OpenAI`` the package uses
(``client.responses.create(**kwargs)``):

- :class:`ScriptedToolClient` replays a fixed script of function calls for
  the parser generation loop.
- :class:`CategorizeStub` answers the categorization call by reading the
  embedded transactions JSON and applying a ``decide`` callable.

Both record every call's kwargs in ``calls`` for lightweight assertions.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"


@dataclass
class FunctionCall:
    name: str
    arguments: str
    call_id: str
    type: str = "function_call"


@dataclass
class Message:
    text: str
    type: str = "message"


@dataclass
class Response:
    id: str
    output: list[Any] = field(default_factory=list)
    output_text: str = ""


def submit(
    code: str,
    *,
    call_id: str,
    detected_format: str = "Test Bank Statement",
    date_format: str = "YYYY-MM-DD",
    confidence: float = 0.9,
) -> FunctionCall:
    args = {
        "parser_code": code,
        "detected_format": detected_format,
        "date_format": date_format,
        "confidence": confidence,
    }
    return FunctionCall(name="submit_code", arguments=json.dumps(args), call_id=call_id)


def done(*, call_id: str, summary: str = "parses the statement") -> FunctionCall:
    return FunctionCall(name="done", arguments=json.dumps({"summary": summary}), call_id=call_id)


class ScriptedToolClient:
    """Return one scripted response per ``responses.create`` call.

    Each script entry is the list of output items for that step. Once the
    script runs out the stub answers with a plain message (no tool calls).
    """

    def __init__(self, script: Sequence[Sequence[Any]]) -> None:
        self._script = [list(step) for step in script]
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: ScriptedToolClient) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> Response:
                outer = self._outer
                outer.calls.append(kwargs)
                n = len(outer.calls)
                if n <= len(outer._script):
                    return Response(id=f"resp_{n}", output=outer._script[n - 1])
                return Response(id=f"resp_{n}", output=[Message(text="finished")])

        self.responses = _Responses(self)


class RefusingClient:
    """Client whose every call fails; proves a code path stays offline."""

    def __init__(self) -> None:
        class _Responses:
            def create(self, **kwargs: Any) -> Response:
                raise AssertionError("the model must not be called")

        self.responses = _Responses()


def extract_transactions_from_user_content(user_content: str) -> list[dict[str, Any]]:
    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("categorize: user content missing embedded transactions JSON block")
    return json.loads(user_content[b + len(BEGIN) : e])


class CategorizeStub:
    """Minimal stub for the single categorization call.

    Parameters
    ----------
    decide:
        Receives each embedded transaction mapping and returns the result
        dict to emit for it (``id`` is filled in when missing), or ``None`` to
        omit that transaction from the response.
    extra_results:
        Additional raw result dicts appended to the response.
    raw_output:
        When given, returned verbatim as ``output_text`` instead.
    """

    def __init__(
        self,
        decide: Callable[[dict[str, Any]], dict[str, Any] | None],
        *,
        extra_results: Sequence[dict[str, Any]] = (),
        raw_output: str | None = None,
    ) -> None:
        self._decide = decide
        self._extra = list(extra_results)
        self._raw = raw_output
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: CategorizeStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> Response:
                outer = self._outer
                outer.calls.append(kwargs)
                if outer._raw is not None:
                    return Response(id="resp_cat", output_text=outer._raw)
                results = []
                for item in extract_transactions_from_user_content(kwargs["input"]):
                    decided = outer._decide(item)
                    if decided is None:
                        continue
                    results.append({"id": item["id"], **decided})
                results.extend(outer._extra)
                return Response(id="resp_cat", output_text=json.dumps({"results": results}))

        self.responses = _Responses(self)
