"""Agentic parser code generation over the OpenAI Responses API.

The loop is an explicit state machine::

    AWAITING_MODEL -> AWAITING_TOOL_RESULT -> AWAITING_MODEL | DONE | STEP_LIMIT_EXCEEDED

Each step is one ``responses.create`` request. Function calls in the response
are answered with ``function_call_output`` items chained through
``previous_response_id``. The loop stops when the model calls ``done``, stops
calling tools, or the step counter reaches ``max_steps``.

Every ``submit_code`` call executes the candidate against the FULL statement
text through a :class:`~statement_parsing.sandbox.SandboxExecutor`; only the
prompt sees the truncated text. The result of the loop is the LAST submission
that produced at least one record, whether or not it passed validation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy.orm import Session

from . import config, parser_cache, prompting
from .errors import ParserGenerationError
from .logging_setup import get_logger
from .models import (
    Expected,
    GenerationResult,
    NormalizedRecord,
    ParserMetadata,
    ParsingMode,
)
from .sandbox import SandboxExecutor, select_executor
from .totals import check_records, has_validation_data

MAX_STEPS: int = 8

_logger = get_logger("statement_parsing.codegen")


class LoopState(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    DONE = "done"
    STEP_LIMIT_EXCEEDED = "step_limit_exceeded"


class SubmitCodeArgs(BaseModel):
    """Arguments of the ``submit_code`` tool."""

    model_config = ConfigDict(extra="ignore")

    parser_code: str
    detected_format: str = "Unknown"
    date_format: str = "Unknown"
    confidence: float = 0.5

    @field_validator("parser_code")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("parser_code must not be blank")
        return v

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return min(1.0, max(0.0, v))


@dataclass(slots=True)
class _Progress:
    attempts: int = 0
    last_error: str | None = None
    accepted: SubmitCodeArgs | None = None
    # Validation outcome of ``accepted``, not of the latest submission.
    accepted_validated: bool = False
    records: list[NormalizedRecord] = field(default_factory=list)


def _create_client() -> OpenAI:
    return OpenAI()


def _function_calls(resp: Any) -> list[Any]:
    return [
        item
        for item in (getattr(resp, "output", None) or [])
        if getattr(item, "type", None) == "function_call"
    ]


def _handle_submission(
    progress: _Progress,
    raw_arguments: str,
    *,
    text: str,
    runner: SandboxExecutor,
    mode: ParsingMode,
    expected: Expected | None,
) -> str:
    try:
        args = SubmitCodeArgs.model_validate_json(raw_arguments or "{}")
    except ValidationError as e:
        progress.last_error = f"invalid submit_code arguments ({e.error_count()} errors)"
        _logger.warning("codegen:invalid_arguments errors=%d", e.error_count())
        return prompting.render_error_feedback(
            f"Invalid {prompting.SUBMIT_CODE_TOOL} arguments: {e}"
        )

    progress.attempts += 1
    _logger.info(
        "codegen:submission attempt=%d format=%s mode=%s",
        progress.attempts,
        args.detected_format,
        mode,
    )
    _logger.debug("codegen:submission_code attempt=%d\n%s", progress.attempts, args.parser_code)

    result = runner.run(args.parser_code, text, mode)
    if not (result.success and result.records):
        progress.last_error = result.error or "No records found"
        _logger.warning(
            "codegen:submission_failed attempt=%d failure=%s error=%s",
            progress.attempts,
            result.failure,
            progress.last_error,
        )
        return prompting.render_error_feedback(result.error)

    progress.accepted = args
    progress.records = result.records
    check = check_records(result.records, expected) if has_validation_data(expected) else None
    progress.accepted_validated = check is not None and check.is_valid
    if check is None or check.is_valid:
        progress.last_error = None
    else:
        progress.last_error = "; ".join(check.issues)
    _logger.info(
        "codegen:submission_ok attempt=%d records=%d skipped_invalid=%d validated=%s",
        progress.attempts,
        len(result.records),
        result.skipped_invalid,
        "n/a" if check is None else str(check.is_valid).lower(),
    )
    return prompting.render_submission_feedback(
        result.records, mode, expected=expected, check=check
    )


def generate_parser_code(
    text: str,
    *,
    executor: SandboxExecutor | None = None,
    mode: ParsingMode = "transaction",
    institution_id: str | None = None,
    expected: Expected | None = None,
    client: OpenAI | None = None,
    model: str | None = None,
    max_steps: int = MAX_STEPS,
) -> GenerationResult:
    """Run the tool-calling loop and return the last working submission.

    Parameters
    ----------
    text:
        Full statement text. Candidates always run against all of it.
    executor:
        Sandbox used for ``submit_code``; defaults to the configured one.
    mode:
        ``transaction`` or ``holding``; selects prompts and validation.
    institution_id:
        Free-form institution name used to pick format hints.
    expected:
        Totals the statement declares, fed to the prompt and to validation.
    client, model:
        OpenAI client and model name; default to ``OpenAI()`` and
        ``STATEMENT_PARSING_MODEL``.
    max_steps:
        Upper bound on model requests.

    Returns
    -------
    GenerationResult
        ``code`` is empty and ``records`` is empty when no submission
        produced records; ``final_error`` then holds the last error seen.
    """

    if max_steps < 1:
        raise ValueError("max_steps must be >= 1")

    runner = executor or select_executor()
    client = client or _create_client()
    model = model or config.model_name()
    instructions = prompting.build_generation_instructions(
        mode, institution_id=institution_id, expected=expected
    )
    tools = prompting.build_generation_tools()

    _logger.info(
        "codegen:start mode=%s institution=%s text_len=%d validation=%s",
        mode,
        institution_id or "unknown",
        len(text),
        str(has_validation_data(expected)).lower(),
    )

    progress = _Progress()
    state = LoopState.AWAITING_MODEL
    steps = 0
    pending: Any = prompting.build_generation_input(text, mode)
    previous_response_id: str | None = None
    t0 = time.perf_counter()

    while state is LoopState.AWAITING_MODEL:
        if steps >= max_steps:
            state = LoopState.STEP_LIMIT_EXCEEDED
            break
        steps += 1
        request: dict[str, Any] = {
            "model": model,
            "instructions": instructions,
            "input": pending,
            "tools": tools,
        }
        if previous_response_id:
            request["previous_response_id"] = previous_response_id
        resp = client.responses.create(**request)
        previous_response_id = getattr(resp, "id", None)

        calls = _function_calls(resp)
        if not calls:
            state = LoopState.DONE
            break

        state = LoopState.AWAITING_TOOL_RESULT
        outputs: list[dict[str, Any]] = []
        finished = False
        for call in calls:
            name = getattr(call, "name", None)
            if name == prompting.SUBMIT_CODE_TOOL:
                output = _handle_submission(
                    progress,
                    getattr(call, "arguments", "") or "",
                    text=text,
                    runner=runner,
                    mode=mode,
                    expected=expected,
                )
            elif name == prompting.DONE_TOOL:
                finished = True
                output = "OK"
            else:
                output = prompting.render_error_feedback(f"Unknown tool: {name}")
            outputs.append(
                {
                    "type": "function_call_output",
                    "call_id": getattr(call, "call_id", None),
                    "output": output,
                }
            )

        if finished:
            state = LoopState.DONE
            break
        pending = outputs
        state = LoopState.AWAITING_MODEL

    dt_ms = (time.perf_counter() - t0) * 1000.0
    accepted = progress.accepted
    _logger.info(
        "codegen:finished state=%s steps=%d attempts=%d records=%d validated=%s latency_ms=%.2f",
        state,
        steps,
        progress.attempts,
        len(progress.records),
        str(progress.accepted_validated).lower(),
        dt_ms,
    )
    return GenerationResult(
        code=accepted.parser_code if accepted else "",
        detected_format=accepted.detected_format if accepted else "Unknown",
        date_format=accepted.date_format if accepted else "Unknown",
        confidence=accepted.confidence if accepted else 0.0,
        attempts=progress.attempts,
        steps=steps,
        final_state=str(state),
        records=progress.records,
        final_error=progress.last_error,
        validation_passed=progress.accepted_validated,
    )


def generate_and_cache(
    session: Session,
    bank_key: str,
    text: str,
    *,
    executor: SandboxExecutor | None = None,
    mode: ParsingMode = "transaction",
    institution_id: str | None = None,
    expected: Expected | None = None,
    client: OpenAI | None = None,
    model: str | None = None,
    max_steps: int = MAX_STEPS,
) -> GenerationResult:
    """Generate a parser and store it as the next version for ``bank_key``.

    Raises
    ------
    ParserGenerationError
        When no submission produced records; nothing is cached.
    """

    result = generate_parser_code(
        text,
        executor=executor,
        mode=mode,
        institution_id=institution_id,
        expected=expected,
        client=client,
        model=model,
        max_steps=max_steps,
    )
    if not result.code or not result.records:
        _logger.error(
            "codegen:no_working_parser bank_key=%s attempts=%d error=%s",
            bank_key,
            result.attempts,
            result.final_error,
        )
        raise ParserGenerationError(
            f"Parser generation produced no records for {bank_key!r} "
            f"after {result.attempts} attempt(s)",
            attempts=result.attempts,
            last_error=result.final_error,
        )

    version = parser_cache.save_parser_code(
        session,
        bank_key,
        result.code,
        ParserMetadata(
            detected_format=result.detected_format,
            date_format=result.date_format,
            confidence=result.confidence,
        ),
        mode=mode,
    )
    return replace(result, saved_version=version)


__all__ = [
    "LoopState",
    "MAX_STEPS",
    "SubmitCodeArgs",
    "generate_and_cache",
    "generate_parser_code",
]
