import pytest

from statement_parsing import codegen
from statement_parsing.codegen import LoopState, generate_and_cache, generate_parser_code
from statement_parsing.errors import ParserGenerationError
from statement_parsing.models import ExpectedSummary
from statement_parsing.parser_cache import get_parser_codes
from statement_parsing.prompting import MAX_PROMPT_TEXT_CHARS, TRUNCATION_MARKER
from statement_parsing.sandbox import RestrictedLocalExecutor
from tests.helpers.openai_stub import FunctionCall, ScriptedToolClient, done, submit

STATEMENT = "2024-01-02 COFFEE 4.50\n2024-01-03 BOOKS 12.00\n2024-01-05 REFUND 3.00 CR\n"

GOOD = """
rows = []
for line in text.splitlines():
    m = re.match(r"(\\d{4}-\\d{2}-\\d{2}) (\\w+) ([\\d.]+)( CR)?$", line)
    if m:
        rows.append({
            "date": m.group(1),
            "amount": float(m.group(3)),
            "type": "credit" if m.group(4) else "debit",
            "description": m.group(2),
        })
return rows
"""

# Treats every line as a debit; right count, wrong split.
ALL_DEBITS = GOOD.replace('"credit" if m.group(4) else "debit"', '"debit"')

BROKEN = "return [1 / 0]"


@pytest.fixture
def executor() -> RestrictedLocalExecutor:
    return RestrictedLocalExecutor()


@pytest.fixture(autouse=True)
def _no_real_client(monkeypatch):
    def refuse():
        raise AssertionError("tests must inject a client")

    monkeypatch.setattr(codegen, "_create_client", refuse)


def test_fix_after_error_then_done(executor) -> None:
    client = ScriptedToolClient(
        [
            [submit(BROKEN, call_id="c1")],
            [submit(GOOD, call_id="c2", detected_format="Plain ledger", confidence=1.4)],
            [done(call_id="c3")],
        ]
    )

    result = generate_parser_code(STATEMENT, executor=executor, client=client, model="m")

    assert result.final_state == LoopState.DONE
    assert result.attempts == 2
    assert result.steps == 3
    assert result.code == GOOD
    assert result.detected_format == "Plain ledger"
    assert result.confidence == 1.0
    assert [r["type"] for r in result.records] == ["debit", "debit", "credit"]
    assert result.final_error is None

    first, second, third = client.calls
    assert "previous_response_id" not in first
    assert first["model"] == "m"
    assert {t["name"] for t in first["tools"]} == {"submit_code", "done"}
    assert second["previous_response_id"] == "resp_1"
    (feedback,) = second["input"]
    assert feedback["type"] == "function_call_output"
    assert feedback["call_id"] == "c1"
    assert feedback["output"].startswith("ERROR: ZeroDivisionError: division by zero")
    assert third["input"][0]["output"].startswith("SUCCESS: Found 3 transactions.")


def test_validation_failure_feedback_includes_diagnosis(executor) -> None:
    expected = ExpectedSummary(debit_count=2, credit_count=1, total_debits=16.5, total_credits=3)
    client = ScriptedToolClient(
        [[submit(ALL_DEBITS, call_id="c1")], [submit(GOOD, call_id="c2")], [done(call_id="c3")]]
    )

    result = generate_parser_code(
        STATEMENT, executor=executor, client=client, expected=expected
    )

    failed_output = client.calls[1]["input"][0]["output"]
    assert "VALIDATION: FAILED" in failed_output
    assert "Debit count mismatch: extracted 3, expected 2" in failed_output
    assert "1 transactions marked DEBIT should be CREDIT." in failed_output
    passed_output = client.calls[2]["input"][0]["output"]
    assert "VALIDATION: PASSED" in passed_output
    assert "VALIDATION (the statement summary declares these totals):" in (
        client.calls[0]["instructions"]
    )
    assert result.code == GOOD


def test_last_working_submission_is_kept(executor) -> None:
    client = ScriptedToolClient(
        [
            [submit(ALL_DEBITS, call_id="c1")],
            [submit(GOOD, call_id="c2")],
            [submit(BROKEN, call_id="c3")],
            [done(call_id="c4")],
        ]
    )

    result = generate_parser_code(STATEMENT, executor=executor, client=client)

    assert result.attempts == 3
    assert result.code == GOOD
    assert len(result.records) == 3
    assert result.final_error == "ZeroDivisionError: division by zero"


def test_step_limit_ends_loop_and_nothing_is_cached(executor, session) -> None:
    client = ScriptedToolClient([[submit(BROKEN, call_id=f"c{i}")] for i in range(5)])

    with pytest.raises(ParserGenerationError) as excinfo:
        generate_and_cache(
            session, "bank_savings", STATEMENT, executor=executor, client=client, max_steps=3
        )

    assert excinfo.value.attempts == 3
    assert excinfo.value.last_error == "ZeroDivisionError: division by zero"
    assert len(client.calls) == 3
    assert get_parser_codes(session, "bank_savings") == []


def test_step_limit_state(executor) -> None:
    client = ScriptedToolClient([[submit(GOOD, call_id="c1")], [submit(GOOD, call_id="c2")]])

    result = generate_parser_code(STATEMENT, executor=executor, client=client, max_steps=2)

    assert result.final_state == LoopState.STEP_LIMIT_EXCEEDED
    assert result.steps == 2
    assert result.code == GOOD


def test_invalid_arguments_do_not_count_as_attempts(executor) -> None:
    client = ScriptedToolClient(
        [
            [FunctionCall(name="submit_code", arguments="{}", call_id="c1")],
            [FunctionCall(name="lookup", arguments="{}", call_id="c2")],
        ]
    )

    result = generate_parser_code(STATEMENT, executor=executor, client=client)

    assert result.attempts == 0
    assert result.code == ""
    assert result.records == []
    assert client.calls[1]["input"][0]["output"].startswith(
        "ERROR: Invalid submit_code arguments:"
    )
    assert client.calls[2]["input"][0]["output"].startswith("ERROR: Unknown tool: lookup")
    # Third response has no tool calls.
    assert result.final_state == LoopState.DONE
    assert result.steps == 3


def test_done_in_same_response_as_submission(executor) -> None:
    client = ScriptedToolClient([[submit(GOOD, call_id="c1"), done(call_id="c2")]])

    result = generate_parser_code(STATEMENT, executor=executor, client=client)

    assert result.steps == 1
    assert result.attempts == 1
    assert result.code == GOOD


def test_prompt_sees_truncated_text_while_code_sees_all(executor) -> None:
    long_text = "x" * (MAX_PROMPT_TEXT_CHARS + 500) + "\n" + STATEMENT
    client = ScriptedToolClient([[submit(GOOD, call_id="c1"), done(call_id="c2")]])

    result = generate_parser_code(long_text, executor=executor, client=client)

    prompt = client.calls[0]["input"]
    assert TRUNCATION_MARKER in prompt
    assert "COFFEE" not in prompt
    assert len(result.records) == 3


def test_holding_mode_prompts(executor) -> None:
    code = (
        "return [{'investment_type': 'stock', 'name': 'INFY', "
        "'current_value': 1500.0, 'units': 10}]"
    )
    client = ScriptedToolClient([[submit(code, call_id="c1"), done(call_id="c2")]])

    result = generate_parser_code(
        "holdings", executor=executor, client=client, mode="holding", institution_id="Zerodha"
    )

    assert "ZERODHA FORMAT" in client.calls[0]["instructions"]
    assert "extracts all holdings" in client.calls[0]["input"]
    assert result.records[0]["name"] == "INFY"


def test_generate_and_cache_saves_next_version(executor, session) -> None:
    client = ScriptedToolClient(
        [
            [submit(GOOD, call_id="c1", date_format="YYYY-MM-DD", confidence=0.85)],
            [done(call_id="c2")],
        ]
    )

    result = generate_and_cache(
        session, "bank_savings", STATEMENT, executor=executor, client=client
    )

    assert result.saved_version == 1
    (entry,) = get_parser_codes(session, "bank_savings")
    assert entry.code == GOOD
    assert entry.confidence == 0.85
    assert entry.detected_format == "Test Bank Statement"


def test_max_steps_must_be_positive(executor) -> None:
    with pytest.raises(ValueError):
        generate_parser_code(
            STATEMENT, executor=executor, client=ScriptedToolClient([]), max_steps=0
        )


def test_validation_outcome_follows_kept_submission(executor) -> None:
    expected = ExpectedSummary(debit_count=2, credit_count=1)
    client = ScriptedToolClient(
        [[submit(GOOD, call_id="c1")], [submit(BROKEN, call_id="c2")], [done(call_id="c3")]]
    )

    result = generate_parser_code(
        STATEMENT, executor=executor, client=client, expected=expected
    )

    assert result.code == GOOD
    assert result.final_error == "ZeroDivisionError: division by zero"
    assert result.validation_passed


def test_unvalidated_kept_submission_reports_not_validated(executor) -> None:
    expected = ExpectedSummary(debit_count=2, credit_count=1)
    client = ScriptedToolClient(
        [[submit(ALL_DEBITS, call_id="c1")], [submit(BROKEN, call_id="c2")], [done(call_id="c3")]]
    )

    result = generate_parser_code(
        STATEMENT, executor=executor, client=client, expected=expected
    )

    assert result.code == ALL_DEBITS
    assert not result.validation_passed
