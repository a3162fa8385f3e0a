import json

from db import AppConfig
from sqlalchemy import select

from statement_parsing import parser_cache
from statement_parsing.models import ParserMetadata
from statement_parsing.parser_cache import (
    clear_parser_cache,
    config_key,
    generate_bank_key,
    generate_source_key,
    get_latest_version,
    get_parser_codes,
    list_cached_banks,
    record_failure,
    record_success,
    save_parser_code,
)

META = ParserMetadata(detected_format="HDFC Savings", date_format="DD/MM/YY", confidence=0.8)


def test_key_generation() -> None:
    assert generate_bank_key("HDFC Bank", "Savings") == "hdfc_bank_savings"
    assert generate_bank_key("  American Express ", "credit-card") == "american_express_credit_card"
    assert generate_source_key("Zerodha") == "zerodha:pdf"
    assert config_key("hdfc_savings", 3) == "parser_code:hdfc_savings:v3"
    assert config_key("zerodha:pdf", 1, mode="holding") == "inv_parser_code:zerodha:pdf:v1"


def test_versions_increase_and_read_newest_first(session) -> None:
    assert get_latest_version(session, "hdfc_savings") == 0
    assert get_parser_codes(session, "hdfc_savings") == []

    versions = [
        save_parser_code(session, "hdfc_savings", f"return [{i}]", META) for i in range(3)
    ]

    assert versions == [1, 2, 3]
    assert get_latest_version(session, "hdfc_savings") == 3
    entries = get_parser_codes(session, "hdfc_savings")
    assert [e.version for e in entries] == [3, 2, 1]
    assert entries[0].code == "return [2]"
    assert entries[0].detected_format == "HDFC Savings"
    assert entries[0].date_format == "DD/MM/YY"
    assert entries[0].confidence == 0.8
    assert (entries[0].success_count, entries[0].fail_count) == (0, 0)
    assert entries[0].created_at


def test_stored_value_uses_camel_case_keys(session) -> None:
    save_parser_code(session, "hdfc_savings", "return []", META)

    raw = session.scalar(
        select(AppConfig.value).where(AppConfig.key == "parser_code:hdfc_savings:v1")
    )
    doc = json.loads(raw)

    assert doc["detectedFormat"] == "HDFC Savings"
    assert doc["successCount"] == 0 and doc["failCount"] == 0
    assert "createdAt" in doc


def test_prefix_match_is_literal(session) -> None:
    # "_" must not act as a LIKE wildcard.
    save_parser_code(session, "hdfc_x", "return ['a']", META)
    save_parser_code(session, "hdfcyx", "return ['b']", META)
    save_parser_code(session, "hdfcyx", "return ['c']", META)

    assert [e.code for e in get_parser_codes(session, "hdfc_x")] == ["return ['a']"]
    assert get_latest_version(session, "hdfc_x") == 1
    assert get_latest_version(session, "hdfcyx") == 2


def test_counters_are_bumped_without_touching_code(session) -> None:
    save_parser_code(session, "hdfc_savings", "return []", META)

    record_success(session, "hdfc_savings", 1)
    record_success(session, "hdfc_savings", 1)
    record_failure(session, "hdfc_savings", 1)

    (entry,) = get_parser_codes(session, "hdfc_savings")
    assert (entry.success_count, entry.fail_count) == (2, 1)
    assert entry.code == "return []"


def test_counter_on_missing_version_is_noop(session) -> None:
    record_success(session, "nobody", 7)
    record_failure(session, "nobody", 7)
    assert get_parser_codes(session, "nobody") == []


def test_malformed_row_is_skipped_but_reserves_its_version(session) -> None:
    session.add(AppConfig(key="parser_code:hdfc_savings:v1", value="{not json"))
    session.flush()

    assert get_parser_codes(session, "hdfc_savings") == []
    assert get_latest_version(session, "hdfc_savings") == 1
    assert save_parser_code(session, "hdfc_savings", "return []", META) == 2


def test_conflicting_version_claim_retries_next_number(session, monkeypatch) -> None:
    save_parser_code(session, "hdfc_savings", "return ['first']", META)

    real = parser_cache.get_latest_version
    calls = {"n": 0}

    def stale_then_real(s, bank_key, *, mode="transaction"):
        calls["n"] += 1
        if calls["n"] == 1:
            return 0  # a concurrent writer already claimed v1
        return real(s, bank_key, mode=mode)

    monkeypatch.setattr(parser_cache, "get_latest_version", stale_then_real)

    version = save_parser_code(session, "hdfc_savings", "return ['second']", META)

    assert version == 2
    codes = {e.version: e.code for e in get_parser_codes(session, "hdfc_savings")}
    assert codes == {1: "return ['first']", 2: "return ['second']"}


def test_clear_and_list(session) -> None:
    save_parser_code(session, "hdfc_savings", "return []", META)
    save_parser_code(session, "hdfc_savings", "return []", META)
    save_parser_code(session, "amex_credit", "return []", META)

    summaries = list_cached_banks(session)
    assert [(s.bank_key, s.version_count, s.latest_version) for s in summaries] == [
        ("amex_credit", 1, 1),
        ("hdfc_savings", 2, 2),
    ]

    assert clear_parser_cache(session, "hdfc_savings") == 2
    assert clear_parser_cache(session, "hdfc_savings") == 0
    assert get_latest_version(session, "hdfc_savings") == 0
    assert [s.bank_key for s in list_cached_banks(session)] == ["amex_credit"]


def test_holding_namespace_is_separate(session) -> None:
    key = generate_source_key("zerodha")
    save_parser_code(session, key, "return []", META, mode="holding")

    assert get_parser_codes(session, key) == []
    assert [e.version for e in get_parser_codes(session, key, mode="holding")] == [1]
    assert [s.bank_key for s in list_cached_banks(session, mode="holding")] == ["zerodha:pdf"]
    assert list_cached_banks(session) == []
