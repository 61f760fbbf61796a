"""
Tests for conversation extraction.

Each test builds RawLogRecord inputs directly and checks the turn the
rule cascades infer from them.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dealbot_python_backend.parsers.log_content import RawLogRecord
from dealbot_python_backend.services import extraction_rules as rules
from dealbot_python_backend.services.conversation_extractor import (
    ConversationExtractor,
    extract_entries,
    parse_timestamp,
)

TS = "2024-01-15T10:00:00Z"


def record(message, timestamp=TS, **kwargs):
    return RawLogRecord(timestamp=timestamp, message=message, **kwargs)


def dealbot_record(message, **metadata):
    return record(message, metadata={"context": "DealBotService", **metadata})


@pytest.fixture
def extractor():
    return ConversationExtractor()


class TestRelevance:
    @pytest.mark.parametrize("message", [
        "Server started on port 8080",
        "Database connected",
        "Health check ok",
        "Processing GET request",
        "Request processed in 12ms",
        "/api/status",
    ])
    def test_infrastructure_noise_is_skipped(self, extractor, message):
        assert extractor.extract_entry(record(message, conversation_id="c-1")) is None

    def test_deal_bot_context_is_never_noise(self):
        assert not rules.is_non_conversational(dealbot_record("Server started", dealId="d1"))

    def test_domain_mention_keeps_generic_request(self):
        assert not rules.is_non_conversational(record("Processing GET request for deal"))


class TestConversationId:
    def test_metadata_conversation_id_wins(self):
        r = record("x", conversation_id="top", metadata={"conversationId": "meta", "dealId": "deal"})

        assert rules.first_match(rules.CONVERSATION_ID_RULES, r) == "meta"

    def test_deal_id_before_record_field(self):
        r = record("x", conversation_id="top", metadata={"dealId": "deal"})

        assert rules.first_match(rules.CONVERSATION_ID_RULES, r) == "deal"

    def test_message_pattern(self):
        r = record("conversation_id: 1234abcd-0000 started")

        assert rules.first_match(rules.CONVERSATION_ID_RULES, r) == "1234abcd-0000"

    def test_request_id_fallback(self):
        r = record("something happened", request_id="r-9")

        assert rules.first_match(rules.CONVERSATION_ID_RULES, r) == "conv_r-9"

    def test_record_without_conversation_is_dropped(self, extractor):
        assert extractor.extract_entry(record("hello there")) is None


class TestUserId:
    def test_metadata_user_before_application(self):
        r = record("x", metadata={"userId": "u1", "applicationId": "app"})

        assert rules.first_match(rules.USER_ID_RULES, r) == "u1"

    def test_message_user_pattern(self):
        r = record("user: alice@example.com asked")

        assert rules.first_match(rules.USER_ID_RULES, r) == "alice@example.com"

    def test_loose_user_pattern_without_separator(self):
        r = record("Fetching user abc123 from cache")

        assert rules.first_match(rules.USER_ID_RULES, r) == "abc123"

    def test_defaults_to_system(self, extractor):
        entry = extractor.extract_entry(record("assistant: done", conversation_id="c-1"))

        assert entry.user_id == "system"


class TestRole:
    def test_query_endpoint_is_user(self):
        r = dealbot_record("incoming", method="POST", url="/bot/query")

        assert rules.determine_role(r) == "user"

    def test_query_phrase_is_user(self):
        assert rules.determine_role(dealbot_record("Processing deal bot query")) == "user"

    def test_domain_defaults_to_assistant(self):
        assert rules.determine_role(dealbot_record("Cache hit and context is valid")) == "assistant"

    @pytest.mark.parametrize("message, role", [
        ('{"role": "user", "content": "hi"}', "user"),
        ("User: what is the price?", "user"),
        ("assistant: here you go", "assistant"),
        ("completion generated", "assistant"),
        ("something neutral", "assistant"),
    ])
    def test_generic_role_markers(self, message, role):
        assert rules.determine_role(record(message)) == role

    def test_write_method_is_user(self):
        assert rules.determine_role(record("something neutral", metadata={"method": "put"})) == "user"


class TestContent:
    def test_structured_json_field(self):
        r = record('{"query": "show my deals", "other": 1}')

        assert rules.first_match(rules.CONTENT_RULES, r) == "show my deals"

    def test_query_request_rewrite(self):
        r = dealbot_record("Processing deal bot query", dealId="d1", method="POST", url="/bot/query")

        assert rules.first_match(rules.CONTENT_RULES, r) == "User query about deal d1"

    @pytest.mark.parametrize("message, expected", [
        ("Processing deal bot query", "Processing user query for deal d1"),
        ("Attempting to retrieve context from cache", "Retrieving deal context from cache"),
        ("Cache hit and context is valid", "Found valid cached deal context"),
        ("Cached document size details: 12kb", "Retrieved deal document information"),
        ("Context invalidated", "Context invalidated"),
    ])
    def test_domain_rewrites(self, message, expected):
        assert rules.first_match(rules.CONTENT_RULES, dealbot_record(message, dealId="d1")) == expected

    def test_generic_key_value(self):
        assert rules.first_match(rules.CONTENT_RULES, record("content: hello world")) == "hello world"

    def test_generic_key_without_separator(self):
        assert rules.first_match(rules.CONTENT_RULES, record("Sending message hello there")) == "hello there"

    def test_long_content_is_truncated(self):
        content = rules.first_match(rules.CONTENT_RULES, record("x" * 600))

        assert len(content) == rules.MAX_CONTENT_LENGTH + len(rules.TRUNCATION_MARKER)
        assert content.endswith("...")


class TestMeasurements:
    def test_response_time_only_for_assistant(self, extractor):
        assistant = extractor.extract_entry(record("bot: answered, response_time: 1500", conversation_id="c-1"))
        user = extractor.extract_entry(record("User: hi, response_time: 1500", conversation_id="c-1"))

        assert assistant.role == "assistant"
        assert assistant.response_time_ms == 1500
        assert user.role == "user"
        assert user.response_time_ms is None

    @pytest.mark.parametrize("message, expected", [
        ("no results for query", False),
        ("results: 0", False),
        ("3 documents found", True),
        ("something ambiguous", True),
    ])
    def test_has_results(self, message, expected):
        assert rules.determine_has_results(record(message)) is expected

    @pytest.mark.parametrize("message, expected", [
        ("rating: 4.5", 4.5),
        ("satisfaction_score: 3", 3.0),
        ("rating: 7", None),
        ("nothing to see", None),
    ])
    def test_satisfaction_score(self, message, expected):
        assert rules.extract_satisfaction_score(record(message)) == expected


class TestParseTimestamp:
    def test_iso_with_zulu(self):
        assert parse_timestamp("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-01-15 10:00:00").tzinfo == timezone.utc

    def test_epoch_seconds_and_millis(self):
        assert parse_timestamp("1705312800") == parse_timestamp("1705312800000")

    def test_compact_offset_and_five_digit_fraction(self):
        expected = datetime(2024, 1, 15, 10, 0, 0, 123450, tzinfo=timezone.utc)

        assert parse_timestamp("2024-01-15T10:00:00.12345+0000") == expected

    def test_long_fraction_is_cut_to_microseconds(self):
        assert parse_timestamp("2024-01-15T10:00:00.1234567Z").microsecond == 123456

    def test_compact_negative_offset(self):
        parsed = parse_timestamp("2024-01-15 10:00:00-0500")

        assert parsed.utcoffset() == timedelta(hours=-5)
        assert parsed == datetime(2024, 1, 15, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "yesterday", "2024-13-45"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_invalid_timestamp_drops_record(self, extractor):
        assert extractor.extract_entry(record("User: hi", timestamp="not a time", conversation_id="c-1")) is None


class TestExtractEntries:
    def test_dealbot_pair(self):
        records = [
            dealbot_record("Processing deal bot query", dealId="d1", method="POST", url="/bot/query"),
            record(
                "response_time: 900, results: 3 found",
                timestamp="2024-01-15T10:00:01Z",
                metadata={"context": "DealBotService", "dealId": "d1"},
            ),
        ]

        entries = extract_entries(records)

        assert [e.role for e in entries] == ["user", "assistant"]
        assert {e.conversation_id for e in entries} == {"d1"}
        assert entries[0].content == "User query about deal d1"
        assert entries[1].response_time_ms == 900
        assert entries[1].has_results is True

    def test_metadata_carries_request_and_level(self, extractor):
        entry = extractor.extract_entry(
            record("assistant: ok", conversation_id="c-1", request_id="r-1", level="info")
        )

        assert entry.metadata == {"requestId": "r-1", "level": "info"}

    def test_extraction_is_deterministic(self, extractor):
        r = dealbot_record("Cache hit and context is valid", dealId="d1", userId="u1")

        assert extractor.extract_entry(r) == extractor.extract_entry(r)

    def test_unusable_records_are_skipped(self):
        records = [
            record("Server started"),
            record("no conversation here"),
            record("assistant: ok", conversation_id="c-1"),
        ]

        assert len(extract_entries(records)) == 1
