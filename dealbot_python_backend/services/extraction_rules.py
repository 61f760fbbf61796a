"""
Ordered heuristic rules for reconstructing conversation turns from log records.

Every cascade (conversation id, user id, role, content, latency, results,
satisfaction) is a list of named rules evaluated in order; the first rule
returning a non-None value wins. Rules only look at the single record they
are given.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from dealbot_python_backend.config import DEALBOT_CONTEXT
from dealbot_python_backend.parsers.log_content import RawLogRecord

MAX_CONTENT_LENGTH = 500
TRUNCATION_MARKER = "..."
QUERY_ENDPOINT = "/bot/query"


@dataclass(frozen=True)
class Rule:
    """A named extractor; returns None when it does not apply."""
    name: str
    apply: Callable[[RawLogRecord], Any]


def first_match(rules: Sequence[Rule], record: RawLogRecord, default: Any = None) -> Any:
    for rule in rules:
        value = rule.apply(record)
        if value is not None:
            return value
    return default


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _lower(record: RawLogRecord) -> str:
    return record.message.lower()


def _non_empty(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def is_domain_context(record: RawLogRecord) -> bool:
    return record.metadata.get("context") == DEALBOT_CONTEXT


def _mentions_domain(message: str) -> bool:
    return "bot" in message or "deal" in message


def _method(record: RawLogRecord) -> str:
    return str(record.metadata.get("method") or "").upper()


def is_query_request(record: RawLogRecord) -> bool:
    url = str(record.metadata.get("url") or "")
    return _method(record) == "POST" and QUERY_ENDPOINT in url


def _request_id(record: RawLogRecord) -> Optional[str]:
    return _non_empty(record.request_id) or _non_empty(record.metadata.get("requestId"))


def _metadata_field(name: str) -> Callable[[RawLogRecord], Optional[str]]:
    return lambda record: _non_empty(record.metadata.get(name))


def _message_pattern(pattern: str) -> Callable[[RawLogRecord], Optional[str]]:
    compiled = re.compile(pattern, re.IGNORECASE)

    def _apply(record: RawLogRecord) -> Optional[str]:
        match = compiled.search(record.message)
        return match.group(1) if match else None

    return _apply


def _phrase_rule(name: str, phrases: Sequence[str], value: Any) -> Rule:
    return Rule(name, lambda record: value if any(p in _lower(record) for p in phrases) else None)


def truncate_content(text: str) -> str:
    if len(text) > MAX_CONTENT_LENGTH:
        return text[:MAX_CONTENT_LENGTH] + TRUNCATION_MARKER
    return text


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------

STARTUP_PHRASES = (
    "server started",
    "database connected",
    "application started",
    "health check",
)

_BARE_URL = re.compile(r'^/[a-z0-9/\-_]+$', re.IGNORECASE)

NOISE_RULES: List[Rule] = [
    Rule("generic_get_request", lambda r: "processing get request" in _lower(r) and not _mentions_domain(_lower(r))),
    Rule("request_processed", lambda r: "request processed" in _lower(r) and not _mentions_domain(_lower(r))),
    Rule("startup", lambda r: any(p in _lower(r) for p in STARTUP_PHRASES)),
    Rule("bare_url", lambda r: bool(_BARE_URL.match(r.message.strip())) and not _mentions_domain(_lower(r))),
]


def is_non_conversational(record: RawLogRecord) -> bool:
    """True for health/startup/generic request noise; deal bot logs are always kept."""
    if is_domain_context(record):
        return False
    return any(rule.apply(record) for rule in NOISE_RULES)


# ---------------------------------------------------------------------------
# Conversation id
# ---------------------------------------------------------------------------

CONVERSATION_ID_PATTERNS = (
    r'deal[_\-]?id[:\s]*([a-f0-9\-]{1,})',
    r'conversation[_\-]?id[:\s]*([a-f0-9\-]{8,})',
    r'conv[_\-]?id[:\s]*([a-f0-9\-]{8,})',
    r'"conversation"[:\s]*"([^"]+)"',
    r'"dealId"[:\s]*"([^"]+)"',
)

CONVERSATION_ID_RULES: List[Rule] = [
    Rule("metadata_conversation_id", _metadata_field("conversationId")),
    Rule("metadata_deal_id", _metadata_field("dealId")),
    Rule("record_conversation_id", lambda r: _non_empty(r.conversation_id)),
    *[
        Rule(f"message_pattern_{index}", _message_pattern(pattern))
        for index, pattern in enumerate(CONVERSATION_ID_PATTERNS)
    ],
    Rule("request_id", lambda r: f"conv_{_request_id(r)}" if _request_id(r) else None),
]


# ---------------------------------------------------------------------------
# User id
# ---------------------------------------------------------------------------

SYSTEM_USER = "system"

USER_ID_PATTERNS = (
    r'user[_\-]?id[:\s]*([a-f0-9\-]{8,})',
    r'"user"[:\s]*"([^"]+)"',
    r'user[:\s]*([a-zA-Z0-9\-_.@]+)',
    r'application[_\-]?id[:\s]*([a-zA-Z0-9\-_.@]+)',
)

USER_ID_RULES: List[Rule] = [
    Rule("metadata_user_id", _metadata_field("userId")),
    Rule("metadata_application_id", _metadata_field("applicationId")),
    Rule("record_user_id", lambda r: _non_empty(r.user_id)),
    *[
        Rule(f"message_pattern_{index}", _message_pattern(pattern))
        for index, pattern in enumerate(USER_ID_PATTERNS)
    ],
]


# ---------------------------------------------------------------------------
# Role
# ---------------------------------------------------------------------------

QUERY_PHRASES = ("processing deal bot query", "user query", "query received", "bot query")

DOMAIN_ROLE_RULES: List[Rule] = [
    Rule("query_endpoint", lambda r: "user" if is_query_request(r) else None),
    _phrase_rule("query_phrase", QUERY_PHRASES, "user"),
]

_USER_ROLE_MARKER = re.compile(r'user:|"role"\s*:\s*"user"')
_ASSISTANT_ROLE_MARKER = re.compile(
    r'assistant:|"role"\s*:\s*"assistant"|bot:|response:|context invalidated|cache'
)
ASSISTANT_VOCABULARY = (
    "response_time", "generated", "completion", "invalidated",
    "cache", "retrieving", "attempting", "processing",
)

GENERIC_ROLE_RULES: List[Rule] = [
    Rule("explicit_user_marker", lambda r: "user" if _USER_ROLE_MARKER.search(_lower(r)) else None),
    Rule("explicit_assistant_marker", lambda r: "assistant" if _ASSISTANT_ROLE_MARKER.search(_lower(r)) else None),
    _phrase_rule("assistant_vocabulary", ASSISTANT_VOCABULARY, "assistant"),
    Rule("write_method", lambda r: "user" if _method(r) in ("POST", "PUT") else None),
]


def determine_role(record: RawLogRecord) -> str:
    rules = DOMAIN_ROLE_RULES if is_domain_context(record) else GENERIC_ROLE_RULES
    return first_match(rules, record, default="assistant")


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

STRUCTURED_CONTENT_FIELDS = ("content", "message", "text", "query")


def _structured_content(record: RawLogRecord) -> Optional[str]:
    try:
        parsed = json.loads(record.message)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    for field_name in STRUCTURED_CONTENT_FIELDS:
        value = parsed.get(field_name)
        if value:
            return value if isinstance(value, str) else json.dumps(value, default=str)
    return None


def _deal_reference(record: RawLogRecord) -> Optional[str]:
    return _non_empty(record.metadata.get("dealId")) or _non_empty(record.metadata.get("conversationId"))


def _domain_only(rewrite: Callable[[RawLogRecord], Optional[str]]) -> Callable[[RawLogRecord], Optional[str]]:
    return lambda record: rewrite(record) if is_domain_context(record) else None


def _phrase_rewrite(phrase: str, replacement: str) -> Callable[[RawLogRecord], Optional[str]]:
    return lambda record: replacement if phrase in record.message else None


DOMAIN_CONTENT_REWRITES = (
    ("query_request", lambda r: f"User query about deal {_deal_reference(r)}" if is_query_request(r) else None),
    ("query_processing", lambda r: (
        f"Processing user query for deal {_non_empty(r.metadata.get('dealId'))}"
        if "Processing deal bot query" in r.message else None
    )),
    ("cache_lookup", _phrase_rewrite("Attempting to retrieve context from cache", "Retrieving deal context from cache")),
    ("cache_hit", _phrase_rewrite("Cache hit and context is valid", "Found valid cached deal context")),
    ("document_details", _phrase_rewrite("Cached document size details", "Retrieved deal document information")),
    ("domain_passthrough", lambda r: truncate_content(r.message)),
)

GENERIC_CONTENT_PATTERNS = (
    r'"content"[:\s]*"([^"]+)"',
    r'"message"[:\s]*"([^"]+)"',
    r'"text"[:\s]*"([^"]+)"',
    r'"query"[:\s]*"([^"]+)"',
    r'content[:\s]*([^\n\r]+)',
    r'message[:\s]*([^\n\r]+)',
)


def _stripped_pattern(pattern: str) -> Callable[[RawLogRecord], Optional[str]]:
    extract = _message_pattern(pattern)

    def _apply(record: RawLogRecord) -> Optional[str]:
        value = extract(record)
        return truncate_content(value.strip()) if value and value.strip() else None

    return _apply


CONTENT_RULES: List[Rule] = [
    Rule("structured_json", _structured_content),
    *[Rule(f"domain_{name}", _domain_only(rewrite)) for name, rewrite in DOMAIN_CONTENT_REWRITES],
    *[
        Rule(f"key_value_{index}", _stripped_pattern(pattern))
        for index, pattern in enumerate(GENERIC_CONTENT_PATTERNS)
    ],
    Rule("raw_message", lambda r: truncate_content(r.message)),
]


# ---------------------------------------------------------------------------
# Response time
# ---------------------------------------------------------------------------

RESPONSE_TIME_PATTERNS = (
    r'response[_\-]?time[:\s]*(\d+)',
    r'duration[:\s]*(\d+)',
    r'elapsed[:\s]*(\d+)',
    r'"responseTime"[:\s]*(\d+)',
)

RESPONSE_TIME_RULES: List[Rule] = [
    Rule(f"latency_pattern_{index}", _message_pattern(pattern))
    for index, pattern in enumerate(RESPONSE_TIME_PATTERNS)
]


def extract_response_time(record: RawLogRecord) -> Optional[int]:
    value = first_match(RESPONSE_TIME_RULES, record)
    return int(value) if value is not None else None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

NO_RESULTS_PHRASES = ("no results", "no_results", "empty results", "results: 0")
RESULTS_PHRASES = ("results:", "found", "matches", "documents")

HAS_RESULTS_RULES: List[Rule] = [
    _phrase_rule("no_results", NO_RESULTS_PHRASES, False),
    _phrase_rule("results_found", RESULTS_PHRASES, True),
]


def determine_has_results(record: RawLogRecord) -> bool:
    # Ambiguous messages count as successful
    return first_match(HAS_RESULTS_RULES, record, default=True)


# ---------------------------------------------------------------------------
# Satisfaction
# ---------------------------------------------------------------------------

MIN_SATISFACTION = 0.0
MAX_SATISFACTION = 5.0

SATISFACTION_PATTERNS = (
    r'satisfaction[_\-]?score[:\s]*(\d+(?:\.\d+)?)',
    r'rating[:\s]*(\d+(?:\.\d+)?)',
    r'score[:\s]*(\d+(?:\.\d+)?)',
)

SATISFACTION_RULES: List[Rule] = [
    Rule(f"satisfaction_pattern_{index}", _message_pattern(pattern))
    for index, pattern in enumerate(SATISFACTION_PATTERNS)
]


def extract_satisfaction_score(record: RawLogRecord) -> Optional[float]:
    """The first matching pattern decides; out-of-range values are discarded."""
    value = first_match(SATISFACTION_RULES, record)
    if value is None:
        return None
    try:
        score = float(value)
    except ValueError:
        return None
    return score if MIN_SATISFACTION <= score <= MAX_SATISFACTION else None
