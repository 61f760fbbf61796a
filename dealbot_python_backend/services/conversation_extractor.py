"""
Conversation extraction: log records -> conversational turns.

Each record is handled independently by ``extract_entry`` so re-ingesting
the same record always yields the same entry. Records that cannot be tied
to a conversation are skipped, never raised.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dealbot_python_backend.parsers.log_content import RawLogRecord
from dealbot_python_backend.services import extraction_rules as rules

logger = logging.getLogger(__name__)

_EPOCH_PATTERN = re.compile(r'^\d{10,13}$')
_COMPACT_OFFSET_PATTERN = re.compile(r'(:\d{2}(?:\.\d+)?[+-]\d{2})(\d{2})$')
_FRACTION_PATTERN = re.compile(r'\.(\d+)')


@dataclass
class ExtractedEntry:
    """One inferred conversational turn, grouped by conversation before persistence."""
    conversation_id: str
    user_id: str
    role: str
    content: str
    timestamp: datetime
    response_time_ms: Optional[int] = None
    has_results: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    satisfaction_score: Optional[float] = None


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-ish or epoch timestamp; naive values are taken as UTC."""
    text = (value or "").strip()
    if not text:
        return None

    if _EPOCH_PATTERN.match(text):
        seconds = int(text) / 1000 if len(text) == 13 else int(text)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes +HH:MM offsets and 3 or 6 digit fractions
    text = _COMPACT_OFFSET_PATTERN.sub(r'\1:\2', text)
    text = _FRACTION_PATTERN.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_message_metadata(record: RawLogRecord) -> Dict[str, Any]:
    metadata = dict(record.metadata)
    if record.request_id:
        metadata["requestId"] = record.request_id
    if record.level:
        metadata["level"] = record.level
    return metadata


class ConversationExtractor:
    """Applies the ordered extraction rules to log records."""

    def extract_entry(self, record: RawLogRecord) -> Optional[ExtractedEntry]:
        """
        Build the conversational turn for one record.

        Returns None when the record is noise, has no conversation id,
        no usable content or an unparsable timestamp.
        """
        if rules.is_non_conversational(record):
            return None

        conversation_id = rules.first_match(rules.CONVERSATION_ID_RULES, record)
        if conversation_id is None:
            return None
        user_id = rules.first_match(rules.USER_ID_RULES, record, default=rules.SYSTEM_USER)

        timestamp = parse_timestamp(record.timestamp)
        if timestamp is None:
            return None

        content = rules.first_match(rules.CONTENT_RULES, record)
        if not content:
            return None

        role = rules.determine_role(record)
        response_time_ms = rules.extract_response_time(record) if role == "assistant" else None

        return ExtractedEntry(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            timestamp=timestamp,
            response_time_ms=response_time_ms,
            has_results=rules.determine_has_results(record),
            metadata=build_message_metadata(record),
            satisfaction_score=rules.extract_satisfaction_score(record),
        )

    def extract_entries(self, records: Iterable[RawLogRecord]) -> List[ExtractedEntry]:
        """Extract entries in input order, skipping unattributable records."""
        entries: List[ExtractedEntry] = []
        total = 0
        for record in records:
            total += 1
            try:
                entry = self.extract_entry(record)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to extract log record at %s: %s", record.timestamp, exc)
                continue

            if entry is None:
                logger.debug("Skipped log record at %s: no conversation entry", record.timestamp)
                continue
            entries.append(entry)

        logger.info("Extracted %d conversation entries from %d log records", len(entries), total)
        return entries


def extract_entries(records: Iterable[RawLogRecord]) -> List[ExtractedEntry]:
    return ConversationExtractor().extract_entries(records)
