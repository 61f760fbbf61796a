"""
Log content parser.

Turns the decoded body of a stored log object into RawLogRecord items.
Supports, in priority order:
- a JSON array of log objects
- a single JSON object
- newline-delimited lines, each either a JSON object or free text

Free-text lines become "basic" records with a best-effort leading timestamp.
Parsing never raises on malformed input.
"""

import gzip
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

COMPRESSED_SUFFIXES = (".gz",)


@dataclass
class RawLogRecord:
    """
    One log entry as emitted by upstream instrumentation.

    Attributes:
        timestamp: Raw timestamp string (may be malformed)
        message: Free text or embedded JSON
        level: Log level if present
        request_id: Request identifier if logged at top level
        user_id: User identifier if logged at top level
        conversation_id: Conversation identifier if logged at top level
        metadata: Open mapping of context fields
    """
    timestamp: str
    message: str
    level: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def decode_object_bytes(raw: bytes, key: str) -> str:
    """Decode a downloaded object body, gunzipping compressed keys."""
    if key.lower().endswith(COMPRESSED_SUFFIXES):
        raw = gzip.decompress(raw)
    return raw.decode("utf-8", errors="replace")


def _extract_user_from_request(req: Dict[str, Any]) -> Optional[str]:
    headers = req.get("headers") or {}

    auth_header = headers.get("authorization")
    if isinstance(auth_header, str):
        token_match = re.search(r"Bearer\s+([^.]+)", auth_header)
        if token_match:
            return f"user_{token_match.group(1)[:8]}"

    app_id = headers.get("x-application-id")
    if app_id:
        return app_id

    return f"req_{req['id']}" if req.get("id") else None


def _service_metadata(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Collect context fields from the service's own log object layout."""
    req = entry.get("req") if isinstance(entry.get("req"), dict) else None
    headers = (req or {}).get("headers") or {}

    fields = {
        "dealId": entry.get("dealId"),
        "cacheKey": entry.get("cacheKey"),
        "context": entry.get("context"),
        "hostname": entry.get("hostname"),
        "pid": entry.get("pid"),
        "conversationId": entry.get("dealId"),
    }
    if req is not None:
        fields.update({
            "requestId": req.get("id"),
            "userId": _extract_user_from_request(req),
            "method": req.get("method"),
            "url": req.get("url"),
            "userAgent": headers.get("user-agent"),
            "applicationId": headers.get("x-application-id"),
        })
    return {key: value for key, value in fields.items() if value is not None}


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class LogContentParser:
    """
    Parser for raw log object content.

    Format examples:
        [{"timestamp": "...", "message": "..."}, ...]
        {"timestamp": "...", "message": "...", "metadata": {...}}
        {"timestamp": "...", "message": "..."}\\n{"timestamp": ...}
        2024-01-15T10:00:00 Plain text message
    """

    LEADING_TIMESTAMP_PATTERN = re.compile(r'^(\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2})')

    def parse_content(self, content: str) -> List[RawLogRecord]:
        """
        Parse decoded object content into log records.

        Args:
            content: Decompressed text content

        Returns:
            Records in input order; entries without timestamp or message are dropped
        """
        records: List[RawLogRecord] = []

        try:
            document = json.loads(content)
        except (ValueError, TypeError):
            document = None

        if isinstance(document, list):
            for element in document:
                record = self.convert_entry(element)
                if record is not None:
                    records.append(record)
        elif isinstance(document, dict):
            record = self.convert_entry(document)
            if record is not None:
                records.append(record)
        else:
            records.extend(self._parse_lines(content or ""))

        logger.info("Parsed %d log records from content", len(records))
        return records

    def _parse_lines(self, content: str) -> List[RawLogRecord]:
        records = []
        for line in content.splitlines():
            if not line.strip():
                continue

            try:
                parsed = json.loads(line)
            except ValueError:
                parsed = None

            if isinstance(parsed, dict):
                record = self.convert_entry(parsed)
                if record is not None:
                    records.append(record)
            else:
                records.append(self.create_basic_record(line))
        return records

    def convert_entry(self, entry: Any) -> Optional[RawLogRecord]:
        """Convert one decoded JSON log object into a RawLogRecord, or None."""
        if not isinstance(entry, dict):
            return None
        if not entry.get("timestamp") or not entry.get("message"):
            return None

        metadata: Dict[str, Any] = {}
        if isinstance(entry.get("metadata"), dict):
            metadata.update(entry["metadata"])
        for key, value in _service_metadata(entry).items():
            metadata.setdefault(key, value)

        return RawLogRecord(
            timestamp=_as_text(entry["timestamp"]),
            message=_as_text(entry["message"]),
            level=_optional_text(entry.get("level")),
            request_id=_optional_text(entry.get("requestId")),
            user_id=_optional_text(entry.get("userId")),
            conversation_id=_optional_text(entry.get("conversationId")),
            metadata=metadata,
        )

    def create_basic_record(self, line: str) -> RawLogRecord:
        """Build a record from a plain-text line."""
        match = self.LEADING_TIMESTAMP_PATTERN.match(line)
        if match:
            timestamp = match.group(1)
            message = line[match.end():].strip()
        else:
            timestamp = datetime.now(timezone.utc).isoformat()
            message = line

        return RawLogRecord(timestamp=timestamp, message=message, level="info")


def parse_log_content(content: str) -> List[RawLogRecord]:
    """Module-level shortcut for ``LogContentParser().parse_content``."""
    return LogContentParser().parse_content(content)
