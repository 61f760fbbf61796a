"""Parsers for stored log content."""

from .log_content import LogContentParser, RawLogRecord, decode_object_bytes, parse_log_content

__all__ = [
    'LogContentParser',
    'RawLogRecord',
    'decode_object_bytes',
    'parse_log_content',
]
