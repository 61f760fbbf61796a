"""
Pytest configuration and shared fixtures for Deal Bot ingestion tests.

This module provides:
- An in-memory conversation store with transaction and savepoint semantics
- Fake object sources (no bucket or filesystem required)
- Extracted-entry and log-line factories
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from dealbot_python_backend.models import Conversation
from dealbot_python_backend.services.conversation_extractor import ExtractedEntry
from dealbot_python_backend.services.object_source import ObjectListing, StoredObject


# ============================================================================
# In-memory persistence (for tests without a real database)
# ============================================================================

CONVERSATION_FIELDS = (
    "id",
    "user_id",
    "started_at",
    "ended_at",
    "total_messages",
    "satisfaction_score",
)


def clone_conversation(conversation: Conversation) -> Conversation:
    return Conversation(**{name: getattr(conversation, name) for name in CONVERSATION_FIELDS})


class MockDB:
    """
    Committed state shared by every session of a test.
    Stores conversations by uuid and messages in insertion order.
    """

    def __init__(self):
        self.conversations: Dict = {}
        self.messages: List = []

    def messages_for(self, conversation_uuid):
        return [m for m in self.messages if m.conversation_id == conversation_uuid]


class FakeSession:
    """Stages writes until commit; rollback discards them."""

    def __init__(self, db: MockDB, commit_error: Optional[Exception] = None):
        self.db = db
        self.commit_error = commit_error
        self.staged_conversations: Dict = {}
        self.staged_messages: List = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    async def commit(self):
        if self.commit_error is not None:
            raise self.commit_error
        for conversation_uuid, conversation in self.staged_conversations.items():
            self.db.conversations[conversation_uuid] = clone_conversation(conversation)
        self.db.messages.extend(self.staged_messages)
        self.staged_conversations = {}
        self.staged_messages = []
        self.committed = True

    async def rollback(self):
        self.staged_conversations = {}
        self.staged_messages = []
        self.rolled_back = True

    async def close(self):
        self.closed = True


class FakeStore:
    """
    Same surface as ``ConversationStore`` over a ``FakeSession``.

    ``message_failures`` maps the 1-based ``add_message`` call number to the
    exception raised by that call.
    """

    def __init__(self, session: FakeSession, message_failures: Optional[Dict[int, Exception]] = None):
        self.session = session
        self.db = session.db
        self.message_failures = message_failures or {}
        self.add_message_calls = 0

    @asynccontextmanager
    async def savepoint(self):
        conversations = {key: clone_conversation(value) for key, value in self.session.staged_conversations.items()}
        message_count = len(self.session.staged_messages)
        try:
            yield
        except Exception:
            self.session.staged_conversations = conversations
            del self.session.staged_messages[message_count:]
            raise

    async def find_conversation(self, conversation_uuid):
        staged = self.session.staged_conversations.get(conversation_uuid)
        if staged is not None:
            return staged
        committed = self.db.conversations.get(conversation_uuid)
        if committed is None:
            return None
        conversation = clone_conversation(committed)
        self.session.staged_conversations[conversation_uuid] = conversation
        return conversation

    async def save_conversation(self, conversation):
        self.session.staged_conversations[conversation.id] = conversation
        return conversation

    async def count_messages(self, conversation_uuid):
        staged = [m for m in self.session.staged_messages if m.conversation_id == conversation_uuid]
        return len(self.db.messages_for(conversation_uuid)) + len(staged)

    async def find_message(self, conversation_uuid, role, content, timestamp):
        for message in [*self.db.messages, *self.session.staged_messages]:
            if (
                message.conversation_id == conversation_uuid
                and message.role == role
                and message.content == content
                and message.timestamp == timestamp
            ):
                return message
        return None

    async def add_message(self, message):
        self.add_message_calls += 1
        failure = self.message_failures.get(self.add_message_calls)
        if failure is not None:
            raise failure
        self.session.staged_messages.append(message)
        return message


@pytest.fixture
def mock_db():
    """Provide a mock database for testing."""
    return MockDB()


@pytest.fixture
def sessions():
    """Every session opened by the coordinator under test, in order."""
    return []


@pytest.fixture
def session_factory(mock_db, sessions):
    def _factory():
        session = FakeSession(mock_db)
        sessions.append(session)
        return session

    return _factory


# ============================================================================
# Fake object source
# ============================================================================

class FakeObjectSource:
    """Serves object contents from a dict, optionally across several pages."""

    def __init__(self, objects: Dict[str, str], page_size: int = 1000, list_error: Optional[Exception] = None):
        self.objects = objects
        self.page_size = page_size
        self.list_error = list_error
        self.list_calls = []

    async def list_objects(self, prefix=None, page_token=None, max_results=None):
        self.list_calls.append((prefix, page_token))
        if self.list_error is not None:
            raise self.list_error

        keys = sorted(key for key in self.objects if not prefix or key.startswith(prefix))
        offset = int(page_token) if page_token else 0
        page = keys[offset:offset + self.page_size]
        next_offset = offset + len(page)
        is_truncated = next_offset < len(keys)
        return ObjectListing(
            objects=[
                StoredObject(key=key, last_modified=None, size=len(str(self.objects[key])), bucket="test-bucket")
                for key in page
            ],
            is_truncated=is_truncated,
            next_token=str(next_offset) if is_truncated else None,
        )

    async def download_object(self, key):
        content = self.objects[key]
        if isinstance(content, Exception):
            raise content
        return content


# ============================================================================
# Test Data Factories
# ============================================================================

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def create_entry(
    conversation_id: str = "deal-1",
    role: str = "user",
    content: str = "User query about deal deal-1",
    offset_seconds: float = 0,
    user_id: str = "user_abc12345",
    response_time_ms: Optional[int] = None,
    has_results: bool = True,
    satisfaction_score: Optional[float] = None,
) -> ExtractedEntry:
    """Factory function to create extracted entries."""
    return ExtractedEntry(
        conversation_id=conversation_id,
        user_id=user_id,
        role=role,
        content=content,
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        response_time_ms=response_time_ms,
        has_results=has_results,
        metadata={"level": "info"},
        satisfaction_score=satisfaction_score,
    )


def create_conversation_entries(conversation_id: str = "deal-1", count: int = 4) -> List[ExtractedEntry]:
    """Alternating user/assistant turns one second apart."""
    return [
        create_entry(
            conversation_id=conversation_id,
            role="user" if index % 2 == 0 else "assistant",
            content=f"Turn {index + 1} in {conversation_id}",
            offset_seconds=index,
        )
        for index in range(count)
    ]


def deal_bot_log_line(timestamp: str, message: str, **metadata) -> str:
    """One NDJSON line as written by the deal bot service."""
    return json.dumps({
        "timestamp": timestamp,
        "message": message,
        "level": "info",
        "metadata": {"context": "DealBotService", **metadata},
    })


# ============================================================================
# Pytest Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
