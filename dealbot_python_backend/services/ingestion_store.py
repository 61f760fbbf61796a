"""
Persistence operations used by log ingestion.

Keeps the batch coordinator free of inline query construction; every call
runs on the session the coordinator checked out for the current batch.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealbot_python_backend.models import Conversation, Message

logger = logging.getLogger(__name__)


class ConversationStore:
    """Entity-scoped find/create/save/count over one ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def savepoint(self):
        """Nested transaction; failures inside roll back only the savepoint."""
        return self.session.begin_nested()

    async def find_conversation(self, conversation_uuid: uuid.UUID) -> Optional[Conversation]:
        return await self.session.get(Conversation, conversation_uuid)

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def count_messages(self, conversation_uuid: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Message).where(Message.conversation_id == conversation_uuid)
        )
        return int(result.scalar_one())

    async def find_message(
        self,
        conversation_uuid: uuid.UUID,
        role: str,
        content: str,
        timestamp: datetime,
    ) -> Optional[Message]:
        result = await self.session.execute(
            select(Message)
            .where(
                Message.conversation_id == conversation_uuid,
                Message.role == role,
                Message.content == content,
                Message.timestamp == timestamp,
            )
            .limit(1)
        )
        return result.scalars().first()

    async def add_message(self, message: Message) -> Message:
        self.session.add(message)
        await self.session.flush()
        return message


async def fetch_ingestion_stats(session: AsyncSession) -> Dict[str, Any]:
    """Row totals plus the newest and oldest message ingestion times."""
    total_conversations = (await session.execute(select(func.count()).select_from(Conversation))).scalar_one()
    total_messages = (await session.execute(select(func.count()).select_from(Message))).scalar_one()

    latest = (
        await session.execute(select(Message.created_at).order_by(Message.created_at.desc()).limit(1))
    ).scalar_one_or_none()
    oldest = (
        await session.execute(select(Message.created_at).order_by(Message.created_at.asc()).limit(1))
    ).scalar_one_or_none()

    return {
        "total_conversations": int(total_conversations),
        "total_messages": int(total_messages),
        "latest_ingestion": latest.isoformat() if latest else None,
        "oldest_data": oldest.isoformat() if oldest else None,
    }
