"""
SQLAlchemy models for the Deal Bot analytics backend.

Conversations are reconstructed from service logs; their ids are derived
from the logged conversation identifier so repeated ingestion resolves to
the same row.
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, Text, DateTime,
    ForeignKey, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import uuid

Base = declarative_base()


class Conversation(Base):
    """One reconstructed deal bot session"""
    __tablename__ = "conversations"

    # Identity (uuid5 of the logged conversation id, never random)
    id = Column(UUID(as_uuid=True), primary_key=True)
    user_id = Column(String(255), nullable=False)

    # Temporal
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True))

    # Analytics (cached)
    total_messages = Column(Integer, nullable=False, default=0)
    satisfaction_score = Column(Numeric(3, 2))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "ended_at IS NULL OR ended_at >= started_at",
            name='valid_conversation_window'
        ),
        Index('idx_conversations_user', 'user_id'),
        Index('idx_conversations_started', 'started_at'),
        Index('idx_conversations_satisfaction', 'satisfaction_score'),
    )


class Message(Base):
    """One turn of a conversation"""
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)

    role = Column(Text, nullable=False)  # 'user', 'assistant'
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    response_time_ms = Column(Integer)
    has_results = Column(Boolean, nullable=False, default=False)

    # "metadata" is reserved on declarative classes
    message_metadata = Column('metadata', JSONB)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'assistant')",
            name='valid_message_role'
        ),
        CheckConstraint(
            "response_time_ms IS NULL OR response_time_ms >= 0",
            name='valid_response_time'
        ),
        Index('idx_messages_conversation', 'conversation_id'),
        Index('idx_messages_timestamp', 'timestamp'),
        Index('idx_messages_role', 'role'),
        Index('idx_messages_identity', 'conversation_id', 'role', 'timestamp'),
    )
