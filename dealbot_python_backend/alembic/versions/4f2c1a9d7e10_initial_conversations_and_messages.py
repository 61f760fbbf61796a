"""Initial conversations and messages schema

Revision ID: 4f2c1a9d7e10
Revises:
Create Date: 2024-01-10

This migration creates the ingestion schema:
- conversations (reconstructed deal bot sessions, deterministic ids)
- messages (conversation turns, cascade-deleted with their conversation)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4f2c1a9d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Enable UUID extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create conversations table (ids are supplied by ingestion)
    op.create_table(
        'conversations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True)),
        sa.Column('total_messages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('satisfaction_score', sa.Numeric(3, 2)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint("ended_at IS NULL OR ended_at >= started_at", name='valid_conversation_window')
    )

    op.create_index('idx_conversations_user', 'conversations', ['user_id'])
    op.create_index('idx_conversations_started', 'conversations', ['started_at'])
    op.create_index('idx_conversations_satisfaction', 'conversations', ['satisfaction_score'])

    # Create messages table
    op.create_table(
        'messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('uuid_generate_v4()')),
        sa.Column('conversation_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('response_time_ms', sa.Integer()),
        sa.Column('has_results', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata', postgresql.JSONB()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.CheckConstraint("role IN ('user', 'assistant')", name='valid_message_role'),
        sa.CheckConstraint("response_time_ms IS NULL OR response_time_ms >= 0", name='valid_response_time')
    )

    op.create_index('idx_messages_conversation', 'messages', ['conversation_id'])
    op.create_index('idx_messages_timestamp', 'messages', ['timestamp'])
    op.create_index('idx_messages_role', 'messages', ['role'])
    op.create_index('idx_messages_identity', 'messages', ['conversation_id', 'role', 'timestamp'])


def downgrade() -> None:
    op.drop_table('messages')
    op.drop_table('conversations')
