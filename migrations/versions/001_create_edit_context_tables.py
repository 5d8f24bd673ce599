"""Create durable context store tables.

edit_conversations, edit_messages, edit_tool_executions, edit_failed_attempts.

Revision ID: 001_edit_context
Revises:
Create Date: 2026-10-18

Rollback: alembic downgrade base
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_edit_context"
down_revision = None
branch_labels = None
depends_on = None

_UUID = postgresql.UUID(as_uuid=True)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")
_CONVERSATION_ID = sa.String(128)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW)


def upgrade() -> None:
    op.create_table(
        "edit_conversations",
        sa.Column("id", _CONVERSATION_ID, primary_key=True),
        sa.Column(
            "ground_truth",
            postgresql.JSONB,
            nullable=True,
            comment="Latest measured ground truth of the conversation's image",
        ),
        _created_at(),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    )
    op.create_index("ix_edit_conversations_last_updated_at", "edit_conversations", ["last_updated_at"])

    op.create_table(
        "edit_messages",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column(
            "conversation_id",
            _CONVERSATION_ID,
            sa.ForeignKey("edit_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(32), nullable=False, comment="user, assistant or system"),
        sa.Column("content", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_edit_messages_conversation_id", "edit_messages", ["conversation_id"])

    op.create_table(
        "edit_tool_executions",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column(
            "conversation_id",
            _CONVERSATION_ID,
            sa.ForeignKey("edit_conversations.id", ondelete="SET NULL"),
            nullable=True,
            comment="NULL once the conversation is pruned; the row stays indexed",
        ),
        sa.Column("tool_name", sa.String(64), nullable=False),
        sa.Column("parameters", postgresql.JSONB, nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("metrics", postgresql.JSONB, nullable=False),
        sa.Column("image_specs", postgresql.JSONB, nullable=False),
        _created_at(),
    )
    op.create_index("ix_edit_tool_executions_conversation_id", "edit_tool_executions", ["conversation_id"])
    op.create_index("ix_edit_tool_executions_tool_name", "edit_tool_executions", ["tool_name"])

    op.create_table(
        "edit_failed_attempts",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column(
            "conversation_id",
            _CONVERSATION_ID,
            sa.ForeignKey("edit_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("tool_name", sa.String(64), nullable=False),
        sa.Column("parameters", postgresql.JSONB, nullable=False),
        sa.Column("state", sa.String(32), nullable=False, comment="Attempt state reached before failing"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("failure_mode", sa.String(32), nullable=True),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("elapsed_ms", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_edit_failed_attempts_conversation_id", "edit_failed_attempts", ["conversation_id"])


def downgrade() -> None:
    op.drop_table("edit_failed_attempts")
    op.drop_table("edit_tool_executions")
    op.drop_table("edit_messages")
    op.drop_table("edit_conversations")
