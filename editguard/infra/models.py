"""SQLAlchemy ORM models for the durable context store.

Maps to migration DDL in migrations/versions/001_create_edit_context_tables.py:
  edit_conversations    -> EditConversation
  edit_messages         -> EditMessage
  edit_tool_executions  -> EditToolExecution (the similarity index)
  edit_failed_attempts  -> EditFailedAttempt (failure log, never indexed)

Pruning a conversation cascades to its messages and failures; indexed
executions outlive the conversation (conversation_id is set to NULL).
"""

from __future__ import annotations

import uuid as _uuid  # noqa: TC003 -- SQLAlchemy resolves Mapped[] annotations at runtime
from datetime import datetime  # noqa: TC003
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_UUID = postgresql.UUID(as_uuid=True)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")


class Base(DeclarativeBase):
    """Declarative base for all editguard ORM models."""


class _Timestamped:
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=_NOW)


class EditConversation(_Timestamped, Base):
    __tablename__ = "edit_conversations"

    id: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    ground_truth: Mapped[dict[str, Any] | None] = mapped_column(postgresql.JSONB, nullable=True)
    last_updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
        index=True,
    )


class EditMessage(_Timestamped, Base):
    __tablename__ = "edit_messages"

    id: Mapped[_uuid.UUID] = mapped_column(_UUID, primary_key=True, server_default=_GEN_UUID)
    conversation_id: Mapped[str] = mapped_column(
        sa.String(128),
        sa.ForeignKey("edit_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    content: Mapped[str] = mapped_column(sa.Text(), nullable=False)


class EditToolExecution(_Timestamped, Base):
    """Successful, confident execution kept for similarity calibration."""

    __tablename__ = "edit_tool_executions"

    id: Mapped[_uuid.UUID] = mapped_column(_UUID, primary_key=True, server_default=_GEN_UUID)
    conversation_id: Mapped[str | None] = mapped_column(
        sa.String(128),
        sa.ForeignKey("edit_conversations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tool_name: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    parameters: Mapped[dict[str, Any]] = mapped_column(postgresql.JSONB, nullable=False)
    success: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False)
    confidence: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    metrics: Mapped[dict[str, Any]] = mapped_column(postgresql.JSONB, nullable=False)
    image_specs: Mapped[dict[str, Any]] = mapped_column(postgresql.JSONB, nullable=False)


class EditFailedAttempt(_Timestamped, Base):
    __tablename__ = "edit_failed_attempts"

    id: Mapped[_uuid.UUID] = mapped_column(_UUID, primary_key=True, server_default=_GEN_UUID)
    conversation_id: Mapped[str] = mapped_column(
        sa.String(128),
        sa.ForeignKey("edit_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attempt: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    tool_name: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    parameters: Mapped[dict[str, Any]] = mapped_column(postgresql.JSONB, nullable=False)
    state: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    error: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    failure_mode: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    quality_score: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    confidence: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    elapsed_ms: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
