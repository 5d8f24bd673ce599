"""PostgreSQL context store via SQLAlchemy async sessions.

- Conversations upserted on every write (INSERT .. ON CONFLICT)
- Similarity ranking happens in Python over the tool's newest records
- Failed attempts live in their own table and are never ranked
- Executions are capped per tool at max_records, oldest deleted first
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from editguard.config.scoring import DEFAULT_SCORING, SimilarityWeights, StorageThresholds
from editguard.context.base import BaseContextStore
from editguard.context.codec import (
    ground_truth_from_dict,
    ground_truth_to_dict,
    specs_from_dict,
    specs_to_dict,
)
from editguard.infra.models import EditConversation, EditFailedAttempt, EditMessage, EditToolExecution
from editguard.shared.types import (
    AttemptRecord,
    ContextStats,
    ConversationContext,
    ConversationMessage,
    ExecutionMetrics,
    FailureMode,
    ToolExecutionRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from editguard.shared.types import ImageGroundTruth


def _row_to_record(row: Any) -> ToolExecutionRecord:
    return ToolExecutionRecord(
        tool_name=row.tool_name,
        parameters=dict(row.parameters or {}),
        success=row.success,
        confidence=row.confidence,
        metrics=ExecutionMetrics(**row.metrics),
        image_specs=specs_from_dict(row.image_specs),
        timestamp=row.created_at,
        conversation_id=row.conversation_id or "",
    )


def _row_to_attempt(row: Any) -> AttemptRecord:
    return AttemptRecord(
        attempt=row.attempt,
        tool_name=row.tool_name,
        parameters=dict(row.parameters or {}),
        state=row.state,
        success=False,
        elapsed_ms=row.elapsed_ms,
        error=row.error,
        failure_mode=FailureMode(row.failure_mode) if row.failure_mode else None,
        quality_score=row.quality_score,
        confidence=row.confidence,
    )


class PgContextStore(BaseContextStore):
    """PostgreSQL-backed context store."""

    name = "postgres"

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        thresholds: StorageThresholds = DEFAULT_SCORING.storage,
        weights: SimilarityWeights = DEFAULT_SCORING.similarity,
    ) -> None:
        super().__init__(thresholds=thresholds, weights=weights)
        self._session_factory = session_factory

    async def _upsert_conversation(self, session: AsyncSession, conversation_id: str, **values: Any) -> None:
        now = datetime.now(UTC)
        stmt = postgresql.insert(EditConversation).values(
            id=conversation_id,
            created_at=now,
            last_updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EditConversation.id],
            set_={"last_updated_at": now, **values},
        )
        await session.execute(stmt)

    async def ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(sa.text("SELECT 1"))

    async def insert_record(self, conversation_id: str, record: ToolExecutionRecord) -> None:
        async with self._session_factory() as session:
            await self._upsert_conversation(session, conversation_id)
            session.add(
                EditToolExecution(
                    conversation_id=conversation_id,
                    tool_name=record.tool_name,
                    parameters=record.parameters,
                    success=record.success,
                    confidence=record.confidence,
                    metrics={
                        "pixels_changed": record.metrics.pixels_changed,
                        "percentage_changed": record.metrics.percentage_changed,
                        "execution_time_ms": record.metrics.execution_time_ms,
                        "quality_score": record.metrics.quality_score,
                    },
                    image_specs=specs_to_dict(record.image_specs),
                    created_at=record.timestamp,
                )
            )
            await session.execute(self._prune_records_stmt(record.tool_name))
            await session.commit()

    def _prune_records_stmt(self, tool_name: str) -> sa.Delete:
        """Delete this tool's executions beyond the newest max_records."""
        newest = (
            sa.select(EditToolExecution.id)
            .where(EditToolExecution.tool_name == tool_name)
            .order_by(EditToolExecution.created_at.desc())
            .limit(self._thresholds.max_records)
        )
        return sa.delete(EditToolExecution).where(
            EditToolExecution.tool_name == tool_name,
            EditToolExecution.id.not_in(newest),
        ).execution_options(synchronize_session=False)

    async def load_records(self, tool_name: str) -> list[ToolExecutionRecord]:
        stmt = (
            sa.select(EditToolExecution)
            .where(EditToolExecution.tool_name == tool_name, EditToolExecution.success.is_(True))
            .order_by(EditToolExecution.created_at.desc())
            .limit(self._thresholds.max_records)
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            rows = result.all()
        return [_row_to_record(row) for row in rows]

    async def load_context(self, conversation_id: str) -> ConversationContext | None:
        async with self._session_factory() as session:
            conv = (
                await session.execute(sa.select(EditConversation).where(EditConversation.id == conversation_id))
            ).scalar_one_or_none()
            if conv is None:
                return None
            messages = (
                await session.scalars(
                    sa.select(EditMessage)
                    .where(EditMessage.conversation_id == conversation_id)
                    .order_by(EditMessage.created_at)
                )
            ).all()
            executions = (
                await session.scalars(
                    sa.select(EditToolExecution)
                    .where(EditToolExecution.conversation_id == conversation_id)
                    .order_by(EditToolExecution.created_at)
                )
            ).all()
        return ConversationContext(
            conversation_id=conversation_id,
            created_at=conv.created_at,
            last_updated_at=conv.last_updated_at,
            messages=tuple(
                ConversationMessage(role=m.role, content=m.content, timestamp=m.created_at) for m in messages
            ),
            image_ground_truth=ground_truth_from_dict(conv.ground_truth) if conv.ground_truth else None,
            tool_executions=tuple(_row_to_record(r) for r in executions),
        )

    async def drop_stale(self, keep_recent: int) -> int:
        async with self._session_factory() as session:
            stale = (
                await session.execute(
                    sa.select(EditConversation.id)
                    .order_by(EditConversation.last_updated_at.desc())
                    .offset(max(0, keep_recent))
                )
            ).fetchall()
            ids = [row[0] for row in stale]
            if not ids:
                return 0
            await session.execute(sa.delete(EditConversation).where(EditConversation.id.in_(ids)))
            await session.commit()
        return len(ids)

    async def append_message(self, conversation_id: str, message: ConversationMessage) -> None:
        async with self._session_factory() as session:
            await self._upsert_conversation(session, conversation_id)
            session.add(
                EditMessage(
                    conversation_id=conversation_id,
                    role=message.role,
                    content=message.content,
                    created_at=message.timestamp,
                )
            )
            await session.commit()

    async def put_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        async with self._session_factory() as session:
            await self._upsert_conversation(session, conversation_id, ground_truth=ground_truth_to_dict(ground_truth))
            await session.commit()

    async def append_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        async with self._session_factory() as session:
            await self._upsert_conversation(session, conversation_id)
            session.add(
                EditFailedAttempt(
                    conversation_id=conversation_id,
                    attempt=attempt.attempt,
                    tool_name=attempt.tool_name,
                    parameters=attempt.parameters,
                    state=attempt.state,
                    error=attempt.error,
                    failure_mode=attempt.failure_mode.value if attempt.failure_mode else None,
                    quality_score=attempt.quality_score,
                    confidence=attempt.confidence,
                    elapsed_ms=attempt.elapsed_ms,
                )
            )
            await session.commit()

    async def load_failures(self, conversation_id: str) -> list[AttemptRecord]:
        stmt = (
            sa.select(EditFailedAttempt)
            .where(EditFailedAttempt.conversation_id == conversation_id)
            .order_by(EditFailedAttempt.created_at)
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            rows = result.all()
        return [_row_to_attempt(row) for row in rows]

    async def count(self) -> ContextStats:
        counts: list[int] = []
        async with self._session_factory() as session:
            for model in (EditConversation, EditToolExecution, EditFailedAttempt, EditMessage):
                result = await session.execute(sa.select(sa.func.count()).select_from(model))
                counts.append(int(result.scalar_one() or 0))
        return ContextStats(
            conversations=counts[0],
            tool_executions=counts[1],
            failed_attempts=counts[2],
            messages=counts[3],
        )

    async def wipe(self) -> None:
        async with self._session_factory() as session:
            for model in (EditMessage, EditFailedAttempt, EditToolExecution, EditConversation):
                await session.execute(sa.delete(model))
            await session.commit()
