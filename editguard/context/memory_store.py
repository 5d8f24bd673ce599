"""In-memory context store.

Functionally complete (same query semantics as the durable stores), no
durability. Safe for concurrent use across conversations:
- one asyncio.Lock per conversation guards that conversation's state
- an index lock guards the global record list
- prune runs under its own lock
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from editguard.config.scoring import DEFAULT_SCORING, SimilarityWeights, StorageThresholds
from editguard.context.base import BaseContextStore
from editguard.shared.types import ContextStats, ConversationContext

if TYPE_CHECKING:
    from editguard.shared.types import (
        AttemptRecord,
        ConversationMessage,
        ImageGroundTruth,
        ToolExecutionRecord,
    )


@dataclass
class _Conversation:
    created_at: datetime
    last_updated_at: datetime
    messages: list[ConversationMessage] = field(default_factory=list)
    ground_truth: ImageGroundTruth | None = None
    executions: list[ToolExecutionRecord] = field(default_factory=list)
    failures: list[AttemptRecord] = field(default_factory=list)

    def touch(self) -> None:
        self.last_updated_at = datetime.now(UTC)

    def snapshot(self, conversation_id: str) -> ConversationContext:
        return ConversationContext(
            conversation_id=conversation_id,
            created_at=self.created_at,
            last_updated_at=self.last_updated_at,
            messages=tuple(self.messages),
            image_ground_truth=self.ground_truth,
            tool_executions=tuple(self.executions),
        )


class InMemoryContextStore(BaseContextStore):
    """Process-local context store."""

    name = "memory"

    def __init__(
        self,
        *,
        thresholds: StorageThresholds = DEFAULT_SCORING.storage,
        weights: SimilarityWeights = DEFAULT_SCORING.similarity,
    ) -> None:
        super().__init__(thresholds=thresholds, weights=weights)
        self._conversations: dict[str, _Conversation] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._records: list[ToolExecutionRecord] = []
        self._index_lock = asyncio.Lock()
        self._prune_lock = asyncio.Lock()

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    def _conversation(self, conversation_id: str) -> _Conversation:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            now = datetime.now(UTC)
            conv = _Conversation(created_at=now, last_updated_at=now)
            self._conversations[conversation_id] = conv
        return conv

    async def insert_record(self, conversation_id: str, record: ToolExecutionRecord) -> None:
        async with self._lock_for(conversation_id):
            conv = self._conversation(conversation_id)
            conv.executions.append(record)
            conv.touch()
        async with self._index_lock:
            self._records.append(record)
            overflow = len(self._records) - self._thresholds.max_records
            if overflow > 0:
                del self._records[:overflow]

    async def load_records(self, tool_name: str) -> list[ToolExecutionRecord]:
        async with self._index_lock:
            return [r for r in self._records if r.tool_name == tool_name]

    async def load_context(self, conversation_id: str) -> ConversationContext | None:
        async with self._lock_for(conversation_id):
            conv = self._conversations.get(conversation_id)
            return conv.snapshot(conversation_id) if conv else None

    async def drop_stale(self, keep_recent: int) -> int:
        async with self._prune_lock:
            ordered = sorted(
                self._conversations.items(),
                key=lambda item: item[1].last_updated_at,
                reverse=True,
            )
            stale = [cid for cid, _ in ordered[max(0, keep_recent) :]]
            for cid in stale:
                async with self._lock_for(cid):
                    self._conversations.pop(cid, None)
                self._locks.pop(cid, None)
            return len(stale)

    async def append_message(self, conversation_id: str, message: ConversationMessage) -> None:
        async with self._lock_for(conversation_id):
            conv = self._conversation(conversation_id)
            conv.messages.append(message)
            conv.touch()

    async def put_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        async with self._lock_for(conversation_id):
            conv = self._conversation(conversation_id)
            conv.ground_truth = ground_truth
            conv.touch()

    async def append_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        async with self._lock_for(conversation_id):
            conv = self._conversation(conversation_id)
            conv.failures.append(attempt)
            conv.touch()

    async def load_failures(self, conversation_id: str) -> list[AttemptRecord]:
        async with self._lock_for(conversation_id):
            conv = self._conversations.get(conversation_id)
            return list(conv.failures) if conv else []

    async def count(self) -> ContextStats:
        convs = list(self._conversations.values())
        async with self._index_lock:
            executions = len(self._records)
        return ContextStats(
            conversations=len(convs),
            tool_executions=executions,
            failed_attempts=sum(len(c.failures) for c in convs),
            messages=sum(len(c.messages) for c in convs),
        )

    async def wipe(self) -> None:
        async with self._prune_lock, self._index_lock:
            self._conversations.clear()
            self._locks.clear()
            self._records.clear()
