"""Durable context store with in-memory degradation.

Every backend operation is tried against the durable store first. When it
raises, a warning is logged and the operation is served by the in-memory
fallback, so storage unavailability never fails a user-visible request.
Similarity candidates merge both sources.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from editguard.context.base import BaseContextStore
from editguard.context.memory_store import InMemoryContextStore
from editguard.shared.types import ContextStats

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from editguard.shared.types import (
        AttemptRecord,
        ConversationContext,
        ConversationMessage,
        ImageGroundTruth,
        ToolExecutionRecord,
    )

logger = logging.getLogger(__name__)


class ResilientContextStore(BaseContextStore):
    """Durable store first, in-memory fallback on failure."""

    def __init__(self, durable: BaseContextStore, *, fallback: InMemoryContextStore | None = None) -> None:
        super().__init__(thresholds=durable.thresholds, weights=durable.weights)
        self._durable = durable
        self._fallback = fallback or InMemoryContextStore(thresholds=durable.thresholds, weights=durable.weights)
        self.name = f"resilient:{durable.name}"
        self.degraded = False

    async def _try(self, op: str, durable: Callable[[], Awaitable[Any]], fallback: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await durable()
        except Exception:
            if not self.degraded:
                logger.warning("Durable %s store failed on %s; using in-memory fallback", self._durable.name, op, exc_info=True)
            self.degraded = True
            return await fallback()
        if self.degraded:
            logger.info("Durable %s store recovered on %s", self._durable.name, op)
            self.degraded = False
        return result

    async def ping(self) -> None:
        await self._durable.ping()

    async def close(self) -> None:
        await self._durable.close()

    async def insert_record(self, conversation_id: str, record: ToolExecutionRecord) -> None:
        await self._try(
            "store",
            lambda: self._durable.insert_record(conversation_id, record),
            lambda: self._fallback.insert_record(conversation_id, record),
        )

    async def load_records(self, tool_name: str) -> list[ToolExecutionRecord]:
        durable: list[ToolExecutionRecord] = await self._try(
            "find_similar",
            lambda: self._durable.load_records(tool_name),
            _empty_list,
        )
        return durable + await self._fallback.load_records(tool_name)

    async def load_context(self, conversation_id: str) -> ConversationContext | None:
        context = await self._try(
            "get_context",
            lambda: self._durable.load_context(conversation_id),
            lambda: self._fallback.load_context(conversation_id),
        )
        if context is None:
            context = await self._fallback.load_context(conversation_id)
        return context

    async def drop_stale(self, keep_recent: int) -> int:
        removed = await self._try("prune", lambda: self._durable.drop_stale(keep_recent), _zero)
        return removed + await self._fallback.drop_stale(keep_recent)

    async def append_message(self, conversation_id: str, message: ConversationMessage) -> None:
        await self._try(
            "record_turn",
            lambda: self._durable.append_message(conversation_id, message),
            lambda: self._fallback.append_message(conversation_id, message),
        )

    async def put_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        await self._try(
            "remember_ground_truth",
            lambda: self._durable.put_ground_truth(conversation_id, ground_truth),
            lambda: self._fallback.put_ground_truth(conversation_id, ground_truth),
        )

    async def append_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        await self._try(
            "record_failure",
            lambda: self._durable.append_failure(conversation_id, attempt),
            lambda: self._fallback.append_failure(conversation_id, attempt),
        )

    async def load_failures(self, conversation_id: str) -> list[AttemptRecord]:
        durable: list[AttemptRecord] = await self._try(
            "get_failures",
            lambda: self._durable.load_failures(conversation_id),
            _empty_list,
        )
        return durable + await self._fallback.load_failures(conversation_id)

    async def count(self) -> ContextStats:
        durable: ContextStats = await self._try(
            "stats",
            self._durable.count,
            _zero_stats,
        )
        local = await self._fallback.count()
        return ContextStats(
            conversations=durable.conversations + local.conversations,
            tool_executions=durable.tool_executions + local.tool_executions,
            failed_attempts=durable.failed_attempts + local.failed_attempts,
            messages=durable.messages + local.messages,
        )

    async def wipe(self) -> None:
        await self._try("clear", self._durable.wipe, _none)
        await self._fallback.wipe()


async def _empty_list() -> list[Any]:
    return []


async def _zero() -> int:
    return 0


async def _none() -> None:
    return None


async def _zero_stats() -> ContextStats:
    return ContextStats(conversations=0, tool_executions=0, failed_attempts=0, messages=0)
