"""Shared behaviour of every context store.

BaseContextStore implements the ContextStorePort contract (storage gate,
never-raise writes, empty-on-failure reads, similarity ranking) on top of a
small set of backend operations that subclasses provide and that are free
to raise.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import TYPE_CHECKING

from editguard.config.scoring import DEFAULT_SCORING, SimilarityWeights, StorageThresholds
from editguard.context.policy import should_store
from editguard.context.similarity import similarity_score
from editguard.ports.context_store_port import ContextStorePort
from editguard.shared.types import ContextStats, SimilarExecution

if TYPE_CHECKING:
    from editguard.shared.types import (
        AttemptRecord,
        ConversationContext,
        ConversationMessage,
        ImageGroundTruth,
        ToolExecutionRecord,
    )

logger = logging.getLogger(__name__)


class BaseContextStore(ContextStorePort):
    """ContextStorePort over raising backend operations."""

    name = "context"

    def __init__(
        self,
        *,
        thresholds: StorageThresholds = DEFAULT_SCORING.storage,
        weights: SimilarityWeights = DEFAULT_SCORING.similarity,
    ) -> None:
        self._thresholds = thresholds
        self._weights = weights

    @property
    def thresholds(self) -> StorageThresholds:
        return self._thresholds

    @property
    def weights(self) -> SimilarityWeights:
        return self._weights

    # -- backend operations (may raise) --

    @abstractmethod
    async def insert_record(self, conversation_id: str, record: ToolExecutionRecord) -> None: ...

    @abstractmethod
    async def load_records(self, tool_name: str) -> list[ToolExecutionRecord]: ...

    @abstractmethod
    async def load_context(self, conversation_id: str) -> ConversationContext | None: ...

    @abstractmethod
    async def drop_stale(self, keep_recent: int) -> int: ...

    @abstractmethod
    async def append_message(self, conversation_id: str, message: ConversationMessage) -> None: ...

    @abstractmethod
    async def put_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None: ...

    @abstractmethod
    async def append_failure(self, conversation_id: str, attempt: AttemptRecord) -> None: ...

    @abstractmethod
    async def load_failures(self, conversation_id: str) -> list[AttemptRecord]: ...

    @abstractmethod
    async def count(self) -> ContextStats: ...

    @abstractmethod
    async def wipe(self) -> None: ...

    async def ping(self) -> None:
        """Raise if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""

    # -- ContextStorePort --

    async def store(self, conversation_id: str, record: ToolExecutionRecord) -> bool:
        if not should_store(record, self._thresholds):
            logger.debug(
                "Not indexing %s execution (success=%s, confidence=%d)",
                record.tool_name,
                record.success,
                record.confidence,
            )
            return False
        try:
            await self.insert_record(conversation_id, record)
        except Exception:
            logger.warning("Failed to store %s execution in %s store", record.tool_name, self.name, exc_info=True)
            return False
        return True

    async def find_similar(
        self,
        tool_name: str,
        ground_truth: ImageGroundTruth,
        limit: int = 5,
    ) -> list[SimilarExecution]:
        try:
            records = await self.load_records(tool_name)
        except Exception:
            logger.warning("Similarity lookup failed in %s store", self.name, exc_info=True)
            return []
        return self.rank(records, tool_name, ground_truth, limit)

    def rank(
        self,
        records: list[ToolExecutionRecord],
        tool_name: str,
        ground_truth: ImageGroundTruth,
        limit: int,
    ) -> list[SimilarExecution]:
        matches = [
            SimilarExecution(record=r, similarity=similarity_score(ground_truth, r.image_specs, self._weights))
            for r in records
            if r.tool_name == tool_name and r.success
        ]
        matches = [m for m in matches if m.similarity >= self._thresholds.min_similarity]
        matches.sort(key=lambda m: (m.similarity, m.record.timestamp), reverse=True)
        return matches[: max(0, limit)]

    async def get_context(self, conversation_id: str) -> ConversationContext | None:
        try:
            return await self.load_context(conversation_id)
        except Exception:
            logger.warning("Failed to load context %s from %s store", conversation_id, self.name, exc_info=True)
            return None

    async def prune(self, keep_recent: int = 100) -> int:
        try:
            removed = await self.drop_stale(keep_recent)
        except Exception:
            logger.warning("Prune failed in %s store", self.name, exc_info=True)
            return 0
        if removed:
            logger.info("Pruned %d old conversations", removed)
        return removed

    async def record_turn(self, conversation_id: str, message: ConversationMessage) -> None:
        try:
            await self.append_message(conversation_id, message)
        except Exception:
            logger.warning("Failed to record message for %s", conversation_id, exc_info=True)

    async def remember_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        try:
            await self.put_ground_truth(conversation_id, ground_truth)
        except Exception:
            logger.warning("Failed to store ground truth for %s", conversation_id, exc_info=True)

    async def record_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        try:
            await self.append_failure(conversation_id, attempt)
        except Exception:
            logger.warning("Failed to log failed attempt for %s", conversation_id, exc_info=True)

    async def get_failures(self, conversation_id: str) -> list[AttemptRecord]:
        try:
            return await self.load_failures(conversation_id)
        except Exception:
            logger.warning("Failed to read failed attempts for %s", conversation_id, exc_info=True)
            return []

    async def stats(self) -> ContextStats:
        try:
            return await self.count()
        except Exception:
            logger.warning("Failed to compute %s store stats", self.name, exc_info=True)
            return ContextStats(conversations=0, tool_executions=0, failed_attempts=0, messages=0)

    async def clear(self) -> None:
        try:
            await self.wipe()
        except Exception:
            logger.warning("Failed to clear %s store", self.name, exc_info=True)
