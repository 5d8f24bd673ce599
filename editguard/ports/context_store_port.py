"""ContextStorePort - learning layer for tool executions.

Holds per-conversation context (messages, latest ground truth, executions)
and the global index of successful, confident executions that parameter
validation calibrates against.

Contract shared by every implementation:
- Only records with success=True and confidence >= the storage gate enter
  the similarity index.
- Writes never raise; failures are logged and reported as False/0.
- Reads never raise; failures return empty results.
- Failed attempts go to a separate log that similarity search never reads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from editguard.shared.types import (
        AttemptRecord,
        ContextStats,
        ConversationContext,
        ConversationMessage,
        ImageGroundTruth,
        SimilarExecution,
        ToolExecutionRecord,
    )


class ContextStorePort(ABC):
    """Port: conversation context and execution history."""

    @abstractmethod
    async def store(self, conversation_id: str, record: ToolExecutionRecord) -> bool:
        """Persist an execution record if it passes the storage gate.

        Returns:
            True if the record was stored.
        """

    @abstractmethod
    async def find_similar(
        self,
        tool_name: str,
        ground_truth: ImageGroundTruth,
        limit: int = 5,
    ) -> list[SimilarExecution]:
        """Top-N stored executions of tool_name on the most similar images."""

    @abstractmethod
    async def get_context(self, conversation_id: str) -> ConversationContext | None:
        """Snapshot of one conversation, or None if unknown."""

    @abstractmethod
    async def prune(self, keep_recent: int = 100) -> int:
        """Drop all but the most recently updated conversations.

        Returns:
            Number of conversations removed.
        """

    @abstractmethod
    async def record_turn(self, conversation_id: str, message: ConversationMessage) -> None:
        """Append a chat message to a conversation."""

    @abstractmethod
    async def remember_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        """Set the working image's ground truth for a conversation."""

    @abstractmethod
    async def record_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        """Log a failed attempt for later analysis."""

    @abstractmethod
    async def get_failures(self, conversation_id: str) -> list[AttemptRecord]:
        """Failed attempts logged for a conversation."""

    @abstractmethod
    async def stats(self) -> ContextStats:
        """Counts of stored conversations, executions, failures and messages."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove everything (tests and maintenance)."""
