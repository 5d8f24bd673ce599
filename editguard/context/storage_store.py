"""Durable context store over StoragePort (Redis in production).

Key layout (prefix defaults to "editguard"):
    {prefix}:records:{tool_name}        list of indexed execution records
    {prefix}:conv:{id}:meta             created/updated timestamps, ground truth
    {prefix}:conv:{id}:messages         list of messages
    {prefix}:conv:{id}:executions       list of this conversation's records
    {prefix}:conv:{id}:failures         list of failed attempts
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from editguard.config.scoring import DEFAULT_SCORING, SimilarityWeights, StorageThresholds
from editguard.context.base import BaseContextStore
from editguard.context.codec import (
    attempt_from_dict,
    attempt_to_dict,
    ground_truth_from_dict,
    ground_truth_to_dict,
    message_from_dict,
    message_to_dict,
    record_from_dict,
    record_to_dict,
)
from editguard.shared.types import ContextStats, ConversationContext

if TYPE_CHECKING:
    from editguard.ports.storage_port import StoragePort
    from editguard.shared.types import (
        AttemptRecord,
        ConversationMessage,
        ImageGroundTruth,
        ToolExecutionRecord,
    )

_PARTS = ("meta", "messages", "executions", "failures")


class StorageContextStore(BaseContextStore):
    """Context store persisted through a StoragePort."""

    name = "storage"

    def __init__(
        self,
        storage: StoragePort,
        *,
        prefix: str = "editguard",
        thresholds: StorageThresholds = DEFAULT_SCORING.storage,
        weights: SimilarityWeights = DEFAULT_SCORING.similarity,
    ) -> None:
        super().__init__(thresholds=thresholds, weights=weights)
        self._storage = storage
        self._prefix = prefix
        self._locks: dict[str, asyncio.Lock] = {}
        self._prune_lock = asyncio.Lock()

    def _key(self, conversation_id: str, part: str) -> str:
        return f"{self._prefix}:conv:{conversation_id}:{part}"

    def _records_key(self, tool_name: str) -> str:
        return f"{self._prefix}:records:{tool_name}"

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    async def _write_meta(self, conversation_id: str, **updates: Any) -> None:
        key = self._key(conversation_id, "meta")
        now = datetime.now(UTC).isoformat()
        meta = await self._storage.get(key) or {"created_at": now, "ground_truth": None}
        meta.update(updates)
        meta["last_updated_at"] = now
        await self._storage.put(key, meta)

    async def _touch(self, conversation_id: str, **updates: Any) -> None:
        """Read-modify-write of the meta document under the conversation lock."""
        async with self._lock_for(conversation_id):
            await self._write_meta(conversation_id, **updates)

    async def _append(self, conversation_id: str, part: str, item: Any) -> None:
        """Append to one of the conversation's lists and touch it, as one locked step."""
        async with self._lock_for(conversation_id):
            await self._storage.append(self._key(conversation_id, part), item)
            await self._write_meta(conversation_id)

    async def ping(self) -> None:
        await self._storage.get(f"{self._prefix}:ping")

    async def close(self) -> None:
        closer = getattr(self._storage, "close", None)
        if closer is not None:
            await closer()

    async def insert_record(self, conversation_id: str, record: ToolExecutionRecord) -> None:
        data = record_to_dict(record)
        await self._append(conversation_id, "executions", data)
        length = await self._storage.append(self._records_key(record.tool_name), data)
        if length > self._thresholds.max_records:
            await self._storage.trim_list(self._records_key(record.tool_name), self._thresholds.max_records)

    async def load_records(self, tool_name: str) -> list[ToolExecutionRecord]:
        raw = await self._storage.get_list(self._records_key(tool_name))
        return [record_from_dict(item) for item in raw]

    async def load_context(self, conversation_id: str) -> ConversationContext | None:
        meta = await self._storage.get(self._key(conversation_id, "meta"))
        if meta is None:
            return None
        messages = await self._storage.get_list(self._key(conversation_id, "messages"))
        executions = await self._storage.get_list(self._key(conversation_id, "executions"))
        gt = meta.get("ground_truth")
        return ConversationContext(
            conversation_id=conversation_id,
            created_at=datetime.fromisoformat(meta["created_at"]),
            last_updated_at=datetime.fromisoformat(meta["last_updated_at"]),
            messages=tuple(message_from_dict(m) for m in messages),
            image_ground_truth=ground_truth_from_dict(gt) if gt else None,
            tool_executions=tuple(record_from_dict(r) for r in executions),
        )

    async def _conversation_ids(self) -> list[str]:
        keys = await self._storage.list_keys(f"{self._prefix}:conv:*:meta")
        head = f"{self._prefix}:conv:"
        return [k[len(head) : -len(":meta")] for k in keys]

    async def drop_stale(self, keep_recent: int) -> int:
        async with self._prune_lock:
            dated: list[tuple[str, str]] = []
            for cid in await self._conversation_ids():
                meta = await self._storage.get(self._key(cid, "meta"))
                if meta is not None:
                    dated.append((meta.get("last_updated_at", ""), cid))
            dated.sort(reverse=True)
            removed = 0
            for stamp, cid in dated[max(0, keep_recent) :]:
                async with self._lock_for(cid):
                    meta = await self._storage.get(self._key(cid, "meta"))
                    if meta is not None and meta.get("last_updated_at", "") != stamp:
                        # written to since the scan: no longer stale
                        continue
                    for part in _PARTS:
                        await self._storage.delete(self._key(cid, part))
                self._locks.pop(cid, None)
                removed += 1
            return removed

    async def append_message(self, conversation_id: str, message: ConversationMessage) -> None:
        await self._append(conversation_id, "messages", message_to_dict(message))

    async def put_ground_truth(self, conversation_id: str, ground_truth: ImageGroundTruth) -> None:
        await self._touch(conversation_id, ground_truth=ground_truth_to_dict(ground_truth))

    async def append_failure(self, conversation_id: str, attempt: AttemptRecord) -> None:
        await self._append(conversation_id, "failures", attempt_to_dict(attempt))

    async def load_failures(self, conversation_id: str) -> list[AttemptRecord]:
        raw = await self._storage.get_list(self._key(conversation_id, "failures"))
        return [attempt_from_dict(item) for item in raw]

    async def count(self) -> ContextStats:
        ids = await self._conversation_ids()
        executions = 0
        for key in await self._storage.list_keys(f"{self._prefix}:records:*"):
            executions += len(await self._storage.get_list(key))
        failures = 0
        messages = 0
        for cid in ids:
            failures += len(await self._storage.get_list(self._key(cid, "failures")))
            messages += len(await self._storage.get_list(self._key(cid, "messages")))
        return ContextStats(
            conversations=len(ids),
            tool_executions=executions,
            failed_attempts=failures,
            messages=messages,
        )

    async def wipe(self) -> None:
        async with self._prune_lock:
            for key in await self._storage.list_keys(f"{self._prefix}:*"):
                await self._storage.delete(key)
            self._locks.clear()
