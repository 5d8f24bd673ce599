"""Conversation context endpoints.

- GET /api/v1/conversations/{conversation_id}/context -> turns, ground truth, executions, failures
- POST /api/v1/conversations/{conversation_id}/messages -> record a conversation turn
- GET /api/v1/context/stats -> store counters
- POST /api/v1/context/prune -> drop all but the most recent conversations
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from editguard.analysis.summary import summarize
from editguard.shared.errors import NotFoundError
from editguard.shared.types import ConversationMessage

if TYPE_CHECKING:
    from editguard.ports.context_store_port import ContextStorePort

logger = logging.getLogger(__name__)

_ROLES = frozenset({"user", "assistant", "system"})


class RecordTurnRequest(BaseModel):
    role: str
    content: str

    @field_validator("role")
    @classmethod
    def known_role(cls, v: str) -> str:
        if v not in _ROLES:
            msg = f"role must be one of {sorted(_ROLES)}"
            raise ValueError(msg)
        return v

    @field_validator("content")
    @classmethod
    def content_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            msg = "content cannot be empty"
            raise ValueError(msg)
        return v


class MessageItem(BaseModel):
    role: str
    content: str
    timestamp: str


class ExecutionItem(BaseModel):
    tool_name: str
    parameters: dict[str, Any]
    success: bool
    confidence: int
    percentage_changed: float
    quality_score: int
    timestamp: str


class FailureItem(BaseModel):
    attempt: int
    tool_name: str
    parameters: dict[str, Any]
    state: str
    error: str | None = None
    failure_mode: str | None = None


class ContextResponse(BaseModel):
    conversation_id: str
    created_at: str
    last_updated_at: str
    ground_truth: dict[str, Any] | None = None
    messages: list[MessageItem]
    tool_executions: list[ExecutionItem]
    failed_attempts: list[FailureItem]


class StatsResponse(BaseModel):
    conversations: int
    tool_executions: int
    failed_attempts: int
    messages: int


class PruneRequest(BaseModel):
    keep_recent: int | None = Field(default=None, ge=0)


class PruneResponse(BaseModel):
    removed: int


def create_context_router(*, store: ContextStorePort, keep_recent: int = 100) -> APIRouter:
    """Create context API router with injected store.

    keep_recent is the prune default when the request omits it.
    """
    router = APIRouter(prefix="/api/v1", tags=["context"])

    @router.get("/conversations/{conversation_id}/context", response_model=ContextResponse)
    async def get_context(conversation_id: str) -> ContextResponse:
        context = await store.get_context(conversation_id)
        if context is None:
            raise NotFoundError("conversation", conversation_id)
        failures = await store.get_failures(conversation_id)
        return ContextResponse(
            conversation_id=context.conversation_id,
            created_at=context.created_at.isoformat(),
            last_updated_at=context.last_updated_at.isoformat(),
            ground_truth=summarize(context.image_ground_truth) if context.image_ground_truth else None,
            messages=[
                MessageItem(role=m.role, content=m.content, timestamp=m.timestamp.isoformat())
                for m in context.messages
            ],
            tool_executions=[
                ExecutionItem(
                    tool_name=r.tool_name,
                    parameters=r.parameters,
                    success=r.success,
                    confidence=r.confidence,
                    percentage_changed=r.metrics.percentage_changed,
                    quality_score=r.metrics.quality_score,
                    timestamp=r.timestamp.isoformat(),
                )
                for r in context.tool_executions
            ],
            failed_attempts=[
                FailureItem(
                    attempt=a.attempt,
                    tool_name=a.tool_name,
                    parameters=a.parameters,
                    state=a.state,
                    error=a.error,
                    failure_mode=a.failure_mode.value if a.failure_mode else None,
                )
                for a in failures
            ],
        )

    @router.post("/conversations/{conversation_id}/messages", status_code=201)
    async def record_turn(conversation_id: str, body: RecordTurnRequest) -> dict[str, str]:
        message = ConversationMessage(role=body.role, content=body.content, timestamp=datetime.now(UTC))
        await store.record_turn(conversation_id, message)
        return {"conversation_id": conversation_id, "timestamp": message.timestamp.isoformat()}

    @router.get("/context/stats", response_model=StatsResponse)
    async def context_stats() -> StatsResponse:
        return StatsResponse(**asdict(await store.stats()))

    @router.post("/context/prune", response_model=PruneResponse)
    async def prune_context(body: PruneRequest) -> PruneResponse:
        keep = keep_recent if body.keep_recent is None else body.keep_recent
        removed = await store.prune(keep)
        logger.info("Pruned %d conversations (keep_recent=%d)", removed, keep)
        return PruneResponse(removed=removed)

    return router
