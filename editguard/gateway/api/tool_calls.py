"""Tool-call endpoints: the agent call contract.

- POST /api/v1/tool-calls -> run a chain of proposed calls against an image
- POST /api/v1/tool-calls/validate -> dry-run validation, nothing is executed

A chain that fails still answers 200: the body carries success=false, the
best-known reasoning and every attempt made. Only malformed requests and
unknown image references are HTTP errors.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from editguard.analysis.imaging import decode_image
from editguard.shared.errors import NotFoundError
from editguard.shared.types import ConversationContext, ConversationMessage, ToolCall

if TYPE_CHECKING:
    from editguard.analysis.analyzer import GroundTruthAnalyzer
    from editguard.orchestrator.orchestrator import CallOutcome, ToolCallOrchestrator
    from editguard.ports.context_store_port import ContextStorePort
    from editguard.ports.image_store_port import ImageStorePort
    from editguard.shared.types import AttemptRecord, ResultVerdict, ValidationVerdict
    from editguard.validation.validator import ParameterValidator

logger = logging.getLogger(__name__)

_ROLES = frozenset({"user", "assistant", "system"})


class ToolCallItem(BaseModel):
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tool_name")
    @classmethod
    def tool_name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            msg = "tool_name cannot be empty"
            raise ValueError(msg)
        return v.strip()


class MessageItem(BaseModel):
    role: str
    content: str

    @field_validator("role")
    @classmethod
    def known_role(cls, v: str) -> str:
        if v not in _ROLES:
            msg = f"role must be one of {sorted(_ROLES)}"
            raise ValueError(msg)
        return v


class RunChainRequest(BaseModel):
    image_ref: str
    calls: list[ToolCallItem]
    conversation_id: str | None = None
    context: list[MessageItem] | None = None


class ValidateRequest(BaseModel):
    image_ref: str
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class IssueModel(BaseModel):
    code: str
    message: str
    parameter: str | None = None
    blocking: bool = False


class ValidationModel(BaseModel):
    is_valid: bool
    confidence: int
    errors: list[str]
    warnings: list[str]
    adjusted_parameters: dict[str, Any] | None = None
    reasoning: str
    issues: list[IssueModel] = Field(default_factory=list)


class ResultVerdictModel(BaseModel):
    success: bool
    pixels_changed: int
    percentage_changed: float
    quality_score: int
    significant_change: bool
    dimensions_changed: bool
    warnings: list[str]
    reasoning: str


class AttemptModel(BaseModel):
    attempt: int
    parameters: dict[str, Any]
    state: str
    success: bool
    elapsed_ms: int
    error: str | None = None
    failure_mode: str | None = None
    quality_score: int | None = None


class CallOutcomeModel(BaseModel):
    tool_name: str
    success: bool
    parameters: dict[str, Any]
    confidence: int
    reasoning: str
    error: str | None = None
    result_ref: str | None = None
    failure_mode: str | None = None
    data: dict[str, Any] | None = None
    validation: ValidationModel | None = None
    result: ResultVerdictModel | None = None
    attempts: list[AttemptModel]


class RunChainResponse(BaseModel):
    conversation_id: str
    success: bool
    per_call_results: list[ResultVerdictModel]
    overall_confidence: int
    error: str | None = None
    final_image_ref: str
    cancelled: bool = False
    calls: list[CallOutcomeModel]


def _validation_model(v: ValidationVerdict) -> ValidationModel:
    return ValidationModel(
        is_valid=v.is_valid,
        confidence=v.confidence,
        errors=list(v.errors),
        warnings=list(v.warnings),
        adjusted_parameters=v.adjusted_parameters,
        reasoning=v.reasoning,
        issues=[
            IssueModel(code=i.code.value, message=i.message, parameter=i.parameter, blocking=i.blocking)
            for i in v.issues
        ],
    )


def _verdict_model(v: ResultVerdict) -> ResultVerdictModel:
    return ResultVerdictModel(
        success=v.success,
        pixels_changed=v.pixels_changed,
        percentage_changed=v.percentage_changed,
        quality_score=v.quality_score,
        significant_change=v.significant_change,
        dimensions_changed=v.dimensions_changed,
        warnings=list(v.warnings),
        reasoning=v.reasoning,
    )


def _attempt_model(a: AttemptRecord) -> AttemptModel:
    return AttemptModel(
        attempt=a.attempt,
        parameters=a.parameters,
        state=a.state,
        success=a.success,
        elapsed_ms=a.elapsed_ms,
        error=a.error,
        failure_mode=a.failure_mode.value if a.failure_mode else None,
        quality_score=a.quality_score,
    )


def _outcome_model(o: CallOutcome) -> CallOutcomeModel:
    return CallOutcomeModel(
        tool_name=o.tool_name,
        success=o.success,
        parameters=o.parameters,
        confidence=o.confidence,
        reasoning=o.reasoning,
        error=o.error,
        result_ref=o.result_ref,
        failure_mode=o.failure.failure_mode.value if o.failure else None,
        data=o.data,
        validation=_validation_model(o.validation) if o.validation else None,
        result=_verdict_model(o.result) if o.result else None,
        attempts=[_attempt_model(a) for a in o.attempts],
    )


def create_tool_call_router(
    *,
    orchestrator: ToolCallOrchestrator,
    validator: ParameterValidator,
    analyzer: GroundTruthAnalyzer,
    images: ImageStorePort,
    store: ContextStorePort,
) -> APIRouter:
    """Create tool-call API router with injected pipeline dependencies."""
    router = APIRouter(prefix="/api/v1/tool-calls", tags=["tool-calls"])

    async def _require_image(image_ref: str) -> None:
        if not await images.exists(image_ref):
            raise NotFoundError("image", image_ref)

    @router.post("", response_model=RunChainResponse)
    async def run_chain(body: RunChainRequest) -> RunChainResponse:
        """Validate, execute and verify each proposed call in order."""
        await _require_image(body.image_ref)
        conversation_id = body.conversation_id or uuid4().hex

        context = None
        if body.context:
            now = datetime.now(UTC)
            context = ConversationContext(
                conversation_id=conversation_id,
                created_at=now,
                last_updated_at=now,
                messages=tuple(ConversationMessage(role=m.role, content=m.content, timestamp=now) for m in body.context),
            )

        result = await orchestrator.run_chain(
            [ToolCall(tool_name=c.tool_name, parameters=c.parameters) for c in body.calls],
            body.image_ref,
            conversation_id=conversation_id,
            context=context,
        )
        return RunChainResponse(
            conversation_id=conversation_id,
            success=result.success,
            per_call_results=[_verdict_model(v) for v in result.per_call_results],
            overall_confidence=result.overall_confidence,
            error=result.error,
            final_image_ref=result.final_image_ref,
            cancelled=result.cancelled,
            calls=[_outcome_model(o) for o in result.calls],
        )

    @router.post("/validate", response_model=ValidationModel)
    async def validate_call(body: ValidateRequest) -> ValidationModel:
        """Score a proposed call against the image without executing it."""
        data = await images.load(body.image_ref)
        decoded = await asyncio.to_thread(decode_image, data)
        ground_truth = await asyncio.to_thread(analyzer.analyze_decoded, decoded)
        call = ToolCall(tool_name=body.tool_name, parameters=body.parameters)
        history = await store.find_similar(call.tool_name, ground_truth)
        verdict = await asyncio.to_thread(
            validator.validate,
            call,
            ground_truth,
            pixels=decoded.pixels,
            history=history,
        )
        logger.info("Dry-run validation of %s: valid=%s confidence=%d", call.tool_name, verdict.is_valid, verdict.confidence)
        return _validation_model(verdict)

    return router
