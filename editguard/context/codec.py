"""JSON codec for context types.

Durable stores (Redis, PostgreSQL JSONB) keep plain dicts; these helpers
convert the frozen domain types to and from that form.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from editguard.shared.types import (
    AttemptRecord,
    ConversationMessage,
    DominantColor,
    ExecutionMetrics,
    FailureMode,
    ImageGroundTruth,
    ImageSpecs,
    ToolExecutionRecord,
)


def ground_truth_to_dict(gt: ImageGroundTruth) -> dict[str, Any]:
    return asdict(gt)


def ground_truth_from_dict(data: dict[str, Any]) -> ImageGroundTruth:
    fields = dict(data)
    fields["dominant_colors"] = tuple(DominantColor(**c) for c in fields.get("dominant_colors", ()))
    return ImageGroundTruth(**fields)


def specs_to_dict(specs: ImageSpecs) -> dict[str, Any]:
    return asdict(specs)


def specs_from_dict(data: dict[str, Any]) -> ImageSpecs:
    return ImageSpecs(**data)


def record_to_dict(record: ToolExecutionRecord) -> dict[str, Any]:
    return {
        "tool_name": record.tool_name,
        "parameters": record.parameters,
        "success": record.success,
        "confidence": record.confidence,
        "metrics": asdict(record.metrics),
        "image_specs": specs_to_dict(record.image_specs),
        "timestamp": record.timestamp.isoformat(),
        "conversation_id": record.conversation_id,
    }


def record_from_dict(data: dict[str, Any]) -> ToolExecutionRecord:
    return ToolExecutionRecord(
        tool_name=data["tool_name"],
        parameters=data.get("parameters") or {},
        success=bool(data["success"]),
        confidence=int(data["confidence"]),
        metrics=ExecutionMetrics(**data["metrics"]),
        image_specs=specs_from_dict(data["image_specs"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        conversation_id=data.get("conversation_id", ""),
    )


def message_to_dict(message: ConversationMessage) -> dict[str, Any]:
    return {
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def message_from_dict(data: dict[str, Any]) -> ConversationMessage:
    return ConversationMessage(
        role=data["role"],
        content=data["content"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
    )


def attempt_to_dict(attempt: AttemptRecord) -> dict[str, Any]:
    data = asdict(attempt)
    data["failure_mode"] = attempt.failure_mode.value if attempt.failure_mode else None
    return data


def attempt_from_dict(data: dict[str, Any]) -> AttemptRecord:
    fields = dict(data)
    mode = fields.get("failure_mode")
    fields["failure_mode"] = FailureMode(mode) if mode else None
    return AttemptRecord(**fields)
