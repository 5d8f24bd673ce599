"""Structured error records for pipeline failures.

An unexpected exception inside the orchestrator is logged once, as a
StructuredError attached to the record under `extra["structured_error"]`:

- error_code: EditGuardError.code, or the exception class name
- stage: pipeline stage that was running (analysis, dispatch, ...)
- run_id / conversation_id: read from the current run context
- context: caller-supplied details, with credentials masked and image
  payloads reduced to a size or a short prefix
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field, replace
from typing import Any

from editguard.shared.run_context import get_conversation_id, get_run_id

_MASK = "[REDACTED]"
_MASKED_KEYS = frozenset({"api_key", "authorization", "password", "secret", "token"})
_DATA_URI_PREFIX = 32


def _scrub(value: Any, key: str = "") -> Any:
    if key.lower() in _MASKED_KEYS:
        return _MASK
    if isinstance(value, dict):
        return {k: _scrub(v, str(k)) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_scrub(v) for v in value]
    if isinstance(value, bytes | bytearray):
        return f"<{len(value)} bytes>"
    if isinstance(value, str) and value.startswith("data:image"):
        return value[:_DATA_URI_PREFIX] + "..."
    return value


@dataclass(frozen=True)
class StructuredError:
    error_code: str
    message: str
    stack_trace: str
    context: dict[str, Any] = field(default_factory=dict)
    run_id: str = ""
    conversation_id: str = ""
    stage: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict with the context scrubbed."""
        scrubbed = replace(self, context=_scrub(self.context))
        return {name: getattr(scrubbed, name) for name in self.__dataclass_fields__}


def create_structured_error(
    exc: BaseException,
    *,
    error_code: str = "",
    stage: str = "",
    context: dict[str, Any] | None = None,
) -> StructuredError:
    return StructuredError(
        error_code=error_code or getattr(exc, "code", type(exc).__name__),
        message=str(exc),
        stack_trace="".join(traceback.format_exception(exc)),
        context=dict(context or {}),
        run_id=get_run_id(),
        conversation_id=get_conversation_id(),
        stage=stage,
    )


def log_structured_error(
    logger: logging.Logger,
    exc: BaseException,
    *,
    error_code: str = "",
    stage: str = "",
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> StructuredError:
    """Build a StructuredError for exc, log it and return it."""
    structured = create_structured_error(exc, error_code=error_code, stage=stage, context=context)
    logger.log(
        level,
        "%s failed in stage %s: %s",
        structured.error_code,
        structured.stage or "-",
        structured.message,
        extra={"structured_error": structured.to_dict()},
    )
    return structured
