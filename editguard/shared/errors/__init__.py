"""Unified error hierarchy for editguard.

All domain errors inherit from EditGuardError. Pipeline stages convert these
into typed verdicts; only the gateway and the composition root ever see them
propagate.
"""

from __future__ import annotations

import enum


class ErrorCategory(enum.Enum):
    """Failure taxonomy surfaced to callers."""

    SCHEMA_ERROR = "schema_error"
    GROUND_TRUTH_MISMATCH = "ground_truth_mismatch"
    EXECUTION_FAILURE = "execution_failure"
    QUALITY_FAILURE = "quality_failure"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"


class EditGuardError(Exception):
    """Base error for all editguard exceptions."""

    def __init__(self, message: str, code: str = "EDITGUARD_ERROR") -> None:
        self.code = code
        super().__init__(message)


# -- Port errors (raised by Port implementations) --


class PortUnavailableError(EditGuardError):
    """A Port dependency is temporarily unavailable."""

    def __init__(self, port_name: str, message: str = "") -> None:
        self.port_name = port_name
        super().__init__(
            message or f"Port {port_name} is unavailable",
            code="PORT_UNAVAILABLE",
        )


class PortTimeoutError(EditGuardError):
    """A Port operation timed out."""

    def __init__(self, port_name: str, timeout_ms: int) -> None:
        self.port_name = port_name
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Port {port_name} timed out after {timeout_ms}ms",
            code="PORT_TIMEOUT",
        )


class StageTimeoutError(PortTimeoutError):
    """A pipeline stage (analysis, dispatch, storage) exceeded its deadline."""

    def __init__(self, stage: str, timeout_ms: int) -> None:
        super().__init__(stage, timeout_ms)
        self.stage = stage
        self.code = "STAGE_TIMEOUT"


# -- Domain errors --


class NotFoundError(EditGuardError):
    """Requested resource not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
        )


class ValidationError(EditGuardError):
    """Input validation failed."""

    def __init__(self, message: str, field: str = "") -> None:
        self.field = field
        super().__init__(message, code="VALIDATION")


class UnknownToolError(EditGuardError):
    """Tool name is not part of the catalogue."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}", code="UNKNOWN_TOOL")


class ImageDecodeError(EditGuardError):
    """Image bytes could not be decoded."""

    def __init__(self, message: str = "Image could not be decoded") -> None:
        super().__init__(message, code="IMAGE_DECODE")


# -- Dispatcher errors --


class ToolExecutionError(EditGuardError):
    """The tool service reported a failure while executing a tool."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        *,
        recoverable: bool = True,
        status_code: int | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.recoverable = recoverable
        self.status_code = status_code
        super().__init__(message, code="TOOL_EXECUTION")


class RateLimitedError(ToolExecutionError):
    """The tool service rejected the call with rate-limit semantics (HTTP 429)."""

    def __init__(self, tool_name: str, retry_after_s: float | None = None) -> None:
        self.retry_after_s = retry_after_s
        super().__init__(
            tool_name,
            f"Rate limit exceeded for {tool_name}",
            recoverable=True,
            status_code=429,
        )
        self.code = "RATE_LIMITED"


__all__ = [
    "EditGuardError",
    "ErrorCategory",
    "ImageDecodeError",
    "NotFoundError",
    "PortTimeoutError",
    "PortUnavailableError",
    "RateLimitedError",
    "StageTimeoutError",
    "ToolExecutionError",
    "UnknownToolError",
    "ValidationError",
]
