"""Shared domain types used across layers.

These types flow through Port interfaces and must remain stable. All of
them are immutable snapshots; stores keep their own mutable state and hand
out copies of these.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from editguard.shared.errors import ErrorCategory

# -- Ground truth --


@dataclass(frozen=True)
class DominantColor:
    """One palette entry measured from the image."""

    r: int
    g: int
    b: int
    hex: str
    percentage: float

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class ImageSpecs:
    """Partial ground truth kept with persisted records for similarity search."""

    width: int
    height: int
    has_transparency: bool
    unique_color_count: int
    sharpness_score: float
    noise_level: float
    is_print_ready: bool
    aspect_ratio: str = ""
    format: str = "unknown"


@dataclass(frozen=True)
class ImageGroundTruth:
    """Objective measurements extracted from image pixels.

    Created once per analysis call and never mutated. Confidence degrades
    when a sub-measurement fails instead of the analysis raising.
    """

    width: int
    height: int
    format: str
    dpi: float | None
    has_transparency: bool
    dominant_colors: tuple[DominantColor, ...]
    unique_color_count: int
    sharpness_score: float
    noise_level: float
    is_blurry: bool
    is_print_ready: bool
    confidence: int
    aspect_ratio: str = ""
    file_size: int = 0
    color_depth: int = 24
    printable_width_in: float = 0.0
    printable_height_in: float = 0.0

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def megapixels(self) -> float:
        return self.pixel_count / 1_000_000

    def specs(self) -> ImageSpecs:
        return ImageSpecs(
            width=self.width,
            height=self.height,
            has_transparency=self.has_transparency,
            unique_color_count=self.unique_color_count,
            sharpness_score=self.sharpness_score,
            noise_level=self.noise_level,
            is_print_ready=self.is_print_ready,
            aspect_ratio=self.aspect_ratio,
            format=self.format,
        )


# -- Tool calls and validation --


@dataclass(frozen=True)
class ToolCall:
    """Agent-proposed tool invocation. Untrusted input."""

    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def with_parameters(self, parameters: dict[str, Any]) -> ToolCall:
        return ToolCall(tool_name=self.tool_name, parameters=dict(parameters))


class IssueCode(enum.Enum):
    """Typed reason attached to every validation finding."""

    SCHEMA = "schema"
    UNKNOWN_TOOL = "unknown_tool"
    COLOR_NOT_FOUND = "color_not_found"
    COLOR_APPROXIMATE = "color_approximate"
    TOLERANCE_MISMATCH = "tolerance_mismatch"
    EXTENT_TOO_HIGH = "extent_too_high"
    EXTENT_TOO_LOW = "extent_too_low"
    OUT_OF_BOUNDS = "out_of_bounds"
    PALETTE_INDEX = "palette_index"
    EXCESSIVE_COUNT = "excessive_count"
    OUTPUT_TOO_LARGE = "output_too_large"
    UNSUPPORTED_OPTION = "unsupported_option"
    FORMAT_INCOMPATIBLE = "format_incompatible"
    QUALITY_RISK = "quality_risk"
    HISTORICAL_OUTLIER = "historical_outlier"
    NO_OP = "no_op"


@dataclass(frozen=True)
class ValidationIssue:
    """A single finding produced by a validation layer."""

    code: IssueCode
    message: str
    parameter: str | None = None
    blocking: bool = False
    current_value: Any = None
    suggested_value: Any = None
    ceiling: int | None = None


@dataclass(frozen=True)
class ValidationVerdict:
    """Outcome of parameter validation. is_valid=False forbids execution."""

    is_valid: bool
    confidence: int
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    adjusted_parameters: dict[str, Any] | None = None
    reasoning: str = ""
    issues: tuple[ValidationIssue, ...] = ()
    scores: dict[str, float] = field(default_factory=dict)


# -- Execution and verification --


@dataclass(frozen=True)
class ExecutionOutcome:
    """What the tool dispatcher returned for one call."""

    success: bool
    result_ref: str | None = None
    error: str | None = None
    elapsed_ms: int = 0
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class ResultVerdict:
    """Before/after comparison verdict for one executed call."""

    success: bool
    pixels_changed: int
    percentage_changed: float
    quality_score: int
    significant_change: bool
    max_delta: float = 0.0
    avg_delta: float = 0.0
    color_shift: float = 0.0
    warnings: tuple[str, ...] = ()
    reasoning: str = ""
    dimensions_changed: bool = False


# -- Failure handling --


class FailureMode(enum.Enum):
    VALIDATION = "validation"
    EXECUTION = "execution"
    QUALITY = "quality"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"


@dataclass(frozen=True)
class ParameterFix:
    """Suggested parameter repair attached to a failure analysis."""

    parameter: str
    current_value: Any
    suggested_value: Any
    reason: str


@dataclass(frozen=True)
class FailureAnalysis:
    """Classified failure with recovery hints."""

    failure_mode: FailureMode
    root_cause: str
    recoverable: bool
    category: ErrorCategory
    suggested_fixes: tuple[ParameterFix, ...] = ()
    rate_limited: bool = False


@dataclass(frozen=True)
class RetryStrategy:
    """Decision taken by the retry strategist after a failure."""

    should_retry: bool
    reasoning: str
    retry_delay_ms: int
    attempt_count: int
    max_attempts: int
    adjusted_parameters: dict[str, Any] | None = None


@dataclass(frozen=True)
class AttemptRecord:
    """One pass through the validate/execute/verify loop."""

    attempt: int
    tool_name: str
    parameters: dict[str, Any]
    state: str
    success: bool
    elapsed_ms: int
    error: str | None = None
    failure_mode: FailureMode | None = None
    quality_score: int | None = None
    confidence: int | None = None


# -- Context store --


@dataclass(frozen=True)
class ExecutionMetrics:
    pixels_changed: int
    percentage_changed: float
    execution_time_ms: int
    quality_score: int


@dataclass(frozen=True)
class ToolExecutionRecord:
    """Persisted record of a successful, confident execution.

    Append-only; pruned by recency. Read by similarity search to calibrate
    future confidence.
    """

    tool_name: str
    parameters: dict[str, Any]
    success: bool
    confidence: int
    metrics: ExecutionMetrics
    image_specs: ImageSpecs
    timestamp: datetime
    conversation_id: str = ""


@dataclass(frozen=True)
class ConversationMessage:
    role: str  # user | assistant | system
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class ConversationContext:
    """Snapshot of everything stored for one conversation."""

    conversation_id: str
    created_at: datetime
    last_updated_at: datetime
    messages: tuple[ConversationMessage, ...] = ()
    image_ground_truth: ImageGroundTruth | None = None
    tool_executions: tuple[ToolExecutionRecord, ...] = ()


@dataclass(frozen=True)
class SimilarExecution:
    """A past record paired with its similarity to the current image."""

    record: ToolExecutionRecord
    similarity: float


@dataclass(frozen=True)
class ContextStats:
    conversations: int
    tool_executions: int
    failed_attempts: int
    messages: int
