"""Failure classifier: turn any stage failure into a FailureAnalysis.

- Validation failures use typed issue codes and carry the validator's repairs
- Quality failures pick a tuning direction from the measured change
- Exceptions map through the error hierarchy first, message heuristics second
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.recovery.repair import has_repair
from editguard.shared.errors import (
    ErrorCategory,
    ImageDecodeError,
    PortTimeoutError,
    PortUnavailableError,
    RateLimitedError,
    ToolExecutionError,
    UnknownToolError,
)
from editguard.shared.types import FailureAnalysis, FailureMode, IssueCode, ParameterFix
from editguard.tools.catalog import TOOL_CATALOG

if TYPE_CHECKING:
    from editguard.shared.types import (
        ExecutionOutcome,
        ImageGroundTruth,
        ResultVerdict,
        ToolCall,
        ValidationIssue,
        ValidationVerdict,
    )
    from editguard.tools.catalog import ToolSpec

logger = logging.getLogger(__name__)

_ROOT_CAUSES: dict[IssueCode, str] = {
    IssueCode.COLOR_NOT_FOUND: "Color does not exist in image",
    IssueCode.TOLERANCE_MISMATCH: "Tolerance inappropriate for image characteristics",
    IssueCode.OUT_OF_BOUNDS: "Coordinates or dimensions out of bounds",
    IssueCode.PALETTE_INDEX: "Palette index outside the image's dominant colors",
    IssueCode.EXCESSIVE_COUNT: "Parameter count exceeds reasonable limits",
    IssueCode.EXTENT_TOO_HIGH: "Operation would affect too much of the image",
    IssueCode.EXTENT_TOO_LOW: "Operation would affect too little of the image",
    IssueCode.OUTPUT_TOO_LARGE: "Output dimensions exceed limits",
    IssueCode.UNSUPPORTED_OPTION: "Option not supported for this image",
}

_SCHEMA_CODES = frozenset({IssueCode.SCHEMA, IssueCode.UNKNOWN_TOOL})

_RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests")
_TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout")
_NETWORK_MARKERS = ("network", "connection", "econnrefused", "enotfound", "fetch")
_MEMORY_MARKERS = ("memory", "heap")


def _rate_limited(root_cause: str) -> FailureAnalysis:
    return FailureAnalysis(
        failure_mode=FailureMode.API_ERROR,
        root_cause=root_cause,
        recoverable=True,
        category=ErrorCategory.API_ERROR,
        rate_limited=True,
    )


def _timeout(root_cause: str) -> FailureAnalysis:
    return FailureAnalysis(
        failure_mode=FailureMode.TIMEOUT,
        root_cause=root_cause,
        recoverable=True,
        category=ErrorCategory.TIMEOUT,
    )


def _network(root_cause: str) -> FailureAnalysis:
    return FailureAnalysis(
        failure_mode=FailureMode.API_ERROR,
        root_cause=root_cause,
        recoverable=True,
        category=ErrorCategory.API_ERROR,
    )


def _execution(root_cause: str, *, recoverable: bool) -> FailureAnalysis:
    return FailureAnalysis(
        failure_mode=FailureMode.EXECUTION,
        root_cause=root_cause,
        recoverable=recoverable,
        category=ErrorCategory.EXECUTION_FAILURE,
    )


def classify_message(message: str, *, default_recoverable: bool) -> FailureAnalysis:
    """Heuristic classification of a free-text error message."""
    lowered = message.lower()
    if any(m in lowered for m in _RATE_LIMIT_MARKERS):
        return _rate_limited("API rate limit exceeded")
    if any(m in lowered for m in _TIMEOUT_MARKERS):
        return _timeout("Operation timed out")
    if any(m in lowered for m in _MEMORY_MARKERS):
        return _execution("Out of memory", recoverable=False)
    if any(m in lowered for m in _NETWORK_MARKERS):
        return _network("Network error")
    return _execution(message or "Tool execution failed", recoverable=default_recoverable)


class FailureClassifier:
    """Classify validation, execution and quality failures."""

    def __init__(self, *, scoring: ScoringConfig = DEFAULT_SCORING) -> None:
        self._scoring = scoring

    # -- validation --

    def from_validation(
        self,
        verdict: ValidationVerdict,
        call: ToolCall,
        ground_truth: ImageGroundTruth | None = None,
    ) -> FailureAnalysis:
        blocking = [i for i in verdict.issues if i.blocking]
        first_error = verdict.errors[0] if verdict.errors else "Validation failed"

        if any(i.code is IssueCode.UNKNOWN_TOOL for i in blocking):
            return FailureAnalysis(
                failure_mode=FailureMode.VALIDATION,
                root_cause=first_error,
                recoverable=False,
                category=ErrorCategory.SCHEMA_ERROR,
            )

        fixes = self._validation_fixes(verdict, call, blocking)
        if blocking and all(i.code in _SCHEMA_CODES for i in blocking):
            # malformed calls are only worth retrying once repaired
            return FailureAnalysis(
                failure_mode=FailureMode.VALIDATION,
                root_cause=f"Malformed call: {first_error}",
                recoverable=has_repair(call, fixes, ground_truth, self._scoring),
                category=ErrorCategory.SCHEMA_ERROR,
                suggested_fixes=fixes,
            )

        # recoverable only when a retry would run with different parameters
        code = blocking[0].code if blocking else None
        return FailureAnalysis(
            failure_mode=FailureMode.VALIDATION,
            root_cause=_ROOT_CAUSES.get(code, first_error) if code else first_error,
            recoverable=has_repair(call, fixes, ground_truth, self._scoring),
            category=ErrorCategory.GROUND_TRUTH_MISMATCH,
            suggested_fixes=fixes,
        )

    def _validation_fixes(
        self,
        verdict: ValidationVerdict,
        call: ToolCall,
        blocking: list[ValidationIssue],
    ) -> tuple[ParameterFix, ...]:
        reasons = {i.parameter: i.message for i in blocking if i.parameter}
        fixes: dict[str, ParameterFix] = {}
        if verdict.adjusted_parameters:
            for name, value in verdict.adjusted_parameters.items():
                current = call.parameters.get(name)
                if value != current:
                    fixes[name] = ParameterFix(
                        parameter=name,
                        current_value=current,
                        suggested_value=value,
                        reason=reasons.get(name, "Adjusted by validator"),
                    )
        for issue in blocking:
            if issue.parameter is None or issue.parameter in fixes:
                continue
            # no concrete suggestion: the strategist derives one from ground truth
            fixes[issue.parameter] = ParameterFix(
                parameter=issue.parameter,
                current_value=call.parameters.get(issue.parameter, issue.current_value),
                suggested_value=issue.suggested_value,
                reason=issue.message,
            )
        return tuple(fixes.values())

    # -- quality --

    def from_quality(
        self,
        verdict: ResultVerdict,
        call: ToolCall,
        before: ImageGroundTruth,
        after: ImageGroundTruth,
    ) -> FailureAnalysis:
        r = self._scoring.recovery
        results = self._scoring.results
        spec = TOOL_CATALOG.get(call.tool_name)
        pct = verdict.percentage_changed

        if pct > r.excessive_change_pct and not verdict.dimensions_changed:
            return FailureAnalysis(
                failure_mode=FailureMode.QUALITY,
                root_cause=f"Tool changed too much of the image ({pct:.1f}% > {r.excessive_change_pct:g}%)",
                recoverable=True,
                category=ErrorCategory.QUALITY_FAILURE,
                suggested_fixes=self._tuning_fixes(spec, call, direction=-1, reason="Affect fewer pixels"),
            )

        if pct < r.insufficient_change_pct and not verdict.dimensions_changed:
            return FailureAnalysis(
                failure_mode=FailureMode.QUALITY,
                root_cause=f"Tool changed too little of the image ({pct:.2f}% < {r.insufficient_change_pct:g}%)",
                recoverable=True,
                category=ErrorCategory.QUALITY_FAILURE,
                suggested_fixes=self._tuning_fixes(spec, call, direction=1, reason="Affect more pixels"),
            )

        if after.sharpness_score < before.sharpness_score - results.sharpness_drop:
            return FailureAnalysis(
                failure_mode=FailureMode.QUALITY,
                root_cause=(
                    f"Result quality degraded significantly (sharpness {before.sharpness_score:.0f} "
                    f"-> {after.sharpness_score:.0f})"
                ),
                recoverable=False,
                category=ErrorCategory.QUALITY_FAILURE,
            )

        return FailureAnalysis(
            failure_mode=FailureMode.QUALITY,
            root_cause=verdict.reasoning or f"Quality score {verdict.quality_score} below threshold",
            recoverable=True,
            category=ErrorCategory.QUALITY_FAILURE,
        )

    def _tuning_fixes(
        self,
        spec: ToolSpec | None,
        call: ToolCall,
        *,
        direction: int,
        reason: str,
    ) -> tuple[ParameterFix, ...]:
        if spec is None:
            return ()
        r = self._scoring.recovery
        fixes: list[ParameterFix] = []
        if spec.tolerance_param:
            fix = _step(spec, call.parameters, spec.tolerance_param, direction * r.tolerance_step, r.tolerance_bounds, reason)
            if fix:
                fixes.append(fix)
        if spec.intensity_param and spec.intensity_param != spec.tolerance_param:
            fix = _step(spec, call.parameters, spec.intensity_param, direction * r.intensity_step, r.intensity_bounds, reason)
            if fix:
                fixes.append(fix)
        return tuple(fixes)

    # -- execution --

    def from_exception(self, exc: BaseException) -> FailureAnalysis:
        if isinstance(exc, RateLimitedError):
            return _rate_limited(f"API rate limit exceeded: {exc}")
        if isinstance(exc, (PortTimeoutError, asyncio.TimeoutError)):
            return _timeout(str(exc) or "Operation timed out")
        if isinstance(exc, UnknownToolError):
            return FailureAnalysis(
                failure_mode=FailureMode.VALIDATION,
                root_cause=str(exc),
                recoverable=False,
                category=ErrorCategory.SCHEMA_ERROR,
            )
        if isinstance(exc, ImageDecodeError):
            return _execution(str(exc), recoverable=False)
        if isinstance(exc, MemoryError):
            return _execution("Out of memory", recoverable=False)
        if isinstance(exc, ToolExecutionError):
            if exc.status_code is not None and exc.status_code >= 500:
                analysis = classify_message(str(exc), default_recoverable=True)
                if analysis.failure_mode is FailureMode.EXECUTION and analysis.recoverable:
                    return _network(f"Tool service error ({exc.status_code}): {exc}")
                return analysis
            return classify_message(str(exc), default_recoverable=exc.recoverable)
        if isinstance(exc, (PortUnavailableError, ConnectionError)):
            return _network(f"Network error: {exc}")
        return classify_message(str(exc) or type(exc).__name__, default_recoverable=False)

    def from_outcome(self, outcome: ExecutionOutcome) -> FailureAnalysis:
        if outcome.success and not outcome.result_ref:
            return _execution("Tool execution returned no result", recoverable=True)
        return classify_message(outcome.error or "Tool execution failed", default_recoverable=True)


def _step(
    spec: ToolSpec,
    parameters: dict[str, Any],
    name: str,
    delta: float,
    bounds: tuple[float, float],
    reason: str,
) -> ParameterFix | None:
    current = spec.value_of(parameters, name)
    if not isinstance(current, (int, float)) or isinstance(current, bool):
        return None
    low, high = bounds
    suggested = round(min(high, max(low, current + delta)), 4)
    if suggested == current:
        return None
    return ParameterFix(parameter=name, current_value=current, suggested_value=suggested, reason=reason)
