"""Retry strategist: decide whether and how to retry a classified failure.

Policy by failure mode:
- non-recoverable: stop
- api_error with rate limiting: fixed longer delay, same parameters
- other api_error / timeout: exponential backoff, same parameters
- validation: apply parameter repairs, then backoff
- quality: apply directional tuning, then backoff
The attempt cap applies regardless of mode.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.recovery.backoff import RetryPolicy
from editguard.recovery.repair import repair_parameters
from editguard.shared.types import FailureMode, RetryStrategy

if TYPE_CHECKING:
    from editguard.shared.types import (
        AttemptRecord,
        FailureAnalysis,
        ImageGroundTruth,
        ParameterFix,
        ToolCall,
    )


class RetryStrategist:
    """Plan the next attempt after a failure."""

    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        scoring: ScoringConfig = DEFAULT_SCORING,
    ) -> None:
        self._scoring = scoring
        self._policy = policy or RetryPolicy.from_thresholds(scoring.recovery)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def plan(
        self,
        analysis: FailureAnalysis,
        call: ToolCall,
        ground_truth: ImageGroundTruth,
        attempt: int,
    ) -> RetryStrategy:
        """Plan after the failed attempt with 0-indexed number `attempt`."""
        p = self._policy
        attempts_made = attempt + 1

        def stop(reasoning: str) -> RetryStrategy:
            return RetryStrategy(
                should_retry=False,
                reasoning=reasoning,
                retry_delay_ms=0,
                attempt_count=attempts_made,
                max_attempts=p.max_attempts,
            )

        def retry(reasoning: str, delay_ms: int, adjusted: dict[str, Any] | None = None) -> RetryStrategy:
            return RetryStrategy(
                should_retry=True,
                reasoning=reasoning,
                retry_delay_ms=delay_ms,
                attempt_count=attempts_made,
                max_attempts=p.max_attempts,
                adjusted_parameters=adjusted,
            )

        if not analysis.recoverable:
            return stop(f"Non-recoverable failure: {analysis.root_cause}")
        if p.exhausted(attempts_made):
            return stop(f"Attempt cap of {p.max_attempts} reached: {analysis.root_cause}")

        backoff = p.delay_for_attempt(attempt)
        mode = analysis.failure_mode

        if mode is FailureMode.API_ERROR and analysis.rate_limited:
            return retry("API rate limit - retry with longer delay", p.rate_limit_delay_ms)
        if mode is FailureMode.API_ERROR:
            return retry("Network/API error - retry with exponential backoff", backoff)
        if mode is FailureMode.TIMEOUT:
            return retry("Timeout - retry with same parameters", backoff)
        if mode is FailureMode.EXECUTION:
            return retry(f"Execution failed ({analysis.root_cause}) - retry with same parameters", backoff)

        if mode is FailureMode.VALIDATION:
            adjusted = self.apply_fixes(call, analysis.suggested_fixes, ground_truth)
            if adjusted == call.parameters:
                return stop(f"No parameter repair available: {analysis.root_cause}")
            reasons = "; ".join(f.reason for f in analysis.suggested_fixes) or analysis.root_cause
            return retry(f"Adjusted parameters: {reasons}", backoff, adjusted)

        if mode is FailureMode.QUALITY:
            adjusted = self.apply_fixes(call, analysis.suggested_fixes, ground_truth)
            if adjusted == call.parameters:
                # generative tools may still land on a different result
                return retry(f"Quality below threshold ({analysis.root_cause}) - retry as is", backoff)
            return retry("Tweaked parameters to improve quality based on failure analysis", backoff, adjusted)

        return stop("Unknown failure mode - cannot determine retry strategy")

    def apply_fixes(
        self,
        call: ToolCall,
        fixes: Sequence[ParameterFix],
        ground_truth: ImageGroundTruth,
    ) -> dict[str, Any]:
        """Parameters with every fix applied; fixes without a value are derived from ground truth."""
        return repair_parameters(call, fixes, ground_truth, self._scoring)


def retry_statistics(attempts: Sequence[AttemptRecord]) -> dict[str, int]:
    """Summary counters over the attempts of one call."""
    total = len(attempts)
    successful = sum(1 for a in attempts if a.success)
    total_time = sum(a.elapsed_ms for a in attempts)
    return {
        "total_attempts": total,
        "successful_attempts": successful,
        "failed_attempts": total - successful,
        "success_rate": round(successful / total * 100) if total else 0,
        "avg_execution_time_ms": round(total_time / total) if total else 0,
        "total_execution_time_ms": total_time,
    }
