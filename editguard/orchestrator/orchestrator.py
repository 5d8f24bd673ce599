"""Tool-call orchestrator: the validate → execute → verify → retry loop.

Per call:
  load image → analyze → validate (reject early if invalid) → dispatch →
  verify result → store on success; any failure is classified and the
  retry strategist decides whether another attempt is worth making.

Per chain: calls run strictly in order, each call's output image feeding
the next; the chain stops at the first failed call and keeps the results
of the calls already completed.

Every suspension point (image store, analysis, dispatcher, context store)
is awaited under an explicit deadline. Cancellation is checked between
calls and between attempts, never during a dispatcher call. No exception
escapes: every failure is reported as a typed outcome.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.analysis.imaging import DecodedImage, decode_image
from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.config.settings import StageTimeouts
from editguard.orchestrator.confidence import aggregate_confidence
from editguard.orchestrator.state_machine import AttemptMachine
from editguard.recovery.classifier import FailureClassifier
from editguard.recovery.strategist import RetryStrategist
from editguard.recovery.timeout import execute_with_timeout
from editguard.shared.logging import log_structured_error
from editguard.shared.run_context import get_run_id, run_context
from editguard.shared.types import (
    AttemptRecord,
    ExecutionMetrics,
    ToolExecutionRecord,
)
from editguard.tools.catalog import TOOL_CATALOG
from editguard.validation.validator import ParameterValidator
from editguard.verification.result_validator import ResultValidator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Sequence

    from editguard.metrics.sli import PipelineSLI
    from editguard.ports.context_store_port import ContextStorePort
    from editguard.ports.dispatcher_port import ToolDispatcherPort
    from editguard.ports.image_store_port import ImageStorePort
    from editguard.shared.types import (
        ConversationContext,
        ExecutionOutcome,
        FailureAnalysis,
        ImageGroundTruth,
        ResultVerdict,
        SimilarExecution,
        ToolCall,
        ValidationVerdict,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallOutcome:
    """Final outcome of one tool call after all attempts."""

    success: bool
    tool_name: str
    parameters: dict[str, Any]
    confidence: int
    attempts: tuple[AttemptRecord, ...]
    reasoning: str
    validation: ValidationVerdict | None = None
    result: ResultVerdict | None = None
    result_ref: str | None = None
    error: str | None = None
    failure: FailureAnalysis | None = None
    data: dict[str, Any] | None = None
    cancelled: bool = False


@dataclass(frozen=True)
class ChainResult:
    """Outcome of a sequence of tool calls."""

    success: bool
    per_call_results: tuple[ResultVerdict, ...]
    calls: tuple[CallOutcome, ...]
    overall_confidence: int
    final_image_ref: str
    cancelled: bool = False
    error: str | None = None


@dataclass(frozen=True)
class _AttemptResult:
    parameters: dict[str, Any]
    validation: ValidationVerdict | None = None
    execution: ExecutionOutcome | None = None
    verdict: ResultVerdict | None = None
    failure: FailureAnalysis | None = None


class ToolCallOrchestrator:
    """Runs agent-proposed tool calls through the guarded pipeline.

    All collaborators are injected; the orchestrator owns no global state.
    """

    def __init__(
        self,
        *,
        images: ImageStorePort,
        dispatcher: ToolDispatcherPort,
        store: ContextStorePort,
        scoring: ScoringConfig = DEFAULT_SCORING,
        timeouts: StageTimeouts | None = None,
        analyzer: GroundTruthAnalyzer | None = None,
        validator: ParameterValidator | None = None,
        result_validator: ResultValidator | None = None,
        classifier: FailureClassifier | None = None,
        strategist: RetryStrategist | None = None,
        sli: PipelineSLI | None = None,
    ) -> None:
        self._images = images
        self._dispatcher = dispatcher
        self._store = store
        self._scoring = scoring
        self._timeouts = timeouts or StageTimeouts()
        self._analyzer = analyzer or GroundTruthAnalyzer(scoring=scoring)
        self._validator = validator or ParameterValidator(scoring=scoring)
        self._result_validator = result_validator or ResultValidator(analyzer=self._analyzer, scoring=scoring)
        self._classifier = classifier or FailureClassifier(scoring=scoring)
        self._strategist = strategist or RetryStrategist(scoring=scoring)
        self._sli = sli

    # -- public API --

    async def run_chain(
        self,
        calls: Sequence[ToolCall],
        image_ref: str,
        *,
        conversation_id: str,
        context: ConversationContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ChainResult:
        """Run calls in order; call n+1 operates on call n's output image."""
        with run_context(conversation_id, run_id=get_run_id() or None):
            try:
                return await self._run_chain(calls, image_ref, conversation_id, context, cancel_event)
            except Exception as exc:
                log_structured_error(logger, exc, stage="orchestrator", context={"calls": len(calls)})
                return ChainResult(
                    success=False,
                    per_call_results=(),
                    calls=(),
                    overall_confidence=0,
                    final_image_ref=image_ref,
                    error=f"Internal error: {exc}",
                )

    async def execute_with_retry(
        self,
        call: ToolCall,
        image_ref: str,
        *,
        conversation_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> CallOutcome:
        """Run one call through validation, execution and verification with retries."""
        with run_context(conversation_id, run_id=get_run_id() or None), self._timer("call_duration"):
            try:
                return await self._execute(call, image_ref, conversation_id, cancel_event)
            except Exception as exc:
                log_structured_error(logger, exc, stage="orchestrator", context={"tool_name": call.tool_name})
                return CallOutcome(
                    success=False,
                    tool_name=call.tool_name,
                    parameters=dict(call.parameters),
                    confidence=0,
                    attempts=(),
                    reasoning=f"Internal error while running {call.tool_name}",
                    error=f"Internal error: {exc}",
                )

    # -- chain --

    async def _run_chain(
        self,
        calls: Sequence[ToolCall],
        image_ref: str,
        conversation_id: str,
        context: ConversationContext | None,
        cancel_event: asyncio.Event | None,
    ) -> ChainResult:
        if not calls:
            return ChainResult(
                success=False,
                per_call_results=(),
                calls=(),
                overall_confidence=0,
                final_image_ref=image_ref,
                error="No tool calls to execute",
            )
        if context is not None:
            await self._seed_context(conversation_id, context)

        current_ref = image_ref
        outcomes: list[CallOutcome] = []
        cancelled = False
        error: str | None = None

        for index, call in enumerate(calls):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                error = f"Cancelled before call {index + 1} of {len(calls)}"
                break
            outcome = await self.execute_with_retry(
                call,
                current_ref,
                conversation_id=conversation_id,
                cancel_event=cancel_event,
            )
            outcomes.append(outcome)
            if outcome.cancelled:
                cancelled = True
                error = outcome.error
                break
            if not outcome.success:
                error = f"Call {index + 1} ({call.tool_name}) failed: {outcome.error or outcome.reasoning}"
                break
            if outcome.result_ref:
                current_ref = outcome.result_ref

        scores: list[float] = []
        for o in outcomes:
            if o.validation is not None:
                scores.append(o.validation.confidence)
            if o.result is not None:
                scores.append(o.result.quality_score)
            if o.validation is None and o.result is None:
                scores.append(0)

        success = error is None and not cancelled and len(outcomes) == len(calls)
        if not success:
            logger.info("Chain stopped after %d of %d calls: %s", len(outcomes), len(calls), error)
        return ChainResult(
            success=success,
            per_call_results=tuple(o.result for o in outcomes if o.success and o.result is not None),
            calls=tuple(outcomes),
            overall_confidence=aggregate_confidence(scores, call_count=len(calls), thresholds=self._scoring.chain),
            final_image_ref=current_ref,
            cancelled=cancelled,
            error=error,
        )

    async def _seed_context(self, conversation_id: str, context: ConversationContext) -> None:
        existing = await self._store_call(
            lambda: self._store.get_context(conversation_id),
            op="get_context",
            default=None,
        )
        if existing is not None:
            return
        for message in context.messages:
            await self._store_call(
                lambda m=message: self._store.record_turn(conversation_id, m),
                op="record_turn",
                default=None,
            )

    # -- single call --

    async def _execute(
        self,
        call: ToolCall,
        image_ref: str,
        conversation_id: str,
        cancel_event: asyncio.Event | None,
    ) -> CallOutcome:
        started = time.monotonic()
        try:
            decoded, ground_truth = await self._prepare(image_ref)
        except Exception as exc:
            failure = self._classifier.from_exception(exc)
            logger.warning("Could not prepare %s for %s: %s", image_ref, call.tool_name, failure.root_cause)
            attempt = AttemptRecord(
                attempt=1,
                tool_name=call.tool_name,
                parameters=dict(call.parameters),
                state="validating",
                success=False,
                elapsed_ms=_elapsed_ms(started),
                error=failure.root_cause,
                failure_mode=failure.failure_mode,
            )
            await self._store_call(
                lambda: self._store.record_failure(conversation_id, attempt),
                op="record_failure",
                default=None,
            )
            return CallOutcome(
                success=False,
                tool_name=call.tool_name,
                parameters=dict(call.parameters),
                confidence=0,
                attempts=(attempt,),
                reasoning=f"Could not prepare source image: {failure.root_cause}",
                error=failure.root_cause,
                failure=failure,
            )

        await self._store_call(
            lambda: self._store.remember_ground_truth(conversation_id, ground_truth),
            op="remember_ground_truth",
            default=None,
        )
        history: list[SimilarExecution] = await self._store_call(
            lambda: self._store.find_similar(call.tool_name, ground_truth, self._scoring.storage.similar_limit),
            op="find_similar",
            default=[],
        )

        machine = AttemptMachine(max_attempts=self._strategist.policy.max_attempts)
        attempts: list[AttemptRecord] = []
        current = call

        while True:
            attempt_started = time.monotonic()
            result = await self._attempt(machine, current, image_ref, decoded, ground_truth, history)
            elapsed = _elapsed_ms(attempt_started)
            validation = result.validation
            verdict = result.verdict

            if result.failure is None and validation is not None and verdict is not None:
                machine.succeed()
                confidence = min(validation.confidence, verdict.quality_score)
                attempts.append(
                    AttemptRecord(
                        attempt=machine.attempt,
                        tool_name=current.tool_name,
                        parameters=dict(result.parameters),
                        state=machine.state.value,
                        success=True,
                        elapsed_ms=elapsed,
                        quality_score=verdict.quality_score,
                        confidence=confidence,
                    )
                )
                self._count("attempts", outcome="succeeded")
                await self._persist(conversation_id, current.tool_name, result, confidence, elapsed, ground_truth)
                logger.info(
                    "%s succeeded on attempt %d (confidence %d%%)",
                    current.tool_name,
                    machine.attempt,
                    confidence,
                )
                return CallOutcome(
                    success=True,
                    tool_name=current.tool_name,
                    parameters=dict(result.parameters),
                    confidence=confidence,
                    attempts=tuple(attempts),
                    reasoning=verdict.reasoning,
                    validation=validation,
                    result=verdict,
                    result_ref=result.execution.result_ref if result.execution else None,
                    data=result.execution.data if result.execution else None,
                )

            failure = result.failure
            assert failure is not None
            self._count("failures", mode=failure.failure_mode.value)
            quality = verdict.quality_score if verdict is not None else None
            failed_attempt = AttemptRecord(
                attempt=machine.attempt,
                tool_name=current.tool_name,
                parameters=dict(result.parameters),
                state=machine.state.value,
                success=False,
                elapsed_ms=elapsed,
                error=failure.root_cause,
                failure_mode=failure.failure_mode,
                quality_score=quality,
                confidence=validation.confidence if validation is not None else None,
            )
            attempts.append(failed_attempt)
            await self._store_call(
                lambda: self._store.record_failure(conversation_id, failed_attempt),
                op="record_failure",
                default=None,
            )

            strategy = self._strategist.plan(failure, current, ground_truth, machine.attempt - 1)
            confidence = _failure_confidence(validation, verdict)

            if not strategy.should_retry or machine.attempts_remaining <= 0:
                machine.fail(reason=strategy.reasoning)
                self._count("attempts", outcome="failed")
                logger.info("%s failed after %d attempt(s): %s", current.tool_name, len(attempts), strategy.reasoning)
                return CallOutcome(
                    success=False,
                    tool_name=current.tool_name,
                    parameters=dict(result.parameters),
                    confidence=confidence,
                    attempts=tuple(attempts),
                    reasoning=strategy.reasoning,
                    validation=validation,
                    result=verdict,
                    error=failure.root_cause,
                    failure=failure,
                )

            machine.schedule_retry(reason=strategy.reasoning)
            self._count("attempts", outcome="retried")
            logger.info(
                "Retrying %s in %dms (attempt %d/%d): %s",
                current.tool_name,
                strategy.retry_delay_ms,
                machine.attempt + 1,
                machine.max_attempts,
                strategy.reasoning,
            )
            if await _pause(strategy.retry_delay_ms, cancel_event):
                machine.fail(reason="cancelled")
                return CallOutcome(
                    success=False,
                    tool_name=current.tool_name,
                    parameters=dict(result.parameters),
                    confidence=confidence,
                    attempts=tuple(attempts),
                    reasoning=f"Cancelled while retrying: {strategy.reasoning}",
                    validation=validation,
                    result=verdict,
                    error="Cancelled",
                    failure=failure,
                    cancelled=True,
                )
            if strategy.adjusted_parameters is not None:
                current = current.with_parameters(strategy.adjusted_parameters)
            machine.next_attempt()

    async def _prepare(self, image_ref: str) -> tuple[DecodedImage, ImageGroundTruth]:
        t = self._timeouts
        data = await execute_with_timeout(lambda: self._images.load(image_ref), t.image_load, stage="image_load")
        with self._timer("analysis_duration"):
            decoded = await execute_with_timeout(
                lambda: asyncio.to_thread(decode_image, data),
                t.analysis,
                stage="analysis",
            )
            ground_truth = await execute_with_timeout(
                lambda: asyncio.to_thread(self._analyzer.analyze_decoded, decoded),
                t.analysis,
                stage="analysis",
            )
        return decoded, ground_truth

    async def _attempt(
        self,
        machine: AttemptMachine,
        call: ToolCall,
        image_ref: str,
        decoded: DecodedImage,
        ground_truth: ImageGroundTruth,
        history: list[SimilarExecution],
    ) -> _AttemptResult:
        t = self._timeouts
        params = dict(call.parameters)

        try:
            with self._timer("validation_duration"):
                validation = await execute_with_timeout(
                    lambda: asyncio.to_thread(
                        self._validator.validate,
                        call,
                        ground_truth,
                        pixels=decoded.pixels,
                        history=history,
                    ),
                    t.analysis,
                    stage="validation",
                )
        except Exception as exc:
            return _AttemptResult(params, failure=self._classifier.from_exception(exc))

        if not validation.is_valid:
            logger.info("Rejected %s: %s", call.tool_name, "; ".join(validation.errors))
            return _AttemptResult(
                params,
                validation=validation,
                failure=self._classifier.from_validation(validation, call, ground_truth),
            )
        for warning in validation.warnings:
            logger.info("%s warning: %s", call.tool_name, warning)

        exec_params = dict(validation.adjusted_parameters or params)
        machine.execute()
        try:
            with self._timer("dispatch_duration"):
                execution = await execute_with_timeout(
                    lambda: self._dispatcher.execute(call.tool_name, exec_params, image_ref),
                    t.dispatch,
                    stage="dispatch",
                )
        except Exception as exc:
            return _AttemptResult(exec_params, validation=validation, failure=self._classifier.from_exception(exc))

        spec = TOOL_CATALOG.get(call.tool_name)
        informational = spec is not None and spec.informational
        if not execution.success or (not informational and not execution.result_ref):
            return _AttemptResult(
                exec_params,
                validation=validation,
                execution=execution,
                failure=self._classifier.from_outcome(execution),
            )

        machine.verify()
        if informational:
            verification = self._result_validator.inspect(
                decoded,
                None,
                call.tool_name,
                exec_params,
                before_truth=ground_truth,
            )
            return _AttemptResult(exec_params, validation=validation, execution=execution, verdict=verification.verdict)

        result_ref = execution.result_ref
        assert result_ref is not None
        try:
            after = await execute_with_timeout(lambda: self._images.load(result_ref), t.image_load, stage="image_load")
            with self._timer("verification_duration"):
                verification = await execute_with_timeout(
                    lambda: asyncio.to_thread(
                        self._result_validator.inspect,
                        decoded,
                        after,
                        call.tool_name,
                        exec_params,
                        before_truth=ground_truth,
                    ),
                    t.analysis,
                    stage="verification",
                )
        except Exception as exc:
            return _AttemptResult(
                exec_params,
                validation=validation,
                execution=execution,
                failure=self._classifier.from_exception(exc),
            )

        verdict = verification.verdict
        if not verdict.success or verdict.quality_score < self._scoring.recovery.min_quality_score:
            logger.info(
                "%s result rejected (quality %d): %s",
                call.tool_name,
                verdict.quality_score,
                verdict.reasoning,
            )
            return _AttemptResult(
                exec_params,
                validation=validation,
                execution=execution,
                verdict=verdict,
                failure=self._classifier.from_quality(
                    verdict,
                    call.with_parameters(exec_params),
                    ground_truth,
                    verification.after,
                ),
            )
        return _AttemptResult(exec_params, validation=validation, execution=execution, verdict=verdict)

    async def _persist(
        self,
        conversation_id: str,
        tool_name: str,
        result: _AttemptResult,
        confidence: int,
        elapsed_ms: int,
        ground_truth: ImageGroundTruth,
    ) -> None:
        verdict = result.verdict
        assert verdict is not None
        record = ToolExecutionRecord(
            tool_name=tool_name,
            parameters=dict(result.parameters),
            success=True,
            confidence=confidence,
            metrics=ExecutionMetrics(
                pixels_changed=verdict.pixels_changed,
                percentage_changed=verdict.percentage_changed,
                execution_time_ms=elapsed_ms,
                quality_score=verdict.quality_score,
            ),
            image_specs=ground_truth.specs(),
            timestamp=datetime.now(UTC),
            conversation_id=conversation_id,
        )
        stored = await self._store_call(
            lambda: self._store.store(conversation_id, record),
            op="store",
            default=None,
        )
        status = "failed" if stored is None else ("stored" if stored else "skipped")
        self._count("store_writes", status=status)

    # -- helpers --

    async def _store_call(self, fn: Callable[[], Awaitable[Any]], *, op: str, default: Any) -> Any:
        """Context store access that never raises; deadline misses return default."""
        try:
            return await execute_with_timeout(fn, self._timeouts.store, stage="store")
        except Exception:
            logger.warning("Context store %s failed", op, exc_info=True)
            return default

    @contextlib.contextmanager
    def _timer(self, metric: str) -> Iterator[None]:
        if self._sli is None:
            yield
            return
        with self._sli.timer(getattr(self._sli, metric)):
            yield

    def _count(self, metric: str, **labels: str) -> None:
        if self._sli is not None:
            getattr(self._sli, metric).labels(**labels).inc()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _failure_confidence(validation: ValidationVerdict | None, verdict: ResultVerdict | None) -> int:
    scores = [s for s in (validation.confidence if validation else None, verdict.quality_score if verdict else None) if s is not None]
    return min(scores) if scores else 0


async def _pause(delay_ms: int, cancel_event: asyncio.Event | None) -> bool:
    """Sleep between attempts; returns True if cancelled meanwhile."""
    if cancel_event is None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
        return False
    if cancel_event.is_set():
        return True
    if delay_ms <= 0:
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_ms / 1000)
    except asyncio.TimeoutError:
        return False
    return True
