"""Tests for ToolCallOrchestrator.

- Hallucinated parameters are repaired before the dispatcher ever sees them
- Claimed-but-absent transparency is caught and retried up to the cap
- Non-recoverable failures stop after one attempt
- Validation failures are retried only when a repair changes the parameters
- Chains feed each call's output image into the next and stop at the first failure
- Cancellation, deadlines and broken stores never raise out of the orchestrator
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.config.scoring import DEFAULT_SCORING
from editguard.config.settings import StageTimeouts
from editguard.context.memory_store import InMemoryContextStore
from editguard.infra.images.memory import InMemoryImageStore
from editguard.metrics.sli import PipelineSLI
from editguard.orchestrator.orchestrator import ToolCallOrchestrator
from editguard.recovery.backoff import RetryPolicy
from editguard.recovery.strategist import RetryStrategist
from editguard.shared.errors import RateLimitedError, ToolExecutionError
from editguard.shared.types import (
    ConversationContext,
    ConversationMessage,
    FailureMode,
    ToolCall,
)
from tests.fakes.context_store import BrokenContextStore
from tests.fakes.dispatcher import FakeToolDispatcher, double_size, invert_rgb, knock_out_colors
from tests.fakes.images import GREEN, RED, knockout_call

_TRANSFORMS = {
    "color_knockout": knock_out_colors,
    "background_remover": invert_rgb,
    "upscaler": double_size,
    "smart_resize": double_size,
}


def _red_to_blue(pixels: np.ndarray, parameters: dict[str, Any]) -> np.ndarray:
    red = (pixels[..., 0] == 255) & (pixels[..., 1] == 0) & (pixels[..., 2] == 0)
    pixels[red, :3] = (0, 0, 255)
    return pixels


@pytest.fixture
def store() -> InMemoryContextStore:
    return InMemoryContextStore()


@pytest.fixture
async def source_ref(images: InMemoryImageStore, design_png: bytes) -> str:
    return await images.save(design_png)


def _orchestrator(
    images: InMemoryImageStore,
    dispatcher: FakeToolDispatcher,
    store: object,
    **kwargs: object,
) -> ToolCallOrchestrator:
    kwargs.setdefault("strategist", RetryStrategist(policy=RetryPolicy(base_delay_ms=0, rate_limit_delay_ms=0)))
    return ToolCallOrchestrator(images=images, dispatcher=dispatcher, store=store, **kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
class TestSingleCall:
    async def test_valid_knockout_succeeds_first_time(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is True
        assert len(outcome.attempts) == 1
        assert outcome.attempts[0].state == "succeeded"
        assert outcome.result is not None
        assert outcome.result.percentage_changed == pytest.approx(30.25, abs=0.01)
        assert outcome.confidence == min(outcome.validation.confidence, outcome.result.quality_score)  # type: ignore[union-attr]
        assert outcome.confidence >= 70
        assert outcome.result_ref is not None
        assert await images.exists(outcome.result_ref)

    async def test_success_is_indexed_with_ground_truth(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        orch = _orchestrator(images, FakeToolDispatcher(images, transforms=_TRANSFORMS), store)
        await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        context = await store.get_context("c1")
        assert context is not None
        assert context.image_ground_truth is not None
        assert context.image_ground_truth.width == 100
        assert (await store.stats()).tool_executions == 1

    async def test_hallucinated_color_repaired_before_dispatch(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(GREEN), source_ref, conversation_id="c1")

        assert outcome.success is True
        assert len(outcome.attempts) == 2
        assert outcome.attempts[0].failure_mode is FailureMode.VALIDATION
        assert outcome.attempts[0].state == "validating"
        assert len(dispatcher.calls) == 1
        assert all(c != GREEN for c in dispatcher.calls[0][1]["colors"])
        failures = await store.get_failures("c1")
        assert len(failures) == 1

    async def test_palette_index_clamped_and_retried(
        self,
        images: InMemoryImageStore,
        store: InMemoryContextStore,
        source_ref: str,
        analyzer: GroundTruthAnalyzer,
        design_png: bytes,
    ) -> None:
        palette_size = len(analyzer.analyze(design_png).dominant_colors)
        dispatcher = FakeToolDispatcher(images, transforms={"recolor_image": _red_to_blue})
        orch = _orchestrator(images, dispatcher, store)
        call = ToolCall("recolor_image", {"colorMappings": [{"originalIndex": 50, "newColor": "#00FF00"}]})

        outcome = await orch.execute_with_retry(call, source_ref, conversation_id="c1")

        assert len(outcome.attempts) >= 2
        assert outcome.attempts[0].failure_mode is FailureMode.VALIDATION
        assert "Palette index" in (outcome.attempts[0].error or "")
        assert dispatcher.calls
        assert dispatcher.calls[0][1]["colorMappings"][0]["originalIndex"] == palette_size - 1

    async def test_unrepairable_validation_failure_stops_as_non_recoverable(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        # even 1x output exceeds the limit, so no scale factor can be suggested
        scoring = replace(DEFAULT_SCORING, validation=replace(DEFAULT_SCORING.validation, max_output_megapixels=0.001))
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store, scoring=scoring)

        outcome = await orch.execute_with_retry(ToolCall("upscaler", {"scaleFactor": 2}), source_ref, conversation_id="c1")

        assert outcome.success is False
        assert len(outcome.attempts) == 1
        assert outcome.failure is not None
        assert outcome.failure.failure_mode is FailureMode.VALIDATION
        assert outcome.failure.recoverable is False
        assert dispatcher.calls == []

    async def test_false_transparency_retried_to_cap(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(ToolCall("background_remover"), source_ref, conversation_id="c1")

        assert outcome.success is False
        assert len(outcome.attempts) == 3
        assert len(dispatcher.calls) == 3
        assert outcome.failure is not None
        assert outcome.failure.failure_mode is FailureMode.QUALITY
        assert outcome.result is not None
        assert "Expected transparency but none was created" in outcome.result.warnings
        assert (await store.stats()).tool_executions == 0

    async def test_structural_change_succeeds(
        self, images: InMemoryImageStore, store: InMemoryContextStore, large_png: bytes
    ) -> None:
        ref = await images.save(large_png)
        orch = _orchestrator(images, FakeToolDispatcher(images, transforms=_TRANSFORMS), store)

        outcome = await orch.execute_with_retry(ToolCall("smart_resize", {"width": 1000}), ref, conversation_id="c1")

        assert outcome.success is True
        assert outcome.result is not None
        assert outcome.result.dimensions_changed is True
        assert outcome.result.percentage_changed == 100.0

    async def test_non_recoverable_error_stops_immediately(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        error = ToolExecutionError("color_knockout", "CUDA out of memory", recoverable=False)
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS, errors=[error])
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is False
        assert len(outcome.attempts) == 1
        assert outcome.failure is not None
        assert outcome.failure.recoverable is False
        assert outcome.attempts[0].state == "executing"

    async def test_rate_limit_then_success(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS, errors=[RateLimitedError("color_knockout")])
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is True
        assert len(outcome.attempts) == 2
        assert outcome.attempts[0].failure_mode is FailureMode.API_ERROR

    async def test_dispatch_deadline(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS, delay_s=0.5)
        orch = _orchestrator(images, dispatcher, store, timeouts=StageTimeouts(dispatch=0.02))

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is False
        assert outcome.failure is not None
        assert outcome.failure.failure_mode is FailureMode.TIMEOUT
        assert len(outcome.attempts) == 3

    async def test_unexpected_dispatcher_exception_is_contained(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS, errors=[RuntimeError("boom")])
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is False
        assert outcome.error == "boom"
        assert len(outcome.attempts) == 1

    async def test_missing_source_image(self, images: InMemoryImageStore, store: InMemoryContextStore) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(knockout_call(RED), "img_missing", conversation_id="c1")

        assert outcome.success is False
        assert outcome.reasoning.startswith("Could not prepare source image")
        assert dispatcher.calls == []

    async def test_broken_store_does_not_fail_call(self, images: InMemoryImageStore, source_ref: str) -> None:
        broken = BrokenContextStore()
        orch = _orchestrator(images, FakeToolDispatcher(images, transforms=_TRANSFORMS), broken)

        outcome = await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert outcome.success is True
        assert "store" in broken.calls

    async def test_informational_tool_needs_no_image(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, data={"palette": ["#FFFFFF", "#FF0000"]})
        orch = _orchestrator(images, dispatcher, store)

        outcome = await orch.execute_with_retry(ToolCall("extract_color_palette", {}), source_ref, conversation_id="c1")

        assert outcome.success is True
        assert outcome.result_ref is None
        assert outcome.data == {"palette": ["#FFFFFF", "#FF0000"]}

    async def test_metrics_recorded(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        registry = CollectorRegistry()
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS, errors=[RateLimitedError("color_knockout")])
        orch = _orchestrator(images, dispatcher, store, sli=PipelineSLI(registry=registry))

        await orch.execute_with_retry(knockout_call(RED), source_ref, conversation_id="c1")

        assert registry.get_sample_value("editguard_attempts_total", {"outcome": "retried"}) == 1.0
        assert registry.get_sample_value("editguard_attempts_total", {"outcome": "succeeded"}) == 1.0
        assert registry.get_sample_value("editguard_failures_total", {"mode": "api_error"}) == 1.0
        assert registry.get_sample_value("editguard_store_writes_total", {"status": "stored"}) == 1.0
        assert registry.get_sample_value("editguard_call_duration_seconds_count") == 1.0


@pytest.mark.unit
class TestChain:
    async def test_output_feeds_next_call(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        result = await orch.run_chain(
            [knockout_call(RED), ToolCall("upscaler", {"scaleFactor": 2})],
            source_ref,
            conversation_id="c1",
        )

        assert result.success is True
        first, second = result.calls
        assert dispatcher.calls[0][2] == source_ref
        assert dispatcher.calls[1][2] == first.result_ref
        assert result.final_image_ref == second.result_ref
        assert len(result.per_call_results) == 2
        assert 0 < result.overall_confidence <= min(first.confidence, second.confidence)

    async def test_stops_at_first_failure(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)

        result = await orch.run_chain(
            [ToolCall("teleport", {}), knockout_call(RED)],
            source_ref,
            conversation_id="c1",
        )

        assert result.success is False
        assert len(result.calls) == 1
        assert result.error is not None
        assert result.error.startswith("Call 1 (teleport) failed")
        assert result.final_image_ref == source_ref
        assert result.per_call_results == ()
        assert dispatcher.calls == []

    async def test_completed_calls_kept_on_later_failure(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        orch = _orchestrator(images, FakeToolDispatcher(images, transforms=_TRANSFORMS), store)

        result = await orch.run_chain(
            [knockout_call(RED), ToolCall("teleport", {})],
            source_ref,
            conversation_id="c1",
        )

        assert result.success is False
        assert len(result.calls) == 2
        assert len(result.per_call_results) == 1
        assert result.final_image_ref == result.calls[0].result_ref
        assert result.error is not None
        assert result.error.startswith("Call 2 (teleport) failed")

    async def test_long_chain_penalty(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        orch = _orchestrator(images, FakeToolDispatcher(images), store)
        calls = [ToolCall("extract_color_palette", {}) for _ in range(3)]

        result = await orch.run_chain(calls, source_ref, conversation_id="c1")

        assert result.success is True
        assert result.final_image_ref == source_ref
        floor = min(
            min(o.validation.confidence for o in result.calls),  # type: ignore[union-attr]
            min(o.result.quality_score for o in result.calls),  # type: ignore[union-attr]
        )
        assert result.overall_confidence == max(0, floor - 5)

    async def test_empty_chain(self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str) -> None:
        orch = _orchestrator(images, FakeToolDispatcher(images), store)
        result = await orch.run_chain([], source_ref, conversation_id="c1")
        assert result.success is False
        assert result.overall_confidence == 0
        assert result.error == "No tool calls to execute"

    async def test_seeds_conversation_messages(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        now = datetime.now(UTC)
        context = ConversationContext(
            conversation_id="c9",
            created_at=now,
            last_updated_at=now,
            messages=(ConversationMessage(role="user", content="make the red disappear", timestamp=now),),
        )
        orch = _orchestrator(images, FakeToolDispatcher(images, transforms=_TRANSFORMS), store)

        await orch.run_chain([knockout_call(RED)], source_ref, conversation_id="c9", context=context)

        stored = await store.get_context("c9")
        assert stored is not None
        assert [m.content for m in stored.messages] == ["make the red disappear"]


@pytest.mark.unit
class TestCancellation:
    async def test_cancelled_before_first_call(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        dispatcher = FakeToolDispatcher(images, transforms=_TRANSFORMS)
        orch = _orchestrator(images, dispatcher, store)
        event = asyncio.Event()
        event.set()

        result = await orch.run_chain([knockout_call(RED), knockout_call(RED)], source_ref, conversation_id="c1", cancel_event=event)

        assert result.cancelled is True
        assert result.success is False
        assert result.error == "Cancelled before call 1 of 2"
        assert dispatcher.calls == []

    async def test_cancelled_between_attempts(
        self, images: InMemoryImageStore, store: InMemoryContextStore, source_ref: str
    ) -> None:
        event = asyncio.Event()
        dispatcher = FakeToolDispatcher(
            images,
            transforms=_TRANSFORMS,
            errors=[ToolExecutionError("color_knockout", "transient glitch")],
            on_execute=lambda _n: event.set(),
        )
        orch = _orchestrator(images, dispatcher, store)

        result = await orch.run_chain([knockout_call(RED)], source_ref, conversation_id="c1", cancel_event=event)

        assert result.cancelled is True
        assert result.error == "Cancelled"
        assert len(dispatcher.calls) == 1
        assert result.calls[0].cancelled is True
        assert len(result.calls[0].attempts) == 1
