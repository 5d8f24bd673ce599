"""Tests for the parameter validator.

- Hallucinated colors are rejected with a nearest-color repair
- Destructive operations must touch between 1% and 95% of the image
- Confidence never decreases as a target color gets closer to the image
- History nudges outlying tunables toward the mean
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

import numpy as np
import pytest

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.analysis.color import delta_e
from editguard.analysis.imaging import decode_image
from editguard.shared.types import (
    ExecutionMetrics,
    ImageGroundTruth,
    ImageSpecs,
    IssueCode,
    SimilarExecution,
    ToolCall,
    ToolExecutionRecord,
)
from editguard.validation.validator import ParameterValidator
from tests.fakes.images import GREEN, RED, color_dict, knockout_call


@pytest.fixture
def validator() -> ParameterValidator:
    return ParameterValidator()


@pytest.fixture
def design(design_png: bytes, analyzer: GroundTruthAnalyzer) -> tuple[np.ndarray, ImageGroundTruth]:
    decoded = decode_image(design_png)
    return decoded.pixels, analyzer.analyze_decoded(decoded)


def _codes(verdict) -> set[IssueCode]:  # type: ignore[no-untyped-def]
    return {i.code for i in verdict.issues}


def _history(tool: str, values: list[dict], confidence: int = 90) -> list[SimilarExecution]:
    specs = ImageSpecs(
        width=100,
        height=100,
        has_transparency=False,
        unique_color_count=10,
        sharpness_score=80.0,
        noise_level=20.0,
        is_print_ready=False,
    )
    return [
        SimilarExecution(
            record=ToolExecutionRecord(
                tool_name=tool,
                parameters=params,
                success=True,
                confidence=confidence,
                metrics=ExecutionMetrics(pixels_changed=3000, percentage_changed=30.0, execution_time_ms=50, quality_score=95),
                image_specs=specs,
                timestamp=datetime.now(UTC),
            ),
            similarity=90.0,
        )
        for params in values
    ]


@pytest.mark.unit
class TestColorKnockout:
    def test_present_color_is_valid(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        verdict = validator.validate(knockout_call(RED), gt, pixels=pixels)
        assert verdict.is_valid is True
        assert verdict.confidence >= 90
        assert verdict.errors == ()
        assert verdict.scores["historical_fit"] == 75

    def test_hallucinated_color_rejected(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        verdict = validator.validate(knockout_call(GREEN), gt, pixels=pixels)
        assert verdict.is_valid is False
        assert verdict.confidence <= 30
        assert IssueCode.COLOR_NOT_FOUND in _codes(verdict)
        assert any("not found in image" in e for e in verdict.errors)

    def test_hallucinated_color_repair_suggests_dominant_color(
        self, validator: ParameterValidator, design
    ) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        verdict = validator.validate(knockout_call(GREEN), gt, pixels=pixels)
        assert verdict.adjusted_parameters is not None
        suggested = verdict.adjusted_parameters["colors"][0]
        assert suggested != GREEN
        assert suggested["hex"] in {c.hex for c in gt.dominant_colors}

    def test_palette_stands_in_without_pixels(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        assert validator.validate(knockout_call(RED), gt).is_valid is True
        assert validator.validate(knockout_call(GREEN), gt).is_valid is False

    def test_confidence_monotone_in_color_distance(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        image_colors = [(255, 0, 0), (255, 255, 255)]
        targets = [(255, k, k) for k in range(0, 121, 6)] + [(255 - k, 0, 0) for k in range(0, 121, 12)]

        def distance(rgb: tuple[int, int, int]) -> float:
            return min(float(delta_e(rgb, c)) for c in image_colors)

        scored = sorted(
            (
                distance(rgb),
                validator.validate(knockout_call(color_dict(*rgb)), gt, pixels=pixels).confidence,
            )
            for rgb in targets
        )
        confidences = [c for _, c in scored]
        assert all(a >= b for a, b in zip(confidences, confidences[1:], strict=False))

    def test_color_mode_extent_checked_too(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        call = ToolCall(
            tool_name="color_knockout",
            parameters={"colors": [color_dict(255, 40, 40)], "tolerance": 5, "replaceMode": "color"},
        )
        verdict = validator.validate(call, gt, pixels=pixels)
        assert IssueCode.EXTENT_TOO_LOW in _codes(verdict)
        assert verdict.is_valid is False


@pytest.mark.unit
class TestExtentRejection:
    @pytest.mark.parametrize(("amount", "code"), [(0, IssueCode.EXTENT_TOO_LOW), (1.0, IssueCode.EXTENT_TOO_HIGH)])
    def test_texture_cut_extent_boundaries(
        self, validator: ParameterValidator, design, amount: float, code: IssueCode
    ) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        call = ToolCall(tool_name="texture_cut", parameters={"textureType": "noise", "amount": amount})
        verdict = validator.validate(call, gt, pixels=pixels)
        assert verdict.is_valid is False
        assert verdict.confidence <= 30
        assert code in _codes(verdict)

    def test_recolor_of_whole_image_rejected(self, validator: ParameterValidator, analyzer: GroundTruthAnalyzer) -> None:
        pixels = np.full((50, 50, 4), 255, dtype=np.uint8)
        gt = analyzer.analyze_pixels(pixels)
        call = ToolCall(
            tool_name="recolor_image",
            parameters={"colorMappings": [{"originalIndex": 0, "newColor": "#0000FF"}]},
        )
        verdict = validator.validate(call, gt, pixels=pixels)
        assert IssueCode.EXTENT_TOO_HIGH in _codes(verdict)
        assert verdict.confidence <= 30

    def test_recolor_of_one_region_passes_extent(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        red_index = min(range(len(gt.dominant_colors)), key=lambda i: gt.dominant_colors[i].g + gt.dominant_colors[i].b)
        call = ToolCall(
            tool_name="recolor_image",
            parameters={"colorMappings": [{"originalIndex": red_index, "newColor": "#0000FF"}]},
        )
        verdict = validator.validate(call, gt, pixels=pixels)
        assert not {IssueCode.EXTENT_TOO_HIGH, IssueCode.EXTENT_TOO_LOW} & _codes(verdict)

    def test_texture_cut_midrange_valid(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        call = ToolCall(tool_name="texture_cut", parameters={"textureType": "dots", "amount": 0.5})
        assert validator.validate(call, gt, pixels=pixels).is_valid is True

    def test_custom_texture_rejected_with_builtin_suggestion(
        self, validator: ParameterValidator, design
    ) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        call = ToolCall(tool_name="texture_cut", parameters={"textureType": "custom"})
        verdict = validator.validate(call, gt, pixels=pixels)
        assert verdict.is_valid is False
        assert verdict.adjusted_parameters == {"textureType": "noise"}


@pytest.mark.unit
class TestSchemaGate:
    def test_unknown_tool(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        verdict = validator.validate(ToolCall(tool_name="teleport", parameters={}), gt)
        assert verdict.is_valid is False
        assert verdict.confidence == 0
        assert IssueCode.UNKNOWN_TOOL in _codes(verdict)

    def test_missing_required_parameter_named(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        verdict = validator.validate(ToolCall(tool_name="color_knockout", parameters={}), gt)
        assert verdict.is_valid is False
        assert verdict.confidence == 0
        assert "Missing required parameter: colors" in verdict.errors

    def test_unknown_parameter_lowers_structural_score(
        self, validator: ParameterValidator, design
    ) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        call = ToolCall(
            tool_name="color_knockout",
            parameters={"colors": [RED], "tolerance": 30, "sparkle": True},
        )
        verdict = validator.validate(call, gt, pixels=pixels)
        assert verdict.is_valid is True
        assert verdict.scores["structural"] == 90
        assert any("sparkle" in w for w in verdict.warnings)


@pytest.mark.unit
class TestToolChecks:
    def test_upscale_output_too_large(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        big = replace(gt, width=4000, height=4000)
        verdict = validator.validate(ToolCall(tool_name="upscaler", parameters={"scaleFactor": 2}), big)
        assert verdict.is_valid is False
        assert IssueCode.OUTPUT_TOO_LARGE in _codes(verdict)
        assert verdict.adjusted_parameters == {"scaleFactor": 1.0}

    def test_pick_color_out_of_bounds_clamped(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        verdict = validator.validate(ToolCall(tool_name="pick_color_at_position", parameters={"x": 150, "y": 10}), gt)
        assert verdict.is_valid is False
        assert verdict.adjusted_parameters == {"x": 99, "y": 10}

    def test_smart_resize_upscale_is_quality_risk(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        verdict = validator.validate(ToolCall(tool_name="smart_resize", parameters={"width": 1000}), gt)
        assert verdict.is_valid is True
        assert IssueCode.QUALITY_RISK in _codes(verdict)
        assert verdict.scores["ground_truth_match"] == 75

    def test_recolor_index_out_of_palette(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        call = ToolCall(
            tool_name="recolor_image",
            parameters={"colorMappings": [{"originalIndex": 0, "newColor": "#0000FF"}, {"originalIndex": 40, "newColor": "#00FF00"}]},
        )
        verdict = validator.validate(call, gt)
        assert verdict.is_valid is False
        assert verdict.adjusted_parameters is not None
        assert verdict.adjusted_parameters["colorMappings"] == [{"originalIndex": 0, "newColor": "#0000FF"}]

    def test_recolor_index_clamped_when_none_in_range(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        _, gt = design
        call = ToolCall(
            tool_name="recolor_image",
            parameters={"colorMappings": [{"originalIndex": 50, "newColor": "#00FF00"}]},
        )
        verdict = validator.validate(call, gt)
        assert verdict.is_valid is False
        assert IssueCode.PALETTE_INDEX in _codes(verdict)
        assert verdict.adjusted_parameters is not None
        assert verdict.adjusted_parameters["colorMappings"] == [
            {"originalIndex": len(gt.dominant_colors) - 1, "newColor": "#00FF00"}
        ]


@pytest.mark.unit
class TestHistory:
    def test_outlier_tolerance_nudged_to_mean(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        history = _history(
            "color_knockout",
            [{"colors": [RED], "tolerance": t} for t in (30, 32, 28, 31)],
            confidence=88,
        )
        verdict = validator.validate(knockout_call(RED, tolerance=45), gt, pixels=pixels, history=history)
        assert verdict.is_valid is True
        assert verdict.adjusted_parameters is not None
        assert verdict.adjusted_parameters["tolerance"] == 30
        assert verdict.scores["historical_fit"] == pytest.approx(88)
        assert IssueCode.HISTORICAL_OUTLIER in _codes(verdict)

    def test_history_of_other_tools_ignored(self, validator: ParameterValidator, design) -> None:  # type: ignore[no-untyped-def]
        pixels, gt = design
        history = _history("recolor_image", [{"tolerance": 5}, {"tolerance": 6}])
        verdict = validator.validate(knockout_call(RED), gt, pixels=pixels, history=history)
        assert verdict.scores["historical_fit"] == 75
        assert verdict.adjusted_parameters is None


@pytest.mark.unit
class TestAggregate:
    def test_missing_components_count_as_full(self, validator: ParameterValidator) -> None:
        assert validator.aggregate({}) == 100

    def test_weighted(self, validator: ParameterValidator) -> None:
        assert validator.aggregate({"ground_truth_match": 0}) == 70
        assert validator.aggregate({"historical_fit": 0, "format_compat": 0}) == 65

    def test_clamped(self, validator: ParameterValidator) -> None:
        assert validator.aggregate({"structural": 500}) == 100
