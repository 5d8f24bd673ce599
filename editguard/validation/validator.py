"""Parameter validator: decides whether an agent's tool call is safe to run.

Layers, short-circuiting on the first blocking failure:
1. Schema (jsonschema) -> invalid, confidence 0
2. Tool-specific semantic checks against ground truth
3. Historical calibration against similar successful executions
4. Weighted aggregation of component scores, clamped to [0, 100]

Pure with respect to its inputs; never raises on agent input.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.shared.types import ValidationIssue, ValidationVerdict
from editguard.tools.catalog import get_tool
from editguard.validation.color_presence import PixelSample
from editguard.validation.history import calibrate_with_history
from editguard.validation.schema import validate_schema
from editguard.validation.semantic import SemanticContext, run_semantic_checks

if TYPE_CHECKING:
    import numpy as np

    from editguard.shared.types import ImageGroundTruth, SimilarExecution, ToolCall

logger = logging.getLogger(__name__)


def _split(issues: Sequence[ValidationIssue]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    errors = tuple(i.message for i in issues if i.blocking)
    warnings = tuple(i.message for i in issues if not i.blocking)
    return errors, warnings


class ParameterValidator:
    """Validate tool calls against measured ground truth."""

    def __init__(self, *, scoring: ScoringConfig = DEFAULT_SCORING) -> None:
        self._scoring = scoring

    def aggregate(self, scores: dict[str, float]) -> int:
        """Weighted combination of component scores; missing components count as 100."""
        weights = self._scoring.weights.as_dict()
        total = sum(weights.values())
        combined = sum(w * scores.get(name, 100.0) for name, w in weights.items()) / total
        return int(round(min(100.0, max(0.0, combined))))

    def validate(
        self,
        call: ToolCall,
        ground_truth: ImageGroundTruth,
        *,
        pixels: np.ndarray | None = None,
        history: Sequence[SimilarExecution] = (),
    ) -> ValidationVerdict:
        """Run all validation layers for one call.

        Args:
            call: Agent-proposed call.
            ground_truth: Measurements of the image the call targets.
            pixels: RGBA array of that image; when omitted the measured
                palette stands in for pixel sampling.
            history: Similar past successful executions.
        """
        schema = validate_schema(call)
        if not schema.valid:
            errors, warnings = _split(schema.issues)
            return ValidationVerdict(
                is_valid=False,
                confidence=0,
                errors=errors,
                warnings=warnings,
                reasoning="Schema validation failed: " + "; ".join(errors),
                issues=tuple(schema.issues),
            )

        spec = get_tool(call.tool_name)
        scores: dict[str, float] = {
            "structural": max(
                0.0,
                100.0 - self._scoring.validation.unknown_param_penalty * len(schema.unknown_parameters),
            )
        }

        if ground_truth.confidence == 0 and not spec.informational:
            logger.warning("Validating %s against an unanalyzable image", call.tool_name)

        if pixels is not None:
            sample = PixelSample.from_pixels(
                pixels,
                self._scoring.colors,
                alpha_floor=self._scoring.analysis.alpha_floor,
                seed=self._scoring.analysis.seed,
            )
        else:
            sample = PixelSample.from_palette(ground_truth.dominant_colors)

        semantic = run_semantic_checks(
            SemanticContext(
                call=call,
                spec=spec,
                ground_truth=ground_truth,
                sample=sample,
                scoring=self._scoring,
            )
        )
        for name, value in semantic.scores.items():
            scores[name] = min(scores.get(name, 100.0), value)

        issues: list[ValidationIssue] = [*schema.issues, *semantic.issues]
        notes = list(semantic.notes)

        if semantic.blocking:
            errors, warnings = _split(issues)
            ceiling = min((i.ceiling for i in issues if i.blocking and i.ceiling is not None), default=100)
            adjusted = self._repairs(call, issues, semantic.adjusted)
            return ValidationVerdict(
                is_valid=False,
                confidence=min(self.aggregate(scores), ceiling),
                errors=errors,
                warnings=warnings,
                adjusted_parameters=adjusted,
                reasoning="; ".join(notes),
                issues=tuple(issues),
                scores=scores,
            )

        calibration = calibrate_with_history(call, spec, history, self._scoring.validation)
        scores["historical_fit"] = calibration.score
        issues.extend(calibration.issues)
        notes.extend(calibration.notes)

        adjusted_params: dict[str, Any] = {**semantic.adjusted, **calibration.adjusted}
        confidence = self.aggregate(scores)
        errors, warnings = _split(issues)
        notes.append(f"Confidence {confidence}%")
        return ValidationVerdict(
            is_valid=True,
            confidence=confidence,
            errors=errors,
            warnings=warnings,
            adjusted_parameters={**call.parameters, **adjusted_params} if adjusted_params else None,
            reasoning="; ".join(notes),
            issues=tuple(issues),
            scores=scores,
        )

    @staticmethod
    def _repairs(
        call: ToolCall,
        issues: Sequence[ValidationIssue],
        applied: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Parameters with every blocking issue's suggestion applied, if all have one."""
        repaired = {**call.parameters, **applied}
        for issue in issues:
            if not issue.blocking or issue.parameter in applied:
                continue
            if issue.parameter is None or issue.suggested_value is None:
                return None
            repaired[issue.parameter] = issue.suggested_value
        return repaired
