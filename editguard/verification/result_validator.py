"""Result validator: did the tool actually do what it claimed?

- Re-analyzes before and after images
- Pixel diff with a noise-rejection threshold
- Category predicates per expected operation (transparency must appear,
  dimension-increasing tools must grow the image, ...)
- Quality score from the after-image confidence with penalties and bonuses
- Never raises: undecodable results produce a failed verdict
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from editguard.analysis.analyzer import GroundTruthAnalyzer, empty_ground_truth
from editguard.analysis.imaging import DecodedImage, decode_image
from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.shared.errors import ImageDecodeError, UnknownToolError
from editguard.shared.logging import log_structured_error
from editguard.shared.types import ImageGroundTruth, ResultVerdict
from editguard.tools.catalog import ExpectedOperation, get_tool
from editguard.verification.pixel_diff import PixelDiff, compare_images

if TYPE_CHECKING:
    from editguard.config.scoring import ResultThresholds

logger = logging.getLogger(__name__)

_TRANSPARENCY_VERBS = {
    "background_remover": "Removed background",
    "color_knockout": "Knocked out colors",
    "texture_cut": "Applied texture cut",
}


@dataclass(frozen=True)
class Verification:
    """Verdict plus the measurements it was derived from."""

    verdict: ResultVerdict
    before: ImageGroundTruth
    after: ImageGroundTruth
    diff: PixelDiff | None = None


@dataclass(frozen=True)
class _Predicate:
    success: bool
    reasoning: str
    warnings: tuple[str, ...] = ()


def _failed(reasoning: str, before: ImageGroundTruth) -> Verification:
    return Verification(
        verdict=ResultVerdict(
            success=False,
            pixels_changed=0,
            percentage_changed=0.0,
            quality_score=0,
            significant_change=False,
            reasoning=reasoning,
        ),
        before=before,
        after=empty_ground_truth(),
    )


class ResultValidator:
    """Compare before/after images and judge the execution."""

    def __init__(
        self,
        *,
        analyzer: GroundTruthAnalyzer | None = None,
        scoring: ScoringConfig = DEFAULT_SCORING,
    ) -> None:
        self._scoring = scoring
        self._analyzer = analyzer or GroundTruthAnalyzer(scoring=scoring)

    def verify(
        self,
        before: bytes,
        after: bytes | None,
        tool_name: str,
        parameters: dict[str, Any] | None = None,
    ) -> ResultVerdict:
        return self.inspect(before, after, tool_name, parameters).verdict

    def inspect(
        self,
        before: bytes | DecodedImage,
        after: bytes | DecodedImage | None,
        tool_name: str,
        parameters: dict[str, Any] | None = None,
        *,
        before_truth: ImageGroundTruth | None = None,
    ) -> Verification:
        try:
            before_img = before if isinstance(before, DecodedImage) else decode_image(before)
        except ImageDecodeError:
            logger.warning("Source image for %s could not be decoded", tool_name, exc_info=True)
            return _failed("Source image could not be decoded", empty_ground_truth())
        before_gt = before_truth or self._analyzer.analyze_decoded(before_img)

        try:
            operation = get_tool(tool_name).expected_for(parameters or {})
        except UnknownToolError:
            operation = ExpectedOperation.GENERATIVE

        if operation is ExpectedOperation.INFO_ONLY:
            return Verification(
                verdict=ResultVerdict(
                    success=True,
                    pixels_changed=0,
                    percentage_changed=0.0,
                    quality_score=before_gt.confidence,
                    significant_change=False,
                    reasoning="Informational tool; no image modification expected",
                ),
                before=before_gt,
                after=before_gt,
            )

        if after is None:
            return _failed(f"{tool_name} returned no result image", before_gt)
        try:
            after_img = after if isinstance(after, DecodedImage) else decode_image(after)
        except ImageDecodeError:
            logger.warning("Result image for %s could not be decoded", tool_name, exc_info=True)
            return _failed("Result image could not be decoded", before_gt)

        try:
            after_gt = self._analyzer.analyze_decoded(after_img)
            diff = compare_images(
                before_img.pixels,
                after_img.pixels,
                change_threshold=self._scoring.results.change_threshold,
            )
            predicate = self._predicate(tool_name, operation, diff, before_gt, after_gt)
            quality = self.quality_score(before_gt, after_gt, diff)
        except Exception as exc:
            log_structured_error(logger, exc, stage="verification", context={"tool_name": tool_name})
            return _failed(f"Verification failed: {exc}", before_gt)

        t = self._scoring.results
        return Verification(
            verdict=ResultVerdict(
                success=predicate.success,
                pixels_changed=diff.pixels_changed,
                percentage_changed=diff.percentage_changed,
                quality_score=quality,
                significant_change=diff.percentage_changed >= t.significant_change_pct,
                max_delta=diff.max_delta,
                avg_delta=diff.avg_delta,
                color_shift=diff.color_shift,
                warnings=predicate.warnings,
                reasoning=predicate.reasoning,
                dimensions_changed=diff.dimensions_changed,
            ),
            before=before_gt,
            after=after_gt,
            diff=diff,
        )

    def quality_score(self, before: ImageGroundTruth, after: ImageGroundTruth, diff: PixelDiff) -> int:
        t = self._scoring.results
        score = after.confidence
        if after.sharpness_score < before.sharpness_score - t.sharpness_drop:
            score -= t.sharpness_penalty
        if after.noise_level > before.noise_level + t.noise_rise:
            score -= t.noise_penalty
        if diff.percentage_changed < t.negligible_change_pct:
            score -= t.negligible_penalty
        if after.is_print_ready and not before.is_print_ready:
            score += t.print_ready_bonus
        return max(0, min(100, score))

    def _predicate(
        self,
        tool_name: str,
        operation: ExpectedOperation,
        diff: PixelDiff,
        before: ImageGroundTruth,
        after: ImageGroundTruth,
    ) -> _Predicate:
        t = self._scoring.results
        pct = diff.percentage_changed

        if operation is ExpectedOperation.TRANSPARENCY_CHANGE:
            return _transparency(tool_name, pct, after, t)

        if operation is ExpectedOperation.COLOR_CHANGE:
            warnings: list[str] = []
            if diff.color_shift < t.min_color_shift:
                warnings.append(f"Very small color change detected (avg shift {diff.color_shift:.0f})")
            if pct > t.max_color_change_pct:
                warnings.append("Almost entire image changed; the wrong color may have been targeted")
            if pct == 0:
                return _Predicate(False, "No pixels changed; recolor had no effect", tuple(warnings))
            return _Predicate(
                True,
                f"Recolored {pct:.1f}% of pixels (avg color shift: {diff.color_shift:.0f})",
                tuple(warnings),
            )

        if operation is ExpectedOperation.QUALITY_ENHANCEMENT:
            if after.width <= before.width or after.height <= before.height:
                return _Predicate(
                    False,
                    f"Upscaling failed: dimensions {after.width}x{after.height} did not increase",
                    ("Image dimensions did not increase",),
                )
            warnings = []
            if after.sharpness_score < before.sharpness_score - t.sharpness_drop:
                warnings.append(f"Sharpness decreased from {before.sharpness_score:.0f} to {after.sharpness_score:.0f}")
            return _Predicate(
                True,
                f"Upscaled {after.width / before.width:.1f}x from {before.width}x{before.height} "
                f"to {after.width}x{after.height}",
                tuple(warnings),
            )

        if operation is ExpectedOperation.STRUCTURAL_CHANGE:
            if diff.dimensions_changed:
                return _Predicate(
                    True,
                    f"Resized from {before.width}x{before.height} to {after.width}x{after.height} (100% structural change)",
                )
            if pct == 0:
                return _Predicate(False, "Image unchanged by structural operation", ("No pixels changed",))
            return _Predicate(True, f"Transformed image ({pct:.1f}% of pixels changed)")

        # generative / unknown
        warnings = []
        if pct < t.negligible_change_pct:
            warnings.append(f"Extremely small change detected (<{t.negligible_change_pct:g}%)")
        return _Predicate(pct > 0, f"Tool executed, {pct:.1f}% of pixels changed", tuple(warnings))


def _transparency(tool_name: str, pct: float, after: ImageGroundTruth, t: ResultThresholds) -> _Predicate:
    if not after.has_transparency:
        return _Predicate(
            False,
            f"{tool_name} did not produce transparent pixels ({pct:.1f}% of pixels changed)",
            ("Expected transparency but none was created",),
        )
    warnings: list[str] = []
    if pct < t.significant_change_pct:
        warnings.append("Very few pixels changed (<1%)")
    if tool_name == "background_remover" and pct < t.min_background_change_pct:
        warnings.append("Less than 10% of image affected; background may not be fully removed")
    verb = _TRANSPARENCY_VERBS.get(tool_name, "Added transparency")
    return _Predicate(True, f"{verb} ({pct:.1f}% of pixels changed)", tuple(warnings))
