"""Image similarity used to rank past executions.

Weighted comparison of measured properties. Each component is scored 0-100
and the total is normalized by the weights of the components present, so
sparse snapshots still produce a comparable score.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from editguard.config.scoring import SimilarityWeights

if TYPE_CHECKING:
    from editguard.shared.types import ImageGroundTruth, ImageSpecs


def _relative(a: float, b: float) -> float:
    top = max(a, b)
    return abs(a - b) / top if top else 0.0


def similarity_score(
    current: ImageGroundTruth | ImageSpecs,
    past: ImageSpecs,
    weights: SimilarityWeights | None = None,
) -> float:
    """Similarity of two images in [0, 100]; higher is more similar."""
    w = weights or SimilarityWeights()
    score = 0.0
    used = 0.0

    if past.width and past.height:
        dim_diff = _relative(current.width, past.width) + _relative(current.height, past.height)
        score += max(0.0, 100.0 - dim_diff * 50.0) * w.dimensions
        used += w.dimensions

    if past.aspect_ratio:
        score += (100.0 if current.aspect_ratio == past.aspect_ratio else 50.0) * w.aspect_ratio
        used += w.aspect_ratio

    score += (100.0 if current.has_transparency == past.has_transparency else 0.0) * w.transparency
    used += w.transparency

    if past.unique_color_count:
        color_diff = _relative(current.unique_color_count, past.unique_color_count)
        score += max(0.0, 100.0 - color_diff * 100.0) * w.color_count
        used += w.color_count

    score += max(0.0, 100.0 - abs(current.sharpness_score - past.sharpness_score)) * w.sharpness
    used += w.sharpness

    score += (100.0 if current.is_print_ready == past.is_print_ready else 50.0) * w.print_readiness
    used += w.print_readiness

    return round(score / used, 2) if used else 0.0
