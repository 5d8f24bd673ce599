"""Before/after pixel comparison."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Sentinels reported when dimensions differ and no per-pixel diff is taken
_STRUCTURAL_MAX_DELTA = 255.0
_STRUCTURAL_AVG_DELTA = 128.0


@dataclass(frozen=True)
class PixelDiff:
    pixels_changed: int
    total_pixels: int
    percentage_changed: float
    max_delta: float
    avg_delta: float
    color_shift: float
    dimensions_changed: bool = False


def compare_images(before: np.ndarray, after: np.ndarray, *, change_threshold: float = 10.0) -> PixelDiff:
    """Count pixels whose RGBA Euclidean distance exceeds `change_threshold`.

    avg_delta and color_shift (RGB only, alpha excluded) are averaged over
    changed pixels. Different dimensions short-circuit to a 100% structural
    change without diffing.
    """
    if before.shape != after.shape:
        total = int(after.shape[0] * after.shape[1])
        return PixelDiff(
            pixels_changed=total,
            total_pixels=total,
            percentage_changed=100.0,
            max_delta=_STRUCTURAL_MAX_DELTA,
            avg_delta=_STRUCTURAL_AVG_DELTA,
            color_shift=0.0,
            dimensions_changed=True,
        )

    total = int(before.shape[0] * before.shape[1])
    if total == 0:
        return PixelDiff(0, 0, 0.0, 0.0, 0.0, 0.0)

    diff = after.astype(np.float64) - before.astype(np.float64)
    sq = diff * diff
    delta = np.sqrt(sq.sum(axis=2))
    changed = delta > change_threshold
    n = int(changed.sum())
    if n == 0:
        return PixelDiff(0, total, 0.0, 0.0, 0.0, 0.0)

    color_delta = np.sqrt(sq[..., :3].sum(axis=2))
    return PixelDiff(
        pixels_changed=n,
        total_pixels=total,
        percentage_changed=round(n / total * 100, 4),
        max_delta=round(float(delta[changed].max()), 2),
        avg_delta=round(float(delta[changed].mean()), 2),
        color_shift=round(float(color_delta[changed].mean()), 2),
    )
