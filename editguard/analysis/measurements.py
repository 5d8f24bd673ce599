"""Pixel measurements behind ImageGroundTruth.

Every function is a pure function of the RGBA array (and, for noise, a
seed), so repeated analysis of the same image is bit-for-bit identical.
"""

from __future__ import annotations

from math import gcd, sqrt

import numpy as np

from editguard.config.scoring import AnalysisThresholds

_LUMA = np.array([0.299, 0.587, 0.114])

_COMMON_RATIOS: tuple[tuple[str, float], ...] = (
    ("1:1", 1.0),
    ("4:3", 4 / 3),
    ("3:2", 3 / 2),
    ("16:9", 16 / 9),
    ("16:10", 16 / 10),
    ("21:9", 21 / 9),
    ("2:3", 2 / 3),
    ("9:16", 9 / 16),
)
_RATIO_TOLERANCE = 0.01


def luminance(pixels: np.ndarray) -> np.ndarray:
    return pixels[..., :3].astype(np.float64) @ _LUMA


def has_transparency(pixels: np.ndarray) -> bool:
    return bool((pixels[..., 3] < 255).any())


def unique_color_estimate(pixels: np.ndarray, t: AnalysisThresholds) -> int:
    """Sampled, quantized distinct-color count scaled by the sample rate.

    An estimate by construction: every 4th pixel (8th on large images),
    channels rounded to multiples of 4.
    """
    flat = pixels.reshape(-1, 4)
    rate = (
        t.unique_sample_rate_large
        if len(flat) > t.large_image_pixels
        else t.unique_sample_rate_small
    )
    sample = flat[::rate]
    sample = sample[sample[:, 3] >= t.alpha_floor]
    if len(sample) == 0:
        return 0
    q = (np.rint(sample[:, :3] / 4.0) * 4).astype(np.int64)
    keys = (q[:, 0] << 18) | (q[:, 1] << 9) | q[:, 2]
    return int(round(len(np.unique(keys)) * sqrt(rate)))


def sharpness_score(pixels: np.ndarray, t: AnalysisThresholds) -> float:
    """Variance of |Laplacian| over the central region, clamped to [0, 100]."""
    gray = luminance(pixels)
    h, w = gray.shape
    y0 = max(int(h * t.sharpness_margin), 1)
    y1 = min(int(h * (1 - t.sharpness_margin)), h - 1)
    x0 = max(int(w * t.sharpness_margin), 1)
    x1 = min(int(w * (1 - t.sharpness_margin)), w - 1)
    if y1 <= y0 or x1 <= x0:
        return 0.0

    center = gray[y0:y1, x0:x1]
    lap = (
        gray[y0 - 1 : y1 - 1, x0:x1]
        + gray[y0 + 1 : y1 + 1, x0:x1]
        + gray[y0:y1, x0 - 1 : x1 - 1]
        + gray[y0:y1, x0 + 1 : x1 + 1]
        - 4.0 * center
    )
    variance = float(np.var(np.abs(lap)))
    return round(min(100.0, variance / t.sharpness_normalizer * 100.0), 2)


def noise_level(pixels: np.ndarray, t: AnalysisThresholds) -> float:
    """Mean luminance variance of seeded random patches, clamped to [0, 100]."""
    gray = luminance(pixels)
    h, w = gray.shape
    size = t.noise_patch_size
    if h < size or w < size:
        return 0.0

    margin = t.noise_margin
    if w - size - 2 * margin < 0 or h - size - 2 * margin < 0:
        margin = 0
    rng = np.random.default_rng(t.seed)
    xs = rng.integers(margin, w - size - margin + 1, size=t.noise_samples)
    ys = rng.integers(margin, h - size - margin + 1, size=t.noise_samples)

    variances = [float(np.var(gray[y : y + size, x : x + size])) for x, y in zip(xs, ys, strict=True)]
    avg = sum(variances) / len(variances)
    return round(min(100.0, avg / t.noise_normalizer * 100.0), 2)


def is_print_ready(
    width: int,
    height: int,
    dpi: float | None,
    sharpness: float,
    t: AnalysisThresholds,
) -> bool:
    effective = dpi or t.default_dpi
    return (
        effective >= t.print_dpi
        and width / effective >= t.min_print_inches
        and height / effective >= t.min_print_inches
        and sharpness >= t.min_print_sharpness
    )


def aspect_ratio_label(width: int, height: int) -> str:
    """Reduced aspect ratio, snapped to a common ratio within 1%."""
    if width <= 0 or height <= 0:
        return "unknown"
    ratio = width / height
    for label, value in _COMMON_RATIOS:
        if abs(ratio - value) / value < _RATIO_TOLERANCE:
            return label
    d = gcd(width, height)
    return f"{width // d}:{height // d}"


def printable_inches(pixels_along: int, dpi: float) -> float:
    return round(pixels_along / dpi, 1)
