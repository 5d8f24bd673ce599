"""Does a color the agent named actually occur in the image?

Pixels are sampled (1% of the image, at least 1000) with a seeded generator
and compared in Lab space. When no pixel data is at hand, the measured
palette stands in for the sample, weighted by palette share.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from editguard.analysis.color import confidence_for_distance, rgb_to_lab

if TYPE_CHECKING:
    from editguard.config.scoring import ColorTiers
    from editguard.shared.types import DominantColor


@dataclass(frozen=True)
class PixelSample:
    rgb: np.ndarray  # (n, 3) uint8
    lab: np.ndarray  # (n, 3) float
    weights: np.ndarray  # (n,) percentage share, sums to <= 100

    @property
    def size(self) -> int:
        return int(len(self.rgb))

    @classmethod
    def from_pixels(
        cls,
        pixels: np.ndarray,
        tiers: ColorTiers,
        *,
        alpha_floor: int = 10,
        seed: int = 0,
    ) -> PixelSample:
        flat = pixels.reshape(-1, 4)
        n = min(len(flat), max(tiers.min_samples, int(len(flat) * tiers.sample_fraction)))
        rng = np.random.default_rng(seed)
        sample = flat[rng.integers(0, len(flat), size=n)] if n else flat[:0]
        rgb = sample[sample[:, 3] >= alpha_floor][:, :3]
        weights = np.full(len(rgb), 100.0 / len(rgb)) if len(rgb) else np.zeros(0)
        return cls(rgb=rgb, lab=rgb_to_lab(rgb).reshape(-1, 3), weights=weights)

    @classmethod
    def from_palette(cls, colors: tuple[DominantColor, ...]) -> PixelSample:
        rgb = np.array([c.rgb for c in colors], dtype=np.uint8).reshape(-1, 3)
        weights = np.array([c.percentage for c in colors], dtype=np.float64)
        return cls(rgb=rgb, lab=rgb_to_lab(rgb).reshape(-1, 3), weights=weights)


@dataclass(frozen=True)
class ColorPresence:
    target: tuple[int, int, int]
    min_distance: float
    nearest: tuple[int, int, int] | None
    match_percentage: float
    confidence: int
    found: bool


def check_color_presence(
    target: tuple[int, int, int],
    sample: PixelSample,
    *,
    match_radius: float,
    tiers: ColorTiers,
) -> ColorPresence:
    """Distance from `target` to the closest sampled color plus coverage.

    match_percentage is the share of the sample within `match_radius`; it is
    the predicted extent of an operation keyed on this color.
    """
    if sample.size == 0:
        return ColorPresence(
            target=target,
            min_distance=float("inf"),
            nearest=None,
            match_percentage=0.0,
            confidence=tiers.floor,
            found=False,
        )
    diff = sample.lab - rgb_to_lab(target)
    dists = np.sqrt(np.sum(diff * diff, axis=1))
    idx = int(np.argmin(dists))
    min_distance = round(float(dists[idx]), 2)
    nearest = tuple(int(v) for v in sample.rgb[idx])
    coverage = float(sample.weights[dists <= match_radius].sum())
    return ColorPresence(
        target=target,
        min_distance=min_distance,
        nearest=nearest,  # type: ignore[arg-type]
        match_percentage=round(min(coverage, 100.0), 2),
        confidence=confidence_for_distance(min_distance, tiers),
        found=min_distance <= tiers.hallucination_distance,
    )


def nearest_dominant(
    target: tuple[int, int, int],
    colors: tuple[DominantColor, ...],
) -> DominantColor | None:
    """Palette entry perceptually closest to `target`."""
    if not colors:
        return None
    diff = rgb_to_lab(np.array([c.rgb for c in colors])) - rgb_to_lab(target)
    return colors[int(np.argmin(np.sum(diff * diff, axis=1)))]
