"""Dominant-color extraction.

The analyzer does not cluster colors itself; it delegates to a
ColorExtractor. Two implementations ship:

- PillowPaletteExtractor: Pillow median-cut quantizer (default)
- KMeansPaletteExtractor: numpy k-means over a strided pixel sample
"""

from __future__ import annotations

from typing import Protocol

import numpy as np
from PIL import Image

from editguard.analysis.color import rgb_to_hex
from editguard.shared.types import DominantColor

# Upper bound on pixels handed to the quantizer
_MAX_QUANTIZE_PIXELS = 250_000
_MAX_KMEANS_PIXELS = 20_000


class ColorExtractor(Protocol):
    """Color clustering primitive: RGBA pixels -> palette by descending share."""

    def extract(self, pixels: np.ndarray, max_colors: int) -> list[DominantColor]: ...


def _opaque_rgb(pixels: np.ndarray, alpha_floor: int) -> np.ndarray:
    flat = pixels.reshape(-1, 4)
    return flat[flat[:, 3] >= alpha_floor][:, :3]


def _to_palette(centers: np.ndarray, counts: np.ndarray, total: int) -> list[DominantColor]:
    order = np.argsort(-counts, kind="stable")
    colors: list[DominantColor] = []
    for idx in order:
        if counts[idx] == 0:
            continue
        r, g, b = (int(v) for v in np.clip(np.rint(centers[idx]), 0, 255))
        colors.append(
            DominantColor(
                r=r,
                g=g,
                b=b,
                hex=rgb_to_hex(r, g, b),
                percentage=round(float(counts[idx]) / total * 100, 2),
            )
        )
    return colors


class PillowPaletteExtractor:
    """Median-cut quantization through Pillow."""

    def __init__(self, *, alpha_floor: int = 10) -> None:
        self._alpha_floor = alpha_floor

    def extract(self, pixels: np.ndarray, max_colors: int) -> list[DominantColor]:
        rgb = _opaque_rgb(pixels, self._alpha_floor)
        if rgb.size == 0:
            return []
        stride = max(1, len(rgb) // _MAX_QUANTIZE_PIXELS)
        rgb = np.ascontiguousarray(rgb[::stride], dtype=np.uint8)

        strip = Image.fromarray(rgb.reshape(1, -1, 3))
        quantized = strip.quantize(colors=max_colors, method=Image.Quantize.MEDIANCUT)
        palette = quantized.getpalette() or []
        used = quantized.getcolors(maxcolors=256) or []

        centers = np.zeros((len(used), 3))
        counts = np.zeros(len(used), dtype=np.int64)
        for i, (count, index) in enumerate(used):
            centers[i] = palette[index * 3 : index * 3 + 3]
            counts[i] = count
        return _to_palette(centers, counts, len(rgb))


class KMeansPaletteExtractor:
    """Lloyd's k-means over every `stride`-th opaque pixel.

    Seeded, so repeated runs on the same pixels agree.
    """

    def __init__(
        self,
        *,
        iterations: int = 10,
        stride: int = 10,
        seed: int = 0,
        alpha_floor: int = 10,
    ) -> None:
        self._iterations = iterations
        self._stride = stride
        self._seed = seed
        self._alpha_floor = alpha_floor

    def extract(self, pixels: np.ndarray, max_colors: int) -> list[DominantColor]:
        rgb = _opaque_rgb(pixels, self._alpha_floor)[:: self._stride].astype(np.float64)
        if rgb.size == 0:
            return []
        if len(rgb) > _MAX_KMEANS_PIXELS:
            rgb = rgb[:: len(rgb) // _MAX_KMEANS_PIXELS + 1]
        k = min(max_colors, len(np.unique(rgb, axis=0)))
        rng = np.random.default_rng(self._seed)
        centers = rgb[rng.choice(len(rgb), size=k, replace=False)]

        labels = np.zeros(len(rgb), dtype=np.int64)
        for _ in range(self._iterations):
            dists = np.linalg.norm(rgb[:, None, :] - centers[None, :, :], axis=2)
            labels = np.argmin(dists, axis=1)
            for c in range(k):
                members = rgb[labels == c]
                if len(members):
                    centers[c] = members.mean(axis=0)

        counts = np.bincount(labels, minlength=k)
        return _to_palette(centers, counts, len(rgb))
