"""Ground-truth analyzer.

- Pure function of image bytes; no I/O, no shared state
- Each sub-measurement is independently fault-tolerant: a failure lowers
  confidence (never raises it) instead of aborting the analysis
- Total failure returns a zero-confidence record, never an exception
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from editguard.analysis import measurements
from editguard.analysis.imaging import DecodedImage, decode_image, read_dpi
from editguard.analysis.palette import ColorExtractor, PillowPaletteExtractor
from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.shared.errors import ImageDecodeError
from editguard.shared.types import DominantColor, ImageGroundTruth

if TYPE_CHECKING:
    import numpy as np

logger = logging.getLogger(__name__)


def empty_ground_truth() -> ImageGroundTruth:
    """Zero-valued record used when an image cannot be analyzed at all."""
    return ImageGroundTruth(
        width=0,
        height=0,
        format="unknown",
        dpi=None,
        has_transparency=False,
        dominant_colors=(),
        unique_color_count=0,
        sharpness_score=0.0,
        noise_level=100.0,
        is_blurry=True,
        is_print_ready=False,
        confidence=0,
        aspect_ratio="unknown",
    )


class GroundTruthAnalyzer:
    """Extract objective measurements from image pixels."""

    def __init__(
        self,
        *,
        scoring: ScoringConfig = DEFAULT_SCORING,
        extractor: ColorExtractor | None = None,
    ) -> None:
        self._t = scoring.analysis
        self._extractor = extractor or PillowPaletteExtractor(alpha_floor=self._t.alpha_floor)

    def analyze(self, data: bytes) -> ImageGroundTruth:
        try:
            decoded = decode_image(data)
        except ImageDecodeError:
            logger.warning("Ground-truth analysis failed to decode image", exc_info=True)
            return empty_ground_truth()
        return self.analyze_decoded(decoded)

    def analyze_decoded(self, decoded: DecodedImage) -> ImageGroundTruth:
        t = self._t
        pixels = decoded.pixels
        width, height = decoded.width, decoded.height
        confidence = 100

        try:
            dpi = read_dpi(decoded.info)
        except (TypeError, ValueError, IndexError):
            logger.warning("DPI metadata unreadable", exc_info=True)
            dpi = None
            confidence = min(confidence, t.dpi_failure_ceiling)

        transparent = False
        try:
            transparent = measurements.has_transparency(pixels)
        except (IndexError, ValueError, MemoryError):
            logger.warning("Transparency measurement failed", exc_info=True)
            confidence = min(confidence, t.transparency_failure_ceiling)

        dominant: tuple[DominantColor, ...] = ()
        unique = 0
        try:
            dominant = tuple(self._extractor.extract(pixels, t.palette_size))
            unique = measurements.unique_color_estimate(pixels, t)
        except Exception:
            logger.warning("Color extraction failed", exc_info=True)
            confidence = min(confidence, t.color_failure_ceiling)

        sharpness = 0.0
        try:
            sharpness = measurements.sharpness_score(pixels, t)
        except (ValueError, MemoryError, FloatingPointError):
            logger.warning("Sharpness measurement failed", exc_info=True)
            confidence = min(confidence, t.sharpness_failure_ceiling)

        noise = 0.0
        try:
            noise = measurements.noise_level(pixels, t)
        except (ValueError, MemoryError, FloatingPointError):
            logger.warning("Noise measurement failed", exc_info=True)
            confidence = min(confidence, t.noise_failure_ceiling)

        return ImageGroundTruth(
            width=width,
            height=height,
            format=decoded.format,
            dpi=dpi,
            has_transparency=transparent,
            dominant_colors=dominant,
            unique_color_count=unique,
            sharpness_score=sharpness,
            noise_level=noise,
            is_blurry=sharpness < t.blur_threshold,
            is_print_ready=measurements.is_print_ready(width, height, dpi, sharpness, t),
            confidence=confidence,
            aspect_ratio=measurements.aspect_ratio_label(width, height),
            file_size=decoded.file_size,
            color_depth=32 if transparent else 24,
            printable_width_in=measurements.printable_inches(width, t.print_dpi),
            printable_height_in=measurements.printable_inches(height, t.print_dpi),
        )

    def analyze_pixels(self, pixels: np.ndarray, *, image_format: str = "png") -> ImageGroundTruth:
        """Analyze an in-memory RGBA array (no container metadata)."""
        decoded = DecodedImage(pixels=pixels, format=image_format, info={}, file_size=0)
        return self.analyze_decoded(decoded)
