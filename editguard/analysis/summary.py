"""Flat ground-truth summaries for logs, telemetry and agent prompts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from editguard.shared.types import ImageGroundTruth

_TOP_COLORS = 5


def summarize(gt: ImageGroundTruth) -> dict[str, Any]:
    """One-level dict: safe to pass as log `extra` or JSON-encode."""
    return {
        "width": gt.width,
        "height": gt.height,
        "format": gt.format,
        "dpi": gt.dpi,
        "megapixels": round(gt.megapixels, 2),
        "aspect_ratio": gt.aspect_ratio,
        "has_transparency": gt.has_transparency,
        "unique_color_count": gt.unique_color_count,
        "dominant_colors": ",".join(c.hex for c in gt.dominant_colors[:_TOP_COLORS]),
        "sharpness_score": gt.sharpness_score,
        "noise_level": gt.noise_level,
        "is_blurry": gt.is_blurry,
        "is_print_ready": gt.is_print_ready,
        "printable_size_in": f"{gt.printable_width_in}x{gt.printable_height_in}",
        "confidence": gt.confidence,
    }


def format_summary(gt: ImageGroundTruth) -> str:
    """Multi-line description for inclusion in an agent prompt."""
    colors = ", ".join(f"{c.hex} ({c.percentage:.1f}%)" for c in gt.dominant_colors[:_TOP_COLORS])
    lines = [
        f"Dimensions: {gt.width}x{gt.height} ({gt.aspect_ratio})",
        f"Format: {gt.format.upper()}" + (f" at {gt.dpi:g} DPI" if gt.dpi else ""),
        f"Transparency: {'yes' if gt.has_transparency else 'no'}",
        f"Dominant colors: {colors or 'none'}",
        f"Unique colors: ~{gt.unique_color_count:,}",
        f"Sharpness: {gt.sharpness_score:.0f}/100" + (" (blurry)" if gt.is_blurry else ""),
        f"Noise: {gt.noise_level:.0f}/100",
        "Print ready: "
        + (
            "yes"
            if gt.is_print_ready
            else f"no (printable at {gt.printable_width_in}x{gt.printable_height_in} in at 300 DPI)"
        ),
        f"Analysis confidence: {gt.confidence}%",
    ]
    return "\n".join(lines)
