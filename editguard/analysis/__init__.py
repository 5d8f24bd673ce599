"""Ground-truth analysis: measurements trusted over any agent claim."""

from editguard.analysis.analyzer import GroundTruthAnalyzer, empty_ground_truth
from editguard.analysis.palette import (
    ColorExtractor,
    KMeansPaletteExtractor,
    PillowPaletteExtractor,
)
from editguard.analysis.summary import format_summary, summarize

__all__ = [
    "ColorExtractor",
    "GroundTruthAnalyzer",
    "KMeansPaletteExtractor",
    "PillowPaletteExtractor",
    "empty_ground_truth",
    "format_summary",
    "summarize",
]
