"""Scoring model: every threshold, weight and penalty in one table.

Validators, the result checker, the retry strategist and the context store
read their constants from a ScoringConfig instance instead of hard-coding
them, so the scoring model can be tuned and tested on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AnalysisThresholds:
    palette_size: int = 9
    alpha_floor: int = 10  # pixels below this alpha are ignored
    blur_threshold: float = 50.0
    print_dpi: float = 300.0
    default_dpi: float = 72.0
    min_print_inches: float = 2.0
    min_print_sharpness: float = 40.0
    large_image_pixels: int = 100_000
    unique_sample_rate_small: int = 4
    unique_sample_rate_large: int = 8
    noise_patch_size: int = 16
    noise_samples: int = 20
    noise_margin: int = 10
    noise_normalizer: float = 200.0
    sharpness_normalizer: float = 100.0
    sharpness_margin: float = 0.1
    seed: int = 0
    # Confidence ceilings applied when a sub-measurement fails
    dpi_failure_ceiling: int = 95
    transparency_failure_ceiling: int = 90
    color_failure_ceiling: int = 85
    sharpness_failure_ceiling: int = 90
    noise_failure_ceiling: int = 90


@dataclass(frozen=True)
class ColorTiers:
    """Perceptual distance (Lab deltaE) to confidence mapping."""

    tiers: tuple[tuple[float, int], ...] = (
        (2.0, 100),
        (5.0, 95),
        (10.0, 85),
        (20.0, 70),
        (50.0, 50),
    )
    floor: int = 30
    hallucination_distance: float = 50.0
    min_samples: int = 1000
    sample_fraction: float = 0.01
    # Lab radius matched per tolerance point when estimating coverage
    coverage_radius_per_tolerance: float = 0.5
    min_coverage_radius: float = 2.0


@dataclass(frozen=True)
class ValidationWeights:
    ground_truth_match: float = 0.30
    tolerance_fit: float = 0.20
    historical_fit: float = 0.25
    structural: float = 0.15
    format_compat: float = 0.10

    def as_dict(self) -> dict[str, float]:
        return {
            "ground_truth_match": self.ground_truth_match,
            "tolerance_fit": self.tolerance_fit,
            "historical_fit": self.historical_fit,
            "structural": self.structural,
            "format_compat": self.format_compat,
        }


@dataclass(frozen=True)
class ValidationThresholds:
    neutral_history: int = 75
    noisy_image: float = 30.0
    clean_image: float = 15.0
    low_tolerance: float = 25.0
    high_tolerance: float = 40.0
    noisy_tolerance_target: float = 35.0
    clean_tolerance_target: float = 25.0
    tolerance_mismatch_score: int = 60
    min_extent_pct: float = 1.0
    max_extent_pct: float = 95.0
    extent_ceiling: int = 30
    hallucination_ceiling: int = 30
    bounds_ceiling: int = 40
    output_size_ceiling: int = 30
    unknown_param_penalty: int = 10
    format_penalty_score: int = 60
    history_stdev_multiplier: float = 2.0
    history_min_stdev_fraction: float = 0.1
    history_count_multiplier: float = 2.0
    max_output_megapixels: float = 16.0
    max_background_megapixels: float = 25.0
    min_recolor_delta: float = 5.0
    complex_unique_colors: int = 10_000
    simple_unique_colors: int = 1_000
    busy_unique_colors: int = 50_000
    detailed_palette_min_colors: int = 100
    small_upscale_width: int = 500
    max_safe_upscale: float = 4.0
    quality_risk_score: int = 70


@dataclass(frozen=True)
class ResultThresholds:
    change_threshold: float = 10.0
    significant_change_pct: float = 1.0
    negligible_change_pct: float = 0.1
    sharpness_drop: float = 10.0
    sharpness_penalty: int = 15
    noise_rise: float = 10.0
    noise_penalty: int = 10
    negligible_penalty: int = 20
    print_ready_bonus: int = 10
    min_color_shift: float = 20.0
    max_color_change_pct: float = 95.0
    min_background_change_pct: float = 10.0


@dataclass(frozen=True)
class RecoveryThresholds:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    rate_limit_delay_ms: int = 5000
    max_delay_ms: int = 30_000
    tolerance_step: float = 10.0
    tolerance_bounds: tuple[float, float] = (10.0, 50.0)
    intensity_step: float = 0.2
    intensity_bounds: tuple[float, float] = (0.1, 1.0)
    min_quality_score: int = 70
    excessive_change_pct: float = 95.0
    insufficient_change_pct: float = 1.0
    max_repaired_colors: int = 3
    max_list_items: int = 9


@dataclass(frozen=True)
class SimilarityWeights:
    dimensions: float = 0.30
    aspect_ratio: float = 0.10
    transparency: float = 0.15
    color_count: float = 0.15
    sharpness: float = 0.15
    print_readiness: float = 0.15


@dataclass(frozen=True)
class StorageThresholds:
    min_confidence: int = 70
    keep_recent: int = 100
    min_similarity: float = 50.0
    similar_limit: int = 5
    max_records: int = 10_000


@dataclass(frozen=True)
class ChainThresholds:
    long_chain_calls: int = 2
    long_chain_penalty: int = 5


@dataclass(frozen=True)
class ScoringConfig:
    """Single auditable table of the scoring model."""

    analysis: AnalysisThresholds = field(default_factory=AnalysisThresholds)
    colors: ColorTiers = field(default_factory=ColorTiers)
    weights: ValidationWeights = field(default_factory=ValidationWeights)
    validation: ValidationThresholds = field(default_factory=ValidationThresholds)
    results: ResultThresholds = field(default_factory=ResultThresholds)
    recovery: RecoveryThresholds = field(default_factory=RecoveryThresholds)
    similarity: SimilarityWeights = field(default_factory=SimilarityWeights)
    storage: StorageThresholds = field(default_factory=StorageThresholds)
    chain: ChainThresholds = field(default_factory=ChainThresholds)


DEFAULT_SCORING = ScoringConfig()
