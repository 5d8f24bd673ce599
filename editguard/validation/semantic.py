"""Tool-specific semantic checks against measured ground truth.

Each check appends ValidationIssues and lowers component scores on a
SemanticReport. Blocking issues make the call invalid; every other finding
only lowers confidence. Checks never raise on odd parameter values: schema
validation has already run.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from editguard.analysis.color import delta_e, hex_to_rgb, is_hex_color, rgb_to_hex
from editguard.shared.types import IssueCode, ValidationIssue
from editguard.tools.catalog import ExpectedOperation
from editguard.validation.color_presence import check_color_presence, nearest_dominant

if TYPE_CHECKING:
    from editguard.config.scoring import ScoringConfig
    from editguard.shared.types import ImageGroundTruth, ToolCall
    from editguard.tools.catalog import ToolSpec
    from editguard.validation.color_presence import PixelSample

_ALPHA_FORMATS = frozenset({"png", "webp", "gif", "tiff"})

_NAMED_COLORS: dict[str, tuple[int, int, int]] = {
    "white": (255, 255, 255),
    "black": (0, 0, 0),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "orange": (255, 140, 0),
    "purple": (128, 0, 128),
    "pink": (255, 192, 203),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
}


@dataclass(frozen=True)
class SemanticContext:
    call: ToolCall
    spec: ToolSpec
    ground_truth: ImageGroundTruth
    sample: PixelSample
    scoring: ScoringConfig

    def param(self, name: str) -> Any:
        return self.spec.value_of(self.call.parameters, name)


@dataclass
class SemanticReport:
    issues: list[ValidationIssue] = field(default_factory=list)
    scores: dict[str, float] = field(default_factory=dict)
    adjusted: dict[str, Any] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)

    def lower(self, component: str, score: float) -> None:
        self.scores[component] = min(self.scores.get(component, 100.0), score)

    def add(self, issue: ValidationIssue, *, component: str | None = None, score: float | None = None) -> None:
        self.issues.append(issue)
        self.notes.append(issue.message)
        if component is not None and score is not None:
            self.lower(component, score)

    @property
    def blocking(self) -> bool:
        return any(i.blocking for i in self.issues)


Check = Callable[[SemanticContext, SemanticReport], None]

_GT = "ground_truth_match"
_TOL = "tolerance_fit"
_STRUCT = "structural"
_FMT = "format_compat"


def _color_dict(rgb: tuple[int, int, int]) -> dict[str, Any]:
    return {"hex": rgb_to_hex(*rgb), "r": rgb[0], "g": rgb[1], "b": rgb[2]}


def _match_radius(ctx: SemanticContext, tolerance: float) -> float:
    tiers = ctx.scoring.colors
    return max(tiers.min_coverage_radius, tolerance * tiers.coverage_radius_per_tolerance)


def _check_extent(ctx: SemanticContext, rep: SemanticReport, extent: float, param: str, *, step: float) -> None:
    """Destructive operations must hit between 1% and 95% of the image."""
    v = ctx.scoring.validation
    current = ctx.param(param)
    if extent > v.max_extent_pct:
        rep.add(
            ValidationIssue(
                code=IssueCode.EXTENT_TOO_HIGH,
                message=f"Operation would affect {extent:.1f}% of the image (>{v.max_extent_pct:g}%)",
                parameter=param,
                blocking=True,
                current_value=current,
                suggested_value=None if current is None else max(0, current - step),
                ceiling=v.extent_ceiling,
            ),
            component=_GT,
            score=v.extent_ceiling,
        )
    elif extent < v.min_extent_pct:
        rep.add(
            ValidationIssue(
                code=IssueCode.EXTENT_TOO_LOW,
                message=f"Operation would affect only {extent:.1f}% of the image (<{v.min_extent_pct:g}%)",
                parameter=param,
                blocking=True,
                current_value=current,
                suggested_value=None if current is None else current + step,
                ceiling=v.extent_ceiling,
            ),
            component=_GT,
            score=v.extent_ceiling,
        )
    else:
        rep.notes.append(f"Predicted extent {extent:.1f}% of pixels")


# -- Generic checks --


def check_tolerance_fit(ctx: SemanticContext, rep: SemanticReport) -> None:
    """Tolerance must suit the measured noise: high on noisy images, low on clean ones."""
    name = ctx.spec.tolerance_param
    if name is None:
        return
    tolerance = ctx.param(name)
    if not isinstance(tolerance, int | float):
        return
    v = ctx.scoring.validation
    noise = ctx.ground_truth.noise_level
    if noise > v.noisy_image and tolerance < v.low_tolerance:
        rep.add(
            ValidationIssue(
                code=IssueCode.TOLERANCE_MISMATCH,
                message=(
                    f"Image is noisy ({noise:.0f}/100); tolerance {tolerance:g} may leave speckles. "
                    f"Suggest {v.noisy_tolerance_target:g}"
                ),
                parameter=name,
                current_value=tolerance,
                suggested_value=v.noisy_tolerance_target,
            ),
            component=_TOL,
            score=v.tolerance_mismatch_score,
        )
    elif noise < v.clean_image and tolerance > v.high_tolerance:
        rep.add(
            ValidationIssue(
                code=IssueCode.TOLERANCE_MISMATCH,
                message=(
                    f"Image is clean ({noise:.0f}/100); tolerance {tolerance:g} may bleed into "
                    f"neighbouring colors. Suggest {v.clean_tolerance_target:g}"
                ),
                parameter=name,
                current_value=tolerance,
                suggested_value=v.clean_tolerance_target,
            ),
            component=_TOL,
            score=v.tolerance_mismatch_score + 20,
        )


def check_format_compat(ctx: SemanticContext, rep: SemanticReport) -> None:
    if ctx.spec.expected_for(ctx.call.parameters) is not ExpectedOperation.TRANSPARENCY_CHANGE:
        return
    fmt = ctx.ground_truth.format
    if fmt not in _ALPHA_FORMATS:
        rep.add(
            ValidationIssue(
                code=IssueCode.FORMAT_INCOMPATIBLE,
                message=f"Source format {fmt.upper()} has no alpha channel; output must be saved as PNG",
            ),
            component=_FMT,
            score=ctx.scoring.validation.format_penalty_score,
        )


# -- Per-tool checks --


def _check_color_knockout(ctx: SemanticContext, rep: SemanticReport) -> None:
    tiers = ctx.scoring.colors
    v = ctx.scoring.validation
    gt = ctx.ground_truth
    tolerance = float(ctx.param("tolerance") or 0)
    radius = _match_radius(ctx, tolerance)

    repaired: list[dict[str, Any]] = []
    needs_repair = False
    all_found = True
    coverage = 0.0
    for color in ctx.param("colors") or []:
        target = (int(color["r"]), int(color["g"]), int(color["b"]))
        presence = check_color_presence(target, ctx.sample, match_radius=radius, tiers=tiers)
        rep.lower(_GT, presence.confidence)
        coverage += presence.match_percentage
        label = color.get("hex") or rgb_to_hex(*target)

        if not presence.found:
            all_found = False
            needs_repair = True
            nearest = nearest_dominant(target, gt.dominant_colors)
            nearest_rgb = nearest.rgb if nearest else presence.nearest
            suggestion = _color_dict(nearest_rgb) if nearest_rgb else None
            distance = "no opaque pixels" if math.isinf(presence.min_distance) else f"closest {presence.min_distance:.1f} away"
            rep.add(
                ValidationIssue(
                    code=IssueCode.COLOR_NOT_FOUND,
                    message=(
                        f"Color {label} not found in image ({distance})"
                        + (f"; nearest dominant color is {suggestion['hex']}" if suggestion else "")
                    ),
                    parameter="colors",
                    blocking=True,
                    current_value=color,
                    suggested_value=suggestion,
                    ceiling=v.hallucination_ceiling,
                ),
                component=_GT,
                score=v.hallucination_ceiling,
            )
            if suggestion:
                repaired.append(suggestion)
            continue

        if presence.min_distance >= tiers.tiers[2][0]:
            rep.add(
                ValidationIssue(
                    code=IssueCode.COLOR_APPROXIMATE,
                    message=f"Color {label} only approximately present (distance {presence.min_distance:.1f})",
                    parameter="colors",
                    current_value=color,
                    suggested_value=_color_dict(presence.nearest) if presence.nearest else None,
                )
            )
        else:
            rep.notes.append(f"Color {label} present (distance {presence.min_distance:.1f}, confidence {presence.confidence}%)")
        repaired.append(color)

    if needs_repair and repaired:
        rep.adjusted["colors"] = repaired
    if all_found:
        # every replace mode rewrites the matched pixels
        _check_extent(ctx, rep, min(coverage, 100.0), "tolerance", step=ctx.scoring.recovery.tolerance_step)


def _check_recolor(ctx: SemanticContext, rep: SemanticReport) -> None:
    v = ctx.scoring.validation
    gt = ctx.ground_truth
    mappings = ctx.param("colorMappings") or []
    palette = gt.dominant_colors

    in_range = [m for m in mappings if 0 <= int(m["originalIndex"]) < len(palette)]
    if len(in_range) < len(mappings):
        # with nothing left in range, point every mapping at the nearest valid index
        clamped = [{**m, "originalIndex": min(max(int(m["originalIndex"]), 0), len(palette) - 1)} for m in mappings]
        suggestion = in_range or (clamped if palette else None)
        bad = sorted({int(m["originalIndex"]) for m in mappings} - {int(m["originalIndex"]) for m in in_range})
        rep.add(
            ValidationIssue(
                code=IssueCode.PALETTE_INDEX,
                message=f"Palette index {bad} outside bounds; palette has {len(palette)} colors",
                parameter="colorMappings",
                blocking=True,
                current_value=mappings,
                suggested_value=suggestion,
                ceiling=v.bounds_ceiling,
            ),
            component=_GT,
            score=v.bounds_ceiling,
        )

    if palette and len(mappings) > len(palette):
        rep.add(
            ValidationIssue(
                code=IssueCode.EXCESSIVE_COUNT,
                message=f"Too many color mappings ({len(mappings)}) for {len(palette)} dominant colors",
                parameter="colorMappings",
                current_value=len(mappings),
                suggested_value=len(palette),
            ),
            component=_GT,
            score=80,
        )

    for m in in_range:
        original = palette[int(m["originalIndex"])]
        new_rgb = hex_to_rgb(m["newColor"])
        distance = float(delta_e(original.rgb, new_rgb))
        if distance < v.min_recolor_delta:
            rep.add(
                ValidationIssue(
                    code=IssueCode.NO_OP,
                    message=f"Mapping {original.hex} -> {m['newColor']} is nearly identical (deltaE {distance:.1f})",
                    parameter="colorMappings",
                ),
                component=_GT,
                score=75,
            )

    tolerance = float(ctx.param("tolerance") or 0)
    if in_range:
        radius = _match_radius(ctx, tolerance)
        coverage = sum(
            check_color_presence(palette[i].rgb, ctx.sample, match_radius=radius, tiers=ctx.scoring.colors).match_percentage
            for i in {int(m["originalIndex"]) for m in in_range}
        )
        _check_extent(ctx, rep, min(coverage, 100.0), "tolerance", step=ctx.scoring.recovery.tolerance_step)

    if gt.unique_color_count > v.complex_unique_colors and tolerance < 20:
        rep.add(
            ValidationIssue(
                code=IssueCode.TOLERANCE_MISMATCH,
                message=f"Complex image (~{gt.unique_color_count:,} colors); tolerance {tolerance:g} may recolor unevenly",
                parameter="tolerance",
                current_value=tolerance,
                suggested_value=30,
            ),
            component=_TOL,
            score=75,
        )
    elif gt.unique_color_count < v.simple_unique_colors and tolerance > v.high_tolerance:
        rep.add(
            ValidationIssue(
                code=IssueCode.TOLERANCE_MISMATCH,
                message=f"Simple image (~{gt.unique_color_count:,} colors); tolerance {tolerance:g} may bleed across colors",
                parameter="tolerance",
                current_value=tolerance,
                suggested_value=v.clean_tolerance_target,
            ),
            component=_TOL,
            score=80,
        )

    if ctx.param("blendMode") == "multiply" and palette and palette[0].percentage > 80:
        rep.add(
            ValidationIssue(
                code=IssueCode.QUALITY_RISK,
                message=f"Multiply blend on an image dominated by one color ({palette[0].percentage:.0f}%) darkens it overall",
                parameter="blendMode",
            ),
            component=_GT,
            score=85,
        )


def _check_texture_cut(ctx: SemanticContext, rep: SemanticReport) -> None:
    v = ctx.scoring.validation
    if ctx.param("textureType") == "custom":
        rep.add(
            ValidationIssue(
                code=IssueCode.UNSUPPORTED_OPTION,
                message="Custom textures require an uploaded texture; use a built-in pattern",
                parameter="textureType",
                blocking=True,
                current_value="custom",
                suggested_value="noise",
                ceiling=v.bounds_ceiling,
            ),
            component=_STRUCT,
            score=v.bounds_ceiling,
        )
        return

    amount = float(ctx.param("amount"))
    _check_extent(ctx, rep, amount * 100.0, "amount", step=ctx.scoring.recovery.intensity_step)
    if 0 < amount < 0.1:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Cut amount {amount:g} will be barely visible", parameter="amount"),
            component=_GT,
            score=80,
        )
    elif amount > 0.9:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Cut amount {amount:g} removes most of the image", parameter="amount"),
            component=_GT,
            score=85,
        )

    scale = float(ctx.param("scale"))
    width = ctx.ground_truth.width
    if width < 500 and scale > 3:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Texture scale {scale:g} is coarse for a {width}px wide image", parameter="scale"),
            component=_GT,
            score=85,
        )
    elif width > 3000 and scale < 0.5:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Texture scale {scale:g} is too fine for a {width}px wide image", parameter="scale"),
            component=_GT,
            score=85,
        )


def _check_background_remover(ctx: SemanticContext, rep: SemanticReport) -> None:
    v = ctx.scoring.validation
    gt = ctx.ground_truth
    if gt.megapixels > v.max_background_megapixels:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Large image ({gt.megapixels:.1f}MP) may be downscaled by the model"),
            component=_STRUCT,
            score=85,
        )
    top = gt.dominant_colors[0].percentage if gt.dominant_colors else 0.0
    if gt.unique_color_count > v.busy_unique_colors and top < 20:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message="Busy image without a clear background color; edges may be imperfect"),
            component=_GT,
            score=75,
        )
    if gt.has_transparency:
        rep.add(
            ValidationIssue(code=IssueCode.NO_OP, message="Image already has transparency; background may already be removed"),
            component=_GT,
            score=80,
        )


def _check_upscaler(ctx: SemanticContext, rep: SemanticReport) -> None:
    v = ctx.scoring.validation
    gt = ctx.ground_truth
    scale = float(ctx.param("scaleFactor"))
    if gt.pixel_count:
        output_mp = gt.pixel_count * scale * scale / 1_000_000
        if output_mp > v.max_output_megapixels:
            max_scale = math.floor(math.sqrt(v.max_output_megapixels * 1_000_000 / gt.pixel_count) * 10) / 10
            rep.add(
                ValidationIssue(
                    code=IssueCode.OUTPUT_TOO_LARGE,
                    message=(
                        f"Output size {output_mp:.1f}MP exceeds maximum {v.max_output_megapixels:g}MP. "
                        f"Reduce scale factor to <={max_scale:g}x"
                    ),
                    parameter="scaleFactor",
                    blocking=True,
                    current_value=scale,
                    suggested_value=max_scale if max_scale >= 1 else None,
                    ceiling=v.output_size_ceiling,
                ),
                component=_STRUCT,
                score=v.output_size_ceiling,
            )
    if scale > v.max_safe_upscale and gt.width < v.small_upscale_width:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"{scale:g}x upscale of a {gt.width}px image will look soft", parameter="scaleFactor"),
            component=_GT,
            score=75,
        )
    if gt.sharpness_score < 40:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Source is blurry (sharpness {gt.sharpness_score:.0f}); upscaling magnifies blur"),
            component=_GT,
            score=v.quality_risk_score,
        )
    if gt.noise_level > 50:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message=f"Source is noisy ({gt.noise_level:.0f}); upscaling magnifies noise"),
            component=_GT,
            score=75,
        )


def _check_palette(ctx: SemanticContext, rep: SemanticReport) -> None:
    gt = ctx.ground_truth
    if ctx.param("paletteSize") == 36 and gt.unique_color_count < ctx.scoring.validation.detailed_palette_min_colors:
        rep.add(
            ValidationIssue(
                code=IssueCode.EXCESSIVE_COUNT,
                message=f"36-color palette requested but image has only ~{gt.unique_color_count} colors",
                parameter="paletteSize",
                current_value=36,
                suggested_value=9,
            ),
            component=_GT,
            score=85,
        )


def _bounds_issue(name: str, value: float, upper: int, ctx: SemanticContext) -> ValidationIssue:
    v = ctx.scoring.validation
    return ValidationIssue(
        code=IssueCode.OUT_OF_BOUNDS,
        message=f"Coordinate {name}={value:g} outside image bounds [0, {upper - 1}]",
        parameter=name,
        blocking=True,
        current_value=value,
        suggested_value=int(min(max(value, 0), upper - 1)),
        ceiling=v.bounds_ceiling,
    )


def _check_pick_color(ctx: SemanticContext, rep: SemanticReport) -> None:
    gt = ctx.ground_truth
    for name, upper in (("x", gt.width), ("y", gt.height)):
        value = float(ctx.param(name))
        if value < 0 or value >= upper:
            rep.add(_bounds_issue(name, value, upper, ctx), component=_GT, score=ctx.scoring.validation.bounds_ceiling)


def _check_auto_crop(ctx: SemanticContext, rep: SemanticReport) -> None:
    gt = ctx.ground_truth
    background = str(ctx.param("backgroundColor") or "white").lower()
    if background == "transparent":
        if not gt.has_transparency:
            rep.add(
                ValidationIssue(code=IssueCode.NO_OP, message="No transparent border to trim", parameter="backgroundColor"),
                component=_GT,
                score=60,
            )
    elif background != "auto":
        rgb = hex_to_rgb(background) if is_hex_color(background) else _NAMED_COLORS.get(background)
        if rgb is None:
            rep.add(
                ValidationIssue(
                    code=IssueCode.UNSUPPORTED_OPTION,
                    message=f"Unknown background color '{background}'",
                    parameter="backgroundColor",
                    blocking=True,
                    current_value=background,
                    suggested_value="auto",
                    ceiling=ctx.scoring.validation.bounds_ceiling,
                ),
                component=_GT,
                score=ctx.scoring.validation.bounds_ceiling,
            )
        else:
            presence = check_color_presence(
                rgb, ctx.sample, match_radius=_match_radius(ctx, 30), tiers=ctx.scoring.colors
            )
            rep.lower(_GT, max(presence.confidence, 50))
            if not presence.found:
                rep.add(
                    ValidationIssue(
                        code=IssueCode.COLOR_NOT_FOUND,
                        message=f"Background color {background} not found in image; nothing to trim",
                        parameter="backgroundColor",
                        current_value=background,
                        suggested_value="auto",
                    )
                )

    padding = float(ctx.param("minPadding") or 0)
    if gt.width and padding * 2 >= min(gt.width, gt.height):
        rep.add(
            ValidationIssue(
                code=IssueCode.OUT_OF_BOUNDS,
                message=f"Padding {padding:g}px leaves no content in a {gt.width}x{gt.height} image",
                parameter="minPadding",
                blocking=True,
                current_value=padding,
                suggested_value=0,
                ceiling=ctx.scoring.validation.bounds_ceiling,
            ),
            component=_GT,
            score=ctx.scoring.validation.bounds_ceiling,
        )


def _check_crop_with_spacing(ctx: SemanticContext, rep: SemanticReport) -> None:
    gt = ctx.ground_truth
    spacing = float(ctx.param("spacing"))
    unit = ctx.param("unit")
    dpi = float(ctx.param("dpi") or 300)
    spacing_px = spacing * dpi if unit == "inches" else spacing
    longest = max(gt.width, gt.height)
    if longest and spacing_px > longest:
        fallback_px = longest / 4
        suggested = round(fallback_px / dpi, 2) if unit == "inches" else int(fallback_px)
        rep.add(
            ValidationIssue(
                code=IssueCode.OUT_OF_BOUNDS,
                message=f"Spacing {spacing_px:.0f}px exceeds the image size ({longest}px)",
                parameter="spacing",
                blocking=True,
                current_value=spacing,
                suggested_value=suggested,
                ceiling=ctx.scoring.validation.bounds_ceiling,
            ),
            component=_GT,
            score=ctx.scoring.validation.bounds_ceiling,
        )


def _check_smart_resize(ctx: SemanticContext, rep: SemanticReport) -> None:
    gt = ctx.ground_truth
    width, height = ctx.param("width"), ctx.param("height")
    if ctx.param("unit") == "percent":
        width = gt.width * width / 100 if width else None
        height = gt.height * height / 100 if height else None
    if (width and width > gt.width) or (height and height > gt.height):
        rep.add(
            ValidationIssue(
                code=IssueCode.QUALITY_RISK,
                message=f"Upscaling from {gt.width}x{gt.height} degrades quality; prefer the upscaler tool",
            ),
            component=_GT,
            score=75,
        )
    if width and height and ctx.param("maintainAspectRatio") is False and gt.height:
        if abs((width / height) - (gt.width / gt.height)) / (gt.width / gt.height) > 0.01:
            rep.add(ValidationIssue(code=IssueCode.QUALITY_RISK, message="Target size changes the aspect ratio; image will be distorted"))


def _check_edit_image(ctx: SemanticContext, rep: SemanticReport) -> None:
    prompt = str(ctx.param("prompt")).strip()
    if len(prompt) < 3:
        rep.add(
            ValidationIssue(code=IssueCode.QUALITY_RISK, message="Edit prompt is too short to be actionable", parameter="prompt"),
            component=_GT,
            score=60,
        )


def _check_mockup(ctx: SemanticContext, rep: SemanticReport) -> None:
    if ctx.param("color") == "custom" and not is_hex_color(ctx.param("customColor")):
        rep.add(
            ValidationIssue(
                code=IssueCode.UNSUPPORTED_OPTION,
                message="Product color 'custom' requires a hex customColor",
                parameter="color",
                blocking=True,
                current_value="custom",
                suggested_value="white",
                ceiling=ctx.scoring.validation.bounds_ceiling,
            ),
            component=_STRUCT,
            score=ctx.scoring.validation.bounds_ceiling,
        )
    if not ctx.ground_truth.has_transparency:
        rep.add(
            ValidationIssue(code=IssueCode.FORMAT_INCOMPATIBLE, message="Design has no transparency; its background will be printed too"),
            component=_FMT,
            score=85,
        )


_CHECKS: dict[str, Check] = {
    "color_knockout": _check_color_knockout,
    "recolor_image": _check_recolor,
    "texture_cut": _check_texture_cut,
    "background_remover": _check_background_remover,
    "upscaler": _check_upscaler,
    "extract_color_palette": _check_palette,
    "pick_color_at_position": _check_pick_color,
    "auto_crop": _check_auto_crop,
    "crop_with_spacing": _check_crop_with_spacing,
    "smart_resize": _check_smart_resize,
    "edit_image": _check_edit_image,
    "generate_mockup": _check_mockup,
}


def run_semantic_checks(ctx: SemanticContext) -> SemanticReport:
    """Run the tool's own check followed by the generic ones."""
    report = SemanticReport()
    tool_check = _CHECKS.get(ctx.spec.name)
    if tool_check is not None:
        tool_check(ctx, report)
    check_tolerance_fit(ctx, report)
    check_format_compat(ctx, report)
    return report
