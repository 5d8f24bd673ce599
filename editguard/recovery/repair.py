"""Parameter repair shared by the classifier and the retry strategist.

A fix with a concrete suggested value is applied as is. A fix without one
is derived from ground truth where a rule exists for that parameter; any
other fix leaves the parameter unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.tools.catalog import TOOL_CATALOG

if TYPE_CHECKING:
    from editguard.shared.types import ImageGroundTruth, ParameterFix, ToolCall

logger = logging.getLogger(__name__)

_COORDINATE_PARAMS = ("x", "y", "coordinates")


def _color_dict(c: Any) -> dict[str, Any]:
    return {"hex": c.hex, "r": c.r, "g": c.g, "b": c.b}


def _clamp_coordinates(params: dict[str, Any], gt: ImageGroundTruth) -> None:
    for name, upper in (("x", gt.width), ("y", gt.height)):
        value = params.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            params[name] = int(max(0, min(value, upper - 1)))


def repair_parameters(
    call: ToolCall,
    fixes: Sequence[ParameterFix],
    ground_truth: ImageGroundTruth,
    scoring: ScoringConfig = DEFAULT_SCORING,
) -> dict[str, Any]:
    """Copy of call.parameters with every applicable fix applied."""
    r = scoring.recovery
    v = scoring.validation
    spec = TOOL_CATALOG.get(call.tool_name)
    list_param = spec.list_param if spec else None
    adjusted = dict(call.parameters)

    for fix in fixes:
        name = fix.parameter
        current = adjusted.get(name)
        suggested = fix.suggested_value

        if isinstance(current, list) and isinstance(suggested, int) and not isinstance(suggested, bool):
            adjusted[name] = current[:suggested]
        elif suggested is not None:
            adjusted[name] = suggested
        elif name == "colors":
            top = ground_truth.dominant_colors[: r.max_repaired_colors]
            if top:
                adjusted[name] = [_color_dict(c) for c in top]
        elif spec is not None and name == spec.tolerance_param:
            base = spec.value_of(adjusted, name)
            base = 30 if not isinstance(base, (int, float)) else base
            if ground_truth.noise_level > v.noisy_image:
                adjusted[name] = max(base, v.noisy_tolerance_target)
            else:
                adjusted[name] = min(base, v.clean_tolerance_target)
        elif name in _COORDINATE_PARAMS:
            _clamp_coordinates(adjusted, ground_truth)
        elif name == list_param and isinstance(current, list):
            limit = min(r.max_list_items, len(ground_truth.dominant_colors)) or r.max_list_items
            adjusted[name] = current[:limit]
        else:
            logger.debug("No repair for %s on %s", name, call.tool_name)
    return adjusted


def has_repair(
    call: ToolCall,
    fixes: Sequence[ParameterFix],
    ground_truth: ImageGroundTruth | None,
    scoring: ScoringConfig = DEFAULT_SCORING,
) -> bool:
    """True when applying fixes would change the call's parameters.

    Without ground truth only fixes carrying a concrete value count.
    """
    if ground_truth is None:
        return any(f.suggested_value is not None and f.suggested_value != f.current_value for f in fixes)
    return repair_parameters(call, fixes, ground_truth, scoring) != call.parameters
