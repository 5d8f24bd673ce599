"""Historical calibration against similar past successful executions.

- No history: neutral score, no adjustments
- Numeric tunables outside mean +/- 2 stdev are nudged to the mean
- List parameters far longer than the historical average are flagged
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from editguard.shared.types import IssueCode, ValidationIssue

if TYPE_CHECKING:
    from editguard.config.scoring import ValidationThresholds
    from editguard.shared.types import SimilarExecution, ToolCall
    from editguard.tools.catalog import ToolSpec


@dataclass(frozen=True)
class HistoryCalibration:
    score: float
    matches: int
    adjusted: dict[str, Any] = field(default_factory=dict)
    issues: list[ValidationIssue] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _nudged(mean: float, current: Any, samples: Sequence[Any]) -> float | int:
    if isinstance(current, int) and all(isinstance(s, int) for s in samples):
        return round(mean)
    return round(mean, 2)


def calibrate_with_history(
    call: ToolCall,
    spec: ToolSpec,
    history: Sequence[SimilarExecution],
    thresholds: ValidationThresholds,
) -> HistoryCalibration:
    records = [h.record for h in history if h.record.tool_name == call.tool_name and h.record.success]
    if not records:
        return HistoryCalibration(
            score=float(thresholds.neutral_history),
            matches=0,
            notes=[f"No similar past executions; neutral historical confidence {thresholds.neutral_history}%"],
        )

    score = statistics.fmean(r.confidence for r in records)
    adjusted: dict[str, Any] = {}
    issues: list[ValidationIssue] = []
    notes = [f"{len(records)} similar past executions averaged {score:.0f}% confidence"]

    for name in spec.tunable:
        current = call.parameters.get(name)
        samples = [r.parameters[name] for r in records if _is_number(r.parameters.get(name))]
        if not _is_number(current) or len(samples) < 2:
            continue
        mean = statistics.fmean(samples)
        spread = max(statistics.stdev(samples), abs(mean) * thresholds.history_min_stdev_fraction, 1e-9)
        if abs(current - mean) > thresholds.history_stdev_multiplier * spread:
            target = _nudged(mean, current, samples)
            adjusted[name] = target
            message = f"{name}={current:g} is far from the historical mean {mean:.1f}; nudged to {target:g}"
            issues.append(
                ValidationIssue(
                    code=IssueCode.HISTORICAL_OUTLIER,
                    message=message,
                    parameter=name,
                    current_value=current,
                    suggested_value=target,
                )
            )
            notes.append(message)

    list_name = spec.list_param
    current_list = call.parameters.get(list_name) if list_name else None
    if list_name and isinstance(current_list, list):
        counts = [len(r.parameters[list_name]) for r in records if isinstance(r.parameters.get(list_name), list)]
        if counts:
            avg = statistics.fmean(counts)
            if len(current_list) > thresholds.history_count_multiplier * avg:
                message = f"{len(current_list)} {list_name} entries is well above the usual {avg:.1f}"
                issues.append(
                    ValidationIssue(
                        code=IssueCode.EXCESSIVE_COUNT,
                        message=message,
                        parameter=list_name,
                        current_value=len(current_list),
                        suggested_value=max(1, round(avg)),
                    )
                )
                notes.append(message)

    return HistoryCalibration(
        score=min(100.0, max(0.0, score)),
        matches=len(records),
        adjusted=adjusted,
        issues=issues,
        notes=notes,
    )
