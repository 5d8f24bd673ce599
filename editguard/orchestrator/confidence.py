"""Chain-level confidence aggregation."""

from __future__ import annotations

from collections.abc import Iterable

from editguard.config.scoring import ChainThresholds


def aggregate_confidence(
    scores: Iterable[float],
    *,
    call_count: int,
    thresholds: ChainThresholds | None = None,
) -> int:
    """Minimum of all stage confidences, penalized for long chains, clamped to [0, 100].

    Pessimistic on purpose: one weak stage caps the whole chain. No scores
    means nothing was verified, which yields 0.
    """
    t = thresholds or ChainThresholds()
    values = list(scores)
    if not values:
        return 0
    overall = min(values)
    if call_count > t.long_chain_calls:
        overall -= t.long_chain_penalty
    return int(round(max(0.0, min(100.0, overall))))
