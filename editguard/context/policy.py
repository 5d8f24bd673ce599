"""Storage gate for the similarity index."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from editguard.config.scoring import StorageThresholds
    from editguard.shared.types import ToolExecutionRecord


def should_store(record: ToolExecutionRecord, thresholds: StorageThresholds) -> bool:
    """Only successful executions at or above the confidence gate are learned from."""
    return record.success and record.confidence >= thresholds.min_confidence
