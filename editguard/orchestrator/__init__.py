"""Orchestration of guarded tool calls and chains."""

from editguard.orchestrator.confidence import aggregate_confidence
from editguard.orchestrator.orchestrator import CallOutcome, ChainResult, ToolCallOrchestrator
from editguard.orchestrator.state_machine import AttemptMachine, AttemptState, InvalidTransitionError

__all__ = [
    "AttemptMachine",
    "AttemptState",
    "CallOutcome",
    "ChainResult",
    "InvalidTransitionError",
    "ToolCallOrchestrator",
    "aggregate_confidence",
]
