"""Run-scoped identifiers propagated via contextvars.

- The orchestrator opens a run for every chain; the gateway may pass the
  conversation id in
- All layers read the ids for structured logging
- RunContextFilter copies them onto every LogRecord
"""

from __future__ import annotations

import logging
from collections.abc import Generator  # noqa: TC003 -- used at runtime by contextmanager
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4

current_run_id: ContextVar[str] = ContextVar("current_run_id", default="")
current_conversation_id: ContextVar[str] = ContextVar("current_conversation_id", default="")


def get_run_id() -> str:
    """Return the current run id (empty string outside a run)."""
    return current_run_id.get()


def get_conversation_id() -> str:
    return current_conversation_id.get()


@contextmanager
def run_context(
    conversation_id: str,
    run_id: str | None = None,
) -> Generator[str, None, None]:
    """Scope a pipeline run.

    Generates a run id when none is given and restores the previous ids on
    exit, so nested runs (a chain inside a gateway request) behave.

    Usage::

        with run_context("conv-1") as rid:
            ...
    """
    effective_id = run_id or uuid4().hex
    run_token = current_run_id.set(effective_id)
    conv_token = current_conversation_id.set(conversation_id)
    try:
        yield effective_id
    finally:
        current_conversation_id.reset(conv_token)
        current_run_id.reset(run_token)


class RunContextFilter(logging.Filter):
    """Attach run_id and conversation_id attributes to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id()
        record.conversation_id = get_conversation_id()
        return True
