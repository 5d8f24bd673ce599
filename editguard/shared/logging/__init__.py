"""Logging helpers: structured errors and process-wide setup."""

from __future__ import annotations

import logging

from editguard.shared.logging.error_handler import (
    StructuredError,
    create_structured_error,
    log_structured_error,
)
from editguard.shared.run_context import RunContextFilter

_FORMAT = "%(asctime)s %(levelname)s %(name)s [run=%(run_id)s conv=%(conversation_id)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler that includes run-context ids."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(RunContextFilter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())


__all__ = [
    "StructuredError",
    "configure_logging",
    "create_structured_error",
    "log_structured_error",
]
