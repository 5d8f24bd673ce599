"""Deadline enforcement for pipeline suspension points.

Every slow or fallible await (image load, analysis, dispatch, store) goes
through execute_with_timeout so a deadline miss surfaces as a typed
StageTimeoutError the classifier can turn into a timeout failure.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

from editguard.shared.errors import StageTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


async def execute_with_timeout(  # noqa: UP047
    fn: Callable[[], Awaitable[T]],
    timeout_s: float | None,
    *,
    stage: str,
) -> T:
    """Await fn() under a deadline.

    Args:
        fn: Async callable (no arguments) to execute.
        timeout_s: Deadline in seconds; None or <= 0 disables it.
        stage: Stage name reported on timeout.

    Raises:
        StageTimeoutError: If the deadline elapses.
    """
    if timeout_s is None or timeout_s <= 0:
        return await fn()
    try:
        return await asyncio.wait_for(fn(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise StageTimeoutError(stage, int(timeout_s * 1000)) from exc
