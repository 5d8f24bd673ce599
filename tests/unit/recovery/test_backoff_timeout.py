"""Backoff schedule and stage deadlines."""

from __future__ import annotations

import asyncio

import pytest

from editguard.config.scoring import RecoveryThresholds
from editguard.recovery.backoff import RetryPolicy
from editguard.recovery.timeout import execute_with_timeout
from editguard.shared.errors import PortTimeoutError, StageTimeoutError


@pytest.mark.unit
class TestRetryPolicy:
    def test_exponential_schedule(self) -> None:
        policy = RetryPolicy()
        assert [policy.delay_for_attempt(i) for i in range(3)] == [1000, 2000, 4000]

    def test_delay_capped(self) -> None:
        policy = RetryPolicy(max_delay_ms=3000)
        assert policy.delay_for_attempt(5) == 3000

    def test_negative_attempt_treated_as_first(self) -> None:
        assert RetryPolicy().delay_for_attempt(-1) == 1000

    def test_exhausted(self) -> None:
        policy = RetryPolicy(max_attempts=2)
        assert not policy.exhausted(1)
        assert policy.exhausted(2)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_from_thresholds(self) -> None:
        thresholds = RecoveryThresholds(base_delay_ms=50, rate_limit_delay_ms=70)
        policy = RetryPolicy.from_thresholds(thresholds, max_attempts=4)
        assert policy.max_attempts == 4
        assert policy.base_delay_ms == 50
        assert policy.rate_limit_delay_ms == 70
        assert RetryPolicy.from_thresholds(thresholds).max_attempts == 3


@pytest.mark.unit
class TestExecuteWithTimeout:
    async def test_returns_result(self) -> None:
        async def work() -> str:
            return "done"

        assert await execute_with_timeout(work, 1.0, stage="analysis") == "done"

    async def test_deadline_raises_typed_error(self) -> None:
        async def slow() -> None:
            await asyncio.sleep(1.0)

        with pytest.raises(StageTimeoutError) as exc_info:
            await execute_with_timeout(slow, 0.01, stage="dispatch")
        assert exc_info.value.stage == "dispatch"
        assert exc_info.value.timeout_ms == 10
        assert isinstance(exc_info.value, PortTimeoutError)

    @pytest.mark.parametrize("timeout_s", [None, 0])
    async def test_disabled_deadline(self, timeout_s: float | None) -> None:
        async def work() -> int:
            await asyncio.sleep(0.01)
            return 7

        assert await execute_with_timeout(work, timeout_s, stage="store") == 7

    async def test_inner_errors_propagate(self) -> None:
        async def broken() -> None:
            msg = "boom"
            raise RuntimeError(msg)

        with pytest.raises(RuntimeError, match="boom"):
            await execute_with_timeout(broken, 1.0, stage="store")
