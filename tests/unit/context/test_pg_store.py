"""PgContextStore against a fake AsyncSession."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from editguard.config.scoring import DEFAULT_SCORING
from editguard.context.pg_store import PgContextStore
from editguard.infra.models import EditFailedAttempt, EditMessage, EditToolExecution
from editguard.shared.types import FailureMode
from tests.fakes.records import make_attempt, make_message, make_record, make_specs
from tests.fakes.session import FakeAsyncSession, FakeOrmRow, FakeResult, FakeSessionFactory

_NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _execution_row(**overrides: object) -> FakeOrmRow:
    values: dict[str, object] = {
        "tool_name": "color_knockout",
        "parameters": {"tolerance": 30},
        "success": True,
        "confidence": 90,
        "metrics": {"pixels_changed": 10, "percentage_changed": 1.0, "execution_time_ms": 5, "quality_score": 90},
        "image_specs": {
            "width": 100,
            "height": 100,
            "has_transparency": False,
            "unique_color_count": 10,
            "sharpness_score": 80.0,
            "noise_level": 20.0,
            "is_print_ready": False,
            "aspect_ratio": "1:1",
            "format": "png",
        },
        "created_at": _NOW,
        "conversation_id": "c1",
    }
    values.update(overrides)
    return FakeOrmRow(**values)


def _store(session: FakeAsyncSession) -> PgContextStore:
    return PgContextStore(session_factory=FakeSessionFactory(session))  # type: ignore[arg-type]


@pytest.mark.unit
class TestWrites:
    async def test_store_upserts_and_adds_execution(self) -> None:
        session = FakeAsyncSession()
        assert await _store(session).store("c1", make_record()) is True
        assert len(session.execute_calls) == 2
        assert session.commit_count == 1
        (row,) = session.added
        assert isinstance(row, EditToolExecution)
        assert row.conversation_id == "c1"
        assert row.metrics["quality_score"] == 95
        assert row.image_specs["width"] == 100

    async def test_store_prunes_tool_records_beyond_cap(self) -> None:
        session = FakeAsyncSession()
        store = PgContextStore(
            session_factory=FakeSessionFactory(session),  # type: ignore[arg-type]
            thresholds=replace(DEFAULT_SCORING.storage, max_records=5),
        )
        await store.store("c1", make_record())

        statement, _ = session.execute_calls[-1]
        assert isinstance(statement, sa.Delete)
        sql = str(statement.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))
        assert sql.startswith("DELETE FROM edit_tool_executions")
        assert "tool_name = 'color_knockout'" in sql
        assert "NOT IN" in sql
        assert "LIMIT 5" in sql
        # pruning happens inside the insert's transaction
        assert session.commit_count == 1

    async def test_below_gate_never_opens_session(self) -> None:
        session = FakeAsyncSession()
        assert await _store(session).store("c1", make_record(confidence=40)) is False
        assert session.execute_calls == []
        assert session.added == []

    async def test_record_turn(self) -> None:
        session = FakeAsyncSession()
        await _store(session).record_turn("c1", make_message("hello"))
        (row,) = session.added
        assert isinstance(row, EditMessage)
        assert row.content == "hello"

    async def test_record_failure(self) -> None:
        session = FakeAsyncSession()
        await _store(session).record_failure("c1", make_attempt(2))
        (row,) = session.added
        assert isinstance(row, EditFailedAttempt)
        assert row.attempt == 2
        assert row.failure_mode == "execution"

    async def test_remember_ground_truth_is_single_upsert(
        self, analyzer, design_png: bytes  # type: ignore[no-untyped-def]
    ) -> None:
        session = FakeAsyncSession()
        await _store(session).remember_ground_truth("c1", analyzer.analyze(design_png))
        assert len(session.execute_calls) == 1
        assert session.added == []
        assert session.commit_count == 1


@pytest.mark.unit
class TestReads:
    async def test_find_similar_ranks_rows(self) -> None:
        session = FakeAsyncSession()
        session.set_scalars_result([_execution_row(), _execution_row(image_specs={**_execution_row().image_specs, "width": 5000})])
        matches = await _store(session).find_similar("color_knockout", make_specs())  # type: ignore[arg-type]
        assert len(matches) == 2
        assert matches[0].similarity == 100.0
        assert matches[0].record.conversation_id == "c1"

    async def test_get_context(self) -> None:
        session = FakeAsyncSession()
        session.set_execute_result(
            scalar_one_or_none_value=FakeOrmRow(created_at=_NOW, last_updated_at=_NOW, ground_truth=None)
        )
        session.set_scalars_results(
            [
                [FakeOrmRow(role="user", content="remove the red", created_at=_NOW)],
                [_execution_row()],
            ]
        )
        context = await _store(session).get_context("c1")
        assert context is not None
        assert context.messages[0].content == "remove the red"
        assert context.tool_executions[0].tool_name == "color_knockout"
        assert context.image_ground_truth is None

    async def test_get_context_missing(self) -> None:
        session = FakeAsyncSession()
        assert await _store(session).get_context("nope") is None
        assert session.scalars_calls == []

    async def test_get_failures(self) -> None:
        session = FakeAsyncSession()
        session.set_scalars_result(
            [
                FakeOrmRow(
                    attempt=1,
                    tool_name="upscaler",
                    parameters={"scaleFactor": 2},
                    state="failed",
                    elapsed_ms=30,
                    error="timeout",
                    failure_mode="timeout",
                    quality_score=None,
                    confidence=None,
                )
            ]
        )
        (attempt,) = await _store(session).get_failures("c1")
        assert attempt.failure_mode is FailureMode.TIMEOUT
        assert attempt.success is False

    async def test_stats(self) -> None:
        session = FakeAsyncSession()
        session.set_execute_results([FakeResult(scalar_value=n) for n in (3, 7, 2, 11)])
        stats = await _store(session).stats()
        assert (stats.conversations, stats.tool_executions, stats.failed_attempts, stats.messages) == (3, 7, 2, 11)


@pytest.mark.unit
class TestPrune:
    async def test_deletes_stale_conversations(self) -> None:
        session = FakeAsyncSession()
        session.set_execute_results([FakeResult(fetchall_rows=[("c1",), ("c2",)])])
        assert await _store(session).prune(keep_recent=10) == 2
        assert len(session.execute_calls) == 2
        assert session.commit_count == 1

    async def test_nothing_stale(self) -> None:
        session = FakeAsyncSession()
        assert await _store(session).prune(keep_recent=10) == 0
        assert session.commit_count == 0


@pytest.mark.unit
class TestDatabaseDown:
    async def test_errors_swallowed_at_the_port(self) -> None:
        session = FakeAsyncSession(fail_with=ConnectionError("db down"))
        store = _store(session)
        assert await store.store("c1", make_record()) is False
        assert await store.find_similar("color_knockout", make_specs()) == []  # type: ignore[arg-type]
        assert await store.get_context("c1") is None
        assert await store.prune() == 0
        await store.record_turn("c1", make_message())
