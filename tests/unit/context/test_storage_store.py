"""StorageContextStore over a fake key/value backend."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.config.scoring import StorageThresholds
from editguard.context.storage_store import StorageContextStore
from editguard.shared.errors import PortUnavailableError
from editguard.shared.types import FailureMode
from tests.fakes.records import make_attempt, make_message, make_record, make_specs
from tests.fakes.storage import FakeStorage


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def store(storage: FakeStorage) -> StorageContextStore:
    return StorageContextStore(storage)


class _WriteDuringScan(FakeStorage):
    """Lets one concurrent write land right after prune has read a conversation's meta."""

    def __init__(self, watched_key: str) -> None:
        super().__init__()
        self._watched_key = watched_key
        self.concurrent_write: Callable[[], Awaitable[None]] | None = None

    async def get(self, key: str) -> Any | None:
        value = await super().get(key)
        if key == self._watched_key and self.concurrent_write is not None:
            write, self.concurrent_write = self.concurrent_write, None
            await write()
        return value


@pytest.mark.unit
class TestKeyLayout:
    async def test_store_writes_index_and_conversation(self, store: StorageContextStore, storage: FakeStorage) -> None:
        assert await store.store("c1", make_record()) is True
        keys = await storage.list_keys("*")
        assert keys == [
            "editguard:conv:c1:executions",
            "editguard:conv:c1:meta",
            "editguard:records:color_knockout",
        ]

    async def test_custom_prefix(self, storage: FakeStorage) -> None:
        store = StorageContextStore(storage, prefix="tenant-a")
        await store.record_turn("c1", make_message())
        assert await storage.list_keys("tenant-a:conv:c1:*") == [
            "tenant-a:conv:c1:messages",
            "tenant-a:conv:c1:meta",
        ]


@pytest.mark.unit
class TestRoundTrip:
    async def test_context_round_trip(
        self, store: StorageContextStore, analyzer: GroundTruthAnalyzer, design_png: bytes
    ) -> None:
        gt = analyzer.analyze(design_png)
        record = make_record()
        await store.record_turn("c1", make_message("knock out the red"))
        await store.remember_ground_truth("c1", gt)
        await store.store("c1", record)

        context = await store.get_context("c1")
        assert context is not None
        assert context.image_ground_truth == gt
        assert context.messages == (make_message("knock out the red"),)
        assert context.tool_executions == (record,)

    async def test_similar_round_trip(self, store: StorageContextStore) -> None:
        record = make_record(parameters={"colors": [{"hex": "#FF0000"}], "tolerance": 28})
        await store.store("c1", record)
        matches = await store.find_similar("color_knockout", make_specs())  # type: ignore[arg-type]
        assert matches[0].record == record

    async def test_failures_round_trip(self, store: StorageContextStore) -> None:
        await store.record_failure("c1", make_attempt(1, error="timeout"))
        failures = await store.get_failures("c1")
        assert failures[0].error == "timeout"
        assert failures[0].failure_mode is FailureMode.EXECUTION

    async def test_missing_conversation(self, store: StorageContextStore) -> None:
        assert await store.get_context("nope") is None


@pytest.mark.unit
class TestMaintenance:
    async def test_index_trimmed(self, storage: FakeStorage) -> None:
        store = StorageContextStore(storage, thresholds=StorageThresholds(max_records=2))
        for i in range(4):
            await store.store("c1", make_record(minutes=i, parameters={"n": i}))
        raw = await storage.get_list("editguard:records:color_knockout")
        assert [r["parameters"]["n"] for r in raw] == [2, 3]

    async def test_prune_keeps_newest_and_index(self, store: StorageContextStore, storage: FakeStorage) -> None:
        await store.store("old", make_record())
        await storage.put(
            "editguard:conv:old:meta",
            {"created_at": "2020-01-01T00:00:00+00:00", "last_updated_at": "2020-01-01T00:00:00+00:00", "ground_truth": None},
        )
        await store.record_turn("new", make_message())

        assert await store.prune(keep_recent=1) == 1
        assert await store.get_context("old") is None
        assert await store.get_context("new") is not None
        assert len(await store.find_similar("color_knockout", make_specs())) == 1  # type: ignore[arg-type]

    async def test_prune_spares_conversation_written_during_scan(self) -> None:
        storage = _WriteDuringScan("editguard:conv:old:meta")
        store = StorageContextStore(storage)
        await store.record_turn("old", make_message("first"))
        await storage.put(
            "editguard:conv:old:meta",
            {"created_at": "2020-01-01T00:00:00+00:00", "last_updated_at": "2020-01-01T00:00:00+00:00", "ground_truth": None},
        )
        await store.record_turn("new", make_message())

        async def late_turn() -> None:
            await store.record_turn("old", make_message("second"))

        storage.concurrent_write = late_turn
        assert await store.prune(keep_recent=1) == 0
        context = await store.get_context("old")
        assert context is not None
        assert [m.content for m in context.messages] == ["first", "second"]

    async def test_prunes_run_one_at_a_time(self, store: StorageContextStore) -> None:
        for cid in ("a", "b", "c"):
            await store.record_turn(cid, make_message())
        removed = await asyncio.gather(store.prune(keep_recent=1), store.prune(keep_recent=1))
        assert sum(removed) == 2
        assert (await store.stats()).conversations == 1

    async def test_stats(self, store: StorageContextStore) -> None:
        await store.store("c1", make_record())
        await store.record_turn("c1", make_message())
        await store.record_failure("c2", make_attempt())
        stats = await store.stats()
        assert (stats.conversations, stats.tool_executions, stats.failed_attempts, stats.messages) == (2, 1, 1, 1)

    async def test_clear_only_touches_prefix(self, store: StorageContextStore, storage: FakeStorage) -> None:
        await storage.put("other:key", {"keep": True})
        await store.store("c1", make_record())
        await store.clear()
        assert await storage.list_keys("*") == ["other:key"]

    async def test_close_releases_storage(self, store: StorageContextStore, storage: FakeStorage) -> None:
        await store.close()
        assert storage.closed is True


@pytest.mark.unit
class TestOutage:
    async def test_public_methods_never_raise(self, store: StorageContextStore, storage: FakeStorage) -> None:
        storage.available = False
        assert await store.store("c1", make_record()) is False
        assert await store.find_similar("color_knockout", make_specs()) == []  # type: ignore[arg-type]
        assert await store.get_context("c1") is None
        assert await store.get_failures("c1") == []
        assert await store.prune() == 0
        assert (await store.stats()).tool_executions == 0
        await store.record_turn("c1", make_message())
        await store.clear()

    async def test_ping_surfaces_outage(self, store: StorageContextStore, storage: FakeStorage) -> None:
        await store.ping()
        storage.available = False
        with pytest.raises(PortUnavailableError):
            await store.ping()
