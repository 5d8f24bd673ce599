"""Port schema assertions.

Catches accidental breaking changes to the port method signatures the
orchestrator and the adapters agree on.
"""

from __future__ import annotations

import inspect

import pytest

from editguard.context.memory_store import InMemoryContextStore
from editguard.context.pg_store import PgContextStore
from editguard.context.resilient import ResilientContextStore
from editguard.context.storage_store import StorageContextStore
from editguard.infra.cache.redis import RedisStorageAdapter
from editguard.infra.dispatch.http import HttpToolDispatcher
from editguard.infra.images.memory import InMemoryImageStore
from editguard.ports import ContextStorePort, ImageStorePort, StoragePort, ToolDispatcherPort


def _params(method: object) -> list[str]:
    return list(inspect.signature(method).parameters)  # type: ignore[arg-type]


@pytest.mark.unit
class TestContextStorePortContract:
    @pytest.mark.parametrize(
        ("method", "expected"),
        [
            ("store", ["self", "conversation_id", "record"]),
            ("find_similar", ["self", "tool_name", "ground_truth", "limit"]),
            ("get_context", ["self", "conversation_id"]),
            ("prune", ["self", "keep_recent"]),
            ("record_turn", ["self", "conversation_id", "message"]),
            ("remember_ground_truth", ["self", "conversation_id", "ground_truth"]),
            ("record_failure", ["self", "conversation_id", "attempt"]),
            ("get_failures", ["self", "conversation_id"]),
            ("stats", ["self"]),
            ("clear", ["self"]),
        ],
    )
    def test_signatures(self, method: str, expected: list[str]) -> None:
        attr = getattr(ContextStorePort, method)
        assert inspect.iscoroutinefunction(attr)
        assert _params(attr) == expected

    @pytest.mark.parametrize(
        "impl",
        [InMemoryContextStore, StorageContextStore, PgContextStore, ResilientContextStore],
    )
    def test_implementations(self, impl: type) -> None:
        assert issubclass(impl, ContextStorePort)


@pytest.mark.unit
class TestAdapterPorts:
    def test_dispatcher(self) -> None:
        assert issubclass(HttpToolDispatcher, ToolDispatcherPort)
        assert _params(ToolDispatcherPort.execute) == ["self", "tool_name", "parameters", "image_ref"]

    def test_image_store(self) -> None:
        assert issubclass(InMemoryImageStore, ImageStorePort)
        assert {"load", "save", "exists"} <= ImageStorePort.__abstractmethods__

    def test_storage(self) -> None:
        assert issubclass(RedisStorageAdapter, StoragePort)
        assert {"put", "get", "delete", "list_keys", "append", "get_list", "trim_list"} <= StoragePort.__abstractmethods__
