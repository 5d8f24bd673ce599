"""Fake StoragePort: dict-backed key/value and list storage.

Values round-trip through json so tests catch non-serializable payloads
the same way the Redis adapter would.
"""

from __future__ import annotations

import fnmatch
import json
from typing import Any

from editguard.ports.storage_port import StoragePort
from editguard.shared.errors import PortUnavailableError


class FakeStorage(StoragePort):
    """In-process StoragePort; set `available = False` to simulate an outage."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self.available = True
        self.closed = False

    def _check(self) -> None:
        if not self.available:
            raise PortUnavailableError("storage")

    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._check()
        self._values[key] = json.dumps(value)

    async def get(self, key: str) -> Any | None:
        self._check()
        raw = self._values.get(key)
        return None if raw is None else json.loads(raw)

    async def delete(self, key: str) -> None:
        self._check()
        self._values.pop(key, None)
        self._lists.pop(key, None)

    async def list_keys(self, pattern: str) -> list[str]:
        self._check()
        keys = [*self._values, *self._lists]
        return sorted(k for k in keys if fnmatch.fnmatchcase(k, pattern))

    async def append(self, key: str, value: Any) -> int:
        self._check()
        items = self._lists.setdefault(key, [])
        items.append(json.dumps(value))
        return len(items)

    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        self._check()
        items = self._lists.get(key, [])
        stop = None if end == -1 else end + 1
        return [json.loads(item) for item in items[start:stop]]

    async def trim_list(self, key: str, keep_last: int) -> None:
        self._check()
        if key in self._lists:
            self._lists[key] = self._lists[key][-keep_last:]

    async def close(self) -> None:
        self.closed = True
