"""StoragePort - key-value documents and append-only lists.

StorageContextStore lays conversations and the execution index out on
this port; RedisStorageAdapter is the production implementation. Values
must be JSON-serializable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StoragePort(ABC):
    """Port: JSON documents by key plus list logs."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Write a document; ttl in seconds, None keeps it forever."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Document at key, or None."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key (document or list); missing keys are ignored."""

    @abstractmethod
    async def list_keys(self, pattern: str) -> list[str]:
        """Keys matching a glob such as "editguard:conv:*:meta"."""

    @abstractmethod
    async def append(self, key: str, value: Any) -> int:
        """Append to the list at key and return its new length."""

    @abstractmethod
    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        """Slice of the list at key; bounds are inclusive, negatives count from the end."""

    @abstractmethod
    async def trim_list(self, key: str, keep_last: int) -> None:
        """Keep only the newest keep_last entries of the list at key."""
