"""Redis StoragePort used by the durable context store.

Values are JSON documents; append-only logs (messages, executions,
failures) are Redis lists. The client is created on first use with
socket timeouts so an unreachable server surfaces as an error quickly
instead of hanging a tool call.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis

from editguard.ports.storage_port import StoragePort


def _encode(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _decode(raw: bytes | str) -> Any:
    return json.loads(raw)


class RedisStorageAdapter(StoragePort):
    def __init__(self, redis_url: str = "redis://localhost:6379", *, socket_timeout_s: float = 2.0) -> None:
        self._redis_url = redis_url
        self._socket_timeout_s = socket_timeout_s
        self._client: aioredis.Redis | None = None

    def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(  # type: ignore[no-untyped-call]
                self._redis_url,
                decode_responses=False,
                socket_timeout=self._socket_timeout_s,
                socket_connect_timeout=self._socket_timeout_s,
            )
        return self._client

    async def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self._redis().set(key, _encode(value), ex=ttl)

    async def get(self, key: str) -> Any | None:
        raw = await self._redis().get(key)
        return None if raw is None else _decode(raw)

    async def delete(self, key: str) -> None:
        await self._redis().delete(key)

    async def list_keys(self, pattern: str) -> list[str]:
        # SCAN rather than KEYS: the records index can grow large
        keys = [k async for k in self._redis().scan_iter(match=pattern)]
        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in keys]

    async def append(self, key: str, value: Any) -> int:
        return int(await self._redis().rpush(key, _encode(value)))

    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        return [_decode(item) for item in await self._redis().lrange(key, start, end)]

    async def trim_list(self, key: str, keep_last: int) -> None:
        await self._redis().ltrim(key, -keep_last, -1)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
