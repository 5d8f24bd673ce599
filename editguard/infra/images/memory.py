"""In-memory image store keyed by content hash."""

from __future__ import annotations

import asyncio
import hashlib

from editguard.ports.image_store_port import ImageStorePort
from editguard.shared.errors import NotFoundError


class InMemoryImageStore(ImageStorePort):
    """Process-local ImageStorePort.

    References are "img_" + the first 24 hex chars of the SHA-256 of the
    bytes, so saving identical bytes twice yields the same reference.
    """

    def __init__(self, *, max_images: int = 1000) -> None:
        self._images: dict[str, bytes] = {}
        self._max_images = max_images
        self._lock = asyncio.Lock()

    async def load(self, ref: str) -> bytes:
        data = self._images.get(ref)
        if data is None:
            raise NotFoundError("image", ref)
        return data

    async def save(self, data: bytes) -> str:
        ref = "img_" + hashlib.sha256(data).hexdigest()[:24]
        async with self._lock:
            self._images.pop(ref, None)
            self._images[ref] = data
            while len(self._images) > self._max_images:
                # dicts keep insertion order: evict the oldest
                del self._images[next(iter(self._images))]
        return ref

    async def exists(self, ref: str) -> bool:
        return ref in self._images
