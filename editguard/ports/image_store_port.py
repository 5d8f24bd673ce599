"""ImageStorePort - addressable image bytes."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ImageStorePort(ABC):
    """Port: image bytes by reference."""

    @abstractmethod
    async def load(self, ref: str) -> bytes:
        """Load image bytes.

        Raises:
            NotFoundError: If no image exists under ref.
        """

    @abstractmethod
    async def save(self, data: bytes) -> str:
        """Store image bytes and return their reference."""

    @abstractmethod
    async def exists(self, ref: str) -> bool:
        """Whether an image is stored under ref."""
