"""Image decoding: bytes -> RGBA numpy array plus container metadata."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any

import numpy as np
from PIL import Image

from editguard.shared.errors import ImageDecodeError


@dataclass(frozen=True)
class DecodedImage:
    pixels: np.ndarray  # (height, width, 4) uint8
    format: str
    info: dict[str, Any]
    file_size: int

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def decode_image(data: bytes) -> DecodedImage:
    """Decode any Pillow-readable image into RGBA pixels.

    Raises:
        ImageDecodeError: on empty, truncated or unsupported input.
    """
    if not data:
        raise ImageDecodeError("Empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            fmt = (img.format or "unknown").lower()
            info = dict(img.info)
            rgba = img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Image could not be decoded: {exc}") from exc
    return DecodedImage(
        pixels=np.asarray(rgba, dtype=np.uint8),
        format=fmt,
        info=info,
        file_size=len(data),
    )


def read_dpi(info: dict[str, Any]) -> float | None:
    """Horizontal DPI from Pillow metadata, None when absent or zero.

    Raises:
        ValueError: when the metadata is present but malformed.
    """
    raw = info.get("dpi")
    if raw is None:
        return None
    value = float(raw[0]) if isinstance(raw, tuple | list) else float(raw)
    if value <= 0:
        return None
    return round(value, 2)


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode an RGBA array as PNG bytes."""
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()
