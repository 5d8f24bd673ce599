"""Color space helpers: hex parsing, sRGB -> CIE Lab (D65), perceptual distance.

All conversions accept scalars or numpy arrays shaped (..., 3) so the
validators can compare a target color against thousands of sampled pixels
in one vectorised call.
"""

from __future__ import annotations

import re

import numpy as np

from editguard.config.scoring import ColorTiers

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

_RGB_TO_XYZ = np.array(
    [
        [0.4124, 0.3576, 0.1805],
        [0.2126, 0.7152, 0.0722],
        [0.0193, 0.1192, 0.9505],
    ]
)
_D65_WHITE = np.array([0.95047, 1.0, 1.08883])


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """Parse "#RRGGBB", "RRGGBB" or "#RGB".

    Raises:
        ValueError: if the string is not a hex color.
    """
    match = _HEX_RE.match(value.strip())
    if match is None:
        msg = f"Invalid hex color: {value!r}"
        raise ValueError(msg)
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def rgb_to_hex(r: int, g: int, b: int) -> str:
    return f"#{int(r):02X}{int(g):02X}{int(b):02X}"


def is_hex_color(value: object) -> bool:
    return isinstance(value, str) and _HEX_RE.match(value.strip()) is not None


def rgb_to_lab(rgb: np.ndarray | tuple[int, int, int]) -> np.ndarray:
    """Convert sRGB (0-255) to CIE Lab under the D65 illuminant."""
    c = np.asarray(rgb, dtype=np.float64) / 255.0
    linear = np.where(c > 0.04045, ((c + 0.055) / 1.055) ** 2.4, c / 12.92)
    xyz = (linear @ _RGB_TO_XYZ.T) / _D65_WHITE
    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)
    lab = np.empty_like(f)
    lab[..., 0] = 116.0 * f[..., 1] - 16.0
    lab[..., 1] = 500.0 * (f[..., 0] - f[..., 1])
    lab[..., 2] = 200.0 * (f[..., 1] - f[..., 2])
    return lab


def delta_e(
    first: np.ndarray | tuple[int, int, int],
    second: np.ndarray | tuple[int, int, int],
) -> np.ndarray | float:
    """CIE76 distance between sRGB colors (broadcasts over arrays)."""
    diff = rgb_to_lab(first) - rgb_to_lab(second)
    dist = np.sqrt(np.sum(diff * diff, axis=-1))
    if np.ndim(dist) == 0:
        return float(dist)
    return dist


def confidence_for_distance(distance: float, tiers: ColorTiers | None = None) -> int:
    """Map a perceptual distance to a confidence tier.

    Non-increasing in distance: a closer color never scores lower.
    """
    t = tiers or ColorTiers()
    for upper, confidence in t.tiers:
        if distance < upper:
            return confidence
    return t.floor
