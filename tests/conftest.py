"""Root conftest - shared fixtures for all test layers.

Images are synthesized with numpy (see tests/fakes/images.py):

    design_png      100x100 white canvas with a 55x55 pure red square (~30%)
    large_png       500x500 version of the same design
    transparent_png design with the red square already knocked out

Markers:
    @pytest.mark.unit - No external deps
"""

from __future__ import annotations

import numpy as np
import pytest

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.analysis.imaging import encode_png
from editguard.infra.images.memory import InMemoryImageStore
from tests.fakes.images import make_design


@pytest.fixture
def design_pixels() -> np.ndarray:
    return make_design()


@pytest.fixture
def design_png(design_pixels: np.ndarray) -> bytes:
    return encode_png(design_pixels)


@pytest.fixture
def large_png() -> bytes:
    return encode_png(make_design(size=500, square=275))


@pytest.fixture
def transparent_png(design_pixels: np.ndarray) -> bytes:
    pixels = design_pixels.copy()
    pixels[:55, :55, 3] = 0
    return encode_png(pixels)


@pytest.fixture
def analyzer() -> GroundTruthAnalyzer:
    return GroundTruthAnalyzer()


@pytest.fixture
def images() -> InMemoryImageStore:
    return InMemoryImageStore()
