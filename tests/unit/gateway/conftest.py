"""Gateway fixtures: a TestClient over the fully wired routers."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from tests.fakes.app import Wired, build_wired_app


@pytest.fixture
def wired() -> Wired:
    return build_wired_app()


@pytest.fixture
def client(wired: Wired) -> Iterator[TestClient]:
    with TestClient(wired.app) as c:
        yield c


@pytest.fixture
def image_ref(client: TestClient, design_png: bytes) -> str:
    resp = client.post("/api/v1/images", content=design_png, headers={"Content-Type": "image/png"})
    assert resp.status_code == 201
    return str(resp.json()["image_ref"])
