"""HttpToolDispatcher over httpx.MockTransport."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable

import httpx
import pytest

from editguard.infra.dispatch.http import HttpToolDispatcher
from editguard.infra.images.memory import InMemoryImageStore
from editguard.shared.errors import RateLimitedError, StageTimeoutError, ToolExecutionError

Handler = Callable[[httpx.Request], httpx.Response]


async def _dispatcher(images: InMemoryImageStore, handler: Handler, **kwargs: object) -> HttpToolDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpToolDispatcher(client=client, images=images, base_url="http://tools.test/", **kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
class TestRequest:
    async def test_posts_parameters_and_image(self, images: InMemoryImageStore, design_png: bytes) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": {"colors": 3}})

        ref = await images.save(design_png)
        dispatcher = await _dispatcher(images, handler, api_key="secret")
        outcome = await dispatcher.execute("extract_colors", {"count": 3}, ref)

        assert outcome.success
        assert outcome.result_ref is None
        assert outcome.data == {"colors": 3}
        (request,) = seen
        assert str(request.url) == "http://tools.test/tools/extract_colors"
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["parameters"] == {"count": 3}
        assert base64.b64decode(body["image"]) == design_png

    async def test_result_image_saved_by_reference(
        self, images: InMemoryImageStore, design_png: bytes, transparent_png: bytes
    ) -> None:
        encoded = base64.b64encode(transparent_png).decode("ascii")
        dispatcher = await _dispatcher(
            images, lambda _: httpx.Response(200, json={"success": True, "image": encoded})
        )
        outcome = await dispatcher.execute("color_knockout", {"tolerance": 30}, await images.save(design_png))
        assert outcome.result_ref is not None
        assert await images.load(outcome.result_ref) == transparent_png


@pytest.mark.unit
class TestFailures:
    async def test_reported_failure_is_an_outcome(self, images: InMemoryImageStore, design_png: bytes) -> None:
        dispatcher = await _dispatcher(
            images, lambda _: httpx.Response(200, json={"success": False, "error": "model refused"})
        )
        outcome = await dispatcher.execute("recolor_image", {}, await images.save(design_png))
        assert outcome.success is False
        assert outcome.error == "model refused"

    async def test_rate_limited(self, images: InMemoryImageStore, design_png: bytes) -> None:
        dispatcher = await _dispatcher(images, lambda _: httpx.Response(429, headers={"Retry-After": "7"}))
        with pytest.raises(RateLimitedError) as exc_info:
            await dispatcher.execute("upscaler", {}, await images.save(design_png))
        assert exc_info.value.retry_after_s == 7.0

    @pytest.mark.parametrize(("status", "recoverable"), [(500, True), (503, True), (400, False), (404, False)])
    async def test_http_errors(
        self, images: InMemoryImageStore, design_png: bytes, status: int, recoverable: bool
    ) -> None:
        dispatcher = await _dispatcher(images, lambda _: httpx.Response(status, text="nope"))
        with pytest.raises(ToolExecutionError) as exc_info:
            await dispatcher.execute("upscaler", {}, await images.save(design_png))
        assert exc_info.value.status_code == status
        assert exc_info.value.recoverable is recoverable

    async def test_timeout_becomes_stage_timeout(self, images: InMemoryImageStore, design_png: bytes) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        dispatcher = await _dispatcher(images, handler, timeout_s=2.0)
        with pytest.raises(StageTimeoutError) as exc_info:
            await dispatcher.execute("upscaler", {}, await images.save(design_png))
        assert exc_info.value.stage == "dispatch"
        assert exc_info.value.timeout_ms == 2000

    async def test_network_error(self, images: InMemoryImageStore, design_png: bytes) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dispatcher = await _dispatcher(images, handler)
        with pytest.raises(ToolExecutionError, match="Network error"):
            await dispatcher.execute("upscaler", {}, await images.save(design_png))

    async def test_invalid_json(self, images: InMemoryImageStore, design_png: bytes) -> None:
        dispatcher = await _dispatcher(images, lambda _: httpx.Response(200, text="<html>"))
        with pytest.raises(ToolExecutionError, match="invalid JSON"):
            await dispatcher.execute("upscaler", {}, await images.save(design_png))

    async def test_malformed_image(self, images: InMemoryImageStore, design_png: bytes) -> None:
        dispatcher = await _dispatcher(
            images, lambda _: httpx.Response(200, json={"success": True, "image": "***"})
        )
        with pytest.raises(ToolExecutionError, match="malformed image"):
            await dispatcher.execute("upscaler", {}, await images.save(design_png))
