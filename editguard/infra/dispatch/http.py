"""ToolDispatcherPort over an HTTP tool service (httpx).

Wire format:
    POST {base_url}/tools/{tool_name}
    request  {"parameters": {...}, "image": "<base64 PNG/JPEG bytes>"}
    response {"success": true, "image": "<base64>" | null, "data": {...} | null}
          or {"success": false, "error": "..."}

Result images are saved to the image store and returned by reference.
The httpx.AsyncClient is injected and owned by the caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from editguard.ports.dispatcher_port import ToolDispatcherPort
from editguard.shared.errors import RateLimitedError, StageTimeoutError, ToolExecutionError
from editguard.shared.types import ExecutionOutcome

if TYPE_CHECKING:
    from editguard.ports.image_store_port import ImageStorePort

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


class HttpToolDispatcher(ToolDispatcherPort):
    """Execute tools on a remote tool service."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        images: ImageStorePort,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 120.0,
    ) -> None:
        self._client = client
        self._images = images
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = timeout_s

    async def execute(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        image_ref: str,
    ) -> ExecutionOutcome:
        image = await self._images.load(image_ref)
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        payload = {"parameters": parameters, "image": base64.b64encode(image).decode("ascii")}

        start = time.monotonic()
        try:
            response = await self._client.post(
                f"{self._base_url}/tools/{tool_name}",
                json=payload,
                headers=headers,
                timeout=self._timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise StageTimeoutError("dispatch", int(self._timeout_s * 1000)) from exc
        except httpx.HTTPError as exc:
            raise ToolExecutionError(tool_name, f"Network error calling tool service: {exc}") from exc
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if response.status_code == 429:
            raise RateLimitedError(tool_name, retry_after_s=_retry_after(response))
        if response.status_code >= 400:
            raise ToolExecutionError(
                tool_name,
                f"Tool service returned HTTP {response.status_code}: {response.text[:200]}",
                recoverable=response.status_code >= 500,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ToolExecutionError(tool_name, "Tool service returned invalid JSON") from exc

        if not body.get("success"):
            logger.info("Tool %s reported failure: %s", tool_name, body.get("error"))
            return ExecutionOutcome(
                success=False,
                error=body.get("error") or "Tool execution failed",
                elapsed_ms=elapsed_ms,
                data=body.get("data"),
            )

        result_ref = None
        if body.get("image"):
            try:
                result_bytes = base64.b64decode(body["image"], validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ToolExecutionError(tool_name, "Tool service returned a malformed image") from exc
            result_ref = await self._images.save(result_bytes)

        return ExecutionOutcome(
            success=True,
            result_ref=result_ref,
            elapsed_ms=elapsed_ms,
            data=body.get("data"),
        )
