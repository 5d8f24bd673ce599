"""FastAPI application factory for the editguard HTTP surface.

- /api/v1/images          upload and ground-truth analysis
- /api/v1/tool-calls      guarded chain execution and dry-run validation
- /api/v1/conversations   conversation context
- /healthz, /metrics      liveness and Prometheus exposition

Errors are rendered with a uniform {error, message} body.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from editguard.shared.errors import (
    EditGuardError,
    ImageDecodeError,
    NotFoundError,
    PortUnavailableError,
    UnknownToolError,
    ValidationError,
)

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager


# Most specific first; EditGuardError catches the rest.
_STATUS_BY_ERROR: tuple[tuple[type[EditGuardError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (UnknownToolError, 422),
    (ImageDecodeError, 422),
    (PortUnavailableError, 503),
    (EditGuardError, 500),
)


def _error_body(exc: EditGuardError) -> dict[str, str]:
    return {"error": exc.code, "message": str(exc)}


def create_app(
    *,
    routers: Sequence[APIRouter] = (),
    cors_origins: list[str] | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
    registry: CollectorRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        routers: API routers to mount, already bound to their dependencies.
        cors_origins: Allowed CORS origins; CORS is disabled when empty.
        lifespan: Async context manager factory for startup/shutdown.
        registry: Prometheus registry exposed at /metrics (default: global).
    """
    metrics_registry = registry or REGISTRY

    app = FastAPI(
        title="editguard",
        description="Validation, gating and verification for image-editing tool calls",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
        )

    # -- Error handlers --

    async def _domain_error(_: Request, exc: EditGuardError) -> JSONResponse:
        status = next(code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls))
        return JSONResponse(status_code=status, content=_error_body(exc))

    for error_cls, _ in _STATUS_BY_ERROR:
        app.add_exception_handler(error_cls, _domain_error)  # type: ignore[arg-type]

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        code_map = {
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
            413: "PAYLOAD_TOO_LARGE",
        }
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": code_map.get(exc.status_code, "HTTP_ERROR"),
                "message": exc.detail or f"HTTP {exc.status_code}",
            },
        )

    # -- System routes --

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", tags=["system"], include_in_schema=False)
    async def metrics() -> Response:
        return Response(
            content=generate_latest(metrics_registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    for router in routers:
        app.include_router(router)

    return app
