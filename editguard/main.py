"""Application composition root -- wires all layers into a runnable FastAPI app.

- Reads configuration from environment variables (Settings.from_env)
- Selects the context store backend (memory | redis | postgres)
- Instantiates the analyzer, validators, recovery and orchestrator
- Mounts the image, tool-call and context routers

Entry point: uvicorn editguard.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from prometheus_client import CollectorRegistry

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.config.settings import Settings
from editguard.context.memory_store import InMemoryContextStore
from editguard.context.pg_store import PgContextStore
from editguard.context.resilient import ResilientContextStore
from editguard.context.storage_store import StorageContextStore
from editguard.gateway.api.context import create_context_router
from editguard.gateway.api.images import create_image_router
from editguard.gateway.api.tool_calls import create_tool_call_router
from editguard.gateway.app import create_app
from editguard.infra.cache.redis import RedisStorageAdapter
from editguard.infra.db import create_db_engine, create_session_factory
from editguard.infra.dispatch.http import HttpToolDispatcher
from editguard.infra.images.memory import InMemoryImageStore
from editguard.metrics.sli import PipelineSLI
from editguard.orchestrator.orchestrator import ToolCallOrchestrator
from editguard.recovery.backoff import RetryPolicy
from editguard.recovery.strategist import RetryStrategist
from editguard.shared.logging import configure_logging
from editguard.validation.validator import ParameterValidator
from editguard.verification.result_validator import ResultValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from editguard.context.base import BaseContextStore

logger = logging.getLogger(__name__)


def build_store(
    settings: Settings,
    scoring: ScoringConfig = DEFAULT_SCORING,
) -> tuple[BaseContextStore, AsyncEngine | None]:
    """Context store for the configured backend.

    Durable backends are wrapped in ResilientContextStore so an outage
    degrades to in-memory storage instead of failing requests. Returns the
    store and the database engine, if one was created.
    """
    if settings.store_backend == "memory":
        return InMemoryContextStore(thresholds=scoring.storage, weights=scoring.similarity), None

    if settings.store_backend == "redis":
        durable: BaseContextStore = StorageContextStore(
            RedisStorageAdapter(settings.redis_url, socket_timeout_s=settings.timeouts.store),
            thresholds=scoring.storage,
            weights=scoring.similarity,
        )
        return ResilientContextStore(durable), None

    engine = create_db_engine(settings.database_url, statement_timeout_s=settings.timeouts.store)
    durable = PgContextStore(
        session_factory=create_session_factory(engine),
        thresholds=scoring.storage,
        weights=scoring.similarity,
    )
    return ResilientContextStore(durable), engine


def build_app(settings: Settings | None = None) -> FastAPI:
    """Build the application: instantiate adapters, wire dependencies, mount routers.

    This function is the single composition root. All DI wiring happens here.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    scoring = DEFAULT_SCORING

    # -- Infrastructure layer --
    images = InMemoryImageStore()
    store, db_engine = build_store(settings, scoring)
    http_client = httpx.AsyncClient(timeout=settings.timeouts.dispatch)
    dispatcher = HttpToolDispatcher(
        client=http_client,
        images=images,
        base_url=settings.tool_service_url,
        api_key=settings.tool_service_api_key,
        timeout_s=settings.timeouts.dispatch,
    )
    registry = CollectorRegistry()
    sli = PipelineSLI(registry=registry)

    # -- Pipeline --
    analyzer = GroundTruthAnalyzer(scoring=scoring)
    validator = ParameterValidator(scoring=scoring)
    orchestrator = ToolCallOrchestrator(
        images=images,
        dispatcher=dispatcher,
        store=store,
        scoring=scoring,
        timeouts=settings.timeouts,
        analyzer=analyzer,
        validator=validator,
        result_validator=ResultValidator(analyzer=analyzer, scoring=scoring),
        strategist=RetryStrategist(
            policy=RetryPolicy.from_thresholds(scoring.recovery, max_attempts=settings.max_attempts),
            scoring=scoring,
        ),
        sli=sli,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        # "required" = startup fails if the durable store is unavailable (production)
        # "optional" = degrade to in-memory (dev/CI)
        try:
            await store.ping()
            logger.info("Context store ready (%s)", store.name)
        except Exception:
            if settings.store_mode == "required":
                logger.error(
                    "Context store %s unavailable and EDITGUARD_STORE_MODE=required. Aborting startup.",
                    store.name,
                )
                raise
            logger.warning(
                "Context store %s unavailable; serving from in-memory fallback. "
                "Set EDITGUARD_STORE_MODE=required to make this a fatal error.",
                store.name,
                exc_info=True,
            )
        yield
        await http_client.aclose()
        try:
            await store.close()
        except Exception:
            logger.debug("Context store close failed", exc_info=True)
        if db_engine is not None:
            await db_engine.dispose()

    application = create_app(
        routers=[
            create_image_router(images=images, analyzer=analyzer),
            create_tool_call_router(
                orchestrator=orchestrator,
                validator=validator,
                analyzer=analyzer,
                images=images,
                store=store,
            ),
            create_context_router(store=store, keep_recent=settings.keep_recent),
        ],
        cors_origins=settings.cors_origins,
        lifespan=lifespan,
        registry=registry,
    )

    # -- Store references on app.state for tests and lifespan management --
    application.state.settings = settings
    application.state.images = images
    application.state.context_store = store
    application.state.orchestrator = orchestrator
    application.state.metrics_registry = registry

    logger.info(
        "editguard app assembled: store=%s, %d routes mounted",
        store.name,
        len(application.routes),
    )
    return application


app = build_app()
