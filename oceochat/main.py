"""OceoChat FastAPI application."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from oceochat.agents.emitter import StreamingResponseEmitter
from oceochat.agents.generator import Generator
from oceochat.agents.orchestrator import FetchOrchestrator
from oceochat.agents.research import ResearchClient
from oceochat.api.middleware import (
    RateLimitMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from oceochat.api.routes import (
    router,
    set_adapters,
    set_cache,
    set_conversation_store,
    set_emitter,
    set_generator,
)
from oceochat.api.session import ConversationStore
from oceochat.config import Settings, get_settings
from oceochat.data.cache import AggregationCache, CacheBackend, MemoryCacheBackend, RedisCacheBackend
from oceochat.data.sources import build_adapters

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_cache(settings: Settings, redis: Redis | None = None) -> AggregationCache:
    backend: CacheBackend
    if redis is not None:
        backend = RedisCacheBackend(redis)
    else:
        backend = MemoryCacheBackend(max_entries=settings.cache_max_entries)
    return AggregationCache(backend=backend, ttl_by_domain=settings.ttl_by_domain())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize resources on startup, clean up on shutdown."""
    settings = get_settings()
    logger.info("Starting OceoChat API...")

    client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.adapter_timeout),
        headers={"User-Agent": "OceoChat/0.1"},
        follow_redirects=True,
    )
    redis = Redis.from_url(settings.cache_redis_url) if settings.cache_redis_url else None
    if redis is not None:
        logger.info("Aggregation cache backed by Redis")

    cache = build_cache(settings, redis)
    adapters = build_adapters(client, settings=settings)
    orchestrator = FetchOrchestrator(
        adapters,
        cache,
        adapter_timeout=settings.adapter_timeout,
        fetch_deadline=settings.fetch_deadline,
    )
    generator = Generator(settings=settings)
    if not generator.configured:
        logger.warning("ANTHROPIC_API_KEY is not set; chat streams run in demo mode")

    emitter = StreamingResponseEmitter(
        orchestrator,
        generator,
        research=ResearchClient(client, settings=settings),
        settings=settings,
    )

    set_conversation_store(ConversationStore())
    set_adapters(adapters)
    set_cache(cache)
    set_generator(generator)
    set_emitter(emitter)

    sweeper = asyncio.create_task(cache.run_sweeper(settings.cache_sweep_interval), name="cache-sweeper")
    logger.info("Pipeline initialized with domains %s", sorted(d.value for d in adapters))

    yield

    logger.info("Shutting down OceoChat API")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    set_emitter(None)
    await client.aclose()
    if redis is not None:
        await redis.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API app; settings default to the environment."""
    settings = settings or get_settings()

    app = FastAPI(
        title="OceoChat API",
        description="Streaming ocean research assistant over live ocean data sources",
        version="0.1.0",
        lifespan=lifespan,
    )

    # add_middleware wraps, so the last one added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Conversation-Id", "X-Request-ID"],
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_per_minute)

    app.include_router(router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
