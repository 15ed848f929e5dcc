"""FastAPI routes for the OceoChat API."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from oceochat.agents.emitter import StreamingResponseEmitter
from oceochat.agents.generator import Generator, GeneratorError, GeneratorUnavailable
from oceochat.api.session import ConversationStore
from oceochat.api.sse import sse_messages
from oceochat.config import get_settings
from oceochat.data.cache import AggregationCache
from oceochat.data.schema import (
    ChatRequest,
    ChatResponse,
    ContentEvent,
    DoneEvent,
    Domain,
    ErrorResponse,
    Message,
    Query,
    ResponseMetadata,
    StreamEvent,
)
from oceochat.data.sources import SourceAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These are set during app startup in main.py
_emitter: StreamingResponseEmitter | None = None
_generator: Generator | None = None
_conversation_store: ConversationStore = ConversationStore()
_adapters: dict[Domain, SourceAdapter] = {}
_cache: AggregationCache | None = None


def set_emitter(emitter: StreamingResponseEmitter | None) -> None:
    """Set the response emitter (called during app startup)."""
    global _emitter
    _emitter = emitter


def set_generator(generator: Generator | None) -> None:
    global _generator
    _generator = generator


def set_conversation_store(store: ConversationStore) -> None:
    """Set the conversation store (called during app startup or testing)."""
    global _conversation_store
    _conversation_store = store


def set_adapters(adapters: dict[Domain, SourceAdapter]) -> None:
    global _adapters
    _adapters = adapters


def set_cache(cache: AggregationCache | None) -> None:
    global _cache
    _cache = cache


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _start_turn(request: ChatRequest) -> tuple[str, Query]:
    """Validate the request, record the user message and build the Query."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    if _emitter is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    settings = get_settings()
    conversation_id = _conversation_store.get_or_create(request.conversation_id)
    history = _conversation_store.get_recent_turns(conversation_id, settings.history_turns)
    _conversation_store.add_message(conversation_id, "user", request.message)
    return conversation_id, Query(text=request.message, conversation_context=history)


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest) -> EventSourceResponse:
    """Stream the answer as ``data:`` lines ending in ``[DONE]`` or an error."""
    conversation_id, query = _start_turn(request)

    async def event_generator() -> AsyncGenerator[StreamEvent, None]:
        parts: list[str] = []
        async for event in _emitter.stream(query, mode=request.context):
            if isinstance(event, ContentEvent):
                parts.append(event.text)
            elif isinstance(event, DoneEvent) and parts:
                _conversation_store.add_message(conversation_id, "assistant", "".join(parts))
            yield event

    return EventSourceResponse(
        sse_messages(event_generator()),
        sep="\n",
        headers={"X-Conversation-Id": conversation_id, "Cache-Control": "no-cache, no-transform"},
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest) -> Any:
    """Run the pipeline and return the complete answer."""
    conversation_id, query = _start_turn(request)
    debug = get_settings().debug

    try:
        result = await _emitter.respond(query, mode=request.context)
    except GeneratorUnavailable as e:
        logger.error("Generator unavailable: %s", e)
        body = ErrorResponse(error="The AI generator is not available", details=str(e) if debug else None)
        return JSONResponse(status_code=503, content=body.model_dump(exclude_none=True))
    except GeneratorError as e:
        logger.error("Generator error: %s", e)
        body = ErrorResponse(error="Failed to generate a response", details=str(e) if debug else None)
        return JSONResponse(status_code=502, content=body.model_dump(exclude_none=True))

    _conversation_store.add_message(conversation_id, "assistant", result.text)
    return ChatResponse(
        response=result.text,
        ocean_data=result.ocean_data,
        references=result.references,
        conversation_id=conversation_id,
        metadata=ResponseMetadata(model=result.model, context=result.context, timestamp=_now()),
    )


@router.get("/conversations/{conversation_id}", response_model=list[Message])
async def conversation_history(conversation_id: str) -> list[Message]:
    """Retrieve the stored messages of a conversation."""
    if not _conversation_store.exists(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return _conversation_store.get_history(conversation_id)


@router.get("/model-status")
async def model_status() -> Any:
    """Current model and availability of every candidate model."""
    if _generator is None or not _generator.configured:
        return JSONResponse(
            status_code=503,
            content={
                "error": "ANTHROPIC_API_KEY not configured",
                "currentModel": None,
                "availableModels": [],
            },
        )

    statuses = await _generator.model_status()
    current = next((s["name"] for s in statuses if s["isAvailable"]), None)
    return {"currentModel": current, "availableModels": statuses, "lastUpdated": _now()}


@router.get("/diagnostics")
async def diagnostics() -> dict[str, Any]:
    """Configuration presence, provider connectivity and cache statistics."""
    settings = get_settings()

    def presence(value: str | None) -> str:
        return "present" if value else "missing"

    domains = sorted(_adapters, key=lambda d: d.value)
    reachable = await asyncio.gather(*(_adapters[d].probe() for d in domains))

    generator: dict[str, Any] = {"configured": bool(_generator and _generator.configured)}
    if _generator is not None and _generator.configured:
        generator["availableModels"] = await _generator.model_status()

    return {
        "env": {
            "ANTHROPIC_API_KEY": presence(settings.anthropic_api_key),
            "NASA_OCEAN_TOKEN": presence(settings.nasa_ocean_token),
            "COPERNICUS_TOKEN": presence(settings.copernicus_token),
            "SERPAPI_KEY": presence(settings.serpapi_key),
            "ARGO_ERDDAP_SERVER": settings.argo_erddap_server,
            "NOAA_TIDES_API": settings.noaa_tides_api,
            "NASA_OCEAN_API": settings.nasa_ocean_api,
            "COPERNICUS_API_BASE": settings.copernicus_api_base,
            "CACHE_REDIS_URL": presence(settings.cache_redis_url),
        },
        "generator": generator,
        "sources": {
            domain.value: {"adapter": _adapters[domain].name, "reachable": ok}
            for domain, ok in zip(domains, reachable)
        },
        "cache": await _cache.stats() if _cache is not None else None,
        "timestamp": _now(),
    }
