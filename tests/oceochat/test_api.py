"""Tests for FastAPI API endpoints."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sse_starlette import sse as sse_module

from oceochat.agents.emitter import SingleShotResult
from oceochat.agents.generator import GeneratorError, GeneratorUnavailable
from oceochat.api.routes import (
    router,
    set_adapters,
    set_cache,
    set_conversation_store,
    set_emitter,
    set_generator,
)
from oceochat.api.session import ConversationStore
from oceochat.data.cache import AggregationCache
from oceochat.data.schema import (
    ContentEvent,
    DoneEvent,
    Domain,
    ErrorEvent,
    MetadataEvent,
    Reference,
)


class StubEmitter:
    """Replays scripted events and records the queries it was given."""

    def __init__(self, events=(), result=None, error=None) -> None:
        self.events = list(events)
        self.result = result
        self.error = error
        self.calls = []

    async def stream(self, query, mode=None):
        self.calls.append((query, mode))
        for event in self.events:
            yield event

    async def respond(self, query, mode=None):
        self.calls.append((query, mode))
        if self.error is not None:
            raise self.error
        return self.result


DEFAULT_EVENTS = [
    MetadataEvent({"oceanData": {"perDomain": {}}}),
    MetadataEvent({"modelUsed": "model-a"}),
    ContentEvent("Warm"),
    ContentEvent(" waters"),
    DoneEvent(),
]


def _data_lines(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    # sse-starlette keeps a process-wide exit event bound to the first loop
    app_status = getattr(sse_module, "AppStatus", None)
    if app_status is not None:
        app_status.should_exit_event = None


@pytest.fixture
def store():
    store = ConversationStore()
    set_conversation_store(store)
    return store


@pytest.fixture
def emitter():
    stub = StubEmitter(DEFAULT_EVENTS)
    set_emitter(stub)
    yield stub
    set_emitter(None)


@pytest.fixture
def client(store, emitter):
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


class TestChatStream:
    def test_streams_wire_lines(self, client):
        response = client.post("/api/chat/stream", json={"message": "argo floats near Goa"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = _data_lines(response.text)
        assert json.loads(lines[0]) == {"meta": {"oceanData": {"perDomain": {}}}}
        assert json.loads(lines[1]) == {"meta": {"modelUsed": "model-a"}}
        assert json.loads(lines[2]) == {"chunk": "Warm"}
        assert lines[-1] == "[DONE]"

    def test_conversation_id_header(self, client):
        response = client.post("/api/chat/stream", json={"message": "hi", "conversationId": "conv-1"})
        assert response.headers["X-Conversation-Id"] == "conv-1"

    def test_new_conversation_id_generated(self, client):
        response = client.post("/api/chat/stream", json={"message": "hi"})
        assert response.headers["X-Conversation-Id"]

    def test_stores_both_turns(self, client, store):
        client.post("/api/chat/stream", json={"message": "argo floats", "conversationId": "conv-1"})
        history = store.get_history("conv-1")
        assert [(m.role, m.content) for m in history] == [
            ("user", "argo floats"),
            ("assistant", "Warm waters"),
        ]

    def test_history_passed_to_next_turn(self, client, emitter):
        client.post("/api/chat/stream", json={"message": "first", "conversationId": "conv-1"})
        client.post("/api/chat/stream", json={"message": "second", "conversationId": "conv-1"})

        query, _ = emitter.calls[-1]
        assert query.text == "second"
        assert [turn.content for turn in query.conversation_context] == ["first", "Warm waters"]

    def test_mode_forwarded(self, client, emitter):
        client.post("/api/chat/stream", json={"message": "argo", "context": "research"})
        assert emitter.calls[-1][1] == "research"

    def test_error_terminal_is_last(self, client, emitter):
        emitter.events = [MetadataEvent({"oceanData": {}}), ContentEvent("part"), ErrorEvent("failed")]
        response = client.post("/api/chat/stream", json={"message": "argo"})
        lines = _data_lines(response.text)
        assert json.loads(lines[-1]) == {"error": "failed"}
        assert "[DONE]" not in lines

    def test_error_turn_not_stored(self, client, emitter, store):
        emitter.events = [ContentEvent("part"), ErrorEvent("failed")]
        client.post("/api/chat/stream", json={"message": "argo", "conversationId": "conv-2"})
        assert [m.role for m in store.get_history("conv-2")] == ["user"]

    def test_empty_message_rejected(self, client):
        response = client.post("/api/chat/stream", json={"message": "   "})
        assert response.status_code == 400

    def test_missing_message_rejected(self, client):
        response = client.post("/api/chat/stream", json={})
        assert response.status_code == 422

    def test_no_emitter_returns_503(self, client):
        set_emitter(None)
        response = client.post("/api/chat/stream", json={"message": "argo"})
        assert response.status_code == 503


class TestChat:
    def test_single_shot_response(self, client, emitter):
        emitter.result = SingleShotResult(
            text="Complete answer.",
            model="model-a",
            ocean_data={"perDomain": {}},
            references=[Reference(index=1, title="T", url="https://example.org")],
            context="analysis",
        )
        response = client.post("/api/chat", json={"message": "argo", "conversationId": "conv-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["response"] == "Complete answer."
        assert data["oceanData"] == {"perDomain": {}}
        assert data["conversationId"] == "conv-1"
        assert data["metadata"]["model"] == "model-a"
        assert data["metadata"]["context"] == "analysis"
        assert data["references"][0]["url"] == "https://example.org"

    def test_generator_unavailable_503(self, client, emitter):
        emitter.error = GeneratorUnavailable("ANTHROPIC_API_KEY is not configured")
        response = client.post("/api/chat", json={"message": "argo"})

        assert response.status_code == 503
        data = response.json()
        assert data["success"] is False
        assert "details" not in data

    def test_generator_failure_502(self, client, emitter):
        emitter.error = GeneratorError("overloaded")
        response = client.post("/api/chat", json={"message": "argo"})
        assert response.status_code == 502
        assert response.json()["error"] == "Failed to generate a response"

    def test_empty_message_rejected(self, client):
        assert client.post("/api/chat", json={"message": ""}).status_code == 400


class TestConversations:
    def test_get_history(self, client, store):
        cid = store.get_or_create("conv-9")
        store.add_message(cid, "user", "hello")
        response = client.get("/api/conversations/conv-9")
        assert response.status_code == 200
        assert response.json()[0]["content"] == "hello"

    def test_unknown_conversation_404(self, client):
        assert client.get("/api/conversations/missing").status_code == 404


class TestModelStatus:
    def test_not_configured(self, client):
        generator = MagicMock()
        generator.configured = False
        set_generator(generator)
        response = client.get("/api/model-status")
        assert response.status_code == 503
        assert response.json()["availableModels"] == []

    def test_reports_first_available(self, client):
        generator = MagicMock()
        generator.configured = True
        generator.model_status = AsyncMock(return_value=[
            {"name": "model-a", "isAvailable": False},
            {"name": "model-b", "isAvailable": True},
        ])
        set_generator(generator)
        data = client.get("/api/model-status").json()
        assert data["currentModel"] == "model-b"
        assert len(data["availableModels"]) == 2


class TestDiagnostics:
    def test_reports_sources_and_cache(self, client):
        up = MagicMock()
        up.name = "noaa_tides"
        up.probe = AsyncMock(return_value=True)
        down = MagicMock()
        down.name = "copernicus"
        down.probe = AsyncMock(return_value=False)
        set_adapters({Domain.TIDAL_CURRENT: up, Domain.OCEAN_FORECAST: down})
        set_cache(AggregationCache())
        set_generator(None)

        data = client.get("/api/diagnostics").json()

        assert data["sources"]["tides"] == {"adapter": "noaa_tides", "reachable": True}
        assert data["sources"]["forecast"]["reachable"] is False
        assert data["cache"]["backend"] == "memory"
        assert data["generator"] == {"configured": False}
        assert data["env"]["ANTHROPIC_API_KEY"] in ("present", "missing")
