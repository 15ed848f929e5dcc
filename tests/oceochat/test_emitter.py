"""Tests for the streaming response emitter."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from oceochat.agents.emitter import (
    DEMO_MODE_MESSAGE,
    EmitterState,
    IllegalTransition,
    StreamingResponseEmitter,
    _Emission,
    group_words,
)
from oceochat.agents.generator import GeneratorError, GeneratorUnavailable
from oceochat.agents.orchestrator import FetchOrchestrator
from oceochat.config import Settings
from oceochat.data.cache import AggregationCache
from oceochat.data.regions import get_region
from oceochat.data.schema import (
    AggregatedDataset,
    ContentEvent,
    DoneEvent,
    Domain,
    ErrorEvent,
    FetchError,
    FetchResult,
    MetadataEvent,
    PriorTurn,
    Query,
    Reference,
    TidalDataset,
    is_terminal,
)
from oceochat.data.sources import SourceAdapter

MUMBAI_SST = "What's the current sea surface temperature near Mumbai?"


class FakeGenerator:
    def __init__(
        self,
        chunks=("Hello", " ocean"),
        text="",
        configured=True,
        fail_select=False,
        fail_after=False,
        hang=False,
    ) -> None:
        self.chunks = chunks
        self.text = text
        self.configured = configured
        self.fail_select = fail_select
        self.fail_after = fail_after
        self.hang = hang
        self.prompts: list[str] = []
        self.closed = False

    async def select_model(self) -> str:
        if self.fail_select:
            raise GeneratorUnavailable("no model answers")
        return "model-a"

    async def generate(self, prompt, model):
        self.prompts.append(prompt)
        if self.fail_after:
            raise GeneratorError("overloaded")
        return self.text

    async def stream(self, prompt, model):
        self.prompts.append(prompt)
        try:
            for chunk in self.chunks:
                yield chunk
            if self.hang:
                await asyncio.sleep(10)
            if self.fail_after:
                raise GeneratorError("connection reset")
        finally:
            self.closed = True


class TimeoutAdapter(SourceAdapter):
    def __init__(self, domain: Domain) -> None:
        self.domain = domain
        self.name = f"timeout_{domain.value}"

    async def fetch(self, request, deadline):
        return FetchResult.failed(FetchError.timeout())

    async def _fetch(self, request):
        raise NotImplementedError

    def fallback(self, request):
        return TidalDataset(station="fallback", predictions=[], source="representative sample")

    async def probe(self):
        return False


def _orchestrator(aggregated: AggregatedDataset | None = None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.gather = AsyncMock(return_value=aggregated or AggregatedDataset(
        per_domain={Domain.TIDAL_CURRENT: TidalDataset(station="9411340", predictions=[])},
        succeeded_domains={Domain.TIDAL_CURRENT},
        region=get_region("mumbai"),
    ))
    return orchestrator


def _emitter(generator=None, orchestrator=None, research=None, **settings) -> StreamingResponseEmitter:
    return StreamingResponseEmitter(
        orchestrator or _orchestrator(),
        generator or FakeGenerator(),
        research=research,
        settings=Settings(**settings),
    )


async def _collect(emitter, query, mode=None) -> list:
    return [event async for event in emitter.stream(query, mode=mode)]


def _assert_single_terminal_last(events):
    terminals = [i for i, event in enumerate(events) if is_terminal(event)]
    assert terminals == [len(events) - 1]


class TestGroupWords:
    def test_groups_of_three(self):
        assert group_words("a b c d e f g") == ["a b c", " d e f", " g"]

    def test_concatenation_reproduces_text(self):
        text = "The Arabian Sea  warms in May, then cools."
        assert "".join(group_words(text, 3)) == text

    def test_empty(self):
        assert group_words("") == []


class TestEmissionStateMachine:
    def test_content_requires_streaming(self):
        emission = _Emission()
        emission.advance(EmitterState.FETCHING)
        with pytest.raises(IllegalTransition):
            emission.emit(ContentEvent("x"))

    def test_nothing_after_terminal(self):
        emission = _Emission()
        emission.emit(ErrorEvent("boom"))
        assert emission.state is EmitterState.TERMINATED
        with pytest.raises(IllegalTransition):
            emission.emit(MetadataEvent({}))

    def test_no_skipping_back(self):
        emission = _Emission()
        emission.advance(EmitterState.FETCHING)
        emission.advance(EmitterState.GENERATING)
        with pytest.raises(IllegalTransition):
            emission.advance(EmitterState.FETCHING)


class TestStream:
    @pytest.mark.asyncio
    async def test_mumbai_sst_scenario(self):
        orchestrator = _orchestrator()
        events = await _collect(_emitter(orchestrator=orchestrator), Query(MUMBAI_SST))

        domains, region, _ = orchestrator.gather.await_args.args
        assert {Domain.PROFILING_FLOAT, Domain.TIDAL_CURRENT} <= set(domains)
        assert region.id == "mumbai"

        assert isinstance(events[0], MetadataEvent)
        assert "oceanData" in events[0].payload
        assert events[1] == MetadataEvent({"modelUsed": "model-a"})
        assert events[2:4] == [ContentEvent("Hello"), ContentEvent(" ocean")]
        assert isinstance(events[-1], DoneEvent)
        _assert_single_terminal_last(events)

    @pytest.mark.asyncio
    async def test_hello_skips_orchestrator(self):
        orchestrator = _orchestrator()
        events = await _collect(_emitter(orchestrator=orchestrator), Query("hello"))

        orchestrator.gather.assert_not_awaited()
        assert events[0].payload["oceanData"]["perDomain"] == {}
        assert isinstance(events[-1], DoneEvent)
        _assert_single_terminal_last(events)

    @pytest.mark.asyncio
    async def test_all_timeout_scenario(self):
        orchestrator = FetchOrchestrator(
            {domain: TimeoutAdapter(domain) for domain in Domain},
            AggregationCache(),
            fetch_deadline=1.0,
        )
        generator = FakeGenerator()
        events = await _collect(
            _emitter(generator=generator, orchestrator=orchestrator),
            Query("argo temperature, tides, chlorophyll and forecast near Mumbai"),
        )

        ocean = events[0].payload["oceanData"]
        assert ocean["succeededDomains"] == []
        assert sorted(ocean["degradedDomains"]) == sorted(d.value for d in Domain)
        assert "[FALLBACK" in generator.prompts[0]
        assert isinstance(events[-1], DoneEvent)

    @pytest.mark.asyncio
    async def test_research_references_before_model(self):
        research = MagicMock()
        research.find_references = AsyncMock(return_value=[
            Reference(index=1, title="Monsoon upwelling", url="https://example.org/m"),
        ])
        generator = FakeGenerator()
        events = await _collect(
            _emitter(generator=generator, research=research), Query("argo floats"), mode="research",
        )

        kinds = [next(iter(e.payload)) for e in events if isinstance(e, MetadataEvent)]
        assert kinds == ["oceanData", "references", "modelUsed"]
        assert "[1] Monsoon upwelling - https://example.org/m" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_no_references_event_when_none_found(self):
        research = MagicMock()
        research.find_references = AsyncMock(return_value=[])
        events = await _collect(_emitter(research=research), Query("argo floats"), mode="research")
        assert not any(isinstance(e, MetadataEvent) and "references" in e.payload for e in events)

    @pytest.mark.asyncio
    async def test_demo_mode(self):
        orchestrator = _orchestrator()
        events = await _collect(
            _emitter(generator=FakeGenerator(configured=False), orchestrator=orchestrator),
            Query("argo floats"),
        )
        assert events == [ContentEvent(DEMO_MODE_MESSAGE), DoneEvent()]
        orchestrator.gather.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generator_unavailable_is_error_terminal(self):
        events = await _collect(_emitter(generator=FakeGenerator(fail_select=True)), Query("argo floats"))
        assert isinstance(events[-1], ErrorEvent)
        assert not any(isinstance(e, ContentEvent) for e in events)
        _assert_single_terminal_last(events)

    @pytest.mark.asyncio
    async def test_mid_stream_failure_ends_with_error(self):
        generator = FakeGenerator(chunks=("partial",), fail_after=True)
        events = await _collect(_emitter(generator=generator), Query("argo floats"))

        assert ContentEvent("partial") in events
        assert events[-1] == ErrorEvent("Response generation failed")
        _assert_single_terminal_last(events)

    @pytest.mark.asyncio
    async def test_error_details_only_in_debug(self):
        generator = FakeGenerator(chunks=(), fail_after=True)
        events = await _collect(_emitter(generator=generator, debug=True), Query("argo floats"))
        assert "connection reset" in events[-1].reason

    @pytest.mark.asyncio
    async def test_single_mode_resegments_words(self):
        generator = FakeGenerator(text="Warm surface waters overlie a sharp thermocline here")
        events = await _collect(_emitter(generator=generator, generator_mode="single"), Query("argo floats"))

        content = [e.text for e in events if isinstance(e, ContentEvent)]
        assert content == ["Warm surface waters", " overlie a sharp", " thermocline here"]
        assert "".join(content) == generator.text
        assert isinstance(events[-1], DoneEvent)

    @pytest.mark.asyncio
    async def test_pipeline_bug_is_error_terminal(self):
        orchestrator = MagicMock()
        orchestrator.gather = AsyncMock(side_effect=RuntimeError("unexpected"))
        events = await _collect(_emitter(orchestrator=orchestrator), Query("argo floats"))
        assert events == [ErrorEvent("An error occurred while processing your query")]

    @pytest.mark.asyncio
    async def test_history_reaches_prompt(self):
        generator = FakeGenerator()
        query = Query("argo floats", conversation_context=(PriorTurn("user", "tell me about Goa"),))
        await _collect(_emitter(generator=generator), query)
        assert "USER: tell me about Goa" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_tool_directive_stripped_from_prompt_query(self):
        generator = FakeGenerator()
        await _collect(_emitter(generator=generator), Query("[Using Deep ocean analysis] argo floats"))
        assert 'User Query: "argo floats"' in generator.prompts[0]
        assert "SPECIAL INSTRUCTIONS" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_cancellation_closes_generator(self):
        generator = FakeGenerator(chunks=("partial",), hang=True)
        emitter = _emitter(generator=generator)
        received = []

        async def consume():
            async for event in emitter.stream(Query("argo floats")):
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert generator.closed
        assert ContentEvent("partial") in received
        assert not any(is_terminal(e) for e in received)


class TestRespond:
    @pytest.mark.asyncio
    async def test_returns_full_text(self):
        generator = FakeGenerator(text="Complete answer.")
        result = await _emitter(generator=generator).respond(Query(MUMBAI_SST), mode="analysis")

        assert result.text == "Complete answer."
        assert result.model == "model-a"
        assert result.context == "analysis"
        assert "perDomain" in result.ocean_data

    @pytest.mark.asyncio
    async def test_not_configured_raises(self):
        with pytest.raises(GeneratorUnavailable):
            await _emitter(generator=FakeGenerator(configured=False)).respond(Query("argo"))

    @pytest.mark.asyncio
    async def test_generator_failure_raises(self):
        with pytest.raises(GeneratorError):
            await _emitter(generator=FakeGenerator(fail_after=True)).respond(Query("argo"))
