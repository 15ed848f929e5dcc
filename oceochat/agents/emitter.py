"""Streaming response emitter: runs the pipeline and yields stream events."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from oceochat.agents.classifier import Classification, classify_query
from oceochat.agents.context import build_prompt
from oceochat.agents.generator import Generator, GeneratorError, GeneratorUnavailable
from oceochat.agents.orchestrator import FetchOrchestrator
from oceochat.agents.research import ResearchClient
from oceochat.config import Settings, get_settings
from oceochat.data.regions import resolve_region
from oceochat.data.schema import (
    AggregatedDataset,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    Query,
    Reference,
    StreamEvent,
    is_terminal,
)

logger = logging.getLogger(__name__)

DEMO_MODE_MESSAGE = """I'm currently running in demo mode without AI capabilities configured.

To enable full AI functionality:
1. Get an Anthropic API key from https://console.anthropic.com/
2. Add it to your .env file as: ANTHROPIC_API_KEY=your_key_here
3. Restart the server

For now, I can help you with:
- Ocean data structure and analysis guidance
- Research methodology suggestions
- Dataset recommendations
- Oceanographic concepts and explanations

What would you like to know about ocean research?"""


class EmitterState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    GENERATING = "generating"
    STREAMING = "streaming"
    TERMINATED = "terminated"


_TRANSITIONS: dict[EmitterState, frozenset[EmitterState]] = {
    EmitterState.IDLE: frozenset({EmitterState.FETCHING, EmitterState.TERMINATED}),
    EmitterState.FETCHING: frozenset({EmitterState.GENERATING, EmitterState.TERMINATED}),
    EmitterState.GENERATING: frozenset({EmitterState.STREAMING, EmitterState.TERMINATED}),
    EmitterState.STREAMING: frozenset({EmitterState.TERMINATED}),
    EmitterState.TERMINATED: frozenset(),
}


class IllegalTransition(RuntimeError):
    """An emission step was attempted out of order."""


class _Emission:
    """Per-request state machine guarding event order."""

    def __init__(self) -> None:
        self.state = EmitterState.IDLE

    def advance(self, target: EmitterState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {target.value}")
        self.state = target

    def emit(self, event: StreamEvent) -> StreamEvent:
        if self.state is EmitterState.TERMINATED:
            raise IllegalTransition(f"{event.kind} event after terminal")
        if isinstance(event, ContentEvent) and self.state is not EmitterState.STREAMING:
            raise IllegalTransition(f"content event while {self.state.value}")
        if is_terminal(event):
            self.advance(EmitterState.TERMINATED)
        return event


def group_words(text: str, size: int = 3) -> list[str]:
    """Split text into groups of ``size`` space-separated words.

    Every group after the first starts with the space that separated it from
    the previous group, so the groups concatenate back to ``text``.
    """
    if not text:
        return []
    words = text.split(" ")
    groups = [" ".join(words[i:i + size]) for i in range(0, len(words), size)]
    return groups[:1] + [" " + group for group in groups[1:]]


@dataclass
class PreparedQuery:
    """Everything gathered before generation starts."""

    classification: Classification
    aggregated: AggregatedDataset
    references: list[Reference] = field(default_factory=list)


@dataclass
class SingleShotResult:
    text: str
    model: str
    ocean_data: dict[str, Any]
    references: list[Reference]
    context: str


class StreamingResponseEmitter:
    """Drives classify -> fetch -> generate for one query at a time.

    One instance is shared across requests; all per-request state lives in
    the ``stream``/``respond`` call.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        generator: Generator,
        research: ResearchClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._generator = generator
        self._research = research
        self._settings = settings or get_settings()

    def _reason(self, message: str, error: Exception) -> str:
        return f"{message}: {error}" if self._settings.debug else message

    async def _references(self, classification: Classification) -> list[Reference]:
        if not classification.research_requested or self._research is None:
            return []
        return await self._research.find_references(classification.query_text)

    async def prepare(self, query: Query, mode: str | None = None) -> PreparedQuery:
        """Classify the query and fetch its data and references concurrently."""
        classification = classify_query(query.text, mode=mode)
        region = resolve_region(classification.query_text)

        if classification.ambiguous:
            logger.info("No ocean domains matched, answering from text only")
            aggregated = AggregatedDataset(region=region)
            references = await self._references(classification)
        else:
            aggregated, references = await asyncio.gather(
                self._orchestrator.gather(
                    classification.domains, region, classification.time_windows
                ),
                self._references(classification),
            )
        return PreparedQuery(classification, aggregated, references)

    def _prompt(self, query: Query, prepared: PreparedQuery) -> str:
        return build_prompt(
            Query(text=prepared.classification.query_text, conversation_context=query.conversation_context),
            None if prepared.aggregated.is_empty else prepared.aggregated,
            references=prepared.references,
            tool=prepared.classification.tool,
            history_limit=self._settings.history_turns,
        )

    async def stream(self, query: Query, mode: str | None = None) -> AsyncIterator[StreamEvent]:
        """Yield metadata and content events, then exactly one terminal event.

        Metadata order: oceanData, references (research mode only),
        modelUsed. Generator failures become an ``ErrorEvent`` terminal,
        including failures after some content was sent. Cancelling the
        consumer cancels in-flight fetches and the generator call.
        """
        emission = _Emission()
        try:
            if not self._generator.configured:
                emission.advance(EmitterState.FETCHING)
                emission.advance(EmitterState.GENERATING)
                emission.advance(EmitterState.STREAMING)
                yield emission.emit(ContentEvent(DEMO_MODE_MESSAGE))
                yield emission.emit(DoneEvent())
                return

            emission.advance(EmitterState.FETCHING)
            prepared = await self.prepare(query, mode)
            yield emission.emit(MetadataEvent({"oceanData": prepared.aggregated.to_payload()}))
            if prepared.references:
                yield emission.emit(MetadataEvent({
                    "references": [ref.model_dump() for ref in prepared.references]
                }))

            emission.advance(EmitterState.GENERATING)
            try:
                model = await self._generator.select_model()
            except GeneratorError as e:
                logger.error("Generator unavailable: %s", e)
                yield emission.emit(ErrorEvent(self._reason("The AI generator is unavailable", e)))
                return
            yield emission.emit(MetadataEvent({"modelUsed": model}))

            prompt = self._prompt(query, prepared)
            try:
                if self._settings.generator_mode == "single":
                    text = await self._generator.generate(prompt, model)
                    emission.advance(EmitterState.STREAMING)
                    for group in group_words(text, self._settings.stream_word_group):
                        yield emission.emit(ContentEvent(group))
                else:
                    async for text in self._generator.stream(prompt, model):
                        if emission.state is EmitterState.GENERATING:
                            emission.advance(EmitterState.STREAMING)
                        yield emission.emit(ContentEvent(text))
            except GeneratorError as e:
                logger.error("Generation failed: %s", e)
                yield emission.emit(ErrorEvent(self._reason("Response generation failed", e)))
                return

            yield emission.emit(DoneEvent())
        except Exception as e:
            if emission.state is EmitterState.TERMINATED:
                raise
            logger.exception("Stream pipeline error")
            yield emission.emit(ErrorEvent(self._reason("An error occurred while processing your query", e)))

    async def respond(self, query: Query, mode: str | None = None) -> SingleShotResult:
        """Run the pipeline and return the complete response.

        Raises:
            GeneratorUnavailable: No generator is configured or reachable.
            GeneratorError: The generator call failed or timed out.
        """
        if not self._generator.configured:
            raise GeneratorUnavailable("ANTHROPIC_API_KEY is not configured")

        prepared = await self.prepare(query, mode)
        model = await self._generator.select_model()
        text = await self._generator.generate(self._prompt(query, prepared), model)
        return SingleShotResult(
            text=text,
            model=model,
            ocean_data=prepared.aggregated.to_payload(),
            references=prepared.references,
            context=mode or ("research" if prepared.classification.research_requested else "analysis"),
        )
