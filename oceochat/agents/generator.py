"""Anthropic-backed text generator with model selection."""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from oceochat.config import Settings, get_settings

logger = logging.getLogger(__name__)

MODEL_STATUS_TTL = 300.0  # seconds
_PROBE_TIMEOUT = 15.0


class GeneratorError(Exception):
    """The generator call failed or timed out."""


class GeneratorUnavailable(GeneratorError):
    """No generator is configured, or none of the configured models answers."""


def _chunk_text(content: Any) -> str:
    """Flatten message content (a string or a list of content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class Generator:
    """Wraps ChatAnthropic for single-shot and incremental generation.

    The model is picked from ``anthropic_model_priority`` by probing each
    candidate; probe results are cached for five minutes.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._status: list[dict[str, Any]] = []
        self._status_checked_at: float | None = None
        self._status_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._settings.anthropic_api_key)

    @property
    def candidates(self) -> list[str]:
        models = list(self._settings.anthropic_model_priority)
        if self._settings.anthropic_model not in models:
            models.insert(0, self._settings.anthropic_model)
        return models

    def _llm(self, model: str, max_tokens: int | None = None) -> ChatAnthropic:
        return ChatAnthropic(
            model=model,
            api_key=self._settings.anthropic_api_key,
            max_tokens=max_tokens or self._settings.generator_max_tokens,
            max_retries=1,
        )

    async def _probe_model(self, model: str) -> bool:
        try:
            await asyncio.wait_for(
                self._llm(model, max_tokens=1).ainvoke([HumanMessage(content="ping")]),
                timeout=_PROBE_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning("Model %s probe timed out", model)
            return False
        except Exception as e:
            logger.warning("Model %s not available: %s", model, e)
            return False
        return True

    async def model_status(self, force: bool = False) -> list[dict[str, Any]]:
        """Availability of every candidate model, cached for MODEL_STATUS_TTL."""
        if not self.configured:
            return []
        async with self._status_lock:
            fresh = (
                self._status_checked_at is not None
                and self._clock() - self._status_checked_at < MODEL_STATUS_TTL
            )
            if self._status and fresh and not force:
                return self._status

            models = self.candidates
            available = await asyncio.gather(*(self._probe_model(m) for m in models))
            self._status = [
                {"name": model, "isAvailable": ok} for model, ok in zip(models, available)
            ]
            self._status_checked_at = self._clock()
            return self._status

    async def select_model(self) -> str:
        """Return the first available model in priority order.

        Raises:
            GeneratorUnavailable: No API key, or no candidate model answers.
        """
        if not self.configured:
            raise GeneratorUnavailable("ANTHROPIC_API_KEY is not configured")
        for entry in await self.model_status():
            if entry["isAvailable"]:
                logger.info("Using model %s", entry["name"])
                return entry["name"]
        raise GeneratorUnavailable("none of the configured models is answering")

    async def generate(self, prompt: str, model: str) -> str:
        """Produce the complete response text in one call."""
        timeout = self._settings.generator_timeout
        try:
            message = await asyncio.wait_for(
                self._llm(model).ainvoke([HumanMessage(content=prompt)]),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise GeneratorError(f"generator timed out after {timeout:.0f}s") from e
        except Exception as e:
            raise GeneratorError(f"generator call failed: {e}") from e
        return _chunk_text(message.content)

    async def stream(self, prompt: str, model: str) -> AsyncIterator[str]:
        """Yield response text incrementally, in the order the model produces it.

        The whole stream is bounded by ``generator_timeout``.
        """
        loop = asyncio.get_running_loop()
        timeout = self._settings.generator_timeout
        deadline = loop.time() + timeout
        try:
            chunks = self._llm(model).astream([HumanMessage(content=prompt)]).__aiter__()
        except Exception as e:
            raise GeneratorError(f"generator call failed: {e}") from e

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise GeneratorError(f"generator timed out after {timeout:.0f}s")
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise GeneratorError(f"generator timed out after {timeout:.0f}s") from e
                except Exception as e:
                    raise GeneratorError(f"generator stream failed: {e}") from e
                text = _chunk_text(chunk.content)
                if text:
                    yield text
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
