"""
LLM Service

Streaming completion gateway over a swappable generation backend.

Backends:
    - OpenAIGenerationBackend: Chat Completions with ``stream=True``.
    - OllamaGenerationBackend: local Ollama ``/api/chat`` NDJSON stream
      over httpx.

Design:
    - Backends yield non-empty text fragments and translate their own
      failures into ``GenerationUnavailable``.
    - ``CompletionStream`` relays fragments the moment they arrive and
      accumulates them; a failure before the first fragment propagates,
      a failure after it ends the stream and marks it truncated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

from roomrag.core.config import Settings
from roomrag.core.exceptions import GenerationUnavailable
from roomrag.models.schemas import HistoryTurn

logger = logging.getLogger(__name__)

ChatMessages = list[dict[str, str]]


class GenerationBackend(Protocol):
    """Given chat messages, produce a stream of text fragments."""

    def stream(self, messages: ChatMessages) -> AsyncIterator[str]: ...


class OpenAIGenerationBackend:
    """OpenAI Chat Completions in streaming mode."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature

    async def stream(self, messages: ChatMessages) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self._temperature,
                stream=True,
            )
        except OpenAIError as e:
            logger.error("OpenAI completion request failed (%s): %s", type(e).__name__, e)
            raise GenerationUnavailable(f"Completion request failed: {type(e).__name__}") from e

        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content or ""
                if token:
                    yield token
        except OpenAIError as e:
            logger.error("OpenAI stream broke (%s): %s", type(e).__name__, e)
            raise GenerationUnavailable(f"Completion stream failed: {type(e).__name__}") from e
        finally:
            await response.close()


class OllamaGenerationBackend:
    """
    Local Ollama server, ``POST /api/chat`` with ``stream: true``.

    Each response line is a JSON object carrying ``message.content``;
    the last one has ``done: true``.
    """

    def __init__(
        self,
        base_url: str,
        model: str = "mistral",
        temperature: float = 0.3,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._timeout = timeout

    async def stream(self, messages: ChatMessages) -> AsyncIterator[str]:
        payload = {
            "model": self._model,
            "messages": messages,
            "stream": True,
            "options": {"temperature": self._temperature},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST", f"{self._base_url}/api/chat", json=payload
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("error"):
                            raise GenerationUnavailable(f"Ollama error: {data['error']}")
                        token = (data.get("message") or {}).get("content", "")
                        if token:
                            yield token
                        if data.get("done"):
                            break
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            logger.error("Ollama stream failed (%s): %s", type(e).__name__, e)
            raise GenerationUnavailable(f"Ollama stream failed: {type(e).__name__}") from e


class CompletionStream:
    """
    Async iterator over one completion's fragments.

    ``text`` holds everything relayed so far; ``truncated`` is set when
    the backend failed after at least one fragment was relayed.
    """

    def __init__(self, fragments: AsyncIterator[str]) -> None:
        self._fragments = fragments
        self._parts: list[str] = []
        self._closed = False
        self.truncated = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def started(self) -> bool:
        return bool(self._parts)

    def __aiter__(self) -> CompletionStream:
        return self

    async def __anext__(self) -> str:
        try:
            fragment = await anext(self._fragments)
        except GenerationUnavailable as e:
            if not self._parts:
                raise
            self.truncated = True
            logger.warning(
                "Completion cut short after %d fragments (%d chars): %s",
                len(self._parts),
                len(self.text),
                e,
            )
            raise StopAsyncIteration from e

        self._parts.append(fragment)
        return fragment

    async def aclose(self) -> None:
        """Release the upstream stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._fragments, "aclose", None)
        if aclose is not None:
            await aclose()


class StreamingCompletionGateway:
    """
    Turns (system prompt, history, user message) into a CompletionStream.

    Usage::

        gateway = StreamingCompletionGateway(backend)
        stream = gateway.complete(system, history, "Where do I start?")
        try:
            async for fragment in stream:
                send(fragment)
        finally:
            await stream.aclose()
        reply = stream.text
    """

    def __init__(self, backend: GenerationBackend) -> None:
        self._backend = backend

    @staticmethod
    def build_messages(
        system_message: str,
        history: Sequence[HistoryTurn],
        user_message: str,
    ) -> ChatMessages:
        return [
            {"role": "system", "content": system_message},
            *(turn.as_message() for turn in history),
            {"role": "user", "content": user_message},
        ]

    def complete(
        self,
        system_message: str,
        history: Sequence[HistoryTurn],
        user_message: str,
    ) -> CompletionStream:
        messages = self.build_messages(system_message, history, user_message)
        return CompletionStream(self._backend.stream(messages))


def build_generation_backend(settings: Settings) -> GenerationBackend:
    """Instantiate the backend selected by GENERATION_BACKEND."""
    if settings.GENERATION_BACKEND == "ollama":
        return OllamaGenerationBackend(
            settings.OLLAMA_BASE_URL,
            model=settings.OLLAMA_MODEL,
            temperature=settings.CHAT_TEMPERATURE,
            timeout=settings.OLLAMA_TIMEOUT,
        )
    return OpenAIGenerationBackend(
        AsyncOpenAI(api_key=settings.OPENAI_API_KEY),
        model=settings.CHAT_MODEL,
        temperature=settings.CHAT_TEMPERATURE,
    )
