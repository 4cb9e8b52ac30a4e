"""
Streaming Completion Gateway Unit Tests

Fragment relay, failure semantics before and after the first fragment,
message assembly and both generation backends with mocked transports.
No external API calls: runs without network or API keys.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from roomrag.core.config import Settings
from roomrag.core.exceptions import GenerationUnavailable
from roomrag.models.schemas import HistoryTurn
from roomrag.services.llm import (
    CompletionStream,
    OllamaGenerationBackend,
    OpenAIGenerationBackend,
    StreamingCompletionGateway,
    build_generation_backend,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeOpenAIStream:
    """Async-iterable stand-in for the SDK's streaming response."""

    def __init__(self, chunks: list[SimpleNamespace], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


def _delta(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat"))


async def _drain(stream: CompletionStream) -> list[str]:
    return [fragment async for fragment in stream]


# ---------------------------------------------------------------------------
# CompletionStream
# ---------------------------------------------------------------------------


class TestCompletionStream:
    async def test_relays_and_accumulates(self, backend) -> None:
        stream = CompletionStream(backend.stream([]))

        fragments = await _drain(stream)

        assert fragments == ["Ahoy", ", ", "matey!"]
        assert stream.text == "Ahoy, matey!"
        assert stream.started
        assert not stream.truncated

    async def test_failure_before_first_fragment_propagates(self, backend) -> None:
        backend.fail_at = 0
        stream = CompletionStream(backend.stream([]))

        with pytest.raises(GenerationUnavailable):
            await _drain(stream)

        assert not stream.started
        assert stream.text == ""

    async def test_failure_mid_stream_truncates(self, backend) -> None:
        backend.fail_at = 2
        stream = CompletionStream(backend.stream([]))

        fragments = await _drain(stream)

        assert fragments == ["Ahoy", ", "]
        assert stream.truncated
        assert stream.text == "Ahoy, "

    async def test_aclose_is_idempotent(self, backend) -> None:
        stream = CompletionStream(backend.stream([]))
        await anext(stream)

        await stream.aclose()
        await stream.aclose()

        assert stream.text == "Ahoy"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestGateway:
    def test_message_order(self) -> None:
        history = [
            HistoryTurn(role="user", content="U1"),
            HistoryTurn(role="assistant", content="A1"),
        ]

        messages = StreamingCompletionGateway.build_messages("SYS", history, "U2")

        assert messages == [
            {"role": "system", "content": "SYS"},
            {"role": "user", "content": "U1"},
            {"role": "assistant", "content": "A1"},
            {"role": "user", "content": "U2"},
        ]

    async def test_complete_passes_messages_to_backend(self, backend) -> None:
        gateway = StreamingCompletionGateway(backend)

        stream = gateway.complete("SYS", [], "Where do I start?")
        await _drain(stream)

        assert backend.calls == [
            [
                {"role": "system", "content": "SYS"},
                {"role": "user", "content": "Where do I start?"},
            ]
        ]


# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------


class TestOpenAIBackend:
    async def test_streams_non_empty_deltas(self) -> None:
        response = _FakeOpenAIStream(
            [_delta("Arr"), _delta(None), SimpleNamespace(choices=[]), _delta(", matey")]
        )
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        backend = OpenAIGenerationBackend(client, model="gpt-4o-mini", temperature=0.3)

        fragments = [f async for f in backend.stream([{"role": "user", "content": "hi"}])]

        assert fragments == ["Arr", ", matey"]
        assert response.closed
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.3

    async def test_request_failure(self) -> None:
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=_connection_error())
        backend = OpenAIGenerationBackend(client)

        with pytest.raises(GenerationUnavailable):
            [f async for f in backend.stream([])]

    async def test_stream_failure_after_fragment(self) -> None:
        response = _FakeOpenAIStream([_delta("Arr")], error=_connection_error())
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        stream = CompletionStream(OpenAIGenerationBackend(client).stream([]))

        fragments = await _drain(stream)

        assert fragments == ["Arr"]
        assert stream.truncated
        assert response.closed


# ---------------------------------------------------------------------------
# Ollama backend
# ---------------------------------------------------------------------------


@pytest.fixture
def ollama_transport(monkeypatch: pytest.MonkeyPatch):
    """Route the backend's httpx client through a MockTransport handler."""
    real_client = httpx.AsyncClient

    def install(handler):
        transport = httpx.MockTransport(handler)
        monkeypatch.setattr(
            httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs)
        )

    return install


class TestOllamaBackend:
    async def test_ndjson_stream(self, ollama_transport) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            lines = [
                {"message": {"role": "assistant", "content": "Roger"}, "done": False},
                {"message": {"role": "assistant", "content": ", tower."}, "done": False},
                {"message": {"role": "assistant", "content": ""}, "done": True},
            ]
            return httpx.Response(200, text="\n".join(json.dumps(x) for x in lines))

        ollama_transport(handler)
        backend = OllamaGenerationBackend("http://ollama:11434/", model="mistral")

        fragments = [f async for f in backend.stream([{"role": "user", "content": "status?"}])]

        assert fragments == ["Roger", ", tower."]
        assert seen["url"] == "http://ollama:11434/api/chat"
        assert seen["body"]["stream"] is True
        assert seen["body"]["model"] == "mistral"

    async def test_http_error(self, ollama_transport) -> None:
        ollama_transport(lambda request: httpx.Response(500, text="boom"))
        backend = OllamaGenerationBackend("http://ollama:11434")

        with pytest.raises(GenerationUnavailable):
            [f async for f in backend.stream([])]


class TestBuildBackend:
    def test_selects_ollama(self) -> None:
        settings = Settings(_env_file=None, GENERATION_BACKEND="ollama")

        assert isinstance(build_generation_backend(settings), OllamaGenerationBackend)

    def test_defaults_to_openai(self) -> None:
        settings = Settings(_env_file=None, OPENAI_API_KEY="sk-test")

        assert isinstance(build_generation_backend(settings), OpenAIGenerationBackend)
