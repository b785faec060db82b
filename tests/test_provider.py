"""Tests for the OpenAI-compatible streaming provider."""

import asyncio
import json

import httpx
import pytest

from agentloop.errors import ProviderError
from agentloop.provider import OpenAICompatibleProvider, ThinkFilter
from agentloop.schemas import GenerationConfig, Message, Role, StreamUnitType

CONFIG = GenerationConfig(model="test-model", max_tokens=256, temperature=0.1)
MESSAGES = [Message(role=Role.USER, content="hi")]


def _sse(*chunks) -> bytes:
    lines = []
    for chunk in chunks:
        payload = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode()


def _delta(**delta) -> dict:
    return {"choices": [{"delta": delta}]}


def _provider(handler) -> OpenAICompatibleProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatibleProvider(base_url="http://model.test/v1", api_key="secret", client=client)


async def _collect(provider, cancel=None):
    return [unit async for unit in provider.stream(MESSAGES, CONFIG, cancel)]


class TestStreaming:
    """Test SSE parsing into stream units."""

    @pytest.mark.asyncio
    async def test_content_and_usage(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            body = _sse(
                _delta(content="Hel"),
                _delta(content="lo"),
                {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9}},
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        units = await _collect(_provider(handler))

        assert seen["url"] == "http://model.test/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["stream"] is True
        assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]

        content = "".join(u.text for u in units if u.type == StreamUnitType.CONTENT)
        assert content == "Hello"
        usage = [u for u in units if u.type == StreamUnitType.USAGE]
        assert usage[0].usage.total_tokens == 9

    @pytest.mark.asyncio
    async def test_reasoning_content(self):
        def handler(request):
            return httpx.Response(200, content=_sse(_delta(reasoning_content="thinking..."), _delta(content="answer"), "[DONE]"))

        units = await _collect(_provider(handler))

        assert units[0].type == StreamUnitType.REASONING
        assert units[0].text == "thinking..."
        assert units[1].type == StreamUnitType.CONTENT

    @pytest.mark.asyncio
    async def test_think_blocks_filtered(self):
        def handler(request):
            body = _sse(
                _delta(content="<think>secret"),
                _delta(content=" plans</think>Visible"),
                _delta(content=" text"),
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        units = await _collect(_provider(handler))

        assert "".join(u.text for u in units) == "Visible text"

    @pytest.mark.asyncio
    async def test_malformed_chunks_skipped(self):
        def handler(request):
            body = b"data: {not json}\n\n: keep-alive\n\n" + _sse(_delta(content="ok"), "[DONE]")
            return httpx.Response(200, content=body)

        units = await _collect(_provider(handler))

        assert [u.text for u in units] == ["ok"]

    @pytest.mark.asyncio
    async def test_native_tool_calls(self):
        def handler(request):
            body = _sse(
                _delta(tool_calls=[{"index": 0, "function": {"name": "read", "arguments": '{"pa'}}]),
                _delta(tool_calls=[{"index": 0, "function": {"arguments": 'th": "main.py"}'}}]),
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        units = await _collect(_provider(handler))

        tool_units = [u for u in units if u.type == StreamUnitType.TOOL_CALL]
        assert len(tool_units) == 1
        assert tool_units[0].tool_name == "read"
        assert tool_units[0].tool_args == {"path": "main.py"}

    @pytest.mark.asyncio
    async def test_cancel_stops_stream(self):
        cancel = asyncio.Event()
        cancel.set()

        def handler(request):
            return httpx.Response(200, content=_sse(_delta(content="a"), _delta(content="b"), "[DONE]"))

        assert await _collect(_provider(handler), cancel) == []

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=_sse("[DONE]"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = OpenAICompatibleProvider(base_url="http://model.test/v1", client=client)
        await _collect(provider)

        assert seen["auth"] is None


class TestErrors:
    """Test error mapping."""

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(503, content=b"overloaded")

        with pytest.raises(ProviderError, match="API error 503: overloaded"):
            await _collect(_provider(handler))

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError, match="unavailable"):
            await _collect(_provider(handler))


class TestThinkFilter:
    """Test <think> span filtering across tokens."""

    def test_single_token(self):
        assert ThinkFilter().feed("a<think>x</think>b") == "ab"

    def test_across_tokens(self):
        think = ThinkFilter()
        out = [think.feed(t) for t in ["pre<think>", "hidden", "</think>post"]]
        assert "".join(out) == "prepost"

    def test_plain(self):
        assert ThinkFilter().feed("plain") == "plain"
