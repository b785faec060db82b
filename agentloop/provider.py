"""Streaming model providers.

The controller only depends on ``StreamProvider``: anything with an async
``stream(messages, config, cancel)`` generator of ``StreamUnit`` works, which
is how tests script model output.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Protocol

import httpx

from agentloop.config import DEFAULT_BASE_URL
from agentloop.errors import ProviderError
from agentloop.schemas import GenerationConfig, Message, StreamUnit, StreamUnitType, Usage

logger = logging.getLogger(__name__)

# Timeouts
CONNECT_TIMEOUT = 10.0  # seconds
READ_TIMEOUT = 120.0  # seconds between chunks
HEALTH_TIMEOUT = 5.0  # seconds

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class StreamProvider(Protocol):
    """Source of streamed model output."""

    def stream(
        self,
        messages: list[Message],
        config: GenerationConfig,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamUnit]:
        ...


class ThinkFilter:
    """Drops ``<think>...</think>`` spans from streamed content tokens."""

    def __init__(self):
        self.inside = False

    def feed(self, token: str) -> str:
        if THINK_OPEN in token and not self.inside:
            before, _, token = token.partition(THINK_OPEN)
            self.inside = True
            if THINK_CLOSE not in token:
                return before
            return before + self.feed(token)
        if self.inside:
            if THINK_CLOSE not in token:
                return ""
            self.inside = False
            return token.split(THINK_CLOSE)[-1]
        return token


def _parse_usage(raw: dict) -> Usage:
    input_tokens = raw.get("prompt_tokens") or 0
    output_tokens = raw.get("completion_tokens") or 0
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=raw.get("total_tokens") or input_tokens + output_tokens,
    )


def _native_tool_units(pending: dict[int, dict[str, str]]) -> list[StreamUnit]:
    """Turn accumulated native tool-call fragments into tool_call units."""
    units = []
    for _, fragment in sorted(pending.items()):
        try:
            parsed = json.loads(fragment["arguments"] or "{}")
        except json.JSONDecodeError:
            parsed = {"input": fragment["arguments"]}
        if not isinstance(parsed, dict):
            parsed = {"input": str(parsed)}
        args = {key: value if isinstance(value, str) else json.dumps(value) for key, value in parsed.items()}
        units.append(
            StreamUnit(
                type=StreamUnitType.TOOL_CALL,
                text=fragment["arguments"],
                tool_name=fragment["name"],
                tool_args=args,
            )
        )
    return units


class OpenAICompatibleProvider:
    """Streams chat completions from an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            base_url: API root, e.g. http://localhost:11434/v1
            api_key: Bearer token; omitted from requests when empty
            client: Preconfigured client (tests pass one with a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(READ_TIMEOUT, connect=CONNECT_TIMEOUT))

    async def stream(
        self,
        messages: list[Message],
        config: GenerationConfig,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamUnit]:
        """Stream one completion as StreamUnits.

        Raises:
            ProviderError: On connection failures, timeouts or non-2xx responses
        """
        payload = {
            "model": config.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        url = f"{self.base_url}/chat/completions"
        client = self._client or self._new_client()
        think = ThinkFilter()
        pending_tools: dict[int, dict[str, str]] = {}

        try:
            async with client.stream("POST", url, json=payload, headers=self._headers()) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(f"API error {response.status_code}: {body[:200]}")

                async for line in response.aiter_lines():
                    if cancel is not None and cancel.is_set():
                        logger.debug("Stream cancelled")
                        return
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed stream chunk: {data[:80]}")
                        continue

                    if chunk.get("usage"):
                        yield StreamUnit(type=StreamUnitType.USAGE, usage=_parse_usage(chunk["usage"]))

                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}

                    reasoning = delta.get("reasoning_content") or ""
                    if reasoning:
                        yield StreamUnit(type=StreamUnitType.REASONING, text=reasoning)

                    for tool_delta in delta.get("tool_calls") or []:
                        index = tool_delta.get("index", 0)
                        function = tool_delta.get("function") or {}
                        fragment = pending_tools.setdefault(index, {"name": "", "arguments": ""})
                        fragment["name"] += function.get("name") or ""
                        fragment["arguments"] += function.get("arguments") or ""

                    content = delta.get("content") or ""
                    if content:
                        visible = think.feed(content)
                        if visible:
                            yield StreamUnit(type=StreamUnitType.CONTENT, text=visible)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Model request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Model service unavailable at {self.base_url}: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        for unit in _native_tool_units(pending_tools):
            yield unit

    async def check_health(self) -> bool:
        """True if the endpoint answers ``GET /models``."""
        try:
            async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT) as client:
                response = await client.get(f"{self.base_url}/models", headers=self._headers())
                return response.status_code == 200
        except httpx.HTTPError:
            return False


def create_provider(base_url: str, api_key: str | None = None) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(base_url=base_url, api_key=api_key)
