"""OpenAI-compatible Chat Transport
=================================

Talks to any endpoint exposing ``POST {endpoint}/chat/completions`` and
``GET {endpoint}/models`` (LM Studio, Ollama's OpenAI bridge, cloud
providers).

Features:
- Non-streaming completions reading ``choices[0].message.content``
- SSE streaming yielding ``choices[0].delta.content`` until ``[DONE]``
- Sessions come from the shared ConnectionCache
- HTTP and network failures surface as ``GatewayTransportError``
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from codeforge.errors import GatewayTransportError

from .connection_cache import ConnectionCache

logger = logging.getLogger(__name__)

SSE_DONE = "[DONE]"


@dataclass
class Completion:
    """Result of a non-streaming chat completion."""
    text: str
    completion_tokens: Optional[int] = None
    finish_reason: Optional[str] = None


def build_payload(
    model: str,
    messages: List[Dict[str, str]],
    temperature: float,
    max_tokens: int,
    stream: bool,
) -> Dict[str, Any]:
    """Build the chat completion request body."""
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": stream,
    }


def parse_sse_line(line: Any) -> Optional[str]:
    """Extract the text delta from one SSE line.

    Returns ``SSE_DONE`` for the terminator, None for lines that carry no
    content (comments, keep-alives, role-only deltas).
    """
    if isinstance(line, (bytes, bytearray)):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == SSE_DONE:
        return SSE_DONE
    if not data:
        return None
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed SSE payload: {data[:80]}")
        return None
    choices = event.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content or None


def _error_message(status: int, body: str) -> str:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return f"HTTP {status}: {body[:200]}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return f"HTTP {status}: {error.get('message', str(error))}"
    if error:
        return f"HTTP {status}: {error}"
    return f"HTTP {status}: {body[:200]}"


class OpenAICompatibleTransport:
    """Chat-completion transport for one endpoint.

    Usage:
        transport = OpenAICompatibleTransport("http://localhost:1234/v1", "lm-studio")
        completion = await transport.complete("local-model", messages, 0.2, 4096)
        async for delta in transport.stream("local-model", messages, 0.4, 8192):
            ...
    """

    def __init__(self, endpoint: str, api_key: str = "", connections: Optional[ConnectionCache] = None):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.connections = connections if connections is not None else ConnectionCache()

    async def _session(self):
        return await self.connections.acquire(self.endpoint, self.api_key)

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        payload = build_payload(model, messages, temperature, max_tokens, stream=False)
        session = await self._session()
        try:
            async with session.post(f"{self.endpoint}/chat/completions", json=payload) as response:
                body = await response.text()
                if response.status != 200:
                    raise GatewayTransportError(_error_message(response.status, body), response.status)
        except aiohttp.ClientError as e:
            self.connections.mark_unhealthy(self.endpoint)
            raise GatewayTransportError(f"Network error: {e}") from e

        try:
            data = json.loads(body)
            choice = data["choices"][0]
            text = choice["message"]["content"] or ""
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise GatewayTransportError(f"Malformed completion response: {body[:200]}") from e

        usage = data.get("usage") or {}
        return Completion(
            text=text,
            completion_tokens=usage.get("completion_tokens"),
            finish_reason=choice.get("finish_reason"),
        )

    async def stream(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        """Yield text deltas as they arrive."""
        payload = build_payload(model, messages, temperature, max_tokens, stream=True)
        session = await self._session()
        try:
            async with session.post(f"{self.endpoint}/chat/completions", json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise GatewayTransportError(_error_message(response.status, body), response.status)
                async for raw_line in response.content:
                    delta = parse_sse_line(raw_line)
                    if delta is None:
                        continue
                    if delta == SSE_DONE:
                        break
                    yield delta
        except aiohttp.ClientError as e:
            self.connections.mark_unhealthy(self.endpoint)
            raise GatewayTransportError(f"Network error: {e}") from e

    async def list_models(self) -> List[str]:
        session = await self._session()
        try:
            async with session.get(f"{self.endpoint}/models") as response:
                body = await response.text()
                if response.status != 200:
                    raise GatewayTransportError(_error_message(response.status, body), response.status)
        except aiohttp.ClientError as e:
            self.connections.mark_unhealthy(self.endpoint)
            raise GatewayTransportError(f"Network error: {e}") from e

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise GatewayTransportError(f"Malformed models response: {body[:200]}") from e
        self.connections.mark_healthy(self.endpoint)
        return [entry.get("id", "") for entry in data.get("data", []) if isinstance(entry, dict)]

    async def close(self) -> None:
        await self.connections.close_all()


__all__ = [
    'Completion',
    'OpenAICompatibleTransport',
    'SSE_DONE',
    'build_payload',
    'parse_sse_line',
]
