import sys
from pathlib import Path

# Ensure the codeforge package under src/ is importable when running tests
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / 'src'
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from codeforge.config import CircuitBreakerConfig, GatewayConfig, OrchestratorConfig, Settings, reset_settings
from codeforge.services.gateway import Completion, ModelGateway

Handler = Callable[[List[Dict[str, str]]], Union[str, BaseException]]


class FakeTransport:
    """In-memory stand-in for OpenAICompatibleTransport.

    ``responses`` are consumed in order by ``complete``; ``streams`` (lists of
    deltas) by ``stream``. An exception in either list is raised instead,
    including one placed among a stream's deltas.
    A ``handler`` receiving the messages overrides both lists.
    """

    def __init__(
        self,
        responses: Optional[List[Any]] = None,
        streams: Optional[List[Any]] = None,
        models: Optional[List[str]] = None,
        handler: Optional[Handler] = None,
        delay: float = 0.0,
    ):
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.models = ['local-model'] if models is None else list(models)
        self.handler = handler
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def _record(self, kind: str, model: str, messages, temperature, max_tokens) -> None:
        self.calls.append({
            'kind': kind,
            'model': model,
            'messages': messages,
            'temperature': temperature,
            'max_tokens': max_tokens,
        })

    async def complete(self, model, messages, temperature, max_tokens):
        self._record('complete', model, messages, temperature, max_tokens)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.handler is not None:
            item = self.handler(messages)
        else:
            item = self.responses.pop(0) if self.responses else ""
        if isinstance(item, BaseException):
            raise item
        return Completion(text=item)

    async def stream(self, model, messages, temperature, max_tokens):
        self._record('stream', model, messages, temperature, max_tokens)
        if self.handler is not None:
            item = self.handler(messages)
            chunks = item if isinstance(item, BaseException) else [item[i:i + 8] for i in range(0, len(item), 8)]
        else:
            chunks = self.streams.pop(0) if self.streams else []
        if isinstance(chunks, BaseException):
            raise chunks
        for chunk in chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    async def list_models(self):
        return list(self.models)

    async def close(self):
        self.closed = True

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call['kind'] == kind]


def make_settings(**orchestrator: Any) -> Settings:
    """Settings with immediate chunk flushing and no planning backoff."""
    orchestrator.setdefault('planning_backoff', 0.0)
    return Settings(
        gateway=GatewayConfig(throttle_ms=0, request_timeout_ms=5000),
        circuit_breaker=CircuitBreakerConfig(),
        orchestrator=OrchestratorConfig(**orchestrator),
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep developer environment variables out of the tests."""
    for name in (
        'CODEFORGE_ENDPOINT', 'CODEFORGE_API_KEY', 'CODEFORGE_MODEL', 'CODEFORGE_PLANNER_MODEL',
        'CODEFORGE_BUILDER_MODEL', 'CODEFORGE_DUAL_MODEL', 'CODEFORGE_MAX_FIX_ATTEMPTS',
        'CODEFORGE_WEB_SEARCH', 'SERPER_API_KEY',
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gateway(settings, fake_transport) -> ModelGateway:
    return ModelGateway(settings, transport=fake_transport)


@pytest.fixture
def transport_factory():
    """Build FakeTransport instances inside a test."""
    return FakeTransport


@pytest.fixture
def settings_factory():
    """Build Settings with orchestrator overrides inside a test."""
    return make_settings
