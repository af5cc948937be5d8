"""Model Gateway
==============

Single point of access to one model endpoint. Every call goes through:

1. Circuit breaker check (fail fast with ``CircuitOpenError``), repeated
   once the request leaves the queue
2. Bounded FIFO request queue (fail fast with ``QueueFullError``)
3. The transport call, raced against the caller's cancel signal and the
   request timeout
4. Chunk throttling for streamed output
5. Circuit breaker bookkeeping and telemetry

Usage:
    async with ModelGateway(settings) as gateway:
        text = await gateway.complete(PLANNER_PROMPT, request, max_tokens=4096)
        code = await gateway.stream_complete(BUILDER_PROMPT, messages, 8192, on_chunk)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing, suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

from codeforge.config.settings import Settings, get_settings
from codeforge.constants import ModelRole
from codeforge.errors import (
    CircuitOpenError,
    GatewayError,
    GatewayTimeoutError,
    GatewayTransportError,
    GenerationCancelledError,
)
from codeforge.utils.circuit_breaker import CircuitBreaker

from .connection_cache import ConnectionCache
from .request_queue import RequestQueue
from .telemetry import GatewayTelemetry, estimate_tokens
from .throttler import ChunkThrottler
from .transport import OpenAICompatibleTransport

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


class ModelGateway:
    """Resilient access to a chat-completion endpoint.

    The breaker, queue, telemetry and connection cache are owned by the
    gateway instance and live as long as it does, surviving across runs.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Any = None,
        breaker: Optional[CircuitBreaker] = None,
        queue: Optional[RequestQueue] = None,
        telemetry: Optional[GatewayTelemetry] = None,
        connections: Optional[ConnectionCache] = None,
    ):
        self.settings = settings or get_settings()
        gw = self.settings.gateway

        self.connections = connections if connections is not None else ConnectionCache(
            max_size=gw.connection_cache_size,
            max_age=gw.connection_max_age,
        )
        if transport is None:
            transport = OpenAICompatibleTransport(gw.endpoint, gw.api_key, self.connections)
        self.transport = transport
        self.breaker = breaker or CircuitBreaker(gw.endpoint, self.settings.circuit_breaker)
        self.queue = queue or RequestQueue(gw.max_concurrent, gw.max_queue_size, name=gw.endpoint)
        self.telemetry = telemetry or GatewayTelemetry(
            window=gw.telemetry_window,
            latency_warn_ms=gw.latency_warn_ms,
            tokens_per_sec_warn=gw.tokens_per_sec_warn,
        )

        logger.info(
            f"ModelGateway initialized: endpoint={gw.endpoint}, "
            f"max_concurrent={gw.max_concurrent}, max_queue={gw.max_queue_size}, "
            f"timeout={gw.request_timeout_ms}ms"
        )

    async def __aenter__(self) -> 'ModelGateway':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Role helpers
    # ------------------------------------------------------------------
    def model_for_role(self, role: ModelRole) -> str:
        return self.settings.models.model_for_role(role)

    def temperature_for_role(self, role: ModelRole) -> float:
        return self.settings.llm.temperature_for(role.value)

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        *,
        role: ModelRole = ModelRole.PLANNER,
        temperature: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Run a non-streaming completion.

        Args:
            system_prompt: System message
            user_prompt: Single user message
            max_tokens: Output budget (defaults to the quick-app budget)
            role: Model role, selects model and default temperature
            temperature: Overrides the role temperature
            cancel: Event that aborts the call when set

        Returns:
            The completion text

        Raises:
            CircuitOpenError, QueueFullError, GatewayTimeoutError,
            GenerationCancelledError, GatewayTransportError
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        model = self.model_for_role(role)
        temp = self.temperature_for_role(role) if temperature is None else temperature
        budget = max_tokens or self.settings.llm.max_tokens_for('quick_app')

        async def call() -> Dict[str, Any]:
            completion = await self.transport.complete(model, messages, temp, budget)
            tokens = completion.completion_tokens
            if tokens is None:
                tokens = estimate_tokens(completion.text)
            return {'text': completion.text, 'tokens': tokens}

        result = await self._guarded(call, model=model, cancel=cancel, streamed=False)
        return result['text']

    async def stream_complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        on_chunk: Optional[ChunkCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        *,
        role: ModelRole = ModelRole.BUILDER,
        temperature: Optional[float] = None,
    ) -> str:
        """Stream a completion, delivering throttled chunks to ``on_chunk``.

        Returns the full text. The throttle buffer is flushed on completion
        and on cancellation.
        """
        full_messages = [{"role": "system", "content": system_prompt}] + list(messages)
        model = self.model_for_role(role)
        temp = self.temperature_for_role(role) if temperature is None else temperature
        budget = max_tokens or self.settings.llm.max_tokens_for('quick_app')

        async def call() -> Dict[str, Any]:
            parts: List[str] = []
            throttler = ChunkThrottler(on_chunk or (lambda _text: None), self.settings.gateway.throttle_ms)
            try:
                async with aclosing(self.transport.stream(model, full_messages, temp, budget)) as deltas:
                    async for delta in deltas:
                        if cancel is not None and cancel.is_set():
                            raise GenerationCancelledError()
                        parts.append(delta)
                        throttler.push(delta)
            finally:
                throttler.close()
            text = "".join(parts)
            return {'text': text, 'tokens': estimate_tokens(text)}

        result = await self._guarded(call, model=model, cancel=cancel, streamed=True)
        return result['text']

    async def check_connection(self) -> Dict[str, Any]:
        """Probe ``GET /models``; never raises."""
        try:
            models = await asyncio.wait_for(self.transport.list_models(), timeout=10)
        except asyncio.TimeoutError:
            return {'connected': False, 'models': [], 'error': 'Connection check timed out'}
        except GatewayError as e:
            return {'connected': False, 'models': [], 'error': e.message}
        return {'connected': True, 'models': models}

    # ------------------------------------------------------------------
    # Core guard
    # ------------------------------------------------------------------
    async def _guarded(
        self,
        call: Callable[[], Awaitable[Dict[str, Any]]],
        *,
        model: str,
        cancel: Optional[asyncio.Event],
        streamed: bool,
    ) -> Dict[str, Any]:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelledError()

        # Fail fast before queueing; the probe slot is claimed once a slot is granted
        if not self.breaker.is_available():
            raise CircuitOpenError(self.breaker.retry_after(), self.breaker.name)
        return await self.queue.run(lambda: self._admitted(call, model, cancel, streamed))

    async def _admitted(
        self,
        call: Callable[[], Awaitable[Dict[str, Any]]],
        model: str,
        cancel: Optional[asyncio.Event],
        streamed: bool,
    ) -> Dict[str, Any]:
        # The circuit may have opened while this request waited in the queue
        self.breaker.check()
        try:
            return await self._execute(call, model, cancel, streamed)
        except BaseException:
            # Frees the half-open probe slot if the call never reached the breaker
            self.breaker.release()
            raise

    async def _execute(
        self,
        call: Callable[[], Awaitable[Dict[str, Any]]],
        model: str,
        cancel: Optional[asyncio.Event],
        streamed: bool,
    ) -> Dict[str, Any]:
        timeout_ms = self.settings.gateway.request_timeout_ms
        start = time.monotonic()
        try:
            result = await self._race(call(), cancel, timeout_ms)
        except GenerationCancelledError:
            logger.info(f"LLM call cancelled after {(time.monotonic() - start) * 1000:.0f}ms")
            raise
        except (GatewayTimeoutError, GatewayTransportError) as e:
            self._record(start, 0, False, model, streamed)
            self.breaker.record_failure(e)
            raise
        except Exception as e:
            self._record(start, 0, False, model, streamed)
            self.breaker.record_failure(e)
            raise GatewayTransportError(f"Unexpected gateway failure: {e}") from e

        self._record(start, result['tokens'], True, model, streamed)
        self.breaker.record_success()
        return result

    async def _race(
        self,
        coro: Awaitable[Dict[str, Any]],
        cancel: Optional[asyncio.Event],
        timeout_ms: int,
    ) -> Dict[str, Any]:
        """Await ``coro`` unless the cancel signal or the timeout fires first."""
        call_task = asyncio.ensure_future(coro)
        waiters = {call_task}
        cancel_task = None
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            call_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if call_task in done:
            return call_task.result()

        call_task.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await call_task
        if cancel_task is not None and cancel_task in done:
            raise GenerationCancelledError()
        logger.warning(f"LLM call timed out after {timeout_ms}ms")
        raise GatewayTimeoutError(timeout_ms)

    def _record(self, start: float, tokens: int, success: bool, model: str, streamed: bool) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        self.telemetry.record(duration_ms, tokens, success=success, model=model, streamed=streamed)

    # ------------------------------------------------------------------
    # Status and operator surface
    # ------------------------------------------------------------------
    def get_queue_status(self) -> Dict[str, Any]:
        return self.queue.get_status()

    def get_circuit_status(self) -> Dict[str, Any]:
        return self.breaker.get_status()

    def get_telemetry(self) -> Dict[str, Any]:
        return self.telemetry.get_stats()

    def get_health(self) -> Dict[str, Any]:
        return {
            'endpoint': self.settings.gateway.endpoint,
            'available': self.breaker.is_available(),
            'queue': self.get_queue_status(),
            'circuit_breaker': self.get_circuit_status(),
            'telemetry': self.get_telemetry(),
            'connections': self.connections.get_stats(),
        }

    def reset_circuit_breaker(self) -> Dict[str, Any]:
        """Operator override: force the breaker closed."""
        self.breaker.reset()
        return self.get_circuit_status()

    async def close(self) -> None:
        await self.connections.close_all()


__all__ = ['ModelGateway', 'ChunkCallback']
