"""Tests for ModelGateway resilience behaviour."""

import asyncio

import pytest

from codeforge.config import CircuitBreakerConfig, GatewayConfig, ModelRoleConfig, Settings
from codeforge.constants import ModelRole
from codeforge.errors import (
    CircuitOpenError,
    GatewayTimeoutError,
    GatewayTransportError,
    GenerationCancelledError,
    QueueFullError,
)
from codeforge.services.gateway import ConnectionCache, ModelGateway


class TrackingSession:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class TrackingStreamTransport:
    """Streams fixed deltas and records when the generator is finalized."""

    def __init__(self, deltas):
        self.deltas = list(deltas)
        self.finalized = False

    async def stream(self, model, messages, temperature, max_tokens):
        try:
            for delta in self.deltas:
                await asyncio.sleep(0)
                yield delta
        finally:
            self.finalized = True


def gateway_with(transport, **gateway_overrides):
    gateway_overrides.setdefault('throttle_ms', 0)
    settings = Settings(gateway=GatewayConfig(**gateway_overrides), circuit_breaker=CircuitBreakerConfig())
    return ModelGateway(settings, transport=transport)


@pytest.mark.unit
class TestModelGatewayComplete:
    """Test non-streaming completions."""

    @pytest.mark.asyncio
    async def test_complete_returns_text(self, gateway, fake_transport):
        """The completion text is returned and the call is recorded."""
        fake_transport.responses = ["const App = () => null;"]

        text = await gateway.complete("system", "build a counter", max_tokens=4096)

        assert text == "const App = () => null;"
        call = fake_transport.calls[0]
        assert call['max_tokens'] == 4096
        assert call['messages'] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "build a counter"},
        ]
        assert gateway.get_telemetry()['total_calls'] == 1
        assert gateway.get_circuit_status()['state'] == "closed"

    @pytest.mark.asyncio
    async def test_role_selects_temperature(self, gateway, fake_transport):
        """Planner calls default to the planner temperature; overrides win."""
        fake_transport.responses = ["a", "b"]

        await gateway.complete("s", "u")
        await gateway.complete("s", "u", temperature=0.9)

        assert fake_transport.calls[0]['temperature'] == 0.2
        assert fake_transport.calls[1]['temperature'] == 0.9

    @pytest.mark.asyncio
    async def test_dual_model_routing(self, transport_factory):
        """In dual-model mode builder calls go to the builder model."""
        transport = transport_factory(responses=["plan"], streams=[["code"]])
        settings = Settings(
            gateway=GatewayConfig(throttle_ms=0),
            models=ModelRoleConfig(model="base", planner_model="thinker", builder_model="coder", dual_model=True),
        )
        gateway = ModelGateway(settings, transport=transport)

        await gateway.complete("s", "u", role=ModelRole.PLANNER)
        await gateway.stream_complete("s", [{"role": "user", "content": "u"}], 100)

        assert [call['model'] for call in transport.calls] == ["thinker", "coder"]


@pytest.mark.unit
class TestModelGatewayResilience:
    """Test breaker, queue, timeout and cancellation handling."""

    @pytest.mark.asyncio
    async def test_circuit_opens_after_consecutive_failures(self, gateway, fake_transport):
        """Three transport failures open the circuit and the fourth call never reaches the transport."""
        fake_transport.responses = [GatewayTransportError("HTTP 500: boom", 500) for _ in range(3)]

        for _ in range(3):
            with pytest.raises(GatewayTransportError):
                await gateway.complete("s", "u")

        with pytest.raises(CircuitOpenError) as exc_info:
            await gateway.complete("s", "u")

        assert len(fake_transport.calls) == 3
        assert exc_info.value.retry_after > 0
        assert "Circuit breaker is OPEN. Retry after" in exc_info.value.message
        assert gateway.get_health()['available'] is False

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, gateway, fake_transport):
        """The operator reset closes an open circuit."""
        fake_transport.responses = [GatewayTransportError("down") for _ in range(3)] + ["ok"]
        for _ in range(3):
            with pytest.raises(GatewayTransportError):
                await gateway.complete("s", "u")

        status = gateway.reset_circuit_breaker()

        assert status['state'] == "closed"
        assert await gateway.complete("s", "u") == "ok"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, gateway, fake_transport):
        """Non-gateway exceptions become transport errors and count as failures."""
        fake_transport.responses = [RuntimeError("socket exploded")]

        with pytest.raises(GatewayTransportError, match="Unexpected gateway failure"):
            await gateway.complete("s", "u")

        assert gateway.get_circuit_status()['failures'] == 1

    @pytest.mark.asyncio
    async def test_timeout(self, transport_factory):
        """A call slower than the timeout raises GatewayTimeoutError and counts as a failure."""
        transport = transport_factory(responses=["late"], delay=0.5)
        gateway = gateway_with(transport, request_timeout_ms=20)

        with pytest.raises(GatewayTimeoutError) as exc_info:
            await gateway.complete("s", "u")

        assert exc_info.value.timeout_ms == 20
        assert gateway.get_circuit_status()['failures'] == 1
        assert gateway.get_queue_status()['active'] == 0

    @pytest.mark.asyncio
    async def test_cancel_is_distinct_from_timeout(self, transport_factory):
        """Setting the cancel event aborts the call without touching the breaker."""
        transport = transport_factory(responses=["late"], delay=0.5)
        gateway = gateway_with(transport, request_timeout_ms=5000)
        cancel = asyncio.Event()

        call = asyncio.create_task(gateway.complete("s", "u", cancel=cancel))
        await asyncio.sleep(0.01)
        cancel.set()

        with pytest.raises(GenerationCancelledError):
            await call

        assert gateway.get_circuit_status()['failures'] == 0
        assert gateway.get_queue_status()['active'] == 0

    @pytest.mark.asyncio
    async def test_cancel_before_call(self, gateway, fake_transport):
        """An already-set cancel event short-circuits before the transport."""
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(GenerationCancelledError):
            await gateway.complete("s", "u", cancel=cancel)

        assert fake_transport.calls == []

    @pytest.mark.asyncio
    async def test_queue_full(self, transport_factory):
        """With the slot busy and no queue room, the next call fails fast."""
        transport = transport_factory(responses=["first", "second"], delay=0.1)
        gateway = gateway_with(transport, max_concurrent=1, max_queue_size=0)

        first = asyncio.create_task(gateway.complete("s", "u"))
        await asyncio.sleep(0.01)

        with pytest.raises(QueueFullError):
            await gateway.complete("s", "u")

        assert await first == "first"
        assert len(transport.calls) == 1
        assert gateway.get_circuit_status()['failures'] == 0

    @pytest.mark.asyncio
    async def test_queued_requests_fail_fast_once_circuit_opens(self, transport_factory):
        """Requests waiting in the queue never reach the endpoint after the circuit opens."""
        transport = transport_factory(
            responses=[GatewayTransportError("HTTP 500: boom", 500) for _ in range(5)],
            delay=0.01,
        )
        settings = Settings(
            gateway=GatewayConfig(throttle_ms=0, max_concurrent=1),
            circuit_breaker=CircuitBreakerConfig(failure_threshold=1),
        )
        gateway = ModelGateway(settings, transport=transport)

        results = await asyncio.gather(
            *(gateway.complete("s", "u") for _ in range(5)),
            return_exceptions=True,
        )

        assert len(transport.calls) == 1
        assert isinstance(results[0], GatewayTransportError)
        assert all(isinstance(r, CircuitOpenError) for r in results[1:])
        assert gateway.get_circuit_status()['failures'] == 1
        assert gateway.get_queue_status()['active'] == 0
        assert gateway.get_queue_status()['pending'] == 0


@pytest.mark.unit
class TestModelGatewayStreaming:
    """Test streamed completions."""

    @pytest.mark.asyncio
    async def test_stream_delivers_chunks(self, gateway, fake_transport):
        """Every delta reaches on_chunk and the joined text is returned."""
        fake_transport.streams = [["function ", "App() ", "{ return null; }"]]
        chunks = []

        text = await gateway.stream_complete(
            "system",
            [{"role": "user", "content": "go"}],
            8192,
            chunks.append,
        )

        assert text == "function App() { return null; }"
        assert "".join(chunks) == text
        call = fake_transport.calls_of('stream')[0]
        assert call['messages'][0] == {"role": "system", "content": "system"}
        assert call['temperature'] == 0.4

    @pytest.mark.asyncio
    async def test_stream_failure_counts_against_breaker(self, gateway, fake_transport):
        """A stream that fails mid-flight is a breaker failure."""
        fake_transport.streams = [GatewayTransportError("Network error: reset")]

        with pytest.raises(GatewayTransportError):
            await gateway.stream_complete("s", [], 100, None)

        assert gateway.get_circuit_status()['failures'] == 1

    @pytest.mark.asyncio
    async def test_cancelled_stream_is_closed(self):
        """Cancelling mid-stream finalizes the transport stream before the error surfaces."""
        transport = TrackingStreamTransport(["function ", "App() ", "{ }"])
        gateway = gateway_with(transport)
        cancel = asyncio.Event()

        def on_chunk(text):
            cancel.set()

        with pytest.raises(GenerationCancelledError):
            await gateway.stream_complete("s", [], 100, on_chunk, cancel)

        assert transport.finalized is True
        assert gateway.get_circuit_status()['failures'] == 0


@pytest.mark.unit
class TestModelGatewayStatus:
    """Test connection checks and health reporting."""

    @pytest.mark.asyncio
    async def test_check_connection_lists_models(self, gateway):
        """A reachable endpoint reports its models."""
        result = await gateway.check_connection()
        assert result == {'connected': True, 'models': ['local-model']}

    @pytest.mark.asyncio
    async def test_check_connection_never_raises(self, gateway, fake_transport):
        """Transport failures are reported, not raised."""
        async def broken():
            raise GatewayTransportError("Network error: refused")

        fake_transport.list_models = broken

        result = await gateway.check_connection()

        assert result['connected'] is False
        assert result['error'] == "Network error: refused"

    def test_health_snapshot(self, gateway):
        """get_health bundles queue, breaker, telemetry and connection stats."""
        health = gateway.get_health()

        assert health['available'] is True
        assert set(health) == {'endpoint', 'available', 'queue', 'circuit_breaker', 'telemetry', 'connections'}
        assert health['queue']['max_concurrent'] == 1


@pytest.mark.unit
class TestModelGatewayConnections:
    """Test that the gateway owns the sessions its transport uses."""

    def test_default_transport_shares_cache(self):
        """The built-in transport draws sessions from the gateway's cache."""
        gateway = ModelGateway(Settings(gateway=GatewayConfig(throttle_ms=0)))

        assert gateway.transport.connections is gateway.connections

    @pytest.mark.asyncio
    async def test_close_closes_cached_sessions(self):
        """Leaving the gateway context closes every session the transport opened."""
        session = TrackingSession()
        cache = ConnectionCache(session_factory=lambda endpoint, api_key: session)

        async with ModelGateway(Settings(gateway=GatewayConfig(throttle_ms=0)), connections=cache) as gateway:
            assert gateway.connections is cache
            assert await gateway.transport._session() is session
            assert gateway.get_health()['connections']['size'] == 1

        assert session.closed is True
        assert gateway.get_health()['connections']['size'] == 0
