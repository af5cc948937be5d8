"""LLM access gateway: breaker, queue, throttling, connection cache, telemetry."""

from .connection_cache import ConnectionCache
from .model_gateway import ModelGateway
from .request_queue import RequestQueue
from .telemetry import GatewayTelemetry, estimate_tokens
from .throttler import ChunkThrottler
from .transport import Completion, OpenAICompatibleTransport, build_payload, parse_sse_line

__all__ = [
    'ChunkThrottler',
    'Completion',
    'ConnectionCache',
    'GatewayTelemetry',
    'ModelGateway',
    'OpenAICompatibleTransport',
    'RequestQueue',
    'build_payload',
    'estimate_tokens',
    'parse_sse_line',
]
