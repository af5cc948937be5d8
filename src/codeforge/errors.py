"""Exception hierarchy for the gateway, validators and engines.

Every error carries a human readable ``message``, a stable machine readable
``code`` and an optional ``details`` dict so callers can forward them as
``error`` events without string parsing.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class CodeforgeError(Exception):
    """Base class for all codeforge errors."""

    code = "codeforge_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):  # pragma: no cover - trivial
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'error': self.code, 'message': self.message}
        if self.details:
            payload['details'] = dict(self.details)
        return payload


# ---------------------------------------------------------------------------
# Gateway errors
# ---------------------------------------------------------------------------

class GatewayError(CodeforgeError):
    """Failure originating in the model gateway."""

    code = "gateway_error"


class CircuitOpenError(GatewayError):
    """Service presumed down; the caller is told when to retry."""

    code = "circuit_open"

    def __init__(self, retry_after: float, name: str = "llm"):
        seconds = max(0, int(round(retry_after)))
        super().__init__(
            f"Circuit breaker is OPEN. Retry after {seconds}s",
            {'retry_after': retry_after, 'circuit': name},
        )
        self.retry_after = retry_after


class QueueFullError(GatewayError):
    """Backpressure: the bounded request queue rejected a new entry."""

    code = "queue_full"

    def __init__(self, max_queue_size: int):
        super().__init__(
            f"Request queue full ({max_queue_size} pending). Try again later.",
            {'max_queue_size': max_queue_size},
        )
        self.max_queue_size = max_queue_size


class GatewayTimeoutError(GatewayError):
    """The request took longer than the configured timeout."""

    code = "timeout"

    def __init__(self, timeout_ms: int):
        super().__init__(
            f"Request timed out after {timeout_ms}ms",
            {'timeout_ms': timeout_ms},
        )
        self.timeout_ms = timeout_ms


class GenerationCancelledError(GatewayError):
    """The caller cancelled the request or the run."""

    code = "cancelled"

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


class GatewayTransportError(GatewayError):
    """Network, HTTP or auth failure talking to the model endpoint."""

    code = "transport_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, {'status_code': status_code} if status_code else None)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Content errors
# ---------------------------------------------------------------------------

class CodeValidationError(CodeforgeError):
    """Generated code is structurally broken."""

    code = "validation_error"

    def __init__(self, errors: List[str], suggestions: Optional[List[str]] = None):
        summary = "; ".join(errors) if errors else "unknown validation failure"
        super().__init__(
            f"Generated code failed validation: {summary}",
            {'errors': list(errors), 'suggestions': list(suggestions or [])},
        )
        self.errors = list(errors)
        self.suggestions = list(suggestions or [])


class PlanParseError(CodeforgeError):
    """The planning response could not be turned into a plan.

    Carried as a value inside ``ParsedPlan`` and recovered by the engine.
    """

    code = "plan_parse_error"

    def __init__(self, reason: str, raw: str = ""):
        super().__init__(f"Could not parse plan: {reason}", {'raw_preview': raw[:200]})
        self.reason = reason
        self.raw = raw


class PhaseTransitionError(CodeforgeError):
    """An engine tried to move to a phase the state machine does not allow."""

    code = "invalid_phase_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from {current} to {target}", {"from": current, "to": target})


__all__ = [
    'CodeforgeError',
    'GatewayError',
    'CircuitOpenError',
    'QueueFullError',
    'GatewayTimeoutError',
    'GenerationCancelledError',
    'GatewayTransportError',
    'CodeValidationError',
    'PlanParseError',
    'PhaseTransitionError',
]
