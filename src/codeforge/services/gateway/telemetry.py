"""Latency and throughput telemetry for gateway calls.

Purely observational: nothing here feeds back into control flow.
"""

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about four characters per token)."""
    return max(0, len(text or "") // 4)


@dataclass
class CallSample:
    """One completed gateway call."""
    duration_ms: float
    tokens: int
    success: bool
    model: str = ""
    streamed: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def tokens_per_sec(self) -> float:
        if self.duration_ms <= 0:
            return 0.0
        return self.tokens / (self.duration_ms / 1000.0)


class GatewayTelemetry:
    """Rolling window of call samples with threshold warnings."""

    def __init__(
        self,
        window: int = 20,
        latency_warn_ms: float = 60000.0,
        tokens_per_sec_warn: float = 5.0,
    ):
        self.window = window
        self.latency_warn_ms = latency_warn_ms
        self.tokens_per_sec_warn = tokens_per_sec_warn
        self._samples: Deque[CallSample] = deque(maxlen=window)
        self._total_calls = 0
        self._total_failures = 0
        self._total_tokens = 0
        self.warnings_emitted = 0

    def record(
        self,
        duration_ms: float,
        tokens: int,
        success: bool = True,
        model: str = "",
        streamed: bool = False,
    ) -> CallSample:
        """Record a finished call and warn when thresholds are crossed."""
        sample = CallSample(
            duration_ms=duration_ms,
            tokens=tokens,
            success=success,
            model=model,
            streamed=streamed,
        )
        self._samples.append(sample)
        self._total_calls += 1
        self._total_tokens += tokens
        if not success:
            self._total_failures += 1

        if duration_ms > self.latency_warn_ms:
            self.warnings_emitted += 1
            logger.warning(
                f"Slow LLM call: {duration_ms / 1000:.1f}s "
                f"(threshold {self.latency_warn_ms / 1000:.1f}s, model={model or 'default'})"
            )
        if success and tokens > 0 and sample.tokens_per_sec < self.tokens_per_sec_warn:
            self.warnings_emitted += 1
            logger.warning(
                f"Low throughput: {sample.tokens_per_sec:.1f} tok/s "
                f"(threshold {self.tokens_per_sec_warn:.1f} tok/s)"
            )
        return sample

    def get_averages(self) -> Dict[str, float]:
        successful = [s for s in self._samples if s.success]
        if not successful:
            return {'avg_duration_ms': 0.0, 'avg_tokens': 0.0, 'avg_tokens_per_sec': 0.0}
        count = len(successful)
        return {
            'avg_duration_ms': round(sum(s.duration_ms for s in successful) / count, 1),
            'avg_tokens': round(sum(s.tokens for s in successful) / count, 1),
            'avg_tokens_per_sec': round(sum(s.tokens_per_sec for s in successful) / count, 2),
        }

    def last_sample(self) -> Optional[Dict[str, Any]]:
        return asdict(self._samples[-1]) if self._samples else None

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            'total_calls': self._total_calls,
            'total_failures': self._total_failures,
            'total_tokens': self._total_tokens,
            'window_size': len(self._samples),
            'warnings_emitted': self.warnings_emitted,
            'last_call': self.last_sample(),
        }
        stats.update(self.get_averages())
        return stats

    def reset(self) -> None:
        self._samples.clear()
        self._total_calls = 0
        self._total_failures = 0
        self._total_tokens = 0
        self.warnings_emitted = 0


__all__ = ['CallSample', 'GatewayTelemetry', 'estimate_tokens']
