"""Chunk throttling for streamed model output."""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ChunkThrottler:
    """Coalesce streamed text deltas into at most one flush per interval.

    Deltas are buffered; the buffer goes to ``on_flush`` immediately when the
    interval since the last flush has elapsed, otherwise a timer flushes it
    when the interval ends. ``close()`` flushes whatever is left.
    """

    def __init__(
        self,
        on_flush: Callable[[str], None],
        throttle_ms: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._on_flush = on_flush
        self._interval = max(0, throttle_ms) / 1000.0
        self._clock = clock
        self._buffer: list = []
        self._last_flush: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self.flush_count = 0

    @property
    def pending(self) -> str:
        return "".join(self._buffer)

    def push(self, delta: str) -> None:
        """Buffer a delta and flush if the interval allows it."""
        if self._closed or not delta:
            return
        self._buffer.append(delta)

        now = self._clock()
        if self._last_flush is None or now - self._last_flush >= self._interval:
            self.flush()
            return

        if self._timer is None:
            remaining = self._interval - (now - self._last_flush)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._timer = loop.call_later(remaining, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._closed:
            self.flush()

    def flush(self) -> None:
        """Send the buffered text now, regardless of the interval."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._buffer:
            return
        text = "".join(self._buffer)
        self._buffer.clear()
        self._last_flush = self._clock()
        self.flush_count += 1
        self._on_flush(text)

    def close(self) -> None:
        """Flush unconditionally and stop accepting deltas."""
        if self._closed:
            return
        self.flush()
        self._closed = True


__all__ = ['ChunkThrottler']
