"""
Connection Cache
================

LRU cache of HTTP sessions keyed by endpoint URL (and API key).

- Bounded: inserting past ``max_size`` evicts and closes the least recently
  used session
- Entries older than ``max_age`` or marked unhealthy are recreated on the
  next access
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]
SessionFactory = Callable[[str, str], Any]


def default_session_factory(endpoint: str, api_key: str) -> aiohttp.ClientSession:
    """Create a session carrying the provider auth header."""
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return aiohttp.ClientSession(headers=headers)


@dataclass
class CachedConnection:
    """A cached session plus bookkeeping."""
    endpoint: str
    session: Any
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    healthy: bool = True
    uses: int = 0


class ConnectionCache:
    """Per-endpoint session cache with LRU eviction."""

    def __init__(
        self,
        max_size: int = 8,
        max_age: float = 300.0,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.max_age = max_age
        self._factory = session_factory or default_session_factory
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CachedConnection]" = OrderedDict()
        self._total_created = 0
        self._total_evicted = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, endpoint: str) -> bool:
        return any(key[0] == endpoint for key in self._entries)

    async def acquire(self, endpoint: str, api_key: str = "") -> Any:
        """Return the cached session for ``endpoint``, creating it if needed."""
        key = (endpoint, api_key)
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and (not entry.healthy or now - entry.created_at > self.max_age):
            logger.debug(f"Recreating connection for {endpoint} (healthy={entry.healthy})")
            await self._drop(key)
            entry = None

        if entry is None:
            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                logger.info(f"Connection cache full ({self.max_size}), evicting {oldest[0]}")
                await self._drop(oldest)
                self._total_evicted += 1
            entry = CachedConnection(
                endpoint=endpoint,
                session=self._factory(endpoint, api_key),
                created_at=now,
                last_used=now,
            )
            self._entries[key] = entry
            self._total_created += 1
        else:
            self._entries.move_to_end(key)

        entry.last_used = now
        entry.uses += 1
        return entry.session

    def mark_unhealthy(self, endpoint: str) -> None:
        for key, entry in self._entries.items():
            if key[0] == endpoint:
                entry.healthy = False

    def mark_healthy(self, endpoint: str) -> None:
        for key, entry in self._entries.items():
            if key[0] == endpoint:
                entry.healthy = True

    def endpoints(self) -> List[str]:
        """Cached endpoints, least recently used first."""
        return [key[0] for key in self._entries]

    async def cleanup(self) -> int:
        """Close stale or unhealthy entries; returns how many were dropped."""
        now = self._clock()
        stale = [
            key for key, entry in self._entries.items()
            if not entry.healthy or now - entry.created_at > self.max_age
        ]
        for key in stale:
            await self._drop(key)
        if stale:
            logger.info(f"Connection cache cleanup removed {len(stale)} entries")
        return len(stale)

    async def close_all(self) -> None:
        for key in list(self._entries):
            await self._drop(key)

    async def _drop(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        close = getattr(entry.session, "close", None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Failed to close connection for {entry.endpoint}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        healthy = sum(1 for entry in self._entries.values() if entry.healthy)
        return {
            'size': len(self._entries),
            'max_size': self.max_size,
            'healthy': healthy,
            'unhealthy': len(self._entries) - healthy,
            'total_created': self._total_created,
            'total_evicted': self._total_evicted,
        }


__all__ = ['CachedConnection', 'ConnectionCache', 'default_session_factory']
