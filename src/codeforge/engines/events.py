"""Event stream for orchestration runs.

The engine writes typed events into an ``EventStream``; the caller reads
them with ``async for``. The stream closes after the run's terminal event
(``complete`` or ``error``) or on cancellation, which ends the caller's
iteration once buffered events are drained.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from codeforge.constants import EventType, Phase

logger = logging.getLogger(__name__)

_CLOSED = object()

_SEVERITY_BY_TYPE = {
    EventType.ERROR: "error",
    EventType.QUALITY_ISSUE: "warning",
    EventType.FIX_ATTEMPT: "warning",
}


@dataclass(frozen=True)
class OrchestrationEvent:
    """One event in a run's stream."""
    type: EventType
    data: Dict[str, Any]
    sequence: int
    run_id: Optional[str] = None
    severity: str = "info"
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'type': self.type.value,
            'sequence': self.sequence,
            'run_id': self.run_id,
            'severity': self.severity,
            'timestamp': self.timestamp,
        }
        payload.update(self.data)
        return payload


class EventStream:
    """Single-producer, single-consumer async channel of events."""

    def __init__(self, run_id: Optional[str] = None, keep_history: bool = True):
        self.run_id = run_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._sequence = 0
        self._keep_history = keep_history
        self.history: List[OrchestrationEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> Optional[OrchestrationEvent]:
        """Append an event; ignored once the stream is closed."""
        if self._closed:
            logger.debug(f"Dropping {event_type.value} event on closed stream")
            return None
        self._sequence += 1
        event = OrchestrationEvent(
            type=event_type,
            data=_normalize(payload or {}),
            sequence=self._sequence,
            run_id=self.run_id,
            severity=_SEVERITY_BY_TYPE.get(event_type, "info"),
        )
        if self._keep_history:
            self.history.append(event)
        self._queue.put_nowait(event)
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def next(self) -> Optional[OrchestrationEvent]:
        """Next event, or None once the stream is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel so repeated reads also see the end
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[OrchestrationEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[OrchestrationEvent]:
        while True:
            event = await self.next()
            if event is None:
                return
            yield event

    def types(self) -> List[EventType]:
        return [event.type for event in self.history]


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return value


@dataclass
class OrchestrationEventPublisher:
    """Typed helpers over an ``EventStream``."""

    stream: EventStream

    def phase_change(self, phase: Phase, message: str) -> None:
        self.stream.emit(EventType.PHASE_CHANGE, {'phase': phase, 'message': message})

    def thinking(self, model: str, content: str) -> None:
        self.stream.emit(EventType.THINKING, {'model': model, 'content': content})

    def status(self, message: str) -> None:
        self.stream.emit(EventType.STATUS, {'message': message})

    def code_chunk(self, content: str, file: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {'content': content}
        if file:
            payload['file'] = file
        self.stream.emit(EventType.CODE_CHUNK, payload)

    def task_start(self, task_id: str, title: str) -> None:
        self.stream.emit(EventType.TASK_START, {'task_id': task_id, 'title': title})

    def task_complete(self, task_id: str, title: str, success: bool = True) -> None:
        self.stream.emit(EventType.TASK_COMPLETE, {'task_id': task_id, 'title': title, 'success': success})

    def search_result(self, query: str, result_count: int) -> None:
        self.stream.emit(EventType.SEARCH_RESULT, {'query': query, 'result_count': result_count})

    def validation(self, valid: bool, errors: List[str], file: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {'valid': valid, 'errors': list(errors)}
        if file:
            payload['file'] = file
        self.stream.emit(EventType.VALIDATION, payload)

    def fix_attempt(self, attempt: int, max_attempts: int, reason: str = "") -> None:
        self.stream.emit(EventType.FIX_ATTEMPT, {'attempt': attempt, 'max_attempts': max_attempts, 'reason': reason})

    def file_start(self, file: str, purpose: str) -> None:
        self.stream.emit(EventType.FILE_START, {'file': file, 'purpose': purpose})

    def file_complete(self, file: str, size: int) -> None:
        self.stream.emit(EventType.FILE_COMPLETE, {'file': file, 'size': size})

    def test_result(self, file: str, passed: bool, error: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {'file': file, 'passed': passed}
        if error:
            payload['error'] = error
        self.stream.emit(EventType.TEST_RESULT, payload)

    def quality_issue(self, issue: Any) -> None:
        self.stream.emit(EventType.QUALITY_ISSUE, {'issue': issue})

    def quality_score(self, score: int, passed: bool) -> None:
        self.stream.emit(EventType.QUALITY_SCORE, {'score': score, 'passed': passed})

    def complete(self, summary: str, **payload: Any) -> None:
        data = {'summary': summary}
        data.update(payload)
        self.stream.emit(EventType.COMPLETE, data)

    def error(self, message: str, **payload: Any) -> None:
        data = {'message': message}
        data.update(payload)
        self.stream.emit(EventType.ERROR, data)


__all__ = ['EventStream', 'OrchestrationEvent', 'OrchestrationEventPublisher']
