"""Tests for the orchestration event stream."""

import asyncio

import pytest

from codeforge.constants import EventType, Phase, Severity
from codeforge.engines.events import EventStream, OrchestrationEventPublisher
from codeforge.services.quality_checker import QualityIssue


@pytest.mark.unit
class TestEventStream:
    """Test EventStream ordering and closing."""

    @pytest.mark.asyncio
    async def test_events_arrive_in_order(self):
        """async for yields every event in emission order, then stops."""
        stream = EventStream(run_id="run-1")
        publish = OrchestrationEventPublisher(stream)

        publish.phase_change(Phase.PLANNING, "Planning...")
        publish.status("working")
        publish.complete("done", code="x")
        stream.close()

        events = [event async for event in stream]

        assert [e.type for e in events] == [EventType.PHASE_CHANGE, EventType.STATUS, EventType.COMPLETE]
        assert [e.sequence for e in events] == [1, 2, 3]
        assert events[0].get('phase') == "planning"
        assert events[2].to_dict()['code'] == "x"
        assert all(e.run_id == "run-1" for e in events)

    @pytest.mark.asyncio
    async def test_consumer_waits_for_producer(self):
        """A reader started first receives events emitted later."""
        stream = EventStream()

        async def produce():
            await asyncio.sleep(0.01)
            stream.emit(EventType.STATUS, {'message': 'late'})
            stream.close()

        producer = asyncio.create_task(produce())
        events = [event async for event in stream]
        await producer

        assert [e.get('message') for e in events] == ['late']

    @pytest.mark.asyncio
    async def test_closed_stream_drops_events(self):
        """Nothing is emitted after close and repeated reads return None."""
        stream = EventStream()
        stream.close()

        assert stream.emit(EventType.STATUS, {'message': 'ignored'}) is None
        assert await stream.next() is None
        assert await stream.next() is None
        assert stream.history == []

    def test_severity_by_type(self):
        """Errors and fix attempts carry a non-info severity."""
        stream = EventStream()
        publish = OrchestrationEventPublisher(stream)

        publish.error("boom", error="internal_error")
        publish.fix_attempt(1, 2, "Mismatched braces")
        publish.thinking("local-model", "hmm")

        assert [e.severity for e in stream.history] == ["error", "warning", "info"]
        assert stream.history[1].get('max_attempts') == 2

    def test_payload_normalization(self):
        """Enums and objects with to_dict become plain data."""
        stream = EventStream()
        publish = OrchestrationEventPublisher(stream)

        publish.quality_issue(QualityIssue(Severity.ERROR, "src/App.tsx", "Missing export statement", 10))

        issue = stream.history[0].get('issue')
        assert issue == {'severity': 'error', 'file': 'src/App.tsx', 'message': 'Missing export statement'}

    def test_optional_fields_are_omitted(self):
        """file and error keys only appear when given."""
        stream = EventStream()
        publish = OrchestrationEventPublisher(stream)

        publish.code_chunk("abc")
        publish.validation(True, [])
        publish.test_result("src/__tests__/App.test.tsx", True)

        assert 'file' not in stream.history[0].data
        assert 'file' not in stream.history[1].data
        assert 'error' not in stream.history[2].data
        assert stream.types() == [EventType.CODE_CHUNK, EventType.VALIDATION, EventType.TEST_RESULT]
