"""Tests for the orchestration state machine."""

import pytest

from codeforge.constants import FileType, Phase
from codeforge.engines.state import OrchestrationState, RunResult
from codeforge.errors import PhaseTransitionError
from codeforge.models import ProjectFile


@pytest.mark.unit
class TestOrchestrationState:
    """Test phase transitions and fix accounting."""

    def test_standard_path(self):
        """The standard pipeline path is accepted end to end."""
        state = OrchestrationState()
        for phase in (Phase.SEARCHING, Phase.BUILDING, Phase.VALIDATING, Phase.FIXING, Phase.VALIDATING, Phase.COMPLETE):
            state.transition(phase)

        assert state.is_terminal
        assert state.phase_history[0] == Phase.PLANNING
        assert state.phase_history[-1] == Phase.COMPLETE

    def test_production_path(self):
        """The production pipeline path is accepted end to end."""
        state = OrchestrationState()
        for phase in (Phase.BUILDING, Phase.TESTING, Phase.QUALITY_CHECK, Phase.DOCUMENTING, Phase.COMPLETE):
            state.transition(phase)
        assert state.phase == Phase.COMPLETE

    def test_backwards_move_raises(self):
        """Phases never move backwards."""
        state = OrchestrationState()
        state.transition(Phase.BUILDING)

        with pytest.raises(PhaseTransitionError) as exc_info:
            state.transition(Phase.PLANNING)

        assert exc_info.value.message == "Cannot move from building to planning"
        assert state.phase == Phase.BUILDING

    def test_failed_reachable_until_terminal(self):
        """FAILED is reachable from any live phase but nothing leaves a terminal one."""
        state = OrchestrationState()
        state.transition(Phase.BUILDING)
        state.transition(Phase.FAILED)

        assert state.is_terminal
        assert not state.can_transition(Phase.COMPLETE)
        assert not state.can_transition(Phase.FAILED)

    def test_fix_revisits_are_bounded(self):
        """FIXING may return to VALIDATING at most max_fix_attempts times."""
        state = OrchestrationState(max_fix_attempts=1)
        state.transition(Phase.BUILDING)
        state.transition(Phase.VALIDATING)
        state.transition(Phase.FIXING)
        state.transition(Phase.VALIDATING)
        state.transition(Phase.FIXING)

        assert not state.can_transition(Phase.VALIDATING)
        assert state.can_transition(Phase.COMPLETE)

    def test_record_fix_attempt_budget(self):
        """Fix attempts beyond the budget are refused."""
        state = OrchestrationState(max_fix_attempts=2)
        state.record_fix_attempt()
        state.record_fix_attempt()

        with pytest.raises(PhaseTransitionError):
            state.record_fix_attempt()
        assert state.fix_attempts == 2

    def test_replace_file(self):
        """replace_file swaps a file in place or appends a new one."""
        state = OrchestrationState()
        state.replace_file(ProjectFile("src/App.tsx", "v1"))
        state.replace_file(ProjectFile("src/App.test.tsx", "t", FileType.TEST))
        state.replace_file(ProjectFile("src/App.tsx", "v2"))

        assert [f.path for f in state.files] == ["src/App.tsx", "src/App.test.tsx"]
        assert state.file("src/App.tsx").content == "v2"
        assert state.file("missing.ts") is None


@pytest.mark.unit
def test_run_result_to_dict():
    """Phases serialize as values and the score only appears when set."""
    result = RunResult(success=True, summary="ok", phases=[Phase.PLANNING, Phase.COMPLETE])
    data = result.to_dict()

    assert data['phases'] == ["planning", "complete"]
    assert 'quality_score' not in data
    assert RunResult(success=True, summary="ok", quality_score=88).to_dict()['quality_score'] == 88
