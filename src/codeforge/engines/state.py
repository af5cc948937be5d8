"""Per-run orchestration state and the run result."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from codeforge.constants import Phase
from codeforge.errors import PhaseTransitionError
from codeforge.models import Plan, ProductionPlan, ProjectFile
from codeforge.services.quality_checker import QualityReport

logger = logging.getLogger(__name__)

# Allowed forward moves; FAILED is reachable from every non-terminal phase
PHASE_TRANSITIONS: Mapping[Phase, FrozenSet[Phase]] = {
    Phase.PLANNING: frozenset({Phase.SEARCHING, Phase.BUILDING}),
    Phase.SEARCHING: frozenset({Phase.BUILDING}),
    Phase.BUILDING: frozenset({Phase.VALIDATING, Phase.TESTING}),
    Phase.VALIDATING: frozenset({Phase.FIXING, Phase.TESTING, Phase.COMPLETE}),
    Phase.FIXING: frozenset({Phase.VALIDATING, Phase.TESTING, Phase.COMPLETE}),
    Phase.TESTING: frozenset({Phase.QUALITY_CHECK}),
    Phase.QUALITY_CHECK: frozenset({Phase.DOCUMENTING, Phase.COMPLETE}),
    Phase.DOCUMENTING: frozenset({Phase.COMPLETE}),
    Phase.COMPLETE: frozenset(),
    Phase.FAILED: frozenset(),
}

TERMINAL_PHASES = frozenset({Phase.COMPLETE, Phase.FAILED})


@dataclass
class OrchestrationState:
    """Mutable record owned by exactly one run."""
    max_fix_attempts: int = 2
    phase: Phase = Phase.PLANNING
    plan: Optional[Union[Plan, ProductionPlan]] = None
    generated_code: str = ""
    files: List[ProjectFile] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    fix_attempts: int = 0
    search_context: str = ""
    quality_report: Optional[QualityReport] = None
    aborted: bool = False
    phase_history: List[Phase] = field(default_factory=lambda: [Phase.PLANNING])

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def can_transition(self, target: Phase) -> bool:
        if self.phase in TERMINAL_PHASES:
            return False
        if target == Phase.FAILED:
            return True
        if target not in PHASE_TRANSITIONS[self.phase]:
            return False
        if self.phase == Phase.FIXING and target == Phase.VALIDATING:
            revisits = sum(
                1 for prev, cur in zip(self.phase_history, self.phase_history[1:])
                if prev == Phase.FIXING and cur == Phase.VALIDATING
            )
            return revisits < self.max_fix_attempts
        return True

    def transition(self, target: Phase) -> None:
        """Move to ``target`` or raise ``PhaseTransitionError``."""
        if not self.can_transition(target):
            raise PhaseTransitionError(self.phase.value, target.value)
        logger.debug(f"Phase {self.phase.value} -> {target.value}")
        self.phase = target
        self.phase_history.append(target)

    def record_fix_attempt(self) -> None:
        if self.fix_attempts >= self.max_fix_attempts:
            raise PhaseTransitionError(f"fix attempt {self.fix_attempts}", "another fix attempt")
        self.fix_attempts += 1

    def file(self, path: str) -> Optional[ProjectFile]:
        for item in self.files:
            if item.path == path:
                return item
        return None

    def replace_file(self, updated: ProjectFile) -> None:
        for index, item in enumerate(self.files):
            if item.path == updated.path:
                self.files[index] = updated
                return
        self.files.append(updated)


@dataclass
class RunResult:
    """What ``run()`` resolves to, on success and on failure alike."""
    success: bool
    summary: str
    code: str = ""
    files: List[ProjectFile] = field(default_factory=list)
    quality_score: Optional[int] = None
    cancelled: bool = False
    fixed: bool = False
    fix_attempts: int = 0
    errors: List[str] = field(default_factory=list)
    phases: List[Phase] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'success': self.success,
            'summary': self.summary,
            'code': self.code,
            'files': [f.to_dict() for f in self.files],
            'cancelled': self.cancelled,
            'fixed': self.fixed,
            'fix_attempts': self.fix_attempts,
            'errors': list(self.errors),
            'phases': [p.value for p in self.phases],
        }
        if self.quality_score is not None:
            data['quality_score'] = self.quality_score
        return data


__all__ = ['OrchestrationState', 'PHASE_TRANSITIONS', 'RunResult', 'TERMINAL_PHASES']
