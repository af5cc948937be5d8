"""
Constants and Enums for Codeforge
=================================

Centralized enums shared by the gateway, the validators and the
orchestration engines.
"""

from enum import Enum


class BaseEnum(str, Enum):
    """Base enum class with string values for consistent behavior."""

    def __str__(self):
        return self.value


# ===========================
# ORCHESTRATION ENUMS
# ===========================

class Phase(BaseEnum):
    """Orchestration phases, declared in pipeline order."""
    PLANNING = "planning"
    SEARCHING = "searching"
    BUILDING = "building"
    VALIDATING = "validating"
    FIXING = "fixing"
    TESTING = "testing"
    QUALITY_CHECK = "quality_check"
    DOCUMENTING = "documenting"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {phase: index for index, phase in enumerate(Phase)}


class TaskKind(BaseEnum):
    """Kind of work a plan task represents."""
    PLAN = "plan"
    BUILD = "build"
    FIX = "fix"
    SEARCH = "search"
    VALIDATE = "validate"
    TEST = "test"


class TaskStatus(BaseEnum):
    """Status enum for plan tasks."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(BaseEnum):
    """Event variants written to a run's event stream."""
    PHASE_CHANGE = "phase_change"
    THINKING = "thinking"
    STATUS = "status"
    CODE_CHUNK = "code_chunk"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    SEARCH_RESULT = "search_result"
    VALIDATION = "validation"
    FIX_ATTEMPT = "fix_attempt"
    FILE_START = "file_start"
    FILE_COMPLETE = "file_complete"
    TEST_RESULT = "test_result"
    QUALITY_ISSUE = "quality_issue"
    QUALITY_SCORE = "quality_score"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})


class Severity(BaseEnum):
    """Quality issue severity levels."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FileType(BaseEnum):
    """Kinds of files a production plan can contain."""
    COMPONENT = "component"
    HOOK = "hook"
    SERVICE = "service"
    TEST = "test"
    CONFIG = "config"
    README = "readme"
    STYLE = "style"


class ModelRole(BaseEnum):
    """Roles a model can be asked to play."""
    PLANNER = "planner"
    BUILDER = "builder"
    FIXER = "fixer"
    REVIEWER = "reviewer"


__all__ = [
    'BaseEnum',
    'Phase',
    'TaskKind',
    'TaskStatus',
    'EventType',
    'TERMINAL_EVENTS',
    'Severity',
    'FileType',
    'ModelRole',
]
