"""Plan Parsing
=============

Turns the planner's loosely structured JSON reply into typed plans.

Parsing is fallible by design: ``parse_plan`` and ``parse_production_plan``
return a ``ParsedPlan`` carrying either the plan or a ``PlanParseError``.
Nothing here raises on bad model output; callers fall back to
``fallback_plan`` / ``fallback_production_plan``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

from codeforge.constants import FileType, TaskKind
from codeforge.errors import PlanParseError
from codeforge.models import FileSpec, Plan, ProductionPlan, Task, TestSpec
from codeforge.utils.json_extract import extract_json

logger = logging.getLogger(__name__)

P = TypeVar('P')

# Planner task types that don't map one-to-one onto TaskKind
_TASK_KIND_ALIASES = {
    'review': TaskKind.VALIDATE,
    'validation': TaskKind.VALIDATE,
    'code': TaskKind.BUILD,
    'tests': TaskKind.TEST,
}


@dataclass(frozen=True)
class ParsedPlan(Generic[P]):
    """Either a parsed plan or the reason parsing failed."""
    plan: Optional[P] = None
    error: Optional[PlanParseError] = None

    @property
    def ok(self) -> bool:
        return self.plan is not None

    @classmethod
    def success(cls, plan: P) -> 'ParsedPlan[P]':
        return cls(plan=plan)

    @classmethod
    def failure(cls, reason: str, raw: str = "") -> 'ParsedPlan[P]':
        return cls(error=PlanParseError(reason, raw))

    def unwrap_or(self, fallback: P) -> P:
        return self.plan if self.plan is not None else fallback


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _task_kind(raw: Any) -> TaskKind:
    if isinstance(raw, str):
        key = raw.strip().lower()
        try:
            return TaskKind(key)
        except ValueError:
            return _TASK_KIND_ALIASES.get(key, TaskKind.BUILD)
    return TaskKind.BUILD


def _file_type(raw: Any) -> FileType:
    try:
        return FileType(str(raw).strip().lower())
    except ValueError:
        return FileType.COMPONENT


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    data = extract_json(text)
    return data if isinstance(data, dict) else None


def _search_queries(data: Dict[str, Any]) -> List[str]:
    # Queries only count when the planner asked for search
    if data.get('searchNeeded') is False or data.get('search_needed') is False:
        return []
    return _as_str_list(data.get('searchQueries', data.get('search_queries')))


def parse_plan(text: str) -> ParsedPlan[Plan]:
    """Parse a standard plan from the planner's reply."""
    data = _load_object(text)
    if data is None:
        return ParsedPlan.failure("no JSON object in response", text or "")

    raw_tasks = data.get('tasks')
    if not isinstance(raw_tasks, list) or not raw_tasks:
        return ParsedPlan.failure("plan has no tasks", text)

    tasks: List[Task] = []
    for index, raw in enumerate(raw_tasks, start=1):
        if not isinstance(raw, dict):
            continue
        title = str(raw.get('title') or '').strip()
        if not title:
            continue
        tasks.append(Task(
            id=str(raw.get('id') or index),
            title=title,
            description=str(raw.get('description') or title),
            kind=_task_kind(raw.get('type', raw.get('kind'))),
        ))
    if not tasks:
        return ParsedPlan.failure("no usable tasks", text)

    summary = str(data.get('summary') or '').strip() or "Building your application"
    architecture = data.get('architecture')
    return ParsedPlan.success(Plan(
        summary=summary,
        tasks=tasks,
        search_queries=_search_queries(data),
        architecture=str(architecture) if architecture else None,
    ))


def parse_production_plan(text: str) -> ParsedPlan[ProductionPlan]:
    """Parse a production (multi-file) plan from the planner's reply."""
    data = _load_object(text)
    if data is None:
        return ParsedPlan.failure("no JSON object in response", text or "")

    raw_files = data.get('files')
    if not isinstance(raw_files, list) or not raw_files:
        return ParsedPlan.failure("plan has no files", text)

    files: List[FileSpec] = []
    for raw in raw_files:
        if not isinstance(raw, dict) or not isinstance(raw.get('path'), str) or not raw['path'].strip():
            continue
        files.append(FileSpec(
            path=raw['path'].strip(),
            purpose=str(raw.get('purpose') or ''),
            type=_file_type(raw.get('type', 'component')),
            dependencies=_as_str_list(raw.get('dependencies')),
        ))
    if not files:
        return ParsedPlan.failure("no usable files", text)

    test_plan: List[TestSpec] = []
    for raw in data.get('testPlan', data.get('test_plan')) or []:
        if isinstance(raw, dict) and isinstance(raw.get('file'), str):
            test_plan.append(TestSpec(file=raw['file'], tests=_as_str_list(raw.get('tests'))))

    return ParsedPlan.success(ProductionPlan(
        summary=str(data.get('summary') or '').strip() or "Building your application",
        architecture=str(data.get('architecture') or "React with TypeScript"),
        files=files,
        test_plan=test_plan,
        search_queries=_search_queries(data),
    ))


def fallback_plan(request: str) -> Plan:
    """Single build task plus validation, used when planning fails."""
    return Plan(
        summary=f"Building: {request[:100]}",
        tasks=[
            Task(id="1", title="Generate App", description=request, kind=TaskKind.BUILD),
            Task(id="2", title="Validate", description="Check code quality", kind=TaskKind.VALIDATE),
        ],
    )


def fallback_production_plan(request: str) -> ProductionPlan:
    """Minimal four-file production plan used when planning fails."""
    return ProductionPlan(
        summary=f"Building: {request[:100]}",
        architecture="React with TypeScript, functional components, custom hooks",
        files=[
            FileSpec("src/App.tsx", "Main application component", FileType.COMPONENT),
            FileSpec("src/components/Main.tsx", "Primary content component", FileType.COMPONENT),
            FileSpec("src/hooks/useAppState.ts", "Application state hook", FileType.HOOK),
            FileSpec("src/__tests__/App.test.tsx", "App component tests", FileType.TEST, ["src/App.tsx"]),
        ],
        test_plan=[
            TestSpec("src/__tests__/App.test.tsx", ["renders without crashing", "displays main content"]),
        ],
    )


__all__ = [
    'ParsedPlan',
    'fallback_plan',
    'fallback_production_plan',
    'parse_plan',
    'parse_production_plan',
]
