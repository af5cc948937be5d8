"""
Plan Models
===========

Plain dataclasses describing what a run intends to build: tasks and plans
for the standard pipeline, file and test specs for the production
pipeline, and the generated files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from codeforge.constants import FileType, TaskKind, TaskStatus


@dataclass
class Task:
    """One step of a plan. Only the engine mutates its status."""
    id: str
    title: str
    description: str
    kind: TaskKind = TaskKind.BUILD
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = TaskStatus.IN_PROGRESS

    def complete(self, result: Optional[str] = None) -> None:
        self.status = TaskStatus.COMPLETED
        self.result = result

    def fail(self, error: str) -> None:
        self.status = TaskStatus.FAILED
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'kind': self.kind.value,
            'status': self.status.value,
            'result': self.result,
            'error': self.error,
        }


@dataclass
class Plan:
    """Standard pipeline plan, created once per run."""
    summary: str
    tasks: List[Task] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)
    architecture: Optional[str] = None

    def tasks_of(self, kind: TaskKind) -> List[Task]:
        return [task for task in self.tasks if task.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'architecture': self.architecture,
            'tasks': [task.to_dict() for task in self.tasks],
            'search_queries': list(self.search_queries),
        }


@dataclass
class FileSpec:
    """A file the production plan asks for."""
    path: str
    purpose: str
    type: FileType = FileType.COMPONENT
    dependencies: List[str] = field(default_factory=list)

    @property
    def is_test(self) -> bool:
        return self.type == FileType.TEST


@dataclass
class TestSpec:
    """Test cases to generate for one test file."""
    file: str
    tests: List[str] = field(default_factory=list)

    __test__ = False  # not a pytest class


@dataclass
class ProductionPlan:
    """Production pipeline plan."""
    summary: str
    architecture: str
    files: List[FileSpec] = field(default_factory=list)
    test_plan: List[TestSpec] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)

    def source_files(self) -> List[FileSpec]:
        return [spec for spec in self.files if not spec.is_test]

    def purpose_of(self, path: str) -> str:
        for spec in self.files:
            if spec.path == path:
                return spec.purpose
        return ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'architecture': self.architecture,
            'files': [
                {'path': f.path, 'purpose': f.purpose, 'type': f.type.value, 'dependencies': list(f.dependencies)}
                for f in self.files
            ],
            'test_plan': [{'file': t.file, 'tests': list(t.tests)} for t in self.test_plan],
            'search_queries': list(self.search_queries),
        }


@dataclass
class ProjectFile:
    """A generated file."""
    path: str
    content: str
    type: FileType = FileType.COMPONENT

    @property
    def size(self) -> int:
        return len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'content': self.content, 'type': self.type.value}
