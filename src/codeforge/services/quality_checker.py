"""Quality Check Service
======================

Static heuristic scoring for a generated multi-file project.

Rules (test files are skipped):
- missing ``export``                       error    -10
- component without a React import         warning   -5
- more than two ``: any`` annotations      warning   -2 each
- component without a JSDoc block          info      -2
- unbalanced braces                        error    -15
- ``console.log`` left in                  warning   -3

The score is clamped to 0..100. A report passes when the score reaches
``PASSING_SCORE`` and there are no error-severity issues.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from codeforge.constants import FileType, Severity
from codeforge.models import ProjectFile

logger = logging.getLogger(__name__)

PASSING_SCORE = 70
MAX_ANY_USES = 2

_ANY_ANNOTATION = re.compile(r":\s*any")


@dataclass
class QualityIssue:
    """One finding in one file."""
    severity: Severity
    file: str
    message: str
    deduction: int = 0
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'severity': self.severity.value, 'file': self.file, 'message': self.message}
        if self.line is not None:
            data['line'] = self.line
        return data


@dataclass
class QualityReport:
    score: int
    issues: List[QualityIssue] = field(default_factory=list)
    passed: bool = True

    @property
    def errors(self) -> List[QualityIssue]:
        return [issue for issue in self.issues if issue.severity == Severity.ERROR]

    def files_with_errors(self) -> Dict[str, List[str]]:
        by_file: Dict[str, List[str]] = {}
        for issue in self.errors:
            by_file.setdefault(issue.file, []).append(issue.message)
        return by_file

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'passed': self.passed,
            'issues': [issue.to_dict() for issue in self.issues],
        }


class QualityChecker:
    """Scores generated files against the project quality rules."""

    def __init__(self, passing_score: int = PASSING_SCORE):
        self.passing_score = passing_score

    def check_file(self, file: ProjectFile) -> List[QualityIssue]:
        if file.type == FileType.TEST:
            return []

        content = file.content
        issues: List[QualityIssue] = []
        is_component = file.type == FileType.COMPONENT

        if 'export' not in content:
            issues.append(QualityIssue(Severity.ERROR, file.path, "Missing export statement", 10))

        if is_component and 'React' not in content and 'import' not in content:
            issues.append(QualityIssue(Severity.WARNING, file.path, "Missing React import", 5))

        any_count = len(_ANY_ANNOTATION.findall(content))
        if any_count > MAX_ANY_USES:
            issues.append(QualityIssue(
                Severity.WARNING,
                file.path,
                f"{any_count} uses of 'any' type - consider stricter typing",
                any_count * 2,
            ))

        if is_component and '/**' not in content:
            issues.append(QualityIssue(Severity.INFO, file.path, "Consider adding JSDoc comments", 2))

        if content.count('{') != content.count('}'):
            issues.append(QualityIssue(Severity.ERROR, file.path, "Mismatched braces", 15))

        if 'console.log' in content and 'test' not in file.path:
            issues.append(QualityIssue(Severity.WARNING, file.path, "Remove console.log statements", 3))

        return issues

    def check(self, files: Iterable[ProjectFile]) -> QualityReport:
        issues: List[QualityIssue] = []
        for file in files:
            issues.extend(self.check_file(file))

        score = 100 - sum(issue.deduction for issue in issues)
        score = max(0, min(100, score))
        passed = score >= self.passing_score and not any(i.severity == Severity.ERROR for i in issues)
        logger.info(f"Quality check: score={score}, issues={len(issues)}, passed={passed}")
        return QualityReport(score=score, issues=issues, passed=passed)


__all__ = ['QualityChecker', 'QualityIssue', 'QualityReport', 'PASSING_SCORE']
