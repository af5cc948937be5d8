"""Production Orchestration Engine
===============================

Multi-file variant of the orchestration engine:

    planning -> [searching] -> building (per file) -> testing
             -> quality_check -> documenting -> complete

Files are generated one at a time, in plan order, so each file can see the
content of the files it depends on. Each generated source file goes through
the validator and, while the run's fix budget lasts, the auto-fix loop.
Quality errors get bounded fix rounds; they lower the score but never stop
the files from being returned.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any, Dict, List, Optional

from codeforge.constants import FileType, ModelRole, Phase
from codeforge.models import FileSpec, ProductionPlan, ProjectFile, TestSpec
from codeforge.services.code_validator import is_plausible_code
from codeforge.services.plan_parser import fallback_production_plan, parse_production_plan
from codeforge.services.prompts import QUALITY_FIX_SYSTEM_PROMPT
from codeforge.services.quality_checker import QualityChecker, QualityReport
from codeforge.utils.json_extract import strip_code_fences, truncate

from .orchestrator import BaseOrchestrationEngine
from .state import RunResult

logger = logging.getLogger(__name__)

PRODUCTION_PHASE_MESSAGES: Dict[Phase, str] = {
    Phase.PLANNING: "Architect is designing your application...",
    Phase.SEARCHING: "Researching best practices and APIs...",
    Phase.BUILDING: "Building production-grade components...",
    Phase.TESTING: "Generating comprehensive tests...",
    Phase.QUALITY_CHECK: "Running quality analysis...",
    Phase.DOCUMENTING: "Generating documentation...",
    Phase.COMPLETE: "Production-ready application complete!",
}

RESEARCH_CONTEXT_CHARS = 2000
DEPENDENCY_CONTEXT_CHARS = 1000
COMPONENT_CONTEXT_CHARS = 3000

# Only these get the structural validator; configs, styles and docs don't
VALIDATED_EXTENSIONS = ('.ts', '.tsx', '.js', '.jsx')

_TEST_PATH_REWRITES = (
    ("src/__tests__/", "src/"),
    ("src/components/__tests__/", "src/components/"),
    (".test.tsx", ".tsx"),
    (".test.ts", ".ts"),
)


def component_path_for_test(test_path: str) -> str:
    """Map a test file path onto the source file it exercises."""
    path = test_path
    for old, new in _TEST_PATH_REWRITES:
        path = path.replace(old, new, 1)
    return path


def find_file(files: List[ProjectFile], path: str) -> Optional[ProjectFile]:
    """Exact path match first, then any file ending in the same basename."""
    for item in files:
        if item.path == path:
            return item
    basename = posixpath.basename(path)
    if not basename:
        return None
    for item in files:
        if item.path.endswith(basename):
            return item
    return None


class ProductionOrchestrationEngine(BaseOrchestrationEngine):
    """Plans a project as a list of files and generates them one by one."""

    phase_messages = PRODUCTION_PHASE_MESSAGES

    def __init__(self, gateway: Any, *args: Any, quality_checker: Optional[QualityChecker] = None, **kwargs: Any):
        super().__init__(gateway, *args, **kwargs)
        self.quality_checker = quality_checker or QualityChecker()
        self.fixed_files: List[str] = []

    async def _execute(self, request: str, existing_code: Optional[str]) -> RunResult:
        state = self.state
        self.fixed_files = []

        self._enter(Phase.PLANNING)
        plan = await self._planning_phase(request, existing_code)
        state.plan = plan

        if self._search_enabled(plan.search_queries):
            self._enter(Phase.SEARCHING)
            await self._search_phase(plan.search_queries)

        self._enter(Phase.BUILDING)
        await self._building_phase(plan, request)

        self._enter(Phase.TESTING)
        await self._testing_phase(plan)

        self._enter(Phase.QUALITY_CHECK)
        report = await self._quality_phase()
        state.quality_report = report

        self._enter(Phase.DOCUMENTING)
        await self._documentation_phase(plan)

        self._enter(Phase.COMPLETE)
        score = report.score if report is not None else 100
        self.publish.complete(plan.summary, files=state.files, quality_score=score)
        return RunResult(
            success=True,
            summary=plan.summary,
            files=list(state.files),
            quality_score=score,
            fixed=bool(self.fixed_files),
            fix_attempts=state.fix_attempts,
            errors=list(state.validation_errors),
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    async def _planning_phase(self, request: str, existing_code: Optional[str]) -> ProductionPlan:
        self.publish.thinking('planner', "Analyzing requirements and designing architecture...")
        await self._resolve_planner_role()

        context = truncate(existing_code or "", self.config.existing_code_context_chars)
        plan = await self._plan_with_retries(
            self.prompts.production_planning_system(),
            self.prompts.planning_user(request, context),
            parse_production_plan,
        )
        if plan is None:
            self.publish.thinking('planner', "Could not produce a detailed plan, using the default project layout")
            plan = fallback_production_plan(request)

        self.publish.thinking(
            'planner',
            f"Plan ready: {plan.summary} ({len(plan.files)} files, {len(plan.test_plan)} test files)",
        )
        return plan

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------
    def _file_context(self, plan: ProductionPlan, spec: FileSpec) -> str:
        context = f"PROJECT: {plan.summary}\nARCHITECTURE: {plan.architecture}\n"
        if self.state.search_context:
            context += f"\nWEB RESEARCH:\n{self.state.search_context[:RESEARCH_CONTEXT_CHARS]}\n"
        for dep in spec.dependencies:
            dep_file = find_file(self.state.files, dep)
            if dep_file is not None:
                context += f"\nDEPENDENCY ({dep}):\n{dep_file.content[:DEPENDENCY_CONTEXT_CHARS]}\n"
        return context

    async def _building_phase(self, plan: ProductionPlan, request: str) -> None:
        for spec in plan.source_files():
            self._check_aborted()
            self.publish.file_start(spec.path, spec.purpose)
            self.publish.thinking('builder', f"Generating {spec.path}...")

            response = await self.gateway.complete(
                self.prompts.production_file_system(spec, self._file_context(plan, spec)),
                request,
                self.settings.llm.max_tokens_for('full_stack'),
                role=ModelRole.BUILDER,
                cancel=self._cancel,
            )
            content = strip_code_fences(response)
            self.state.files.append(ProjectFile(spec.path, content, spec.type))

            if spec.path.endswith(VALIDATED_EXTENSIONS):
                content = await self._validate_file(spec.path, content)

            self.publish.file_complete(spec.path, len(content))

    async def _validate_file(self, path: str, content: str) -> str:
        result = self.validator.validate(content)
        self.publish.validation(result.valid, result.errors, path)
        if result.valid:
            return content

        if self.state.fix_attempts >= self.state.max_fix_attempts:
            logger.info(f"No fix attempts left for {path}: {result.errors}")
            self.publish.status(f"{path} may still contain issues: {'; '.join(result.errors)}")
            self.state.validation_errors.extend(f"{path}: {error}" for error in result.errors)
            return content

        fix = await self._auto_fix(content, result.errors, file=path)
        existing = self.state.file(path)
        self.state.replace_file(ProjectFile(path, fix.code, existing.type if existing else FileType.COMPONENT))
        if fix.fixed:
            self.fixed_files.append(path)
        else:
            self.state.validation_errors.extend(f"{path}: {error}" for error in fix.errors)
        return fix.code

    # ------------------------------------------------------------------
    # Testing
    # ------------------------------------------------------------------
    async def _testing_phase(self, plan: ProductionPlan) -> None:
        for test_spec in plan.test_plan:
            self._check_aborted()
            await self._generate_test_file(test_spec)

    async def _generate_test_file(self, test_spec: TestSpec) -> None:
        self.publish.file_start(test_spec.file, "Test file")
        self.publish.thinking('builder', f"Writing tests for {test_spec.file}...")

        component = find_file(self.state.files, component_path_for_test(test_spec.file))
        component_code = component.content if component is not None else "// Component not found"

        response = await self.gateway.complete(
            self.prompts.production_test_system(component_code[:COMPONENT_CONTEXT_CHARS], test_spec.tests),
            f"Generate tests for: {', '.join(test_spec.tests)}",
            self.settings.llm.max_tokens_for('full_stack'),
            role=ModelRole.BUILDER,
            cancel=self._cancel,
        )
        content = strip_code_fences(response)
        self.state.replace_file(ProjectFile(test_spec.file, content, FileType.TEST))

        self.publish.file_complete(test_spec.file, len(content))
        self.publish.test_result(test_spec.file, passed=True)

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------
    def _score(self) -> QualityReport:
        report = self.quality_checker.check(self.state.files)
        for issue in report.issues:
            self.publish.quality_issue(issue)
        self.publish.quality_score(report.score, report.passed)
        return report

    async def _quality_phase(self) -> QualityReport:
        report = self._score()
        while not report.passed and report.errors and self.state.fix_attempts < self.state.max_fix_attempts:
            self._check_aborted()
            await self._fix_quality_issues(report)
            report = self._score()
        return report

    async def _fix_quality_issues(self, report: QualityReport) -> None:
        """One fix round: every file with error-severity issues gets one fixer call.

        The round counts against the fix budget once the first fixer call
        returns, so an open circuit or a full queue leaves the budget intact.
        """
        counted = False

        for path, messages in report.files_with_errors().items():
            self._check_aborted()
            file = self.state.file(path)
            if file is None:
                continue
            response = await self.gateway.complete(
                QUALITY_FIX_SYSTEM_PROMPT,
                self.prompts.quality_fix_user(file.content, messages),
                self.settings.llm.max_tokens_for('full_stack'),
                role=ModelRole.FIXER,
                cancel=self._cancel,
            )
            if not counted:
                self._count_quality_round(report)
                counted = True
            cleaned = strip_code_fences(response)
            if not is_plausible_code(cleaned):
                logger.warning(f"Quality fix for {path} returned non-code output, keeping original")
                continue
            self.state.replace_file(ProjectFile(path, cleaned, file.type))

        if not counted:
            # Nothing to send; the round still ends the quality loop
            self._count_quality_round(report)

    def _count_quality_round(self, report: QualityReport) -> None:
        self.state.record_fix_attempt()
        self.publish.fix_attempt(
            self.state.fix_attempts,
            self.state.max_fix_attempts,
            ", ".join(issue.message for issue in report.errors),
        )

    # ------------------------------------------------------------------
    # Documentation
    # ------------------------------------------------------------------
    async def _documentation_phase(self, plan: ProductionPlan) -> None:
        files = [
            (item.path, plan.purpose_of(item.path))
            for item in self.state.files
            if item.type != FileType.TEST
        ]
        self.publish.file_start("README.md", "Project documentation")

        response = await self.gateway.complete(
            self.prompts.production_readme(plan.summary, files),
            "Generate README documentation",
            self.settings.llm.max_tokens_for('plan'),
            role=ModelRole.BUILDER,
            cancel=self._cancel,
        )
        # Only an outer fence is removed; the README keeps its own code blocks
        content = response.strip()
        if content.startswith("```"):
            content = strip_code_fences(content)
        self.state.replace_file(ProjectFile("README.md", content, FileType.README))
        self.publish.file_complete("README.md", len(content))


__all__ = [
    'PRODUCTION_PHASE_MESSAGES',
    'ProductionOrchestrationEngine',
    'component_path_for_test',
    'find_file',
]
