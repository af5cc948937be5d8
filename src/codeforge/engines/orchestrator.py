"""Orchestration Engine
====================

Drives one generation run through the phase state machine:

    planning -> [searching] -> building -> validating -> [fixing <-> validating] -> complete

Progress is written to an ``EventStream`` the caller reads with
``async for``. Planning and search are best effort (default plan, skipped
queries); gateway failures during building or fixing end the run as
failed but still return whatever code was produced.

Usage:
    engine = OrchestrationEngine(gateway)
    task = asyncio.create_task(engine.run("todo app with filters"))
    async for event in engine.events:
        render(event)
    result = await task
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, TypeVar

from codeforge.config.settings import Settings
from codeforge.constants import ModelRole, Phase, TaskKind
from codeforge.errors import (
    CircuitOpenError,
    CodeforgeError,
    CodeValidationError,
    GatewayError,
    GenerationCancelledError,
    QueueFullError,
)
from codeforge.models import Plan
from codeforge.services.auto_fix import AutoFixLoop, FixResult, extract_llm_limitations
from codeforge.services.code_validator import CodeValidator, ValidationResult
from codeforge.services.plan_parser import ParsedPlan, fallback_plan, parse_plan
from codeforge.services.prompts import PromptLibrary, get_prompt_library
from codeforge.services.web_search import WebSearchCollaborator, format_search_results_for_context
from codeforge.utils.json_extract import strip_code_fences, truncate

from .events import EventStream, OrchestrationEventPublisher
from .state import OrchestrationState, RunResult

logger = logging.getLogger(__name__)

P = TypeVar('P')

PLANNER_UNAVAILABLE_MESSAGE = "Reasoning model unavailable, using builder model for all tasks"

PHASE_MESSAGES: Dict[Phase, str] = {
    Phase.PLANNING: "Analyzing your request and planning the application...",
    Phase.SEARCHING: "Searching for relevant information...",
    Phase.BUILDING: "Generating code...",
    Phase.VALIDATING: "Validating generated code...",
    Phase.FIXING: "Auto-fixing detected issues...",
    Phase.COMPLETE: "Generation complete!",
}


class BaseOrchestrationEngine:
    """Shared run plumbing: event stream, abort, planning and search.

    Subclasses implement ``_execute(request, existing_code)`` and return a
    ``RunResult``; everything that ends a run early (cancellation, gateway
    failures, unexpected errors) is turned into an ``error`` event here.
    """

    phase_messages: Dict[Phase, str] = PHASE_MESSAGES

    def __init__(
        self,
        gateway: Any,
        settings: Optional[Settings] = None,
        search: Optional[WebSearchCollaborator] = None,
        validator: Optional[CodeValidator] = None,
        fix_loop: Optional[AutoFixLoop] = None,
        prompts: Optional[PromptLibrary] = None,
        run_id: Optional[str] = None,
    ):
        self.gateway = gateway
        self.settings = settings or gateway.settings
        self.config = self.settings.orchestrator
        self.prompts = prompts or get_prompt_library()
        self.validator = validator or CodeValidator()
        self.fix_loop = fix_loop or AutoFixLoop(
            gateway,
            self.validator,
            max_attempts=self.config.max_fix_attempts,
            max_tokens=self.settings.llm.max_tokens_for('full_stack'),
            prompts=self.prompts,
        )
        self.search = search if search is not None else WebSearchCollaborator()
        self.run_id = run_id or uuid.uuid4().hex[:12]

        self.events = EventStream(self.run_id)
        self.publish = OrchestrationEventPublisher(self.events)
        self.state = OrchestrationState(max_fix_attempts=self.config.max_fix_attempts)
        self._cancel = asyncio.Event()
        self._planner_role = ModelRole.PLANNER

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    @property
    def aborted(self) -> bool:
        return self._cancel.is_set()

    def abort(self) -> None:
        """Cancel the current run, or the next one when none is running.

        Safe to call any number of times, at any time.
        """
        if not self._cancel.is_set():
            logger.info(f"Run {self.run_id}: abort requested")
        self._cancel.set()
        self.state.aborted = True

    async def run(self, request: str, existing_code: Optional[str] = None) -> RunResult:
        """Execute one run and resolve to its result; never raises for gateway failures."""
        if self.events.closed:
            # Reused engine: fresh stream and state for the new run
            self.events = EventStream(self.run_id)
            self.publish = OrchestrationEventPublisher(self.events)
        self.state = OrchestrationState(max_fix_attempts=self.config.max_fix_attempts)
        self.state.aborted = self.aborted

        logger.info(f"Run {self.run_id}: starting {type(self).__name__} for request ({len(request)} chars)")
        try:
            result = await self._execute(request, existing_code)
        except GenerationCancelledError:
            result = self._cancelled()
        except CodeforgeError as e:
            if self.aborted:
                result = self._cancelled()
            else:
                logger.warning(f"Run {self.run_id}: failed in {self.state.phase.value}: {e.message}")
                result = self._failed(e.message, error=e.code, **self._error_details(e))
        except Exception as e:
            logger.exception(f"Run {self.run_id}: unexpected failure in {self.state.phase.value}")
            result = self._failed(str(e) or type(e).__name__, error="internal_error")
        finally:
            self.events.close()
            # An abort is consumed by the run it stopped; one arriving between runs stops the next
            self._cancel = asyncio.Event()

        result.phases = list(self.state.phase_history)
        logger.info(
            f"Run {self.run_id}: finished success={result.success} "
            f"phases={[p.value for p in result.phases]}"
        )
        return result

    async def _execute(self, request: str, existing_code: Optional[str]) -> RunResult:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Phase helpers
    # ------------------------------------------------------------------
    def _enter(self, phase: Phase, message: Optional[str] = None) -> None:
        """Transition and announce; refuses to start a new phase once aborted."""
        self._check_aborted()
        if phase != self.state.phase:
            self.state.transition(phase)
        self.publish.phase_change(phase, message or self.phase_messages.get(phase, phase.value))

    def _check_aborted(self) -> None:
        if self.aborted:
            raise GenerationCancelledError()

    def _cancelled(self) -> RunResult:
        self.state.aborted = True
        if not self.state.is_terminal:
            self.state.transition(Phase.FAILED)
        self.publish.error("Generation cancelled", error="cancelled", cancelled=True)
        return RunResult(success=False, summary="Generation cancelled", cancelled=True, quality_score=None)

    def _failed(self, message: str, **payload: Any) -> RunResult:
        failed_in = self.state.phase
        if not self.state.is_terminal:
            self.state.transition(Phase.FAILED)
        self.publish.error(message, phase=failed_in.value, **payload)
        return RunResult(
            success=False,
            summary=message,
            code=self.state.generated_code,
            files=list(self.state.files),
            fix_attempts=self.state.fix_attempts,
            errors=[message],
        )

    @staticmethod
    def _error_details(error: CodeforgeError) -> Dict[str, Any]:
        if isinstance(error, CircuitOpenError):
            return {'retry_after': error.retry_after}
        return {}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    async def _resolve_planner_role(self) -> None:
        """Fall back to the builder model when the planner model isn't served."""
        models = self.settings.models
        if not models.dual_model or not models.planner_model:
            return
        status = await self.gateway.check_connection()
        if status.get('connected') and models.planner_model not in status.get('models', []):
            logger.warning(f"Planner model {models.planner_model} not available on endpoint")
            self.publish.status(PLANNER_UNAVAILABLE_MESSAGE)
            self._planner_role = ModelRole.BUILDER

    async def _plan_with_retries(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], ParsedPlan[P]],
    ) -> Optional[P]:
        """Ask for a plan up to ``planning_retries + 1`` times.

        Returns None when every attempt failed to produce a parseable plan.
        Circuit-open, queue-full and cancellation errors are not retried.
        """
        attempts = self.config.planning_retries + 1
        for attempt in range(attempts):
            self._check_aborted()
            try:
                response = await self.gateway.complete(
                    system_prompt,
                    user_prompt,
                    self.settings.llm.max_tokens_for('plan'),
                    role=self._planner_role,
                    temperature=self.settings.llm.temperature_for('planner'),
                    cancel=self._cancel,
                )
            except (CircuitOpenError, QueueFullError, GenerationCancelledError):
                raise
            except GatewayError as e:
                logger.warning(f"Planning attempt {attempt + 1}/{attempts} failed: {e.message}")
            else:
                parsed = parser(response)
                if parsed.ok:
                    return parsed.plan
                logger.warning(f"Planning attempt {attempt + 1}/{attempts}: {parsed.error.message}")

            if attempt < attempts - 1:
                self.publish.thinking('planner', "Refining approach...")
                await asyncio.sleep(self.config.planning_backoff * (2 ** attempt))
        return None

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def _search_enabled(self, queries: List[str]) -> bool:
        if not queries or not self.config.web_search_enabled or self.search is None:
            return False
        if not self.config.serper_api_key:
            self.publish.status("Web search skipped: Serper API key not configured")
            return False
        return True

    async def _search_phase(self, queries: List[str]) -> str:
        """Run up to ``max_search_queries`` queries in order; failures are skipped."""
        sections: List[str] = []
        for query in queries[:self.config.max_search_queries]:
            self._check_aborted()
            self.publish.thinking('web_search', f'Searching the web for: "{query}"...')
            try:
                response = await self.search.search(query, self.config.serper_api_key)
            except Exception as e:
                logger.warning(f"Search for {query!r} raised: {e}")
                self.publish.status(f"Search unavailable for \"{query}\"")
                continue

            if not response.success:
                logger.info(f"Search for {query!r} failed: {response.error}")
                self.publish.status(f"Search unavailable for \"{query}\": {response.error}")
                continue

            self.publish.search_result(query, len(response.results))
            block = format_search_results_for_context(response.results, query)
            if block:
                sections.append(block)

        self.state.search_context = "\n\n".join(sections)
        return self.state.search_context

    # ------------------------------------------------------------------
    # Fixing
    # ------------------------------------------------------------------
    async def _auto_fix(self, code: str, errors: List[str], file: Optional[str] = None) -> FixResult:
        """Run the fix loop within the run's remaining attempt budget.

        Cancellation inside the loop aborts the run.
        """
        budget = self.state.max_fix_attempts - self.state.fix_attempts

        def on_attempt(attempt: int, limit: int, current: List[str]) -> None:
            self.state.record_fix_attempt()
            self.publish.fix_attempt(self.state.fix_attempts, self.state.max_fix_attempts, ", ".join(current))

        def on_validation(result: ValidationResult) -> None:
            self.publish.validation(result.valid, result.errors, file)

        result = await self.fix_loop.fix(
            code,
            errors,
            budget,
            is_connected=lambda: not self.aborted,
            cancel=self._cancel,
            on_attempt=on_attempt,
            on_validation=on_validation,
        )
        if result.cancelled:
            raise GenerationCancelledError()
        logger.info(f"Auto-fix{' for ' + file if file else ''}: {result.message}")
        if result.fixed:
            self.publish.status(result.message)
        return result


class OrchestrationEngine(BaseOrchestrationEngine):
    """Single-file generation: plan, optionally search, build, validate, fix."""

    async def _execute(self, request: str, existing_code: Optional[str]) -> RunResult:
        state = self.state

        self._enter(Phase.PLANNING)
        plan = await self._planning_phase(request, existing_code)
        state.plan = plan

        if self._search_enabled(plan.search_queries):
            self._enter(Phase.SEARCHING)
            await self._search_phase(plan.search_queries)

        self._enter(Phase.BUILDING)
        state.generated_code = await self._building_phase(plan, request, existing_code)

        self._enter(Phase.VALIDATING)
        validation = self._validate(plan)
        fixed = False
        if not validation.valid:
            self._enter(Phase.FIXING)
            fix = await self._auto_fix(state.generated_code, validation.errors)
            state.generated_code = fix.code
            fixed = fix.fixed
            if fixed:
                self._enter(Phase.VALIDATING, "Confirming fixes...")
                self._validate(plan)
            else:
                state.validation_errors = list(fix.errors)
                error = CodeValidationError(state.validation_errors)
                self.publish.status(f"{error.message}. The code may still contain issues.")

        self._enter(Phase.COMPLETE)
        self.publish.complete(plan.summary, code=state.generated_code)
        return RunResult(
            success=True,
            summary=plan.summary,
            code=state.generated_code,
            fixed=fixed,
            fix_attempts=state.fix_attempts,
            errors=list(state.validation_errors),
        )

    async def _planning_phase(self, request: str, existing_code: Optional[str]) -> Plan:
        self.publish.thinking('planner', "Reading your request and identifying what kind of application you want to build...")
        await self._resolve_planner_role()

        context = truncate(existing_code or "", self.config.existing_code_context_chars)
        plan = await self._plan_with_retries(
            self.prompts.planning_system(),
            self.prompts.planning_user(request, context),
            parse_plan,
        )
        if plan is None:
            self.publish.thinking('planner', "Could not produce a detailed plan, using a default plan")
            plan = fallback_plan(request)

        self.publish.thinking('planner', f"Plan ready: {plan.summary} ({len(plan.tasks)} tasks)")
        return plan

    async def _building_phase(self, plan: Plan, request: str, existing_code: Optional[str]) -> str:
        context_parts = []
        if self.state.search_context:
            context_parts.append(f"WEB RESEARCH:\n{self.state.search_context}")
        if existing_code:
            context_parts.append(f"EXISTING CODE:\n{existing_code}")
        system_prompt = self.prompts.building_system(plan, "\n\n".join(context_parts))

        build_tasks = plan.tasks_of(TaskKind.BUILD)
        for task in build_tasks:
            task.start()
            self.publish.task_start(task.id, task.title)

        self.publish.thinking('builder', "Starting code generation with the implementation plan...")
        streamed: List[str] = []

        def on_chunk(text: str) -> None:
            streamed.append(text)
            self.publish.code_chunk(text)

        try:
            raw = await self.gateway.stream_complete(
                system_prompt,
                [{"role": "user", "content": request}],
                self.settings.llm.max_tokens_for('full_stack'),
                on_chunk,
                self._cancel,
                role=ModelRole.BUILDER,
            )
        except GatewayError as e:
            self.state.generated_code = "".join(streamed)
            for task in build_tasks:
                task.fail(e.message)
                self.publish.task_complete(task.id, task.title, success=False)
            raise

        code, limitations = extract_llm_limitations(strip_code_fences(raw))
        for note in limitations:
            self.publish.thinking('builder', f"Model limitation: {note}")

        for task in build_tasks:
            task.complete(f"{len(code)} characters")
            self.publish.task_complete(task.id, task.title)
        return code

    def _validate(self, plan: Plan) -> ValidationResult:
        result = self.validator.validate(self.state.generated_code)
        self.state.validation_errors = list(result.errors)
        self.publish.validation(result.valid, result.errors)
        for task in plan.tasks_of(TaskKind.VALIDATE):
            if result.valid:
                task.complete()
                self.publish.task_complete(task.id, task.title)
        return result


__all__ = [
    'BaseOrchestrationEngine',
    'OrchestrationEngine',
    'PHASE_MESSAGES',
    'PLANNER_UNAVAILABLE_MESSAGE',
]
