"""Prompt Rendering
=================

Jinja2 templates for every model call the engines make. Templates live in
``prompt_templates/`` next to this module.
"""

import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / 'prompt_templates'

# Static system prompt for per-file quality fixes
QUALITY_FIX_SYSTEM_PROMPT = "You are a code fixer. Output only the corrected code."


class PromptLibrary:
    """Renders the engine prompts from Jinja2 templates."""

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = templates_dir or TEMPLATES_DIR
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )

    def render(self, name: str, **context: Any) -> str:
        template = self.jinja_env.get_template(f"{name}.md.jinja2")
        return template.render(**context).strip()

    # Standard pipeline -------------------------------------------------
    def planning_system(self) -> str:
        return self.render("planning_system")

    def planning_user(self, request: str, existing_code: str = "") -> str:
        return self.render("planning_user", request=request, existing_code=existing_code)

    def building_system(self, plan: Any, context: str = "") -> str:
        return self.render(
            "building_system",
            context=context,
            plan_summary=plan.summary,
            architecture=getattr(plan, 'architecture', None),
            tasks=[task for task in plan.tasks if task.kind.value == 'build'],
        )

    def fix_system(self) -> str:
        return self.render("fix_system")

    def fix_user(self, code: str, errors: Sequence[str]) -> str:
        return self.render("fix_user", code=code, errors=list(errors))

    # Production pipeline -----------------------------------------------
    def production_planning_system(self) -> str:
        return self.render("production_planning_system")

    def production_file_system(self, file_spec: Any, context: str) -> str:
        return self.render("production_file_system", file=file_spec, context=context)

    def production_test_system(self, component_code: str, tests: Iterable[str]) -> str:
        return self.render("production_test_system", component_code=component_code, tests=list(tests))

    def production_readme(self, summary: str, files: List[Tuple[str, str]]) -> str:
        return self.render("production_readme", summary=summary, files=files)

    def quality_fix_user(self, code: str, messages: Sequence[str]) -> str:
        return self.render("quality_fix_user", code=code, messages=list(messages))


_library: Optional[PromptLibrary] = None


def get_prompt_library() -> PromptLibrary:
    """Get shared prompt library instance."""
    global _library
    if _library is None:
        _library = PromptLibrary()
    return _library


__all__ = ['PromptLibrary', 'QUALITY_FIX_SYSTEM_PROMPT', 'TEMPLATES_DIR', 'get_prompt_library']
