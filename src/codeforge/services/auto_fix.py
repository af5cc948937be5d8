"""Auto-Fix Loop
==============

Bounded retry loop that sends broken code and its validation errors back
to the model until the validator accepts the result or attempts run out.

- Connection/cancellation is checked before every attempt
- Replies that don't look like code are discarded (the attempt still counts)
- Circuit-open, queue-full and cancellation errors propagate immediately
- Other gateway failures use up the attempt and the loop moves on
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from codeforge.constants import ModelRole
from codeforge.errors import (
    CircuitOpenError,
    GatewayError,
    GenerationCancelledError,
    QueueFullError,
)
from codeforge.utils.json_extract import strip_code_fences

from .code_validator import CodeValidator, ValidationResult, is_plausible_code
from .prompts import PromptLibrary, get_prompt_library

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 2

AttemptCallback = Callable[[int, int, List[str]], None]
ValidationCallback = Callable[[ValidationResult], None]


@dataclass
class FixResult:
    """Outcome of an auto-fix run."""
    fixed: bool
    code: str
    attempts: int
    message: str
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fixed': self.fixed,
            'code': self.code,
            'attempts': self.attempts,
            'message': self.message,
            'errors': list(self.errors),
            'cancelled': self.cancelled,
        }


class AutoFixLoop:
    """Resubmits invalid code to the model with a fixer prompt.

    Args:
        gateway: ModelGateway (anything with an async ``complete``)
        validator: Validator used to re-check each candidate
        max_attempts: Default attempt budget
        max_tokens: Output budget per fix call
    """

    def __init__(
        self,
        gateway: Any,
        validator: Optional[CodeValidator] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_tokens: Optional[int] = None,
        prompts: Optional[PromptLibrary] = None,
    ):
        self.gateway = gateway
        self.validator = validator or CodeValidator()
        self.max_attempts = max_attempts
        self.max_tokens = max_tokens
        self.prompts = prompts or get_prompt_library()

    async def fix(
        self,
        code: str,
        errors: List[str],
        max_attempts: Optional[int] = None,
        *,
        is_connected: Optional[Callable[[], bool]] = None,
        cancel: Optional[asyncio.Event] = None,
        on_attempt: Optional[AttemptCallback] = None,
        on_validation: Optional[ValidationCallback] = None,
    ) -> FixResult:
        """Try to repair ``code`` within ``max_attempts`` model calls.

        Returns:
            FixResult; ``fixed`` is True only when the validator accepted
            the final code.
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        current_code = code
        current_errors = list(errors)
        attempts = 0

        while attempts < limit:
            if (is_connected is not None and not is_connected()) or (cancel is not None and cancel.is_set()):
                logger.info(f"Auto-fix stopped: client disconnected after {attempts} attempt(s)")
                return FixResult(
                    fixed=False,
                    code=current_code,
                    attempts=attempts,
                    message="Client disconnected",
                    errors=current_errors,
                    cancelled=True,
                )

            logger.info(f"Auto-fix attempt {attempts + 1}/{limit} for {len(current_errors)} error(s)")

            failure: Optional[GatewayError] = None
            try:
                response = await self.gateway.complete(
                    self.prompts.fix_system(),
                    self.prompts.fix_user(current_code, current_errors),
                    self.max_tokens,
                    role=ModelRole.FIXER,
                    cancel=cancel,
                )
            except (CircuitOpenError, QueueFullError, GenerationCancelledError):
                # The service is unavailable or the caller stopped; no attempt is used
                raise
            except GatewayError as e:
                failure = e

            attempts += 1
            if on_attempt is not None:
                on_attempt(attempts, limit, list(current_errors))
            if failure is not None:
                logger.warning(f"Auto-fix attempt {attempts} failed: {failure.message}")
                continue

            candidate = strip_code_fences(response)
            if not is_plausible_code(candidate):
                logger.warning(f"Auto-fix attempt {attempts} returned non-code output, discarding")
                continue

            validation = self.validator.validate(candidate)
            if on_validation is not None:
                on_validation(validation)

            if validation.valid:
                return FixResult(
                    fixed=True,
                    code=candidate,
                    attempts=attempts,
                    message=f"Code was automatically fixed after {attempts} attempt(s)",
                )

            current_code = candidate
            current_errors = validation.errors

        return FixResult(
            fixed=False,
            code=current_code,
            attempts=attempts,
            message=f"Could not fix after {attempts} attempts",
            errors=current_errors,
        )


# Comments in which the model admits it could not reach live data
LLM_LIMITATION_PATTERNS = [
    re.compile(
        r"(?://|/\*)\s*(?:Note:|NOTE:|Warning:|WARNING:|Important:|IMPORTANT:)\s*(?:I\s+)?"
        r"(?:can(?:not|'t)|cannot|am\s+(?:not\s+)?able\s+to|don'?t\s+have\s+(?:access|the\s+ability))\s+"
        r"(?:to\s+)?(?:access|fetch|retrieve|browse|connect\s+to)\s+"
        r"(?:live|real(?:-time)?|external|actual)\s+(?:data|APIs?|internet|web)[^*\n]{0,100}(?:\*/|$)",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        r"{/\*\s*(?:Note:|NOTE:)\s*(?:I\s+)?(?:can(?:not|'t)|don'?t\s+have)\s+[^*]{0,100}\s*\*/}",
        re.IGNORECASE | re.MULTILINE,
    ),
]

_LIMITATION_PREFIX = re.compile(r"^(?://|/\*|{/\*)\s*")
_LIMITATION_SUFFIX = re.compile(r"(?:\*/|}\s*)$")
_LIMITATION_LABEL = re.compile(r"^(?:Note:|Warning:|Important:)\s*", re.IGNORECASE)


def extract_llm_limitations(code: str) -> Tuple[str, List[str]]:
    """Strip "I can't access live data" comments from generated code.

    Returns:
        Tuple of (cleaned_code, limitations) where limitations are the
        de-duplicated comment texts.
    """
    limitations: List[str] = []
    cleaned = code or ""

    for pattern in LLM_LIMITATION_PATTERNS:
        for match in pattern.finditer(code or ""):
            text = _LIMITATION_PREFIX.sub("", match.group(0))
            text = _LIMITATION_SUFFIX.sub("", text)
            text = _LIMITATION_LABEL.sub("", text).strip()
            if 10 < len(text) < 500 and text.lower() not in (l.lower() for l in limitations):
                limitations.append(text)
        cleaned = pattern.sub("", cleaned)

    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
    return cleaned, limitations


__all__ = [
    'AutoFixLoop',
    'DEFAULT_MAX_ATTEMPTS',
    'FixResult',
    'LLM_LIMITATION_PATTERNS',
    'extract_llm_limitations',
]
