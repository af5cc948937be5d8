"""Code Validation Service
========================

Cheap heuristic checks on generated JavaScript/TypeScript/JSX code.

This is intentionally not a parser: the checks count delimiters and look
at how the text ends, trading precision for tolerance of code the
heuristics don't understand. Every check runs on every call so a single
pass reports all problem classes.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

# How many unclosed JSX component tags are tolerated before flagging
DEFAULT_JSX_TAG_SLACK = 2

_JSX_OPEN = re.compile(r"<([A-Z][a-zA-Z0-9]*)[^>]*(?<!/)>")
_JSX_SELF_CLOSING = re.compile(r"<([A-Z][a-zA-Z0-9]*)[^>]*/>")
_JSX_CLOSE = re.compile(r"</([A-Z][a-zA-Z0-9]*)>")
_LINE_COMMENT = re.compile(r"^\s*//")

_HAS_FUNCTION = re.compile(r"function\s+\w+|const\s+\w+\s*=|let\s+\w+\s*=|=>\s*{|\(\)\s*{", re.IGNORECASE)
_HAS_JSX = re.compile(r"<[A-Za-z][A-Za-z0-9]*[\s/>]", re.IGNORECASE)
_HAS_IMPORT_EXPORT = re.compile(r"import\s+|export\s+(default|const|function)", re.IGNORECASE)
_SENTENCE_BOUNDARY = re.compile(r"[.!?]\s+[A-Z]")

MIN_PLAUSIBLE_LENGTH = 20
MAX_PROSE_SENTENCES = 5

_DELIMITERS: Tuple[Tuple[str, str, str, str], ...] = (
    ("{", "}", "braces", "Check for missing closing braces '}'"),
    ("(", ")", "parentheses", "Check for missing closing parentheses ')'"),
    ("[", "]", "brackets", "Check for missing closing brackets ']'"),
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'errors': list(self.errors),
            'suggestions': list(self.suggestions),
        }


class CodeValidator:
    """Validates generated code for structural problems.

    Args:
        require_render_call: Treat React code without a render/createRoot
            call as incomplete. Off for component-only output.
        jsx_tag_slack: Unclosed component tags tolerated before flagging.
    """

    def __init__(self, require_render_call: bool = False, jsx_tag_slack: int = DEFAULT_JSX_TAG_SLACK):
        self.require_render_call = require_render_call
        self.jsx_tag_slack = jsx_tag_slack

    def validate(self, code: str) -> ValidationResult:
        """Run every check against ``code``; never mutates it."""
        errors: List[str] = []
        suggestions: List[str] = []
        code = code or ""

        for check in (
            self._check_delimiters,
            self._check_render_call,
            self._check_jsx_tags,
            self._check_truncation,
        ):
            for error, suggestion in check(code):
                errors.append(error)
                suggestions.append(suggestion)

        if errors:
            logger.debug(f"Validation found {len(errors)} problem(s): {errors}")
        return ValidationResult(valid=not errors, errors=errors, suggestions=suggestions)

    def _check_delimiters(self, code: str) -> List[Tuple[str, str]]:
        problems = []
        for opening, closing, label, suggestion in _DELIMITERS:
            opened = code.count(opening)
            closed = code.count(closing)
            if opened != closed:
                problems.append((f"Mismatched {label}: {opened} opening, {closed} closing", suggestion))
        return problems

    def _check_render_call(self, code: str) -> List[Tuple[str, str]]:
        if not self.require_render_call:
            return []
        uses_react = 'React' in code or 'useState' in code or 'useEffect' in code
        if uses_react and 'ReactDOM.render' not in code and 'createRoot' not in code:
            return [(
                "Missing React render call",
                "Add ReactDOM.createRoot(document.getElementById('root')).render(<App />)",
            )]
        return []

    def _check_jsx_tags(self, code: str) -> List[Tuple[str, str]]:
        opened = len(_JSX_OPEN.findall(code))
        self_closing = len(_JSX_SELF_CLOSING.findall(code))
        closed = len(_JSX_CLOSE.findall(code))
        if opened - self_closing > closed + self.jsx_tag_slack:
            return [(
                "Possible incomplete JSX - missing closing tags",
                "Check that all JSX components have matching closing tags",
            )]
        return []

    def _check_truncation(self, code: str) -> List[Tuple[str, str]]:
        problems = []
        trimmed = code.strip()
        last_line = trimmed.split("\n")[-1] if trimmed else ""
        if _LINE_COMMENT.match(last_line):
            problems.append((
                "Code appears truncated (ends with comment)",
                "The code may be incomplete - try regenerating",
            ))
        if trimmed.endswith((",", "(", "{")):
            problems.append((
                "Code appears truncated (ends with incomplete statement)",
                "The code is incomplete - try regenerating",
            ))
        return problems


def validate_code(code: str, require_render_call: bool = False) -> ValidationResult:
    """Convenience wrapper around ``CodeValidator.validate``."""
    return CodeValidator(require_render_call=require_render_call).validate(code)


def is_plausible_code(text: str) -> bool:
    """Check that a model response looks like code rather than prose.

    Requires a minimum length, at least one code shape (function, JSX or
    import/export) and no more than a handful of sentence boundaries.
    """
    if not text or len(text) < MIN_PLAUSIBLE_LENGTH:
        return False

    has_shape = bool(
        _HAS_FUNCTION.search(text)
        or _HAS_JSX.search(text)
        or _HAS_IMPORT_EXPORT.search(text)
    )
    looks_like_prose = len(_SENTENCE_BOUNDARY.findall(text)) > MAX_PROSE_SENTENCES
    return has_shape and not looks_like_prose


__all__ = [
    'CodeValidator',
    'ValidationResult',
    'DEFAULT_JSX_TAG_SLACK',
    'is_plausible_code',
    'validate_code',
]
