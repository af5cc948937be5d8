"""Services package: validation, fixing, planning, quality and search."""

from .auto_fix import AutoFixLoop, FixResult, extract_llm_limitations
from .code_validator import CodeValidator, ValidationResult, is_plausible_code, validate_code
from .plan_parser import ParsedPlan, fallback_plan, fallback_production_plan, parse_plan, parse_production_plan
from .prompts import PromptLibrary, get_prompt_library
from .quality_checker import QualityChecker, QualityIssue, QualityReport
from .web_search import SearchResponse, SearchResult, WebSearchCollaborator, format_search_results_for_context

__all__ = [
    'AutoFixLoop',
    'CodeValidator',
    'FixResult',
    'ParsedPlan',
    'PromptLibrary',
    'QualityChecker',
    'QualityIssue',
    'QualityReport',
    'SearchResponse',
    'SearchResult',
    'ValidationResult',
    'WebSearchCollaborator',
    'extract_llm_limitations',
    'fallback_plan',
    'fallback_production_plan',
    'format_search_results_for_context',
    'get_prompt_library',
    'is_plausible_code',
    'parse_plan',
    'parse_production_plan',
    'validate_code',
]
