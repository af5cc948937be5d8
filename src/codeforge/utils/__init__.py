"""Utility package init."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .json_extract import extract_json, strip_code_fences, truncate
from .logging_config import get_logger, setup_application_logging

__all__ = [
    'CircuitBreaker',
    'CircuitState',
    'extract_json',
    'strip_code_fences',
    'truncate',
    'get_logger',
    'setup_application_logging',
]
