"""Configuration package."""

from .settings import (
    CircuitBreakerConfig,
    GatewayConfig,
    LLMDefaults,
    ModelRoleConfig,
    OrchestratorConfig,
    Settings,
    get_settings,
    reset_settings,
)

__all__ = [
    'CircuitBreakerConfig',
    'GatewayConfig',
    'LLMDefaults',
    'ModelRoleConfig',
    'OrchestratorConfig',
    'Settings',
    'get_settings',
    'reset_settings',
]
