"""
Centralized Settings
====================

Dataclass settings for the gateway and the orchestration engines, loaded
from environment variables (and an optional ``.env`` file) with defaults
tuned for a single local inference slot.

Environment variables:
- CODEFORGE_ENDPOINT, CODEFORGE_API_KEY, CODEFORGE_MODEL
- CODEFORGE_PLANNER_MODEL, CODEFORGE_BUILDER_MODEL, CODEFORGE_DUAL_MODEL
- CODEFORGE_MAX_CONCURRENT, CODEFORGE_MAX_QUEUE_SIZE, CODEFORGE_REQUEST_TIMEOUT_MS
- CODEFORGE_THROTTLE_MS, CODEFORGE_CB_FAILURE_THRESHOLD, CODEFORGE_CB_SUCCESS_THRESHOLD
- CODEFORGE_CB_TIMEOUT, CODEFORGE_MAX_FIX_ATTEMPTS, CODEFORGE_WEB_SEARCH, SERPER_API_KEY
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from codeforge.constants import ModelRole

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:1234/v1"
DEFAULT_API_KEY = "lm-studio"
DEFAULT_MODEL = "local-model"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 3      # Failures before opening circuit
    success_threshold: int = 2      # Successes in half-open before closing
    timeout: float = 30.0           # Seconds before a probe is allowed


@dataclass
class GatewayConfig:
    """Connection, queue and telemetry settings for one model endpoint."""
    endpoint: str = DEFAULT_ENDPOINT
    api_key: str = DEFAULT_API_KEY
    max_concurrent: int = 1
    max_queue_size: int = 20
    request_timeout_ms: int = 120000
    throttle_ms: int = 50
    connection_cache_size: int = 8
    connection_max_age: float = 300.0
    latency_warn_ms: float = 60000.0
    tokens_per_sec_warn: float = 5.0
    telemetry_window: int = 20


@dataclass
class LLMDefaults:
    """Per-role sampling temperatures and token budgets."""
    temperature: Dict[str, float] = field(default_factory=lambda: {
        'planner': 0.2,
        'builder': 0.4,
        'creative': 0.7,
        'deterministic': 0.1,
        'refine': 0.3,
        'fixer': 0.2,
        'reviewer': 0.3,
    })
    max_tokens: Dict[str, int] = field(default_factory=lambda: {
        'quick_app': 8192,
        'full_stack': 16384,
        'production': 32768,
        'plan': 4096,
        'analysis': 2048,
    })

    def temperature_for(self, key: str) -> float:
        return self.temperature.get(key, self.temperature['builder'])

    def max_tokens_for(self, key: str) -> int:
        return self.max_tokens.get(key, self.max_tokens['quick_app'])


@dataclass
class ModelRoleConfig:
    """Model names used for the planner and builder roles."""
    model: str = DEFAULT_MODEL
    planner_model: Optional[str] = None
    builder_model: Optional[str] = None
    dual_model: bool = False

    def model_for_role(self, role: ModelRole) -> str:
        """Resolve the model name for a role.

        Planning, fixing and reviewing go to the planner model and building
        goes to the builder model when dual-model mode is enabled.
        """
        if not self.dual_model:
            return self.model
        if role == ModelRole.BUILDER:
            return self.builder_model or self.model
        return self.planner_model or self.model


@dataclass
class OrchestratorConfig:
    """Run-level knobs for the orchestration engines."""
    max_fix_attempts: int = 2
    max_search_queries: int = 3
    planning_retries: int = 2
    planning_backoff: float = 0.5
    web_search_enabled: bool = False
    serper_api_key: Optional[str] = None
    existing_code_context_chars: int = 2000


@dataclass
class Settings:
    """Aggregate settings object passed to the gateway and engines."""
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    models: ModelRoleConfig = field(default_factory=ModelRoleConfig)
    llm: LLMDefaults = field(default_factory=LLMDefaults)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> 'Settings':
        """Build settings from the environment, after loading ``.env``."""
        if env_file is not None:
            if env_file.exists():
                load_dotenv(env_file, override=False)
                logger.info(f"Loaded .env from {env_file}")
            else:
                logger.warning(f".env not found at {env_file}")
        else:
            load_dotenv(override=False)

        gateway = GatewayConfig(
            endpoint=os.getenv('CODEFORGE_ENDPOINT', DEFAULT_ENDPOINT).rstrip('/'),
            api_key=os.getenv('CODEFORGE_API_KEY', DEFAULT_API_KEY),
            max_concurrent=_env_int('CODEFORGE_MAX_CONCURRENT', 1),
            max_queue_size=_env_int('CODEFORGE_MAX_QUEUE_SIZE', 20),
            request_timeout_ms=_env_int('CODEFORGE_REQUEST_TIMEOUT_MS', 120000),
            throttle_ms=_env_int('CODEFORGE_THROTTLE_MS', 50),
        )
        breaker = CircuitBreakerConfig(
            failure_threshold=_env_int('CODEFORGE_CB_FAILURE_THRESHOLD', 3),
            success_threshold=_env_int('CODEFORGE_CB_SUCCESS_THRESHOLD', 2),
            timeout=_env_float('CODEFORGE_CB_TIMEOUT', 30.0),
        )
        models = ModelRoleConfig(
            model=os.getenv('CODEFORGE_MODEL', DEFAULT_MODEL),
            planner_model=os.getenv('CODEFORGE_PLANNER_MODEL') or None,
            builder_model=os.getenv('CODEFORGE_BUILDER_MODEL') or None,
            dual_model=_env_bool('CODEFORGE_DUAL_MODEL', False),
        )
        orchestrator = OrchestratorConfig(
            max_fix_attempts=_env_int('CODEFORGE_MAX_FIX_ATTEMPTS', 2),
            web_search_enabled=_env_bool('CODEFORGE_WEB_SEARCH', False),
            serper_api_key=os.getenv('SERPER_API_KEY') or None,
        )
        return cls(gateway=gateway, circuit_breaker=breaker, models=models, orchestrator=orchestrator)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Never echo secrets
        data['gateway']['api_key'] = '***' if self.gateway.api_key else ''
        data['orchestrator']['serper_api_key'] = '***' if self.orchestrator.serper_api_key else None
        return data


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


# Global instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests)."""
    global _settings
    _settings = None
