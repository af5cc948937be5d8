"""Orchestration engines and their event stream."""

from .events import EventStream, OrchestrationEvent, OrchestrationEventPublisher
from .orchestrator import BaseOrchestrationEngine, OrchestrationEngine
from .production import ProductionOrchestrationEngine
from .state import OrchestrationState, RunResult

__all__ = [
    'BaseOrchestrationEngine',
    'EventStream',
    'OrchestrationEngine',
    'OrchestrationEvent',
    'OrchestrationEventPublisher',
    'OrchestrationState',
    'ProductionOrchestrationEngine',
    'RunResult',
]
