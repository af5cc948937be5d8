"""
Codeforge Engine Package
========================

Generation orchestration and resilience engine: the model gateway, the code
validator and auto-fix loop, and the phase state machines that drive a
request from plan to finished code.
"""

from codeforge.config import Settings, get_settings
from codeforge.engines import OrchestrationEngine, ProductionOrchestrationEngine
from codeforge.services.gateway import ModelGateway

__version__ = "0.4.0"

__all__ = [
    'ModelGateway',
    'OrchestrationEngine',
    'ProductionOrchestrationEngine',
    'Settings',
    'get_settings',
    '__version__',
]
