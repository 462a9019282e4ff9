"""
Multi-provider AI orchestration.

Build a service with ``create_ai_service(load_settings())`` and await its
operations; every call returns an OperationResult.
"""
from ai_orchestrator.core.config import OrchestratorSettings, load_settings
from ai_orchestrator.services.ai.orchestration import AIService, create_ai_service
from ai_orchestrator.services.ai.schema import OperationResult

__version__ = "1.0.0"

__all__ = [
    "AIService",
    "OperationResult",
    "OrchestratorSettings",
    "create_ai_service",
    "load_settings",
]
