"""
Model registry.

Models are addressed as ``"category/variant"`` (e.g. ``text/general``,
``nlp/general``). A missing category defaults to ``text`` and a missing
variant to ``general``. Resolved descriptors are immutable and memoized per
(type, options).
"""
import hashlib
import json
import time
from threading import Lock
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ai_orchestrator.core.errors import ConfigError
from ai_orchestrator.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL_TYPE = "text/general"

MODEL_REGISTRY: Dict[str, Dict[str, Dict[str, Any]]] = {
    "text": {
        "general": {
            "name": "text-general",
            "version": "1.0",
            "capabilities": ["text_generation", "summarization", "translation"],
            "parameters": {"max_tokens": 2048, "temperature": 0.7},
        },
        "specialized": {
            "name": "text-code",
            "version": "2.0",
            "capabilities": ["code_generation", "code_analysis", "documentation"],
            "parameters": {"max_tokens": 4096, "temperature": 0.5},
        },
    },
    "vision": {
        "general": {
            "name": "vision-general",
            "version": "1.0",
            "capabilities": ["image_generation", "image_analysis", "object_detection"],
            "parameters": {"resolution": "1024x1024", "quality": "high"},
        },
    },
    "nlp": {
        "general": {
            "name": "nlp-general",
            "version": "2.0",
            "capabilities": ["entity_recognition", "sentiment_analysis", "text_classification"],
            "parameters": {"batch_size": 32, "sequence_length": 512},
        },
    },
}


class ModelDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    variant: str
    name: str
    version: str
    capabilities: FrozenSet[str]
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @property
    def type(self) -> str:
        return f"{self.category}/{self.variant}"

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


class ModelHealth(BaseModel):
    status: str = "healthy"
    last_check: float


class ModelStatus(BaseModel):
    initialized: bool = True
    timestamp: float
    health: ModelHealth


class ResolvedModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    descriptor: ModelDescriptor
    status: ModelStatus


def parse_model_type(model_type: Optional[str]) -> Tuple[str, str]:
    parts = [p.strip() for p in (model_type or "").split("/")]
    category = parts[0] if parts and parts[0] else "text"
    variant = parts[1] if len(parts) > 1 and parts[1] else "general"
    return category, variant


class ModelManager:
    """Resolves model types against a registry and memoizes the result."""

    def __init__(self, registry: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None, clock=time.time):
        self.registry = registry or MODEL_REGISTRY
        self._clock = clock
        self._models: Dict[str, ResolvedModel] = {}
        self._lock = Lock()

    @staticmethod
    def _memo_key(model_type: str, options: Dict[str, Any]) -> str:
        encoded = json.dumps(options, sort_keys=True, default=str)
        return f"{model_type}:{hashlib.md5(encoded.encode('utf-8')).hexdigest()}"

    def get_model(self, model_type: Optional[str] = None, options: Optional[Dict[str, Any]] = None) -> ResolvedModel:
        """
        Resolve ``model_type`` with ``options`` merged over the registry
        parameters.

        Raises:
            ConfigError: no registry entry for the type
        """
        category, variant = parse_model_type(model_type or DEFAULT_MODEL_TYPE)
        options = options or {}
        key = self._memo_key(f"{category}/{variant}", options)

        with self._lock:
            cached = self._models.get(key)
            if cached is not None:
                return cached

            config = self.registry.get(category, {}).get(variant)
            if config is None:
                logger.error("model_not_found", model_type=f"{category}/{variant}")
                raise ConfigError(f"Model configuration not found for: {category}/{variant}")

            now = self._clock()
            resolved = ResolvedModel(
                descriptor=ModelDescriptor(
                    category=category,
                    variant=variant,
                    name=config["name"],
                    version=config["version"],
                    capabilities=frozenset(config.get("capabilities", [])),
                    parameters={**config.get("parameters", {}), **options},
                ),
                status=ModelStatus(
                    timestamp=now,
                    health=ModelHealth(last_check=now),
                ),
            )
            self._models[key] = resolved

        logger.debug("model_resolved", model_type=resolved.descriptor.type, model=resolved.descriptor.name)
        return resolved

    def available_models(self) -> Dict[str, ModelDescriptor]:
        return {
            f"{category}/{variant}": self.get_model(f"{category}/{variant}").descriptor
            for category, variants in self.registry.items()
            for variant in variants
        }
