"""
Adapter for the native JSON API: POST ``{prompt|text|data, model, params}`` to
``<api_base>/<operation>`` and receive ``{data, meta}`` back.
"""
from typing import Any, Dict, Tuple

from ai_orchestrator.core.errors import ValidationError
from ai_orchestrator.services.ai.providers.base import ProviderClient


class GenericProvider(ProviderClient):
    name = "generic"
    default_model = "general"

    def translate_request(self, operation: str, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        body = dict(payload)
        body.setdefault("model", self.model)
        body.setdefault("params", {})
        return operation, body

    def translate_response(self, operation: str, body: Any) -> Any:
        if not isinstance(body, dict) or "data" not in body:
            raise ValidationError(f"Response for '{operation}' is missing the 'data' field")
        return body["data"]
