"""
Gemini adapter (``models/{model}:generateContent``).

Authenticates with the ``x-goog-api-key`` header. Text comes back in
``candidates[0].content.parts[0].text``; images as base64 ``inlineData``.
"""
import json
from typing import Any, Dict, List, Tuple

from ai_orchestrator.core.errors import ValidationError
from ai_orchestrator.services.ai.providers.base import (
    STRUCTURED_INSTRUCTIONS,
    ProviderClient,
    parse_json_content,
    primary_input,
)

SAFETY_SETTINGS = {
    "HARM_CATEGORY_HARASSMENT": "BLOCK_MEDIUM_AND_ABOVE",
    "HARM_CATEGORY_HATE_SPEECH": "BLOCK_MEDIUM_AND_ABOVE",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_MEDIUM_AND_ABOVE",
    "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_MEDIUM_AND_ABOVE",
}


class GeminiProvider(ProviderClient):
    name = "gemini"
    default_api_base = "https://generativelanguage.googleapis.com/v1beta"
    default_model = "gemini-pro"
    image_model = "gemini-2.0-flash-preview-image-generation"

    def auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _generation_config(self, params: Dict[str, Any]) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        if "temperature" in params:
            config["temperature"] = params["temperature"]
        if "top_p" in params:
            config["topP"] = params["top_p"]
        if "max_tokens" in params:
            config["maxOutputTokens"] = params["max_tokens"]
        if params.get("stop"):
            config["stopSequences"] = params["stop"]
        return config

    def _parts(self, operation: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = payload.get("params") or {}
        content = primary_input(payload)

        if operation == "image/enhance":
            return [
                {"text": "Enhance this image: " + json.dumps(params.get("enhancements", {}))},
                {"inlineData": {"mimeType": params.get("mime_type", "image/png"), "data": content}},
            ]
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False, default=str)
        if operation in ("text/generate", "image/generate"):
            return [{"text": content}]

        instruction = STRUCTURED_INSTRUCTIONS[operation]
        extras = {k: v for k, v in params.items() if k not in ("temperature", "top_p", "max_tokens", "stop")}
        if extras:
            instruction += "\nOptions: " + json.dumps(extras, ensure_ascii=False, default=str)
        return [{"text": instruction}, {"text": content}]

    def translate_request(self, operation: str, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        params = payload.get("params") or {}
        model = self.image_model if operation in ("image/generate", "image/enhance") else self.model

        generation_config = self._generation_config(params)
        if operation in ("image/generate", "image/enhance"):
            generation_config["responseModalities"] = ["TEXT", "IMAGE"]
        elif operation != "text/generate":
            generation_config["responseMimeType"] = "application/json"

        body: Dict[str, Any] = {
            "contents": [{"parts": self._parts(operation, payload)}],
            "generationConfig": generation_config,
            "safetySettings": [
                {"category": category, "threshold": threshold}
                for category, threshold in SAFETY_SETTINGS.items()
            ],
        }
        return f"models/{model}:generateContent", body

    def translate_response(self, operation: str, body: Any) -> Any:
        try:
            parts = body["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ValidationError(f"Invalid response from {self.name}") from exc
        if not isinstance(parts, list):
            raise ValidationError(f"Invalid response from {self.name}")

        if operation in ("image/generate", "image/enhance"):
            for part in parts:
                inline = part.get("inlineData") if isinstance(part, dict) else None
                if isinstance(inline, dict) and inline.get("data"):
                    return {
                        "b64_json": inline["data"],
                        "mime_type": inline.get("mimeType", "image/png"),
                    }
            raise ValidationError(f"No image data in response from {self.name}")

        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text:
            raise ValidationError(f"Invalid response from {self.name}")
        if operation == "text/generate":
            return {
                "text": text,
                "finish_reason": body["candidates"][0].get("finishReason"),
                "usage": body.get("usageMetadata") or {},
            }
        return parse_json_content(self.name, text)

    def response_model(self, body: Any) -> Any:
        if isinstance(body, dict) and isinstance(body.get("modelVersion"), str):
            return body["modelVersion"]
        return self.model
