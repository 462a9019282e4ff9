"""
DeepSeek adapter (OpenAI-compatible chat completions API).

Text generation maps to ``/chat/completions``; image operations to
``/images/generations``. Structured operations ask the model for a JSON object
and parse the message content.
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

CHAT_PARAMS = ("max_tokens", "temperature", "top_p", "frequency_penalty", "presence_penalty", "stop")
IMAGE_PARAMS = ("size", "quality", "style", "n")


class DeepSeekProvider(ProviderClient):
    name = "deepseek"
    default_api_base = "https://api.deepseek.com/v1"
    default_model = "deepseek-chat"

    def _messages(self, operation: str, payload: Dict[str, Any]) -> List[Dict[str, str]]:
        content = primary_input(payload)
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False, default=str)

        params = payload.get("params") or {}
        if operation == "text/generate":
            return [{"role": "user", "content": content}]

        instruction = STRUCTURED_INSTRUCTIONS[operation]
        extras = {k: v for k, v in params.items() if k not in CHAT_PARAMS}
        if extras:
            instruction += "\nOptions: " + json.dumps(extras, ensure_ascii=False, default=str)
        return [
            {"role": "system", "content": instruction},
            {"role": "user", "content": content},
        ]

    def translate_request(self, operation: str, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        params = payload.get("params") or {}

        if operation in ("image/generate", "image/enhance"):
            body: Dict[str, Any] = {"prompt": primary_input(payload), "n": 1}
            if operation == "image/enhance":
                body["prompt"] = "Enhance this image: " + json.dumps(params.get("enhancements", {}))
                body["image"] = payload.get("image")
            body.update({k: params[k] for k in IMAGE_PARAMS if k in params})
            if params.get("format") == "b64_json":
                body["response_format"] = "b64_json"
            return "images/generations", body

        body = {
            "model": self.model,
            "messages": self._messages(operation, payload),
        }
        body.update({k: params[k] for k in CHAT_PARAMS if k in params})
        if operation != "text/generate":
            body["response_format"] = {"type": "json_object"}
        return "chat/completions", body

    def translate_response(self, operation: str, body: Any) -> Any:
        if not isinstance(body, dict):
            raise ValidationError(f"Invalid response from {self.name}")

        if operation in ("image/generate", "image/enhance"):
            items = body.get("data")
            if not isinstance(items, list) or not items or not isinstance(items[0], dict):
                raise ValidationError(f"Invalid image response from {self.name}")
            image = items[0]
            return {
                "url": image.get("url"),
                "b64_json": image.get("b64_json"),
                "revised_prompt": image.get("revised_prompt"),
            }

        try:
            message = body["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ValidationError(f"Invalid response from {self.name}") from exc

        content = message.get("content") if isinstance(message, dict) else None
        if operation == "text/generate":
            if not isinstance(content, str) or not content:
                raise ValidationError(f"Empty completion from {self.name}")
            return {
                "text": content,
                "finish_reason": body["choices"][0].get("finish_reason"),
                "usage": body.get("usage") or {},
            }
        return parse_json_content(self.name, content)
