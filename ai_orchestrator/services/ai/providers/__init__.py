"""
Provider adapters.

``build_provider`` is the only place that maps a configured provider name to
an adapter class.
"""
from typing import Dict, Optional, Type

import httpx

from ai_orchestrator.core.config import ProviderSettings
from ai_orchestrator.core.errors import ConfigError
from ai_orchestrator.services.ai.providers.base import (
    OPERATIONS,
    ProviderClient,
    ProviderRequest,
    ProviderResponse,
)
from ai_orchestrator.services.ai.providers.deepseek import DeepSeekProvider
from ai_orchestrator.services.ai.providers.gemini import GeminiProvider
from ai_orchestrator.services.ai.providers.generic import GenericProvider

PROVIDERS: Dict[str, Type[ProviderClient]] = {
    "generic": GenericProvider,
    "deepseek": DeepSeekProvider,
    "gemini": GeminiProvider,
}


def build_provider(
    name: str,
    settings: ProviderSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderClient:
    """
    Instantiate the adapter for ``name``.

    Raises:
        ConfigError: unknown provider, missing API key or base URL
    """
    provider_cls = PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ConfigError(f"Unknown provider '{name}'. Expected one of {sorted(PROVIDERS)}")

    return provider_cls(
        api_key=settings.api_key,
        api_base=settings.api_base,
        model=settings.model,
        timeout_seconds=settings.timeout_seconds,
        image_timeout_seconds=settings.image_timeout_seconds,
        stream_chunk_size=settings.stream_chunk_size,
        transport=transport,
        client=client,
    )


__all__ = [
    "OPERATIONS",
    "PROVIDERS",
    "DeepSeekProvider",
    "GeminiProvider",
    "GenericProvider",
    "ProviderClient",
    "ProviderRequest",
    "ProviderResponse",
    "build_provider",
]
