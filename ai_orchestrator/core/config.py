"""
Configuration for the orchestration layer.

Settings are read as named blobs ("provider", "rate_limit", "retry", "cache",
"logging") from a ConfigStore owned by the host application. The core never
persists configuration itself.

Environment configuration (EnvConfigStore):
- AIO_PROVIDER_NAME: generic | gemini | deepseek (default: generic)
- AIO_PROVIDER_API_KEY: API key / bearer token
- AIO_PROVIDER_API_BASE: Base URL override
- AIO_PROVIDER_TIMEOUT_SECONDS: Request timeout (default: 30)
- AIO_RATE_LIMIT_REQUESTS_PER_MINUTE / _HOUR / _DAY, AIO_RATE_LIMIT_COOLDOWN_PERIOD
- AIO_RETRY_MAX_ATTEMPTS, AIO_RETRY_INITIAL_DELAY, AIO_RETRY_MAX_DELAY, AIO_RETRY_BACKOFF_FACTOR
- AIO_CACHE_ENABLED, AIO_CACHE_EXPIRATION, AIO_CACHE_DIRECTORY, AIO_CACHE_BACKEND, AIO_CACHE_REDIS_URL
- AIO_LOGGING_LEVEL, AIO_LOGGING_JSON
"""
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from ai_orchestrator.core.errors import ConfigError
from ai_orchestrator.core.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "AIO_"
SETTINGS_BLOBS = ("provider", "rate_limit", "retry", "cache", "logging")


@runtime_checkable
class ConfigStore(Protocol):
    """Opaque key/value settings store provided by the host."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> bool:
        ...


class InMemoryConfigStore:
    """Dictionary-backed store, mostly for tests and embedding."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> bool:
        self._values[key] = value
        return True


class EnvConfigStore:
    """
    Read settings blobs from AIO_* environment variables.

    ``get("rate_limit")`` collects every ``AIO_RATE_LIMIT_*`` variable into a
    dict keyed by the lowercased suffix. Values stay strings; the pydantic
    settings models coerce them.
    """

    def __init__(self, env_file: Optional[Path] = None, prefix: str = ENV_PREFIX):
        self.prefix = prefix
        self._overrides: Dict[str, Any] = {}

        env_path = env_file or Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.info("env_loaded", env_path=str(env_path))

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._overrides:
            return self._overrides[key]

        blob_prefix = f"{self.prefix}{key.upper()}_"
        blob = {
            name[len(blob_prefix):].lower(): value
            for name, value in os.environ.items()
            if name.startswith(blob_prefix)
        }
        if blob:
            return blob

        scalar = os.getenv(f"{self.prefix}{key.upper()}")
        if scalar is not None:
            return scalar
        return default

    def set(self, key: str, value: Any) -> bool:
        self._overrides[key] = value
        return True


class ProviderSettings(BaseModel):
    name: str = "generic"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    model: Optional[str] = None
    timeout_seconds: float = Field(30.0, gt=0)
    image_timeout_seconds: float = Field(60.0, gt=0)
    stream_chunk_size: int = Field(8192, gt=0)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        allowed = {"generic", "gemini", "deepseek"}
        v = value.lower().strip()
        if v not in allowed:
            raise ValueError(f"provider must be one of {sorted(allowed)}")
        return v

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("api_base should start with http:// or https://")
        return value


class RateLimitSettings(BaseModel):
    requests_per_minute: int = Field(60, ge=0)
    requests_per_hour: int = Field(1000, ge=0)
    requests_per_day: int = Field(10000, ge=0)
    cooldown_period: int = Field(300, ge=0)  # seconds
    backend: str = "memory"
    redis_url: Optional[str] = None


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=1)
    initial_delay: float = Field(1000, ge=0)  # milliseconds
    max_delay: float = Field(8000, ge=0)  # milliseconds
    backoff_factor: float = Field(2.0, ge=1.0)
    jitter: float = Field(0.0, ge=0.0, le=1.0)


def _default_cache_directory() -> str:
    return str(Path(tempfile.gettempdir()) / "ai_orchestrator" / "cache")


class CacheSettings(BaseModel):
    enabled: bool = True
    expiration: int = Field(3600, gt=0)  # seconds
    directory: str = Field(default_factory=_default_cache_directory)
    backend: str = "file"
    redis_url: Optional[str] = None
    key_prefix: str = "aio:cache"
    operation_ttls: Dict[str, int] = Field(
        default_factory=lambda: {
            "generate_image": 24 * 60 * 60,
            "analyze_content": 6 * 60 * 60,
        }
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        v = value.lower().strip()
        if v not in {"file", "redis"}:
            raise ValueError("cache backend must be 'file' or 'redis'")
        return v


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_output: bool = Field(True, alias="json")

    model_config = {"populate_by_name": True}


class OrchestratorSettings(BaseModel):
    """Typed view over every settings blob the orchestrator consumes."""

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(store: Optional[ConfigStore] = None) -> OrchestratorSettings:
    """
    Build typed settings from a ConfigStore.

    Raises:
        ConfigError if any blob fails validation. This is a startup-time
        programmer/operator error and is not recoverable per request.
    """
    store = store or EnvConfigStore()
    raw: Dict[str, Any] = {}
    for blob in SETTINGS_BLOBS:
        value = store.get(blob, None)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise ConfigError(f"Settings blob '{blob}' must be a mapping, got {type(value).__name__}")
        raw[blob] = value

    try:
        settings = OrchestratorSettings.model_validate(raw)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid orchestrator settings: {exc}") from exc

    logger.info(
        "settings_loaded",
        provider=settings.provider.name,
        cache_backend=settings.cache.backend,
        cache_enabled=settings.cache.enabled,
        rate_limit_backend=settings.rate_limit.backend,
    )
    return settings
