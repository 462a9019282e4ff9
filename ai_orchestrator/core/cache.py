"""
Content-addressed result cache with TTL.

The cache is a pure performance optimization over idempotent provider calls,
never a source of truth:
- Any read failure (corrupt entry, decode error, backend error) is a miss and
  the broken entry is deleted
- Disabling the cache turns it into a passthrough (get misses, set no-ops)
- Concurrent writers to the same key race, last write wins

Entries are stored as JSON ``{"value": ..., "expires_at": <epoch seconds>}``.
Semantic keys are remapped to fixed-length storage identifiers by the backend.
"""
import asyncio
import hashlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ai_orchestrator.core.config import CacheSettings
from ai_orchestrator.core.errors import CacheError
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.core.metrics import record_cache_hit, record_cache_miss

logger = get_logger(__name__)

CACHE_FILE_SUFFIX = ".cache"


def hash_key(key: str) -> str:
    """Storage-safe identifier for a semantic key (bounded length)."""
    return hashlib.md5(key.encode("utf-8")).hexdigest()


def _normalize_identity_value(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, (list, tuple)):
        return [_normalize_identity_value(item) for item in value]
    if isinstance(value, dict):
        return {
            str(k): _normalize_identity_value(value[k])
            for k in sorted(value.keys(), key=str)
        }
    return value


def make_cache_key(operation: str, payload: Any, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a semantic cache key from (operation, normalized input, params).

    Whitespace runs in strings collapse and dict keys are sorted, so inputs
    that differ only in formatting share a key.
    """
    canonical = json.dumps(
        {
            "input": _normalize_identity_value(payload),
            "params": _normalize_identity_value(params or {}),
        },
        sort_keys=True,
        ensure_ascii=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{operation.strip().lower()}:{digest}"


class CacheBackend(Protocol):
    """Raw string storage addressed by semantic key."""

    async def load(self, key: str) -> Optional[str]:
        ...

    async def store(self, key: str, raw: str, ttl: int) -> None:
        ...

    async def remove(self, key: str) -> bool:
        ...

    async def remove_storage_id(self, storage_id: str) -> bool:
        ...

    async def clear(self) -> int:
        ...

    def entries(self) -> AsyncIterator[Tuple[str, Optional[str], int]]:
        """Yield (storage_id, raw, size_bytes) for every stored entry."""
        ...


class FileCacheBackend:
    """
    One file per entry under ``directory``, named ``md5(key).cache``.

    File I/O runs in worker threads via ``asyncio.to_thread`` so a slow disk
    does not stall the event loop.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{hash_key(key)}{CACHE_FILE_SUFFIX}"

    async def load(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, self.path_for(key))

    async def store(self, key: str, raw: str, ttl: int) -> None:
        await asyncio.to_thread(self._write, self.path_for(key), raw)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._unlink, self.path_for(key))

    async def remove_storage_id(self, storage_id: str) -> bool:
        return await asyncio.to_thread(self._unlink, self.directory / storage_id)

    async def clear(self) -> int:
        return await asyncio.to_thread(self._clear)

    async def entries(self) -> AsyncIterator[Tuple[str, Optional[str], int]]:
        paths = await asyncio.to_thread(lambda: sorted(self.directory.glob(f"*{CACHE_FILE_SUFFIX}")))
        for path in paths:
            entry = await asyncio.to_thread(self._read_entry, path)
            if entry is not None:
                yield entry

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, path: Path, raw: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(raw)
            os.replace(tmp_path, path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _clear(self) -> int:
        removed = 0
        for path in self.directory.glob(f"*{CACHE_FILE_SUFFIX}"):
            if self._unlink(path):
                removed += 1
        return removed

    @staticmethod
    def _read_entry(path: Path) -> Optional[Tuple[str, Optional[str], int]]:
        if not path.is_file():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
            size = path.stat().st_size
        except (OSError, UnicodeDecodeError):
            raw, size = None, 0
        return path.name, raw, size

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False


class RedisCacheBackend:
    """Redis storage; keys are ``{prefix}:{md5(key)}`` with native expiry."""

    def __init__(self, client: Redis, prefix: str = "aio:cache"):
        self.client = client
        self.prefix = prefix

    def storage_key(self, key: str) -> str:
        return f"{self.prefix}:{hash_key(key)}"

    async def load(self, key: str) -> Optional[str]:
        value = await self.client.get(self.storage_key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def store(self, key: str, raw: str, ttl: int) -> None:
        await self.client.set(self.storage_key(key), raw, ex=max(1, int(ttl)))

    async def remove(self, key: str) -> bool:
        return bool(await self.client.delete(self.storage_key(key)))

    async def remove_storage_id(self, storage_id: str) -> bool:
        return bool(await self.client.delete(storage_id))

    async def clear(self) -> int:
        removed = 0
        async for storage_id in self.client.scan_iter(match=f"{self.prefix}:*"):
            removed += int(await self.client.delete(storage_id))
        return removed

    async def entries(self) -> AsyncIterator[Tuple[str, Optional[str], int]]:
        async for storage_id in self.client.scan_iter(match=f"{self.prefix}:*"):
            raw = await self.client.get(storage_id)
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            name = storage_id.decode("utf-8") if isinstance(storage_id, bytes) else storage_id
            yield name, raw, len(raw.encode("utf-8"))


class ResultCache:
    """
    TTL cache over a pluggable backend.

    Implements cache-aside:
    1. Check cache
    2. If miss, caller computes the value
    3. Store in cache
    4. Return result
    """

    def __init__(
        self,
        backend: CacheBackend,
        expiration: int = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.expiration = expiration
        self.enabled = enabled
        self._clock = clock

    make_key = staticmethod(make_cache_key)

    def _decode(self, raw: str) -> Dict[str, Any]:
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheError(f"Cache entry is not valid JSON: {exc}") from exc
        if not isinstance(entry, dict) or "value" not in entry or "expires_at" not in entry:
            raise CacheError("Cache entry is missing value/expires_at")
        try:
            entry["expires_at"] = float(entry["expires_at"])
        except (TypeError, ValueError) as exc:
            raise CacheError("Cache entry has a non-numeric expires_at") from exc
        return entry

    async def _read_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a live entry or None, deleting expired/corrupt entries."""
        try:
            raw = await self.backend.load(key)
        except (OSError, RedisError, UnicodeDecodeError) as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._discard(key)
            return None

        if raw is None:
            return None

        try:
            entry = self._decode(raw)
        except CacheError as e:
            logger.warning("cache_entry_corrupt", key=key, error=str(e))
            await self._discard(key)
            return None

        if self._clock() >= entry["expires_at"]:
            logger.debug("cache_entry_expired", key=key)
            await self._discard(key)
            return None

        return entry

    async def _discard(self, key: str) -> None:
        try:
            await self.backend.remove(key)
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_delete_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def get(self, key: str, cache_type: str = "result") -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value if found, None if miss, expired, disabled or error
        """
        if not self.enabled:
            return None

        entry = await self._read_entry(key)
        if entry is None:
            record_cache_miss(cache_type)
            logger.debug("cache_miss", cache_type=cache_type, key=key)
            return None

        record_cache_hit(cache_type)
        logger.debug("cache_hit", cache_type=cache_type, key=key)
        return entry["value"]

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache with TTL.

        Args:
            key: Semantic cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (defaults to the configured expiration)

        Returns:
            True if stored, False if disabled or on error
        """
        if not self.enabled:
            return False

        ttl = self.expiration if ttl is None else ttl
        try:
            raw = json.dumps({"value": value, "expires_at": self._clock() + ttl})
        except (TypeError, ValueError) as e:
            logger.warning("cache_set_unserializable", key=key, error=str(e))
            return False

        try:
            await self.backend.store(key, raw, ttl)
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await self.backend.remove(key)
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_delete_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache and is still live."""
        if not self.enabled:
            return False
        return await self._read_entry(key) is not None

    async def flush(self) -> bool:
        try:
            removed = await self.backend.clear()
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_flush_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        logger.info("cache_flushed", removed=removed)
        return True

    def _is_stale(self, raw: Optional[str], now: float) -> bool:
        if raw is None:
            return True
        try:
            entry = self._decode(raw)
        except CacheError:
            return True
        return now >= entry["expires_at"]

    async def clean(self) -> int:
        """
        Sweep expired and corrupt entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        stale = []
        try:
            async for storage_id, raw, _size in self.backend.entries():
                if self._is_stale(raw, now):
                    stale.append(storage_id)
            for storage_id in stale:
                await self.backend.remove_storage_id(storage_id)
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_clean_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

        if stale:
            logger.info("cache_cleaned", removed=len(stale))
        return len(stale)

    async def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            {total, size, expired, enabled, expiration}
        """
        stats = {
            "total": 0,
            "size": 0,
            "expired": 0,
            "enabled": self.enabled,
            "expiration": self.expiration,
        }
        now = self._clock()
        try:
            async for _storage_id, raw, size in self.backend.entries():
                stats["total"] += 1
                stats["size"] += size
                if self._is_stale(raw, now):
                    stats["expired"] += 1
        except (OSError, RedisError) as e:
            logger.warning(
                "cache_stats_error",
                error=str(e),
                error_type=type(e).__name__,
            )
        return stats


def create_result_cache(
    settings: CacheSettings,
    redis_client: Optional[Redis] = None,
    clock: Callable[[], float] = time.time,
) -> ResultCache:
    """Build a ResultCache for the configured backend."""
    if settings.backend == "redis":
        if redis_client is None:
            redis_client = Redis.from_url(
                settings.redis_url or "redis://localhost:6379",
                socket_connect_timeout=5,
                socket_timeout=5,
                decode_responses=True,
            )
        backend: CacheBackend = RedisCacheBackend(redis_client, prefix=settings.key_prefix)
    else:
        backend = FileCacheBackend(settings.directory)

    logger.info(
        "result_cache_initialized",
        backend=settings.backend,
        enabled=settings.enabled,
        expiration=settings.expiration,
    )
    return ResultCache(
        backend=backend,
        expiration=settings.expiration,
        enabled=settings.enabled,
        clock=clock,
    )
