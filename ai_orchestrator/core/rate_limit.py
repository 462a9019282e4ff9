"""
Per-caller rate limiting with fixed-window counters and a cooldown lock.

Three independent windows per identity:
- minute (60s), hour (3600s), day (86400s), each with its own limit

Fixed windows reset entirely once elapsed rather than decaying continuously,
so a caller can burst up to ~2x the nominal limit across a window boundary.

``check`` never consumes quota. ``acquire`` consumes one unit atomically:
every window is incremented first and compared afterwards, and a denied
acquire rolls back what it took, so concurrent callers cannot overshoot a
limit. ``record_request`` consumes unconditionally. The cooldown lock is an independent timed deny-all penalty
that clears only by expiry.
"""
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ai_orchestrator.core.config import RateLimitSettings
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.core.metrics import record_rate_limit_denied

logger = get_logger(__name__)

PERIODS: Dict[str, int] = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


def _mask(identity: str) -> str:
    return identity[:10] + "..." if len(identity) > 10 else identity


@dataclass
class RateWindow:
    identity: str
    period: str
    count: int
    window_start: float


@dataclass
class RateLimitDecision:
    allowed: bool
    reason: str = "ok"  # ok, cooldown, minute, hour, day, error
    retry_after: Optional[float] = None


class CounterStore(Protocol):
    async def get_window(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        ...

    async def increment(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        ...

    async def decrement(self, identity: str, period: str, duration: int, now: float) -> None:
        ...

    async def get_cooldown(self, identity: str, now: float) -> Optional[float]:
        """Return the cooldown expiry timestamp, or None when not cooling down."""
        ...

    async def set_cooldown(self, identity: str, duration: int, now: float) -> None:
        ...


class InMemoryCounterStore:
    """
    Process-local counters guarded by one mutex per (identity, period).

    Safe for concurrent asyncio tasks and for threads sharing the store.
    """

    def __init__(self):
        self._windows: Dict[Tuple[str, str], RateWindow] = {}
        self._cooldowns: Dict[str, float] = {}
        self._locks: Dict[Tuple[str, str], Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, key: Tuple[str, str]) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock

    def _current(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        window = self._windows.get((identity, period))
        if window is None or now - window.window_start >= duration:
            window = RateWindow(identity=identity, period=period, count=0, window_start=now)
            self._windows[(identity, period)] = window
        return window

    async def get_window(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        with self._lock_for((identity, period)):
            window = self._current(identity, period, duration, now)
            return RateWindow(window.identity, window.period, window.count, window.window_start)

    async def increment(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        return self.increment_sync(identity, period, duration, now)

    def increment_sync(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        with self._lock_for((identity, period)):
            window = self._current(identity, period, duration, now)
            window.count += 1
            return RateWindow(window.identity, window.period, window.count, window.window_start)

    async def decrement(self, identity: str, period: str, duration: int, now: float) -> None:
        with self._lock_for((identity, period)):
            window = self._current(identity, period, duration, now)
            window.count = max(0, window.count - 1)

    async def get_cooldown(self, identity: str, now: float) -> Optional[float]:
        with self._lock_for((identity, "cooldown")):
            expires_at = self._cooldowns.get(identity)
            if expires_at is None:
                return None
            if now >= expires_at:
                del self._cooldowns[identity]
                return None
            return expires_at

    async def set_cooldown(self, identity: str, duration: int, now: float) -> None:
        with self._lock_for((identity, "cooldown")):
            self._cooldowns[identity] = now + duration


class RedisCounterStore:
    """
    Redis counters: INCR + EXPIRE NX in one MULTI/EXEC, so the first hit of a
    window starts its expiry and later hits never extend it.
    """

    def __init__(self, client: Redis, prefix: str = "aio:ratelimit"):
        self.client = client
        self.prefix = prefix

    def _key(self, identity: str, period: str) -> str:
        return f"{self.prefix}:{period}:{identity}"

    @staticmethod
    def _window_start(duration: int, pttl: int, now: float) -> float:
        if pttl is None or pttl < 0:
            return now
        return now - (duration - pttl / 1000.0)

    async def get_window(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        key = self._key(identity, period)
        pipe = self.client.pipeline(transaction=True)
        pipe.get(key)
        pipe.pttl(key)
        raw_count, pttl = await pipe.execute()
        count = int(raw_count) if raw_count is not None else 0
        return RateWindow(identity, period, count, self._window_start(duration, pttl, now))

    async def increment(self, identity: str, period: str, duration: int, now: float) -> RateWindow:
        key = self._key(identity, period)
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, duration, nx=True)
        pipe.pttl(key)
        count, _, pttl = await pipe.execute()
        return RateWindow(identity, period, int(count), self._window_start(duration, pttl, now))

    async def decrement(self, identity: str, period: str, duration: int, now: float) -> None:
        key = self._key(identity, period)
        pipe = self.client.pipeline(transaction=True)
        pipe.decr(key)
        pipe.expire(key, duration, nx=True)
        await pipe.execute()

    async def get_cooldown(self, identity: str, now: float) -> Optional[float]:
        pttl = await self.client.pttl(self._key(identity, "cooldown"))
        if pttl is None or pttl < 0:
            return None
        return now + pttl / 1000.0

    async def set_cooldown(self, identity: str, duration: int, now: float) -> None:
        await self.client.set(self._key(identity, "cooldown"), "1", ex=max(1, int(duration)))


class RateLimiter:
    """
    Fixed-window rate limiter over a CounterStore.

    Store failures fail closed: the request is denied and the error logged.
    """

    def __init__(
        self,
        settings: Optional[RateLimitSettings] = None,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or RateLimitSettings()
        self.store = store or InMemoryCounterStore()
        self._clock = clock

    def limit_for(self, period: str) -> int:
        return {
            "minute": self.settings.requests_per_minute,
            "hour": self.settings.requests_per_hour,
            "day": self.settings.requests_per_day,
        }[period]

    async def check(self, identity: str) -> RateLimitDecision:
        """
        Decide whether ``identity`` may dispatch a request now.

        Cooldown is checked first and short-circuits window state.
        """
        now = self._clock()
        try:
            cooldown_until = await self.store.get_cooldown(identity, now)
            if cooldown_until is not None:
                record_rate_limit_denied("cooldown")
                return RateLimitDecision(False, "cooldown", max(0.0, cooldown_until - now))

            for period, duration in PERIODS.items():
                window = await self.store.get_window(identity, period, duration, now)
                if window.count >= self.limit_for(period):
                    record_rate_limit_denied(period)
                    logger.warning(
                        "rate_limit_exceeded",
                        identity=_mask(identity),
                        period=period,
                        count=window.count,
                        limit=self.limit_for(period),
                    )
                    retry_after = max(0.0, window.window_start + duration - now)
                    return RateLimitDecision(False, period, retry_after)
        except (RedisError, OSError) as e:
            record_rate_limit_denied("error")
            logger.error(
                "rate_limit_check_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return RateLimitDecision(False, "error", None)

        return RateLimitDecision(True)

    async def can_make_request(self, identity: str) -> bool:
        return (await self.check(identity)).allowed

    async def acquire(self, identity: str) -> RateLimitDecision:
        """
        Check and consume one unit of quota in a single step.

        Each window is incremented and then compared with its limit, so the
        count returned by the store already includes this request. When any
        window is over its limit the increments taken so far are rolled back
        and the request is denied.
        """
        now = self._clock()
        taken = []
        try:
            cooldown_until = await self.store.get_cooldown(identity, now)
            if cooldown_until is not None:
                record_rate_limit_denied("cooldown")
                return RateLimitDecision(False, "cooldown", max(0.0, cooldown_until - now))

            for period, duration in PERIODS.items():
                window = await self.store.increment(identity, period, duration, now)
                taken.append((period, duration))
                if window.count > self.limit_for(period):
                    await self._release(identity, taken, now)
                    record_rate_limit_denied(period)
                    logger.warning(
                        "rate_limit_exceeded",
                        identity=_mask(identity),
                        period=period,
                        count=window.count - 1,
                        limit=self.limit_for(period),
                    )
                    retry_after = max(0.0, window.window_start + duration - now)
                    return RateLimitDecision(False, period, retry_after)
        except (RedisError, OSError) as e:
            record_rate_limit_denied("error")
            logger.error(
                "rate_limit_acquire_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return RateLimitDecision(False, "error", None)

        return RateLimitDecision(True)

    async def _release(self, identity: str, taken, now: float) -> None:
        for period, duration in taken:
            await self.store.decrement(identity, period, duration, now)

    async def record_request(self, identity: str) -> bool:
        """Consume one unit of quota in every window."""
        now = self._clock()
        try:
            for period, duration in PERIODS.items():
                await self.store.increment(identity, period, duration, now)
        except (RedisError, OSError) as e:
            logger.error(
                "rate_limit_record_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def remaining(self, identity: str) -> Dict[str, int]:
        now = self._clock()
        result = {}
        try:
            for period, duration in PERIODS.items():
                window = await self.store.get_window(identity, period, duration, now)
                result[f"per_{period}"] = max(0, self.limit_for(period) - window.count)
        except (RedisError, OSError) as e:
            logger.error(
                "rate_limit_remaining_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return {"per_minute": 0, "per_hour": 0, "per_day": 0}
        return result

    async def is_in_cooldown(self, identity: str) -> bool:
        try:
            return await self.store.get_cooldown(identity, self._clock()) is not None
        except (RedisError, OSError) as e:
            logger.error(
                "rate_limit_cooldown_check_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return True

    async def set_cooldown(self, identity: str) -> bool:
        if self.settings.cooldown_period <= 0:
            return False
        try:
            await self.store.set_cooldown(identity, self.settings.cooldown_period, self._clock())
        except (RedisError, OSError) as e:
            logger.error(
                "rate_limit_cooldown_set_failed",
                identity=_mask(identity),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        logger.info(
            "rate_limit_cooldown_set",
            identity=_mask(identity),
            cooldown_period=self.settings.cooldown_period,
        )
        return True


def create_rate_limiter(
    settings: RateLimitSettings,
    redis_client: Optional[Redis] = None,
    clock: Callable[[], float] = time.time,
) -> RateLimiter:
    if settings.backend == "redis":
        if redis_client is None:
            redis_client = Redis.from_url(
                settings.redis_url or "redis://localhost:6379",
                socket_connect_timeout=5,
                socket_timeout=5,
                decode_responses=True,
            )
        store: CounterStore = RedisCounterStore(redis_client)
    else:
        store = InMemoryCounterStore()
    return RateLimiter(settings=settings, store=store, clock=clock)
