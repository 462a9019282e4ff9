"""
Event channel owned by an emitting component.

Listeners are plain callables ``listener(event_name, payload)``. A failing
listener is logged and skipped; it never breaks the request that emitted the
event.
"""
from threading import Lock
from typing import Any, Callable, Dict, List

from ai_orchestrator.core.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


class EventChannel:
    """Thread-safe callback list keyed by event name ("*" receives everything)."""

    def __init__(self, name: str):
        self.name = name
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, event: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

    def unsubscribe(self, event: str, listener: Listener) -> bool:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, [])) + list(self._listeners.get("*", []))

        for listener in listeners:
            try:
                listener(event, payload)
            except Exception as e:
                logger.warning(
                    "event_listener_failed",
                    channel=self.name,
                    event_name=event,
                    error=str(e),
                    error_type=type(e).__name__,
                )
