"""
Structured logging configuration for the orchestration layer.

JSON-structured logging with correlation IDs so that every log line written
while a request is in flight can be tied back to the outbound provider call.

All logs include:
- timestamp (ISO 8601 format)
- level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- service (service name identifier)
- correlation_id (per orchestrated request, also sent as X-Request-ID)
- identity (caller identity, when available)
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
identity_var: ContextVar[Optional[str]] = ContextVar("identity", default=None)

SERVICE_NAME = "ai_orchestrator"


def add_request_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add request context (correlation_id, identity, service) to log entries.
    """
    correlation_id = correlation_id_var.get()
    if correlation_id and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = correlation_id

    identity = identity_var.get()
    if identity and "identity" not in event_dict:
        event_dict["identity"] = identity

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: If True, output JSON format. If False, use console format (for dev)
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    return structlog.get_logger(name)


def log_event(
    logger: Any,
    level: str,
    event: str,
    **context: Any,
) -> None:
    """
    Fire-and-forget log call.

    A broken sink (closed stream, bad renderer, unserializable context) must
    never turn into an error for the request being logged. The failure is
    written to stderr instead.
    """
    try:
        getattr(logger, level)(event, **context)
    except Exception as e:  # noqa: BLE001
        try:
            sys.stderr.write(f"log_event failed for {event!r}: {type(e).__name__}: {e}\n")
        except (OSError, ValueError):
            pass


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Set correlation ID in context for the current request (None clears it)."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_identity(identity: Optional[str]) -> None:
    """Set caller identity in context for the current request."""
    identity_var.set(identity)


def get_identity() -> Optional[str]:
    """Get current caller identity from context."""
    return identity_var.get()


def generate_correlation_id() -> str:
    """
    Generate a new unique correlation ID.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())
