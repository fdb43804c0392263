"""
Shared logging configuration for the local API sidecar.

Events are rendered as one JSON object per line on stdout. Request id and
matched handler route are attached from context variables so handler logs
can be correlated with the traffic log.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

import structlog

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
route_var: ContextVar[Optional[str]] = ContextVar('route', default=None)

# Event keys whose values are never written out.
REDACTED_KEYS = frozenset({"authorization", "token", "value", "api_key", "secret", "password"})
REDACTED = "[redacted]"


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            service_context(service_name),
            add_correlation_context,
            redact_secrets,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def service_context(service_name: str) -> Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]:
    """Build a processor stamping every event with the service name."""

    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service_context


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    route = route_var.get()
    if route:
        event_dict["route"] = route

    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values logged under credential-like keys."""
    for key in event_dict:
        if key.lower() in REDACTED_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_route(route: Optional[str]) -> None:
    """Set the matched handler route in context."""
    route_var.set(route)


def clear_context():
    request_id_var.set(None)
    route_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
