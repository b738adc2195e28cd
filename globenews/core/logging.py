# globenews/core/logging.py
from __future__ import annotations

import logging
import sys
from typing import Any, Dict
from datetime import datetime, timezone

import structlog

from globenews.core.request_id import get_run_id, get_source


# -------- Processors ---------------------------------------------------------

def _add_ts(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # ISO 8601 UTC, millisecond precision
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    return event_dict

def _add_level(_: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    level = event_dict.get("level") or method_name or "info"
    event_dict["level"] = str(level).lower()
    return event_dict

def _add_service(service_name: str):
    def _inner(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner

def _add_run_context(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    run = get_run_id()
    if run:
        event_dict.setdefault("run_id", run)
    source = get_source()
    if source:
        event_dict.setdefault("source", source)
    return event_dict

# Key-based redaction; upstream credentials travel in params and headers.
_SECRET_KEYS = {
    "authorization", "auth", "token", "access_token", "api_key", "apikey",
    "x-api-key", "password", "pwd", "secret", "dsn", "redis_url", "database_url",
}

def _secret_guard(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        if str(k).lower() in _SECRET_KEYS:
            event_dict[k] = "***redacted***"
    return event_dict


# -------- Public API ---------------------------------------------------------

_logger: structlog.BoundLogger | None = None

def configure_logging(service_name: str = "pipeline", *, level: int = logging.INFO) -> None:
    """
    Configure the single global structlog stack for workers and library use.
    """
    global _logger

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    processors = [
        _add_ts,
        _add_level,
        _add_service(service_name),
        _add_run_context,
        _secret_guard,
        structlog.processors.EventRenamer("event"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()

def get_logger() -> structlog.BoundLogger:
    global _logger
    if _logger is None:
        configure_logging("pipeline")
    return _logger
