# Backend/app/core/logging.py
from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from app.config import settings
from app.core.request_id import get_request_id, get_run_id

EventDict = Dict[str, Any]

# Waarden onder deze keys komen nooit in de logs (token zit in de Authorization header).
_SECRET_KEYS = frozenset({
    "authorization", "auth", "token", "access_token", "refresh_token",
    "api_key", "apikey", "password", "secret", "email", "phone",
})
_URL_KEYS = ("url", "endpoint", "path")
_SECRET_QUERY_RE = re.compile(r"([?&](?:token|access_token|api_key|apikey)=)[^&#]*", re.IGNORECASE)
_BEARER_RE = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)
REDACTED = "***redacted***"


# -------- Processors ---------------------------------------------------------

def add_timestamp(_: Any, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    return event_dict


def add_level(_: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = str(event_dict.get("level") or method_name or "info").lower()
    return event_dict


def service_tagger(service_name: str):
    def _inner(_: Any, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner


def add_context_ids(_: Any, __: str, event_dict: EventDict) -> EventDict:
    """request_id comes from the API middleware, run_id from one feed aggregation."""
    for key, value in (("request_id", get_request_id()), ("run_id", get_run_id())):
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def redact_secrets(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key in list(event_dict.keys()):
        value = event_dict[key]
        if str(key).lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            if key in _URL_KEYS:
                value = _SECRET_QUERY_RE.sub(rf"\1{REDACTED}", value)
            event_dict[key] = _BEARER_RE.sub(rf"\1{REDACTED}", value)
    return event_dict


# -------- Public API ---------------------------------------------------------

_logger: Optional[structlog.BoundLogger] = None


def _resolve_level(level: Optional[int | str]) -> int:
    value = settings.LOG_LEVEL if level is None else level
    if isinstance(value, int):
        return value
    resolved = getattr(logging, str(value).upper(), None)
    return resolved if isinstance(resolved, int) else logging.INFO


def build_processors(service_name: str, fmt: str) -> List[Any]:
    processors: List[Any] = [
        add_timestamp,
        add_level,
        service_tagger(service_name),
        add_context_ids,
        redact_secrets,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [
            structlog.processors.EventRenamer("event"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    return processors


def configure_logging(
    service_name: str = "feed",
    *,
    level: Optional[int | str] = None,
    fmt: Optional[str] = None,
) -> None:
    """
    One global structlog stack for the API and the feed engine.
    JSON lines on stderr by default; LOG_FORMAT=console for local development.
    """
    global _logger

    numeric_level = _resolve_level(level)
    logging.basicConfig(level=numeric_level, format="%(message)s", stream=sys.stderr, force=True)

    structlog.configure(
        processors=build_processors(service_name, (fmt or settings.LOG_FORMAT).lower()),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _logger = structlog.get_logger()


def get_logger() -> structlog.BoundLogger:
    if _logger is None:
        configure_logging()
    return _logger


logger = get_logger()
