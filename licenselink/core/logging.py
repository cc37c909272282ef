"""
Structured logging for vendor traffic.

- One logger, "licenselink": JSON lines in production, one-line pretty output elsewhere.
- request_id travels in a ContextVar so webhook and vendor logs correlate with
  the inbound request.
- log_event() is the helper the reconciliation code uses for every transition.
  Values passed in `extra` under credential-looking keys are masked, since
  handlers routinely hold Keygen user tokens and Stripe signatures.
"""

import json
import logging
import os
import sys
from bisect import bisect_right
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "licenselink"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes lifted from `extra=` into the JSON line.
STRUCTURED_FIELDS = (
    "event_type",
    "event_id",
    "error_code",
    "provider",
    "upstream_status",
    "account_id",
    "path",
    "method",
    "status",
    "latency_bucket",
)

_SECRET_MARKERS = ("token", "password", "secret", "signature", "authorization")
_MAX_VALUE_LEN = 500

_LATENCY_EDGES_MS = (10, 100, 500, 1000)
_LATENCY_LABELS = ("<10ms", "10-100ms", "100-500ms", "500-1000ms", ">=1000ms")


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    return _LATENCY_LABELS[bisect_right(_LATENCY_EDGES_MS, latency_ms)]


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class RequestIdFilter(logging.Filter):
    """Fill request_id from context when the call site did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        line.update(
            (name, getattr(record, name))
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = [f"[{LOGGER_NAME}]"]
        provider = getattr(record, "provider", None)
        if provider:
            tags.append(f"[{provider}]")
        event_type = getattr(record, "event_type", None)
        if event_type:
            tags.append(f"[{event_type}]")
        rid = getattr(record, "request_id", None)
        if rid:
            tags.append(f"[rid={rid}]")
        text = f"{_utc_timestamp(record)} {record.levelname} {' '.join(tags)} {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def configure_logging(env: str = "development", level: Optional[str] = None) -> None:
    """Install the formatter for `env` on the licenselink logger. Safe to call repeatedly."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel((level or os.getenv("LOG_LEVEL") or "INFO").upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn keeps its own access log; don't double-print it
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False


def _loggable(key: str, value: object) -> str:
    if any(marker in key.lower() for marker in _SECRET_MARKERS):
        return "***"
    text = str(value)
    if len(text) > _MAX_VALUE_LEN:
        return text[:_MAX_VALUE_LEN] + "...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    event_type: Optional[str] = None,
    provider: Optional[str] = None,
    account_id: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {"request_id": request_id or get_request_id()}
    for name, value in (
        ("event_type", event_type),
        ("provider", provider),
        ("account_id", account_id),
        ("error_code", error_code),
    ):
        if value:
            fields[name] = value
    for key, value in (extra or {}).items():
        fields[key] = _loggable(key, value)

    getattr(logger, level, logger.info)(msg, extra=fields, exc_info=exc_info)
