"""Logging utilities for the functions framework.

Provides centralized JSON logging configuration, request-scoped logging
identifiers (execution ID, trace and span) and header sanitization.
"""

import contextvars
import json
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel
from pythonjsonlogger import json as jsonlogger

EXECUTION_ID_HEADER = "Function-Execution-Id"
TRACE_CONTEXT_HEADER = "X-Cloud-Trace-Context"

TRACE_FIELD = "logging.googleapis.com/trace"
SPAN_ID_FIELD = "logging.googleapis.com/spanId"
LABELS_FIELD = "logging.googleapis.com/labels"

# Sensitive header prefixes (case-insensitive)
SENSITIVE_HEADER_PREFIXES = [
    "x-api-key",
    "x-auth",
    "x-token",
    "x-secret",
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
]

# "TRACE_ID/SPAN_ID;o=TRACE_TRUE", every part optional
_TRACE_CONTEXT_RE = re.compile(r"([a-f\d]+)?(?:/([a-f\d]+))?(?:;o=(\d))?")


class LoggingIDs(BaseModel):
    """Correlation identifiers attached to one request's log entries."""

    trace: str = ""
    span_id: str = ""
    execution_id: str = ""


_current_logging_ids: contextvars.ContextVar[Optional[LoggingIDs]] = (
    contextvars.ContextVar("funcframework_logging_ids", default=None)
)


def deconstruct_trace_context(value: str) -> Tuple[str, str, bool]:
    """Split an ``X-Cloud-Trace-Context`` header into its parts.

    Args:
        value: Header value, e.g. ``"105445aa7843bc8bf206b120001000/1;o=1"``

    Returns:
        Tuple of (trace_id, span_id, sampled); a span ID of ``0`` is dropped
    """
    match = _TRACE_CONTEXT_RE.match(value or "")
    trace_id = (match.group(1) or "") if match else ""
    span_id = (match.group(2) or "") if match else ""
    sampled = bool(match and match.group(3) == "1")
    if span_id == "0":
        span_id = ""
    return trace_id, span_id, sampled


def logging_ids_from_headers(headers: Mapping[str, str]) -> Optional[LoggingIDs]:
    """Build logging identifiers from request headers.

    Args:
        headers: Case-insensitive request headers

    Returns:
        LoggingIDs, or None when the request carries no identifiers
    """
    execution_id = headers.get(EXECUTION_ID_HEADER, "")
    trace_id, span_id, _ = deconstruct_trace_context(
        headers.get(TRACE_CONTEXT_HEADER, "")
    )
    if not (execution_id or trace_id or span_id):
        return None
    return LoggingIDs(trace=trace_id, span_id=span_id, execution_id=execution_id)


def set_logging_ids(ids: Optional[LoggingIDs]) -> contextvars.Token:
    """Bind logging identifiers to the current execution context."""
    return _current_logging_ids.set(ids)


def reset_logging_ids(token: contextvars.Token) -> None:
    """Restore the logging identifiers bound before ``set_logging_ids``."""
    _current_logging_ids.reset(token)


def current_logging_ids() -> Optional[LoggingIDs]:
    """Return the logging identifiers of the request being handled, if any."""
    return _current_logging_ids.get()


class LoggingIDsFilter(logging.Filter):
    """Adds the current request's correlation fields to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ids = _current_logging_ids.get()
        if ids is None:
            return True
        if ids.trace:
            setattr(record, TRACE_FIELD, ids.trace)
        if ids.span_id:
            setattr(record, SPAN_ID_FIELD, ids.span_id)
        if ids.execution_id:
            setattr(record, LABELS_FIELD, {"execution_id": ids.execution_id})
        return True


def configure_json_logging(level: str = "INFO", pretty: bool = False) -> None:
    """Configure ALL loggers to use JSON format.

    This function sets up the root logger with JSON formatting, ensuring
    all child loggers inherit JSON format.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        pretty: If True, use pretty-printed JSON (for local development).
                If False, use compact JSON, one entry per line.
    """
    root_logger = logging.getLogger()

    # Remove any existing handlers
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    handler.addFilter(LoggingIDsFilter())

    if pretty:
        formatter: logging.Formatter = _PrettyJsonFormatter()
    else:
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"levelname": "severity"},
            timestamp=True,
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


class _PrettyJsonFormatter(logging.Formatter):
    """Pretty JSON formatter for local development."""

    _RESERVED = frozenset(
        (
            "name", "msg", "args", "created", "filename", "funcName",
            "levelname", "levelno", "lineno", "module", "msecs",
            "message", "pathname", "process", "processName",
            "relativeCreated", "thread", "threadName", "exc_info",
            "exc_text", "stack_info", "asctime", "datefmt", "taskName",
        )
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as pretty JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        try:
            return json.dumps(log_data, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return json.dumps({"message": str(record.getMessage())}, indent=2)


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Sanitize HTTP headers by redacting credentials.

    Args:
        headers: HTTP headers mapping

    Returns:
        Sanitized headers dictionary
    """
    sanitized = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if any(key_lower.startswith(prefix) for prefix in SENSITIVE_HEADER_PREFIXES):
            sanitized[key] = "[REDACTED]"
        else:
            sanitized[key] = value
    return sanitized


def format_request_log(
    function_name: str,
    http_method: str,
    request_path: str,
    headers: Mapping[str, str],
    body_size: int,
) -> Dict[str, Any]:
    """Format structured request log entry.

    Args:
        function_name: Name (or path) of the function being invoked
        http_method: HTTP method (GET, POST, etc.)
        request_path: Request path
        headers: HTTP headers
        body_size: Request body length in bytes

    Returns:
        Dictionary with structured log data
    """
    return {
        "function": function_name,
        "http_method": http_method,
        "request_path": request_path,
        "request_headers": sanitize_headers(headers),
        "request_body_size": body_size,
    }


def format_response_log(
    function_name: str,
    status_code: int,
    function_status: str,
    duration_ms: float,
) -> Dict[str, Any]:
    """Format structured response log entry.

    Args:
        function_name: Name (or path) of the function that was invoked
        status_code: HTTP status code
        function_status: Value of the status header, empty on success
        duration_ms: Processing duration in milliseconds

    Returns:
        Dictionary with structured log data
    """
    return {
        "function": function_name,
        "response_status": status_code,
        "function_status": function_status,
        "duration_ms": round(duration_ms, 2),
        "success": not function_status,
    }
