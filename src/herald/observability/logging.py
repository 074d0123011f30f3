"""Structured logging for the sidecar.

Provides:
- JSON-formatted logs for log aggregation systems (ELK, Loki, etc.)
- Role and identity context on every record
- Configurable log levels and formats

Usage:
    from herald.observability.logging import configure_logging

    # In process startup
    configure_logging(json_format=True, level="INFO")

    logger = logging.getLogger(__name__)
    logger.info("Lease acquired")  # Includes role and identity
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from collections.abc import Callable
from typing import Any

# Context variables carried on every log record
identity_var: contextvars.ContextVar[str] = contextvars.ContextVar("identity", default="")
role_var: contextvars.ContextVar[str] = contextvars.ContextVar("role", default="")

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "color_message",
    }
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter with role and identity context.

    Output format:
    {
        "timestamp": "2026-01-10T12:34:56.789Z",
        "level": "INFO",
        "logger": "herald.status.machine",
        "message": "Role changed: follower -> leader",
        "module": "machine",
        "function": "transition",
        "line": 42,
        "identity": "pod-a",
        "role": "leader"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        identity = identity_var.get()
        if identity:
            log_data["identity"] = identity

        role = getattr(record, "role", "") or role_var.get()
        if role:
            log_data["role"] = role

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        # Extra fields passed via `extra=`
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_data and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for development.

    Output format:
    2026-01-10 12:34:56 | INFO | herald.status.machine | Role changed | id=pod-a role=leader
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            level = f"{color}{level}{self.RESET}"

        message = record.getMessage()

        context_parts = []
        identity = identity_var.get()
        if identity:
            context_parts.append(f"id={identity}")
        role = getattr(record, "role", "") or role_var.get()
        if role:
            context_parts.append(f"role={role}")

        context = f" | {' '.join(context_parts)}" if context_parts else ""

        result = f"{timestamp} | {level:8} | {record.name} | {message}{context}"

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Configure process-wide logging.

    Args:
        json_format: Use JSON format (recommended for production)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Use ANSI colors in console format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(use_colors=use_colors))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("kubernetes.client.rest").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class LogContext:
    """Context manager for adding temporary log context.

    Usage:
        with LogContext(identity="pod-a", role="leader"):
            logger.info("Marker written")  # Includes identity and role
    """

    def __init__(self, **kwargs: Any) -> None:
        self.extra = kwargs
        self._tokens: dict[str, contextvars.Token[str]] = {}

    def __enter__(self) -> "LogContext":
        if "identity" in self.extra:
            self._tokens["identity"] = identity_var.set(self.extra["identity"])
        if "role" in self.extra:
            self._tokens["role"] = role_var.set(self.extra["role"])
        return self

    def __exit__(self, *args: Any) -> None:
        for key, token in self._tokens.items():
            if key == "identity":
                identity_var.reset(token)
            elif key == "role":
                role_var.reset(token)


class RoleFilter(logging.Filter):
    """Stamps each record with the role currently held by the process.

    The role is read from `role_source` when the record is emitted, so
    records from every task carry it.
    """

    def __init__(self, role_source: Callable[[], str]) -> None:
        super().__init__()
        self.role_source = role_source

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "role", ""):
            record.role = self.role_source()
        return True


def bind_role_source(role_source: Callable[[], str]) -> RoleFilter:
    """Attach a RoleFilter to every root handler.

    Call after `configure_logging`; undo with `unbind_role_source`.
    """
    role_filter = RoleFilter(role_source)
    for handler in logging.getLogger().handlers:
        handler.addFilter(role_filter)
    return role_filter


def unbind_role_source(role_filter: RoleFilter) -> None:
    for handler in logging.getLogger().handlers:
        handler.removeFilter(role_filter)
