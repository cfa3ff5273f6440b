"""
Structured logging for the approval portal.

Responsibility:
    One JSON object per log line.  Each line carries the request-scoped
    fields bound in ``LogContext`` (portal session, acting user, document
    under transition) plus whatever the call site passes in ``extra``.
    Workflow values (document kinds, status enums, role sets) are
    rendered as plain JSON so log consumers never see Python reprs.

Architecture position:
    Kernel > Infrastructure.  Imported by services, the session layer and
    the config loader; imports nothing from the rest of the package.

Invariants enforced:
    - ``configure_logging`` installs exactly one handler on the
      ``approval_kernel`` logger no matter how many portal sessions start.
    - Context bound with ``LogContext.bind`` is restored on exit, so nested
      units of work do not leak their document id into the outer session.
    - ``resolve_level`` is the single place a level name becomes a number.

Failure modes:
    - Unknown level name -> ``ValueError`` (raised at config load, not at
      login).
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "resolve_level",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "approval_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"approval_log_{name}", default=None)
    for name in ("correlation_id", "session_id", "actor", "document_id", "document_kind")
}


class LogContext:
    """Request-scoped log fields, isolated per thread and per task."""

    FIELDS = tuple(_CONTEXT_VARS)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set known fields. None values and unknown names are ignored."""
        for name, value in fields.items():
            var = _CONTEXT_VARS.get(name)
            if var is not None and value is not None:
                var.set(_context_value(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _CONTEXT_VARS.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Context manager that sets fields on entry and restores on exit."""
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _CONTEXT_VARS.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(_context_value(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


def _context_value(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Render workflow values as plain JSON; anything else falls back to str."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(str(v.value if isinstance(v, Enum) else v) for v in obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    # ApprovalKernelError subclasses keep document_id, current_status etc.
    # as public attributes; surface them next to the error code.
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, val in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code"):
            fields[f"exc_{key}"] = val
    return fields


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the approval_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def resolve_level(level: int | str) -> int:
    """Turn a level name (any case) or number into a logging level number."""
    if isinstance(level, bool):
        raise ValueError(f"Unknown log level: {level!r}")
    if isinstance(level, int):
        return level
    mapping = logging.getLevelNamesMapping()
    name = str(level).strip().upper()
    if name not in mapping:
        known = ", ".join(sorted(mapping))
        raise ValueError(f"Unknown log level {level!r}; expected one of {known}")
    return mapping[name]


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the approval_kernel logger (idempotent)."""
    global _configured
    numeric_level = resolve_level(level)
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(numeric_level)
    kernel_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(h)


def reset_logging() -> None:
    """Drop the installed handler and allow reconfiguration. Tests only."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    for h in list(kernel_logger.handlers):
        if isinstance(h.formatter, StructuredFormatter):
            kernel_logger.removeHandler(h)
    kernel_logger.setLevel(logging.WARNING)
