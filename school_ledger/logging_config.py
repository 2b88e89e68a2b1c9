"""
Structured JSON logging for the school ledger.

Every record is written as one JSON object per line:

    {"ts": "...", "level": "INFO", "logger": "school_ledger.services.ledger_poster",
     "message": "journal_entry_posted", "entry_id": "...", "reference": "JE-2024-000001"}

Messages are snake_case event names; details go in ``extra=``.  Fields bound
through ``LogContext`` (actor, entry, asset, batch, correlation id) are added
to every record emitted while they are bound, so a depreciation run's log
lines all carry its ``batch_id`` without each call passing it.

Ledger exceptions are flattened: ``exc_code`` holds the error's ``code`` and
each public attribute becomes ``exc_<name>`` (e.g. ``exc_account_code``).
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, TextIO
from uuid import UUID

LOGGER_NAMESPACE = "school_ledger"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "entry_id",
    "asset_id",
    "batch_id",
)

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"school_ledger_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields backed by ``contextvars``.

    Safe across threads and asyncio tasks.  Unknown field names are
    ignored rather than rejected, so callers can pass through whatever
    identifiers they have.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set context fields; None values leave the current value alone."""
        for name, value in fields.items():
            var = _context.get(name)
            if var is not None and value is not None:
                var.set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        """
        Bind fields for the duration of a ``with`` block.

        Usage::

            with LogContext.bind(batch_id="DEP-2024-06", actor_id=user_id):
                ...
        """
        tokens: list[tuple[ContextVar, Token]] = []
        for name, value in fields.items():
            var = _context.get(name)
            if var is not None and value is not None:
                tokens.append((var, var.set(value)))
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``school_ledger`` namespace, e.g. ``school_ledger.config``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_state_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``school_ledger`` logger.

    Only the first call has an effect; later calls return immediately, so
    library entry points (engine initialization) can call it freely.  The
    namespace logger does not propagate to the root logger.
    """
    global _configured
    with _state_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(level)
    namespace.propagate = False
    namespace.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging. For tests."""
    global _configured
    with _state_lock:
        _configured = False
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.handlers.clear()
    namespace.setLevel(logging.WARNING)
    namespace.propagate = True
