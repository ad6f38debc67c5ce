"""
Structured JSON logging for the rental kernel.

Every kernel module logs through ``get_logger(__name__-ish)`` with a
snake_case event name as the message and its data in ``extra``:

    logger.info("item_created", extra={"item_id": str(item.id)})

Request-scoped fields (tenant, actor, item, bulk operation, correlation
id) live in ``LogContext`` and are merged into every line written while
they are bound.  Bulk-edit workers copy the caller's context, so their
lines carry the batch's ``operation_id``.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

KERNEL_LOGGER = "rental_kernel"

# ---------------------------------------------------------------------------
# Request-scoped fields
# ---------------------------------------------------------------------------

_context: ContextVar[dict[str, str]] = ContextVar("rental_log_context", default={})


class LogContext:
    """Fields attached to every log line of the current thread or task."""

    FIELDS = frozenset(
        {"correlation_id", "tenant_id", "actor_id", "item_id", "operation_id"}
    )

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """
        Bind fields for the duration of a ``with`` block.

        None values are skipped, everything else is stringified so UUIDs
        can be passed as-is.  Bindings nest; the outer values come back
        when the block exits.
        """
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(merged)
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON lines
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (k, v)
            for k, v in vars(record).items()
            if k not in _RECORD_ATTRS and k not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # Kernel errors keep their context as public attributes
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger named ``rental_kernel.<name>``."""
    return logging.getLogger(f"{KERNEL_LOGGER}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``rental_kernel`` logger.

    Idempotent: the first call wins until ``reset_logging()``.  Kernel
    records do not propagate to the root logger, so the host
    application's own handlers never see them twice.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(KERNEL_LOGGER)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(_handler)


def reset_logging() -> None:
    """Detach the handler installed by ``configure_logging``.  Tests only."""
    global _handler
    with _setup_lock:
        kernel_logger = logging.getLogger(KERNEL_LOGGER)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
        _handler = None
