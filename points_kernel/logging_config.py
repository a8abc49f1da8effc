"""
Structured JSON logging for the points kernel.

One JSON object per record: ``ts``, ``level``, ``logger`` and ``message``,
then the fields bound with ``LogContext.bind``, then the record's ``extra``.
Records logged with ``exc_info`` carry ``exc_type`` and ``exc_message``;
kernel errors add ``exc_code`` and their attributes as ``exc_<name>``.

Usage:
    logger = get_logger("services.workflow")
    with LogContext.bind(correlation_id=cid, assignment_id=assignment.id):
        logger.info("assignment_approved", extra={"points": 50})
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from points_kernel.exceptions import PointsKernelError

LOGGER_ROOT = "points_kernel"

# Fields a workflow call may bind; every record logged inside the block gets them.
CONTEXT_FIELDS = ("correlation_id", "actor_id", "assignment_id", "user_id")

_bound: ContextVar[dict[str, str] | None] = ContextVar("points_log_context", default=None)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def get_all() -> dict[str, str]:
        bound = _bound.get() or {}
        return {name: bound[name] for name in CONTEXT_FIELDS if name in bound}

    @staticmethod
    def clear() -> None:
        _bound.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Bind fields for the duration of the block, restoring the outer values
        on exit.  Values are stringified (ids may be passed as UUIDs) and None
        values leave the outer value in place.

        Raises:
            ValueError: a field name outside ``CONTEXT_FIELDS``.
        """
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_bound.get() or {})
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _bound.set(merged)
        try:
            yield
        finally:
            _bound.reset(token)


_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
    if isinstance(exc, PointsKernelError):
        fields["exc_code"] = exc.code
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        # bound context wins over an ``extra`` key of the same name
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``points_kernel`` namespace, e.g. ``services.ledger``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Attach one JSON handler (stderr by default) to the ``points_kernel``
    logger and stop propagation to the root logger.

    Only the first call takes effect; later calls return the installed
    handler unchanged.  ``level`` accepts names such as ``"debug"``.
    """
    global _handler
    with _lock:
        if _handler is not None:
            return _handler
        _handler = handler if handler is not None else logging.StreamHandler(sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        kernel_logger = logging.getLogger(LOGGER_ROOT)
        kernel_logger.addHandler(_handler)
        kernel_logger.setLevel(level.upper() if isinstance(level, str) else level)
        kernel_logger.propagate = False
        return _handler


def reset_logging() -> None:
    """Detach the handler installed by ``configure_logging``.  Tests only."""
    global _handler
    with _lock:
        kernel_logger = logging.getLogger(LOGGER_ROOT)
        if _handler is not None:
            kernel_logger.removeHandler(_handler)
            _handler = None
        kernel_logger.setLevel(logging.NOTSET)
        kernel_logger.propagate = True
