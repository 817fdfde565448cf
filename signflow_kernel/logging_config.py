"""
Structured JSON logging for signflow.

Every record is one JSON line.  Records carry the signing context bound where
they were emitted (the envelope, document or signer being acted on, the actor
and the sweep run), so the history of one envelope can be filtered out of a
busy log by ``envelope_id`` alone.

Usage::

    logger = get_logger("services.envelope")

    with LogContext.for_envelope(envelope_id, document_id, actor=actor):
        logger.info("envelope_sent")

SignflowError subclasses log their ``code`` and structured attributes as
``exc_*`` fields; any other exception logs only its type, message and
traceback.
"""

from __future__ import annotations

__all__ = [
    "CONTEXT_FIELDS",
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
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

from signflow_kernel.exceptions import SignflowError

# ---------------------------------------------------------------------------
# Signing context
# ---------------------------------------------------------------------------

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor",
    "sweep_run_id",
    "document_id",
    "envelope_id",
    "signer_id",
)

_CONTEXT: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"signflow_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT[name]
    except KeyError:
        raise ValueError(f"Unknown log context field {name!r}") from None


class LogContext:
    """Context-local fields stamped onto every record.

    Values are stored as strings, so UUIDs can be passed directly.  Being
    ContextVars, they are isolated per thread and per asyncio task.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set context fields. None leaves a field unchanged."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        ctx: dict[str, str] = {}
        for name, var in _CONTEXT.items():
            value = var.get()
            if value is not None:
                ctx[name] = value
        return ctx

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for a block; the outer values come back on exit."""
        tokens = []
        for name, value in fields.items():
            if value is not None:
                var = _context_var(name)
                tokens.append((var, var.set(str(value))))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @classmethod
    def for_envelope(
        cls,
        envelope_id: UUID | str,
        document_id: UUID | str | None = None,
        actor: str | None = None,
    ):
        """Bind the envelope an operation acts on (and its document)."""
        return cls.bind(envelope_id=envelope_id, document_id=document_id, actor=actor)

    @classmethod
    def for_signer(cls, signer_id: UUID | str, actor: str | None = None):
        return cls.bind(signer_id=signer_id, actor=actor)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Ids, timestamps and status enums as they appear in the audit trail."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, SignflowError):
        fields["exc_code"] = exc.code
        for key, value in vars(exc).items():
            if not key.startswith("_"):
                fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RESERVED_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT = "signflow"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``signflow`` namespace, e.g. ``signflow.batch.sweep``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``signflow`` logger. Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop the handler so tests can configure again."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
