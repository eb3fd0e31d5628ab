"""Structured JSON logging for the ledger service."""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

__all__ = ["StructuredFormatter", "LogContext", "get_logger", "configure_logging"]

ROOT_LOGGER = "swms"


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    _request_id: ContextVar[str | None] = ContextVar("log_request_id", default=None)
    _actor_id: ContextVar[str | None] = ContextVar("log_actor_id", default=None)

    @classmethod
    def set(cls, *, request_id: str | None = None, actor_id: str | None = None) -> None:
        if request_id is not None:
            cls._request_id.set(request_id)
        if actor_id is not None:
            cls._actor_id.set(actor_id)

    @classmethod
    def clear(cls) -> None:
        cls._request_id.set(None)
        cls._actor_id.set(None)

    @classmethod
    def fields(cls) -> dict[str, str]:
        out = {}
        if cls._request_id.get() is not None:
            out["request_id"] = cls._request_id.get()
        if cls._actor_id.get() is not None:
            out["actor_id"] = cls._actor_id.get()
        return out


# attributes every LogRecord has; anything else came in through extra=
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _default(o: Any):
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, datetime):
        return o.isoformat()
    return str(o)


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.fields())
        for k, v in record.__dict__.items():
            if k not in _RESERVED and not k.startswith("_"):
                payload[k] = v
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_default, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())
    if not any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter())
        root.addHandler(handler)
    root.propagate = False
