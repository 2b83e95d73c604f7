"""In-process ops event feed.

Log records that carry an ``event_type`` are copied into a bounded ring buffer
exposed by ``/ops/events``. Emails, IP addresses and secret-looking fields are
redacted on the way in, since referral logs routinely mention both.
"""

from __future__ import annotations

import logging
import re
from collections import Counter, deque
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Literal, TypedDict
from uuid import uuid4

EventLevel = Literal["info", "warning", "error"]

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
SENSITIVE_KEYS = ("email", "ip", "user_agent", "token", "secret", "api_key", "authorization")
REDACTED = "[REDACTED]"
REQUEST_ID_HEADER = "x-request-id"

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class OpsEvent(TypedDict):
    timestamp: str
    level: EventLevel
    component: str
    event_type: str
    message: str
    request_id: str | None
    payload: dict[str, Any]


def _timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    parts = lowered.split("_")
    return any(marker == lowered or marker in parts for marker in SENSITIVE_KEYS)


def redact_text(value: str) -> str:
    return IPV4_RE.sub(REDACTED, EMAIL_RE.sub(REDACTED, value))


def redact(value: Any, key: str | None = None) -> Any:
    if key is not None and _is_sensitive(key):
        return REDACTED
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {item_key: redact(item, str(item_key)) for item_key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def bind_request_id(request_id: str | None = None) -> Token[str | None]:
    return _request_id_ctx.set(request_id or uuid4().hex)


def unbind_request_id(token: Token[str | None]) -> None:
    _request_id_ctx.reset(token)


class OpsEventBuffer:
    def __init__(self, max_size: int = 500) -> None:
        self._events: deque[OpsEvent] = deque(maxlen=max_size)
        self._lock = Lock()

    def add(self, event: OpsEvent) -> None:
        with self._lock:
            self._events.append(event)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def recent(
        self,
        *,
        limit: int = 50,
        level: EventLevel | None = None,
        event_type: str | None = None,
    ) -> list[OpsEvent]:
        """Newest first. ``event_type`` matches as a prefix, e.g. ``referral.``."""
        with self._lock:
            snapshot = list(self._events)
        matching = [
            event
            for event in snapshot
            if (level is None or event["level"] == level)
            and (event_type is None or event["event_type"].startswith(event_type))
        ]
        return matching[::-1][:limit]

    def level_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(event["level"] for event in self._events))


ops_event_buffer = OpsEventBuffer()


def _level_for(record: logging.LogRecord) -> EventLevel:
    if record.levelno >= logging.ERROR:
        return "error"
    if record.levelno >= logging.WARNING:
        return "warning"
    return "info"


class OpsEventHandler(logging.Handler):
    """Copies tagged records (and every warning or error) into the buffer."""

    def emit(self, record: logging.LogRecord) -> None:
        event_type = getattr(record, "event_type", None)
        if event_type is None and record.levelno < logging.WARNING:
            return
        payload = redact(getattr(record, "ops_payload", {}) or {})
        if not isinstance(payload, dict):
            payload = {"value": payload}
        ops_event_buffer.add(
            {
                "timestamp": _timestamp(),
                "level": _level_for(record),
                "component": record.name,
                "event_type": str(event_type or record.name),
                "message": redact_text(record.getMessage()),
                "request_id": get_request_id(),
                "payload": payload,
            }
        )


def configure_ops_event_logging(max_size: int) -> None:
    global ops_event_buffer
    ops_event_buffer = OpsEventBuffer(max_size=max_size)

    root = logging.getLogger()
    if not any(isinstance(handler, OpsEventHandler) for handler in root.handlers):
        root.addHandler(OpsEventHandler())

    package_logger = logging.getLogger("waitlist")
    if package_logger.level == logging.NOTSET:
        package_logger.setLevel(logging.INFO)
