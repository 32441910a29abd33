"""
Observability Layer — structured dialogue events.

Every user turn gets one trace id shared by the dialogue manager and the
dispatcher, so a single grep on ``trace_id`` shows what was dispatched and
how long the turn took. Model tier events carry the session id.

Events are JSON lines on the ``observability`` logger. Module loggers keep
using standard logging for diagnostics. Set ``OBSERVABILITY_EVENTS=false``
to silence the event stream.
"""

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("observability")

EVENTS_ENABLED = os.getenv("OBSERVABILITY_EVENTS", "true").strip().lower() in ("1", "true", "yes", "on")
MAX_TEXT_CHARS = 200


def _clip(value: Any) -> Any:
    """User text can be long; events only need a preview."""
    if isinstance(value, str) and len(value) > MAX_TEXT_CHARS:
        return value[:MAX_TEXT_CHARS] + "…"
    return value


class Observability:
    """Event logger bound to one session and one trace."""

    def __init__(
        self,
        session_id: str | None = None,
        trace_id: str | None = None,
        fields: dict[str, Any] | None = None,
    ):
        self.session_id = session_id or "anonymous"
        self.trace_id = trace_id or uuid.uuid4().hex
        self.fields = dict(fields or {})

    def bind(self, **fields: Any) -> "Observability":
        """Same trace, extra fields on every event (e.g. the action being dispatched)."""
        return Observability(self.session_id, trace_id=self.trace_id, fields={**self.fields, **fields})

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> None:
        if not EVENTS_ENABLED:
            return
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "event": event_type,
            "session_id": self.session_id,
            "trace_id": self.trace_id,
            **self.fields,
            **{key: _clip(value) for key, value in payload.items()},
        }
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(json.dumps(entry, default=str, ensure_ascii=False))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None):
        """Log ``<operation>_timing`` with elapsed time; failures log at WARNING and re-raise."""
        started = time.perf_counter()
        error: str | None = None
        try:
            yield
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            self.log_event(
                f"{operation}_timing",
                {
                    "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
                    "ok": error is None,
                    "error": error,
                    **(metadata or {}),
                },
                level="INFO" if error is None else "WARNING",
            )
