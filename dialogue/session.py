"""
Session store — one dialogue state object per session.

Each session holds at most one Pending Command and an ``asyncio.Lock`` that
serializes turns, so two replies never advance the same Pending Command
concurrently. Pending Commands expire after ``PENDING_COMMAND_TTL_SECONDS``
of inactivity; the expiry is refreshed whenever a new one is saved.

Sessions with nothing pending are evicted once idle for
``SESSION_IDLE_SECONDS`` (default: the pending TTL), unless a turn holds
their lock.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable

from shared.dialogue_contracts import PendingCommand

logger = logging.getLogger(__name__)


@dataclass
class DialogueSession:
    session_id: str
    pending: PendingCommand | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_seen: float = 0.0


class SessionStore:
    """In-process map of session id to DialogueSession."""

    def __init__(
        self,
        pending_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        idle_ttl_seconds: float | None = None,
    ):
        if pending_ttl_seconds is None:
            pending_ttl_seconds = float(os.getenv("PENDING_COMMAND_TTL_SECONDS", "30"))
        self.pending_ttl_seconds = max(1.0, pending_ttl_seconds)
        if idle_ttl_seconds is None:
            idle_ttl_seconds = float(os.getenv("SESSION_IDLE_SECONDS", str(self.pending_ttl_seconds)))
        self.idle_ttl_seconds = max(1.0, idle_ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, DialogueSession] = {}

    def get(self, session_id: str) -> DialogueSession:
        now = self._clock()
        self._evict_idle(now, keep=session_id)
        session = self._sessions.get(session_id)
        if session is None:
            session = DialogueSession(session_id=session_id)
            self._sessions[session_id] = session
        session.last_seen = now
        return session

    def _evict_idle(self, now: float, keep: str) -> None:
        idle = [
            sid
            for sid, session in self._sessions.items()
            if sid != keep
            and not session.lock.locked()
            and (session.pending is None or session.pending.is_expired(now))
            and now - session.last_seen >= self.idle_ttl_seconds
        ]
        for sid in idle:
            del self._sessions[sid]
        if idle:
            logger.debug("Evicted %d idle sessions", len(idle))

    def active_pending(self, session_id: str) -> PendingCommand | None:
        """Current Pending Command, dropping it first if it has expired."""
        session = self.get(session_id)
        pending = session.pending
        if pending is not None and pending.is_expired(self._clock()):
            logger.info("Pending command %s for session %s expired", pending.id, session_id)
            session.pending = None
            return None
        return pending

    def save_pending(self, session_id: str, pending: PendingCommand | None) -> PendingCommand | None:
        session = self.get(session_id)
        if pending is None:
            session.pending = None
            return None
        now = self._clock()
        stamped = pending.evolve(
            created_at=pending.created_at or now,
            expires_at=now + self.pending_ttl_seconds,
        )
        session.pending = stamped
        return stamped

    def clear_pending(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.pending is None:
            return False
        session.pending = None
        return True

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
