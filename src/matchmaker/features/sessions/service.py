from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

from matchmaker.core.errors import NotFoundError
from matchmaker.core.ids import session_id_for
from matchmaker.core.types import Clock, SystemClock

from .types import ChatSession, SessionStatus


def new_session(
    id_a: str,
    id_b: str,
    *,
    interests: tuple[str, ...],
    started_at: datetime,
    score: float,
    icebreaker: str | None = None,
) -> ChatSession:
    if id_a == id_b:
        raise ValueError("a chat session needs two distinct participants")
    first, second = sorted([id_a, id_b])
    return ChatSession(
        session_id=session_id_for(id_a, id_b),
        participant_ids=(first, second),
        interests=interests,
        started_at=started_at,
        score=float(score),
        icebreaker=icebreaker,
    )


def end_session(session: ChatSession, *, ended_at: datetime) -> ChatSession:
    """Returns an ENDED copy with end time and duration filled in."""
    duration_s = max(0.0, (ended_at - session.started_at).total_seconds())
    return replace(
        session,
        status=SessionStatus.ENDED,
        ended_at=ended_at,
        duration_s=duration_s,
    )


class InMemorySessionStore:
    """
    Dict-backed SessionStore for embedding and tests. TTLs are measured on the
    given clock; expired entries behave as missing.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self._sessions: dict[str, ChatSession] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def save(self, session: ChatSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = replace(session)
            self._expires_at.pop(session.session_id, None)

    def load(self, session_id: str) -> ChatSession:
        with self._lock:
            s = self._live(session_id)
            if s is None:
                raise NotFoundError(f"Unknown session_id={session_id!r}")
            return replace(s)

    def expire(self, session_id: str, ttl_s: float) -> None:
        with self._lock:
            if self._live(session_id) is None:
                raise NotFoundError(f"Unknown session_id={session_id!r}")
            self._expires_at[session_id] = self.clock.monotonic() + float(ttl_s)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._expires_at.pop(session_id, None)

    def load_active(self) -> list[ChatSession]:
        with self._lock:
            return [
                replace(s)
                for sid, s in self._sessions.items()
                if s.status == SessionStatus.ACTIVE and self._live(sid) is not None
            ]

    def _live(self, session_id: str) -> ChatSession | None:
        s = self._sessions.get(session_id)
        if s is None:
            return None
        exp = self._expires_at.get(session_id)
        if exp is not None and self.clock.monotonic() >= exp:
            return None
        return s
