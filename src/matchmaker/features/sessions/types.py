from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


@dataclass(slots=True)
class ChatSession:
    """
    One committed pairing.

    participant_ids is sorted, so the same pair always produces the same
    record shape (and the same session_id).
    """

    session_id: str
    participant_ids: tuple[str, str]
    interests: tuple[str, ...]
    started_at: datetime
    score: float
    status: SessionStatus = SessionStatus.ACTIVE
    ended_at: datetime | None = None
    duration_s: float | None = None
    icebreaker: str | None = None

    def partner_of(self, participant_id: str) -> str:
        a, b = self.participant_ids
        if participant_id == a:
            return b
        if participant_id == b:
            return a
        raise ValueError(f"{participant_id!r} is not part of session {self.session_id}")


class SessionStore(Protocol):
    """
    Durable backend for chat sessions. Implementations raise
    StoreUnavailableError on backend failure and NotFoundError on unknown ids.
    """

    def save(self, session: ChatSession) -> None: ...
    def load(self, session_id: str) -> ChatSession: ...
    def expire(self, session_id: str, ttl_s: float) -> None: ...
    def delete(self, session_id: str) -> None: ...
    def load_active(self) -> list[ChatSession]: ...
