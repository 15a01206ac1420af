from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ParticipantState(str, Enum):
    WAITING = "waiting"
    MATCHED = "matched"
    EXPIRED = "expired"


@dataclass(slots=True)
class Participant:
    """
    One anonymous user seeking or engaged in a chat.

    matched_with is symmetric across the pair and only set while MATCHED
    (it is kept after the chat ends so the last partner stays visible).
    """

    participant_id: str
    interests: frozenset[str]
    arrival_time: float
    state: ParticipantState = ParticipantState.WAITING
    matched_with: str | None = None
    # unique per registration; a re-registered id gets a new one
    generation: int = 0
    # clock.monotonic() when the record became EXPIRED
    expired_at: float | None = None
