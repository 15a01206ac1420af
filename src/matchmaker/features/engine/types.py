from __future__ import annotations

from dataclasses import dataclass

# ----------------------------
# submit() outcomes
# ----------------------------


@dataclass(frozen=True, slots=True)
class Matched:
    session_id: str
    partner_id: str
    score: float
    # Set when the session could not be written to the store; the match stands.
    store_warning: str | None = None


@dataclass(frozen=True, slots=True)
class Waiting:
    queue_position: int
    queue_length: int
    estimated_wait_s: float


@dataclass(frozen=True, slots=True)
class Withdrawn:
    """The participant was withdrawn or expired while its submission was in flight."""

    participant_id: str


MatchResult = Matched | Waiting | Withdrawn

# ----------------------------
# status() answers
# ----------------------------


@dataclass(frozen=True, slots=True)
class WaitingStatus:
    # None while the participant's own submission is still selecting a partner
    position: int | None
    queue_length: int


@dataclass(frozen=True, slots=True)
class MatchedStatus:
    session_id: str
    partner_id: str


@dataclass(frozen=True, slots=True)
class ExpiredStatus:
    pass


@dataclass(frozen=True, slots=True)
class NotFoundStatus:
    pass


ParticipantStatus = WaitingStatus | MatchedStatus | ExpiredStatus | NotFoundStatus


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    participant_id: str
    score: float
    arrival_time: float
    pool_index: int
    generation: int = 0

    def sort_key(self) -> tuple[float, float, int]:
        # best score first, then oldest waiter, then pool order
        return (-self.score, self.arrival_time, self.pool_index)
