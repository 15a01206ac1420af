from __future__ import annotations

import itertools
import threading
from collections.abc import Iterable, Mapping
from dataclasses import replace

from matchmaker.core.errors import ConflictError, InvalidInputError, NotFoundError, check
from matchmaker.core.types import Clock, SystemClock
from matchmaker.features.scoring.service import InterestRules, normalize_interests

from .types import Participant, ParticipantState

MAX_PARTICIPANT_ID_LENGTH = 256


class ParticipantRegistry:
    """
    Single source of truth for participant existence and state.

    - `lock` is re-entrant and guards this registry together with the WaitPool
      bound to it. Every mutating method takes it, so callers that need several
      steps to appear as one (select + commit) hold it around the whole sequence.
    - Records handed out by get() are copies; state only changes through the
      methods below.
    """

    def __init__(self, *, clock: Clock | None = None, rules: InterestRules | None = None) -> None:
        self.clock = clock or SystemClock()
        self.rules = rules or InterestRules()
        self.lock = threading.RLock()
        self._participants: dict[str, Participant] = {}
        self._generations = itertools.count(1)

    # ----------------------------
    # Public API
    # ----------------------------
    def register(self, participant_id: str, interests: Iterable[str]) -> Participant:
        """
        Registers (or re-registers an EXPIRED) participant as WAITING.

        Raises InvalidInputError for a malformed id or empty normalized interests,
        ConflictError when the id is already live (WAITING or MATCHED).
        """
        _validate_participant_id(participant_id)
        normalized = normalize_interests(interests, self.rules)
        if not normalized:
            raise InvalidInputError(f"participant {participant_id!r} has no interests")

        with self.lock:
            existing = self._participants.get(participant_id)
            if existing is not None and existing.state != ParticipantState.EXPIRED:
                raise ConflictError(
                    f"participant {participant_id!r} is already registered ({existing.state.value})"
                )

            p = Participant(
                participant_id=participant_id,
                interests=normalized,
                arrival_time=self.clock.monotonic(),
                generation=next(self._generations),
            )
            self._participants[participant_id] = p
            return replace(p)

    def get(self, participant_id: str) -> Participant:
        with self.lock:
            return replace(self._require(participant_id))

    def state_of(self, participant_id: str) -> ParticipantState | None:
        """State of a participant, or None if the id was never registered."""
        with self.lock:
            p = self._participants.get(participant_id)
            return p.state if p is not None else None

    def is_waiting(self, participant_id: str, generation: int) -> bool:
        """True while this exact registration is still WAITING."""
        with self.lock:
            p = self._participants.get(participant_id)
            return (
                p is not None
                and p.generation == generation
                and p.state == ParticipantState.WAITING
            )

    def mark_matched(
        self,
        id_a: str,
        id_b: str,
        *,
        generations: Mapping[str, int] | None = None,
    ) -> None:
        """
        Compare-and-commit: re-verifies under the lock that both sides are
        WAITING, then transitions both to MATCHED together.

        `generations` pins the registrations the caller scored; an id that was
        withdrawn and registered again since then is a conflict.
        """
        if id_a == id_b:
            raise ConflictError(f"participant {id_a!r} cannot be matched with itself")

        with self.lock:
            a = self._participants.get(id_a)
            b = self._participants.get(id_b)
            if a is None or b is None:
                missing = id_a if a is None else id_b
                raise ConflictError(f"participant {missing!r} is not registered")
            for p in (a, b):
                if p.state != ParticipantState.WAITING:
                    raise ConflictError(
                        f"participant {p.participant_id!r} is {p.state.value}, not waiting"
                    )
                expected = (generations or {}).get(p.participant_id)
                if expected is not None and p.generation != expected:
                    raise ConflictError(
                        f"participant {p.participant_id!r} registered again since it was scored"
                    )

            a.state = ParticipantState.MATCHED
            a.matched_with = id_b
            b.state = ParticipantState.MATCHED
            b.matched_with = id_a

    def mark_ended(self, participant_id: str) -> None:
        """MATCHED -> EXPIRED for this participant only; no-op if already EXPIRED."""
        with self.lock:
            p = self._require(participant_id)
            if p.state == ParticipantState.EXPIRED:
                return
            if p.state != ParticipantState.MATCHED:
                raise ConflictError(f"participant {participant_id!r} is not in a chat")
            p.state = ParticipantState.EXPIRED
            p.expired_at = self.clock.monotonic()

    def withdraw(self, participant_id: str) -> bool:
        """
        WAITING -> EXPIRED. Returns False (and changes nothing) for a participant
        that is not waiting, so repeated calls are harmless.
        """
        with self.lock:
            p = self._require(participant_id)
            if p.state != ParticipantState.WAITING:
                return False
            p.state = ParticipantState.EXPIRED
            p.expired_at = self.clock.monotonic()
            return True

    def expire_stale(self, older_than_s: float) -> list[str]:
        """
        WAITING participants that arrived more than `older_than_s` seconds ago
        become EXPIRED. Returned ids must be evicted from the WaitPool.
        """
        if older_than_s < 0:
            raise ValueError("older_than_s must be >= 0")

        with self.lock:
            now = self.clock.monotonic()
            expired: list[str] = []
            for p in self._participants.values():
                if p.state == ParticipantState.WAITING and now - p.arrival_time > older_than_s:
                    p.state = ParticipantState.EXPIRED
                    p.expired_at = now
                    expired.append(p.participant_id)
            return expired

    def restore_matched(
        self,
        id_a: str,
        id_b: str,
        *,
        interests_a: Iterable[str],
        interests_b: Iterable[str],
    ) -> None:
        """
        Recreates a matched pair from durable state (after a restart). Both ids
        must be unknown or EXPIRED.
        """
        if id_a == id_b:
            raise ConflictError(f"participant {id_a!r} cannot be matched with itself")

        with self.lock:
            for pid in (id_a, id_b):
                existing = self._participants.get(pid)
                if existing is not None and existing.state != ParticipantState.EXPIRED:
                    raise ConflictError(f"participant {pid!r} is already live")

            now = self.clock.monotonic()
            self._participants[id_a] = Participant(
                participant_id=id_a,
                interests=frozenset(interests_a),
                arrival_time=now,
                state=ParticipantState.MATCHED,
                matched_with=id_b,
                generation=next(self._generations),
            )
            self._participants[id_b] = Participant(
                participant_id=id_b,
                interests=frozenset(interests_b),
                arrival_time=now,
                state=ParticipantState.MATCHED,
                matched_with=id_a,
                generation=next(self._generations),
            )

    def purge_expired(self, older_than_s: float) -> list[str]:
        """
        Forgets EXPIRED records that have been terminal for more than
        `older_than_s` seconds. A purged id reads as never registered.
        """
        if older_than_s < 0:
            raise ValueError("older_than_s must be >= 0")

        with self.lock:
            now = self.clock.monotonic()
            purged = [
                pid
                for pid, p in self._participants.items()
                if p.state == ParticipantState.EXPIRED
                and p.expired_at is not None
                and now - p.expired_at > older_than_s
            ]
            for pid in purged:
                del self._participants[pid]
            return purged

    def ids_in_state(self, state: ParticipantState) -> set[str]:
        with self.lock:
            return {pid for pid, p in self._participants.items() if p.state == state}

    def snapshot(self) -> list[Participant]:
        with self.lock:
            return [replace(p) for p in self._participants.values()]

    def check_symmetry(self) -> None:
        """Raises InvariantViolation if any MATCHED pair is one-sided."""
        with self.lock:
            for p in self._participants.values():
                if p.state != ParticipantState.MATCHED:
                    continue
                check(p.matched_with is not None, f"{p.participant_id} matched without partner")
                partner = self._participants.get(p.matched_with)
                check(partner is not None, f"{p.participant_id} matched with unknown id")
                # partner may have left first (EXPIRED) but must still point back
                check(
                    partner.matched_with == p.participant_id,
                    f"{p.participant_id} <-> {partner.participant_id} is not symmetric",
                )

    def __len__(self) -> int:
        with self.lock:
            return len(self._participants)

    def __contains__(self, participant_id: object) -> bool:
        with self.lock:
            return participant_id in self._participants

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _require(self, participant_id: str) -> Participant:
        p = self._participants.get(participant_id)
        if p is None:
            raise NotFoundError(f"Unknown participant_id={participant_id!r}")
        return p


def _validate_participant_id(participant_id: object) -> None:
    if not isinstance(participant_id, str):
        raise InvalidInputError(
            f"participant_id must be a string, got {type(participant_id).__name__}"
        )
    if not participant_id.strip():
        raise InvalidInputError("participant_id must not be empty")
    if participant_id != participant_id.strip():
        raise InvalidInputError(f"participant_id {participant_id!r} has surrounding whitespace")
    if len(participant_id) > MAX_PARTICIPANT_ID_LENGTH:
        raise InvalidInputError("participant_id is too long")
