from __future__ import annotations

from matchmaker.core.errors import NotFoundError, check
from matchmaker.features.registry.service import ParticipantRegistry
from matchmaker.features.registry.types import ParticipantState


class WaitPool:
    """
    Waiting participant ids in arrival order. Holds ids only; the registry owns
    the records and its lock guards this pool too.
    """

    def __init__(self, registry: ParticipantRegistry) -> None:
        self.registry = registry
        self._ids: dict[str, None] = {}  # insertion-ordered set
        self._version = 0

    @property
    def lock(self):
        return self.registry.lock

    @property
    def version(self) -> int:
        """Bumped on every enqueue; lets callers detect arrivals since a snapshot."""
        with self.lock:
            return self._version

    def enqueue(self, participant_id: str) -> None:
        with self.lock:
            state = self.registry.state_of(participant_id)
            if state is None:
                raise NotFoundError(f"Unknown participant_id={participant_id!r}")
            if participant_id in self._ids:
                return
            check(
                state == ParticipantState.WAITING,
                f"cannot enqueue {participant_id!r} in state {state.value}",
            )
            self._ids[participant_id] = None
            self._version += 1

    def remove(self, participant_id: str) -> None:
        with self.lock:
            self._ids.pop(participant_id, None)

    def position_of(self, participant_id: str) -> int:
        """1-based position in arrival order."""
        with self.lock:
            for i, pid in enumerate(self._ids, start=1):
                if pid == participant_id:
                    return i
        raise NotFoundError(f"participant_id={participant_id!r} is not waiting")

    def candidates(self, excluding: str | None = None) -> list[str]:
        """
        Waiting ids in arrival order, minus `excluding`. Ids the registry no
        longer reports as WAITING are skipped.
        """
        with self.lock:
            return [
                pid
                for pid in self._ids
                if pid != excluding and self.registry.state_of(pid) == ParticipantState.WAITING
            ]

    def ids(self) -> list[str]:
        with self.lock:
            return list(self._ids)

    def __len__(self) -> int:
        with self.lock:
            return len(self._ids)

    def __contains__(self, participant_id: object) -> bool:
        with self.lock:
            return participant_id in self._ids
