from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from matchmaker.core.types import Clock, SystemClock
from matchmaker.features.events.schema import (
    ALLOWED_EVENT_TYPES,
    PARTICIPANT_SCOPED_EVENT_TYPES,
    SESSION_SCOPED_EVENT_TYPES,
    Event,
    json_dumps,
)


class IdGenerator(Protocol):
    def next_event_id(self) -> str: ...


class PersistenceSink(Protocol):
    """
    Minimal surface area the events feature needs.
    PersistenceService exposes `.append(row: dict)`.
    """

    def append(self, row: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class CounterEventIdGenerator:
    """
    Deterministic, monotonic event ids scoped to a run. Safe across threads.
    """

    run_id: str
    counter: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def next_event_id(self) -> str:
        with self._lock:
            self.counter += 1
            n = self.counter
        return f"{self.run_id}_{n:08d}"


class EventService:
    def __init__(
        self,
        *,
        persistence: PersistenceSink,
        ids: IdGenerator,
        run_id: str,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._persistence = persistence
        self._ids = ids
        self._run_id = run_id
        self._clock = clock or SystemClock()
        self._logger = logger

    @property
    def run_id(self) -> str:
        return self._run_id

    def emit(
        self,
        *,
        event_type: str,
        participant_id: str | None = None,
        partner_id: str | None = None,
        session_id: str | None = None,
        value_num: float | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """
        Emits a single matchmaking event into cold storage via the persistence buffer.

        Contracts enforced:
        - event_type must be in ALLOWED_EVENT_TYPES
        - participant-scoped events require participant_id
        - session-scoped events require session_id
        """
        if event_type not in ALLOWED_EVENT_TYPES:
            raise ValueError(
                f"Unsupported event_type={event_type!r}. " f"Allowed={sorted(ALLOWED_EVENT_TYPES)}"
            )

        if event_type in PARTICIPANT_SCOPED_EVENT_TYPES and participant_id is None:
            raise ValueError(f"{event_type} requires participant_id")

        if event_type in SESSION_SCOPED_EVENT_TYPES and session_id is None:
            raise ValueError(f"{event_type} requires session_id")

        event = Event(
            run_id=self._run_id,
            event_id=self._ids.next_event_id(),
            ts_utc=self._clock.now_utc(),
            clock_s=float(self._clock.monotonic()),
            event_type=event_type,
            participant_id=participant_id,
            partner_id=partner_id,
            session_id=session_id,
            value_num=None if value_num is None else float(value_num),
            payload_json=json_dumps(payload),
        )

        self._persistence.append(event.as_row())

        if self._logger is not None:
            self._logger.debug(
                "event_emitted",
                extra={
                    "run_id": event.run_id,
                    "event_type": event.event_type,
                    "participant_id": event.participant_id,
                    "partner_id": event.partner_id,
                    "session_id": event.session_id,
                },
            )

        return event


class MemoryEventSink:
    """Keeps rows in a list. Handy in tests and for in-process inspection."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(self, row: dict[str, Any]) -> None:
        with self._lock:
            self.rows.append(row)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [r for r in self.rows if r["event_type"] == event_type]
