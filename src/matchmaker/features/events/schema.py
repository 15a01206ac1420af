from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

ALLOWED_EVENT_TYPES: set[str] = {
    # Matchmaking lifecycle
    "participant_registered",
    "participant_enqueued",
    "candidate_rejected",
    "commit_conflict",
    "match_committed",
    "participant_withdrawn",
    "session_ended",
    # Housekeeping
    "expiry_run",
    "participant_expired",
    "store_write_failed",
    # Simulation driver
    "simulation_started",
    "simulation_finished",
}

# Events that only make sense for a known participant
PARTICIPANT_SCOPED_EVENT_TYPES: set[str] = {
    "participant_registered",
    "participant_enqueued",
    "candidate_rejected",
    "commit_conflict",
    "match_committed",
    "participant_withdrawn",
    "participant_expired",
}

# Events that refer to a committed chat session
SESSION_SCOPED_EVENT_TYPES: set[str] = {
    "match_committed",
    "session_ended",
    "store_write_failed",
}


@dataclass(frozen=True, slots=True)
class Event:
    run_id: str
    event_id: str
    ts_utc: datetime
    clock_s: float

    event_type: str

    participant_id: str | None = None
    partner_id: str | None = None
    session_id: str | None = None

    # score for match/rejection events, count for expiry runs
    value_num: float | None = None
    payload_json: str | None = None

    def as_row(self) -> dict[str, Any]:
        """
        Canonical DuckDB row representation matching the events table columns.
        """
        return {
            "run_id": self.run_id,
            "event_id": self.event_id,
            "ts_utc": self.ts_utc,
            "clock_s": float(self.clock_s),
            "event_type": self.event_type,
            "participant_id": self.participant_id,
            "partner_id": self.partner_id,
            "session_id": self.session_id,
            "value_num": self.value_num,
            "payload_json": self.payload_json,
        }


def json_dumps(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    # Stable JSON for deterministic outputs/diffs
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
