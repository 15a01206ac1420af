from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True)
class RunContext:
    run_id: str
    seed: int
    start_dt_utc: datetime


class Clock(Protocol):
    """
    Time source for the engine.
    monotonic() orders arrivals and drives expiry; now_utc() stamps records.
    """

    def monotonic(self) -> float: ...
    def now_utc(self) -> datetime: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def now_utc(self) -> datetime:
        return datetime.now(UTC)
