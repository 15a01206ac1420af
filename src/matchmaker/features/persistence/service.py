from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from typing import Any

from matchmaker.core.logging import get_logger

from .duckdb_adapter import DuckDBAdapter
from .schema import EVENTS_COLUMNS


class PersistenceService:
    """
    Buffered event sink + flush policy.
    - Hot: buffer in memory
    - Cold: DuckDB
    Flushes when the buffer reaches `every_n_events`, when `or_every_seconds`
    have passed since the last flush (checked on append, or driven by a SimPy
    timer), and on close.
    """

    def __init__(
        self,
        *,
        adapter: DuckDBAdapter,
        every_n_events: int,
        or_every_seconds: float,
    ) -> None:
        self.adapter = adapter
        self.every_n_events = int(every_n_events)
        self.or_every_seconds = float(or_every_seconds)

        self._buf: list[dict[str, Any]] = []
        self._buf_lock = threading.Lock()
        self._logger = get_logger(__name__)

        self._is_open = False
        self._periodic_proc_started = False
        self._last_flush = time.monotonic()

    def open(self) -> None:
        if self._is_open:
            return
        self.adapter.open()
        self._is_open = True
        self._last_flush = time.monotonic()

    def append(self, row: dict[str, Any]) -> None:
        if not self._is_open:
            raise RuntimeError("PersistenceService not open. Call open() during bootstrap.")

        with self._buf_lock:
            self._buf.append(row)
            n = len(self._buf)

        if self.every_n_events > 0 and n >= self.every_n_events:
            self.flush(reason="count")
        elif (
            not self._periodic_proc_started
            and time.monotonic() - self._last_flush >= self.or_every_seconds
        ):
            self.flush(reason="timer")

    def flush(self, *, reason: str) -> None:
        with self._buf_lock:
            if not self._buf:
                return
            pending = self._buf
            self._buf = []

        rows = [self._row_to_tuple(r) for r in pending]
        result = self.adapter.write_events(rows)
        self._last_flush = time.monotonic()

        # Structured log (duration is fine, no payloads)
        self._logger.info(
            "flush",
            extra={
                "feature": "persistence",
                "reason": reason,
                "num_events": result.num_events,
                "duration_ms": result.duration_ms,
            },
        )

    def pending(self) -> int:
        with self._buf_lock:
            return len(self._buf)

    def close(self) -> None:
        if not self._is_open:
            return
        # final flush
        self.flush(reason="shutdown")
        self.adapter.close()
        self._is_open = False

    def start_periodic_flush(self, env) -> None:
        """
        Start a SimPy process that flushes every `or_every_seconds` of simulated
        time. Call once after the environment is created.
        """
        if self._periodic_proc_started:
            return
        self._periodic_proc_started = True
        env.process(self._periodic_flush_proc(env))

    def _periodic_flush_proc(self, env):
        while True:
            yield env.timeout(self.or_every_seconds)
            self.flush(reason="timer")

    @staticmethod
    def _row_to_tuple(row: dict[str, Any]) -> tuple:
        out = []
        for col in EVENTS_COLUMNS:
            v = row.get(col)
            if col == "ts_utc" and isinstance(v, datetime) and v.tzinfo is not None:
                # events.ts_utc is a naive TIMESTAMP holding UTC
                v = v.astimezone(UTC).replace(tzinfo=None)
            out.append(v)
        return tuple(out)
