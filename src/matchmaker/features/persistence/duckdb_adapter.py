from __future__ import annotations

import os
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import duckdb

from .schema import EVENTS_COLUMNS, EVENTS_TABLE_NAME, create_schema

IN_MEMORY = ":memory:"


@dataclass(frozen=True)
class DuckDBWriteResult:
    num_events: int
    duration_ms: float


class DuckDBAdapter:
    """
    DuckDB persistence adapter. Owns the connection and schema.

    A DuckDB connection must not be used from several threads at once, so every
    statement runs under `lock`.
    """

    def __init__(self, path: str, *, clean_slate: bool) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self.lock = threading.RLock()
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        with self.lock:
            if self._conn is not None:
                return

            if self.path != IN_MEMORY:
                if self.clean_slate and os.path.exists(self.path):
                    os.remove(self.path)

                # Ensure parent dir exists
                parent = os.path.dirname(self.path)
                if parent:
                    os.makedirs(parent, exist_ok=True)

            self._conn = duckdb.connect(self.path)
            create_schema(self._conn)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter not opened. Call open() first.")
        return self._conn

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple]:
        with self.lock:
            return self.conn.execute(sql, params or []).fetchall()

    def write_events(self, rows: Sequence[tuple]) -> DuckDBWriteResult:
        """
        Writes a batch of rows matching the events schema.
        Returns count and duration.
        """
        if not rows:
            return DuckDBWriteResult(num_events=0, duration_ms=0.0)

        t0 = time.perf_counter()

        cols = ", ".join(EVENTS_COLUMNS)
        marks = ", ".join("?" for _ in EVENTS_COLUMNS)
        with self.lock:
            # Parameterized insert
            self.conn.executemany(
                f"INSERT INTO {EVENTS_TABLE_NAME} ({cols}) VALUES ({marks})",
                rows,
            )

        dt_ms = (time.perf_counter() - t0) * 1000.0
        return DuckDBWriteResult(num_events=len(rows), duration_ms=dt_ms)

    def count_events(self, run_id: str, event_type: str | None = None) -> int:
        """
        Convenience method for sanity checks/tests.
        """
        sql = f"SELECT COUNT(*) FROM {EVENTS_TABLE_NAME} WHERE run_id = ?"
        params: list[Any] = [run_id]
        if event_type is not None:
            sql += " AND event_type = ?"
            params.append(event_type)
        res = self.execute(sql, params)
        return int(res[0][0]) if res else 0
