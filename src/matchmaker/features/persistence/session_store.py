from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import duckdb

from matchmaker.core.errors import NotFoundError, StoreUnavailableError
from matchmaker.core.types import Clock, SystemClock
from matchmaker.features.sessions.types import ChatSession, SessionStatus

from .duckdb_adapter import DuckDBAdapter
from .schema import SESSIONS_TABLE_NAME

_SELECT_COLUMNS = (
    "session_id, participant_a, participant_b, interests_json, started_at, "
    "status, score, ended_at, duration_s, icebreaker"
)


class DuckDBSessionStore:
    """
    SessionStore on the `chat_sessions` table.

    - save() upserts by session_id and clears any pending expiry.
    - expire() sets a wall-clock deadline; rows past it are invisible to
      load()/load_active() and removed by purge_expired().
    - Any DuckDB failure surfaces as StoreUnavailableError.
    """

    def __init__(self, adapter: DuckDBAdapter, *, clock: Clock | None = None) -> None:
        self.adapter = adapter
        self.clock = clock or SystemClock()

    def save(self, session: ChatSession) -> None:
        a, b = session.participant_ids
        self._run(
            f"""
            INSERT OR REPLACE INTO {SESSIONS_TABLE_NAME} (
                session_id, participant_a, participant_b, interests_json,
                started_at, status, score, ended_at, duration_s, icebreaker,
                expires_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)
            """,
            [
                session.session_id,
                a,
                b,
                json.dumps(list(session.interests), separators=(",", ":")),
                session.started_at.isoformat(),
                session.status.value,
                float(session.score),
                session.ended_at.isoformat() if session.ended_at else None,
                session.duration_s,
                session.icebreaker,
            ],
        )

    def load(self, session_id: str) -> ChatSession:
        rows = self._run(
            f"SELECT {_SELECT_COLUMNS} FROM {SESSIONS_TABLE_NAME} "
            "WHERE session_id = ? AND (expires_at IS NULL OR expires_at > ?)",
            [session_id, self._now_epoch()],
        )
        if not rows:
            raise NotFoundError(f"Unknown session_id={session_id!r}")
        return _row_to_session(rows[0])

    def expire(self, session_id: str, ttl_s: float) -> None:
        self.load(session_id)  # NotFoundError for unknown ids
        self._run(
            f"UPDATE {SESSIONS_TABLE_NAME} SET expires_at = ? WHERE session_id = ?",
            [self._now_epoch() + float(ttl_s), session_id],
        )

    def delete(self, session_id: str) -> None:
        self._run(f"DELETE FROM {SESSIONS_TABLE_NAME} WHERE session_id = ?", [session_id])

    def load_active(self) -> list[ChatSession]:
        rows = self._run(
            f"SELECT {_SELECT_COLUMNS} FROM {SESSIONS_TABLE_NAME} "
            "WHERE status = ? AND (expires_at IS NULL OR expires_at > ?) "
            "ORDER BY started_at, session_id",
            [SessionStatus.ACTIVE.value, self._now_epoch()],
        )
        return [_row_to_session(r) for r in rows]

    def list_sessions(self, status: SessionStatus | None = None) -> list[ChatSession]:
        sql = f"SELECT {_SELECT_COLUMNS} FROM {SESSIONS_TABLE_NAME}"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY started_at, session_id"
        return [_row_to_session(r) for r in self._run(sql, params)]

    def purge_expired(self) -> int:
        now = self._now_epoch()
        n = self._run(
            f"SELECT COUNT(*) FROM {SESSIONS_TABLE_NAME} WHERE expires_at IS NOT NULL AND expires_at <= ?",
            [now],
        )[0][0]
        self._run(
            f"DELETE FROM {SESSIONS_TABLE_NAME} WHERE expires_at IS NOT NULL AND expires_at <= ?",
            [now],
        )
        return int(n)

    def _now_epoch(self) -> float:
        return self.clock.now_utc().timestamp()

    def _run(self, sql: str, params: list[Any]) -> list[tuple]:
        if not self.adapter.is_open:
            raise StoreUnavailableError(f"session store at {self.adapter.path} is not open")
        try:
            return self.adapter.execute(sql, params)
        except duckdb.Error as exc:
            raise StoreUnavailableError(f"session store error: {exc}") from exc


def _row_to_session(row: tuple) -> ChatSession:
    (sid, a, b, interests_json, started_at, status, score, ended_at, duration_s, icebreaker) = row
    return ChatSession(
        session_id=sid,
        participant_ids=(a, b),
        interests=tuple(json.loads(interests_json)),
        started_at=datetime.fromisoformat(started_at),
        score=float(score),
        status=SessionStatus(status),
        ended_at=datetime.fromisoformat(ended_at) if ended_at else None,
        duration_s=None if duration_s is None else float(duration_s),
        icebreaker=icebreaker,
    )
