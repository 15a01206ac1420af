from __future__ import annotations

EVENTS_TABLE_NAME = "events"
SESSIONS_TABLE_NAME = "chat_sessions"

EVENTS_COLUMNS = (
    "run_id",
    "event_id",
    "ts_utc",
    "clock_s",
    "event_type",
    "participant_id",
    "partner_id",
    "session_id",
    "value_num",
    "payload_json",
)

EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE_NAME} (
    run_id TEXT NOT NULL,
    event_id TEXT NOT NULL,

    ts_utc TIMESTAMP NOT NULL,
    clock_s DOUBLE NOT NULL,

    event_type TEXT NOT NULL,

    participant_id TEXT,
    partner_id TEXT,
    session_id TEXT,

    value_num DOUBLE,
    payload_json TEXT
);
"""

# Timestamps are ISO-8601 UTC strings; expires_at is epoch seconds so TTL checks
# are plain numeric comparisons.
SESSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE_NAME} (
    session_id TEXT PRIMARY KEY,
    participant_a TEXT NOT NULL,
    participant_b TEXT NOT NULL,
    interests_json TEXT NOT NULL,
    started_at TEXT NOT NULL,
    status TEXT NOT NULL,
    score DOUBLE NOT NULL,
    ended_at TEXT,
    duration_s DOUBLE,
    icebreaker TEXT,
    expires_at DOUBLE
);
"""

# Optional but helpful for query speed
EVENTS_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_events_run_id ON {EVENTS_TABLE_NAME}(run_id);",
    f"CREATE INDEX IF NOT EXISTS idx_events_event_type ON {EVENTS_TABLE_NAME}(event_type);",
]


def create_schema(conn) -> None:
    """
    Create tables/indexes. No migrations. Safe to call on every open.
    """
    conn.execute(EVENTS_DDL)
    conn.execute(SESSIONS_DDL)
    for ddl in EVENTS_INDEXES:
        conn.execute(ddl)
