from __future__ import annotations

from matchmaker.core.config import load_config
from matchmaker.features.bootstrap.service import BootstrapResult, bootstrap_run
from matchmaker.features.persistence.duckdb_adapter import DuckDBAdapter
from matchmaker.features.persistence.session_store import DuckDBSessionStore
from matchmaker.features.sessions.types import ChatSession, SessionStatus


def run(config_path: str) -> BootstrapResult:
    cfg = load_config(config_path)
    return bootstrap_run(cfg, config_path=config_path)


def list_sessions(db_path: str, status: str | None = None) -> list[ChatSession]:
    adapter = DuckDBAdapter(path=db_path, clean_slate=False)
    adapter.open()
    try:
        store = DuckDBSessionStore(adapter)
        return store.list_sessions(SessionStatus(status) if status else None)
    finally:
        adapter.close()
