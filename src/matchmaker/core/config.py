from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

SESSION_INTEREST_MODES = ("intersection", "union")


@dataclass(frozen=True)
class RunConfig:
    run_id: str = "auto"
    seed: int = 0


@dataclass(frozen=True)
class MatchmakingConfig:
    min_score: float = 0.3
    session_interests: str = "intersection"  # "intersection" | "union"
    stale_after_s: float = 300.0
    retain_expired_s: float = 600.0
    wait_estimate_per_position_s: float = 30.0
    max_interests: int = 32
    max_interest_length: int = 64


@dataclass(frozen=True)
class FlushConfig:
    every_n_events: int = 5000
    or_every_seconds: float = 30.0


@dataclass(frozen=True)
class StorageConfig:
    duckdb_path: str
    clean_slate: bool = False
    session_ttl_s: float = 86400.0
    flush: FlushConfig = FlushConfig()


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class SimulationConfig:
    start_date: str = "2026-01-01"
    duration_s: float = 3600.0
    arrivals_per_minute: float = 6.0
    mean_chat_s: float = 240.0
    patience_s: float = 180.0
    sweep_every_s: float = 60.0
    interest_pool: tuple[str, ...] = (
        "gaming",
        "music",
        "movies",
        "cooking",
        "travel",
        "sports",
        "art",
        "books",
    )
    interests_per_participant: int = 2


@dataclass(frozen=True)
class AppConfig:
    run: RunConfig
    matchmaking: MatchmakingConfig
    storage: StorageConfig
    logging: LoggingConfig
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    raw: dict[str, Any] = field(default_factory=dict)  # original parsed YAML (for hashing / debugging)


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def parse_matchmaking(data: dict[str, Any] | None) -> MatchmakingConfig:
    mm = data or {}
    cfg = MatchmakingConfig(
        min_score=float(mm.get("min_score", 0.3)),
        session_interests=str(mm.get("session_interests", "intersection")).strip().lower(),
        stale_after_s=float(mm.get("stale_after_s", 300.0)),
        retain_expired_s=float(mm.get("retain_expired_s", 600.0)),
        wait_estimate_per_position_s=float(mm.get("wait_estimate_per_position_s", 30.0)),
        max_interests=int(mm.get("max_interests", 32)),
        max_interest_length=int(mm.get("max_interest_length", 64)),
    )

    if not 0.0 <= cfg.min_score < 1.0:
        raise ValueError(f"matchmaking.min_score must be within [0, 1), got {cfg.min_score}")
    if cfg.session_interests not in SESSION_INTEREST_MODES:
        raise ValueError(
            f"Unsupported matchmaking.session_interests={cfg.session_interests!r}. "
            f"Allowed={list(SESSION_INTEREST_MODES)}"
        )
    if cfg.stale_after_s <= 0:
        raise ValueError("matchmaking.stale_after_s must be > 0")
    if cfg.retain_expired_s < 0:
        raise ValueError("matchmaking.retain_expired_s must be >= 0")
    if cfg.max_interests <= 0 or cfg.max_interest_length <= 0:
        raise ValueError("matchmaking.max_interests and max_interest_length must be > 0")
    return cfg


def parse_simulation(data: dict[str, Any] | None) -> SimulationConfig:
    sim = data or {}
    defaults = SimulationConfig()
    pool = sim.get("interest_pool")
    return SimulationConfig(
        start_date=str(sim.get("start_date", defaults.start_date)),
        duration_s=float(sim.get("duration_s", defaults.duration_s)),
        arrivals_per_minute=float(sim.get("arrivals_per_minute", defaults.arrivals_per_minute)),
        mean_chat_s=float(sim.get("mean_chat_s", defaults.mean_chat_s)),
        patience_s=float(sim.get("patience_s", defaults.patience_s)),
        sweep_every_s=float(sim.get("sweep_every_s", defaults.sweep_every_s)),
        interest_pool=tuple(str(x) for x in pool) if pool else defaults.interest_pool,
        interests_per_participant=int(
            sim.get("interests_per_participant", defaults.interests_per_participant)
        ),
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    for key in ["run", "storage", "logging"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    run = data.get("run") or {}
    storage = data.get("storage") or {}
    flush = storage.get("flush") or {}
    logging_cfg = data.get("logging") or {}

    run_cfg = RunConfig(
        run_id=str(run.get("run_id", "auto")),
        seed=int(run.get("seed", 0)),
    )

    storage_cfg = StorageConfig(
        duckdb_path=str(storage["duckdb_path"]),
        clean_slate=bool(storage.get("clean_slate", False)),
        session_ttl_s=float(storage.get("session_ttl_s", 86400.0)),
        flush=FlushConfig(
            every_n_events=int(flush.get("every_n_events", 5000)),
            or_every_seconds=float(flush.get("or_every_seconds", 30.0)),
        ),
    )

    log_cfg = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())

    return AppConfig(
        run=run_cfg,
        matchmaking=parse_matchmaking(data.get("matchmaking")),
        storage=storage_cfg,
        logging=log_cfg,
        simulation=parse_simulation(data.get("simulation")),
        raw=data,
    )


def load_config(path: str | Path) -> AppConfig:
    data = load_yaml(path)
    return parse_config(data)
