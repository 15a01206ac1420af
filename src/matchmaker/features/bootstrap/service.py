from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import simpy

from matchmaker.core.config import AppConfig
from matchmaker.core.ids import IdsService, deterministic_run_id_from_config
from matchmaker.core.logging import get_logger
from matchmaker.core.rng import RNG
from matchmaker.core.types import RunContext
from matchmaker.features.engine.service import Matchmaker
from matchmaker.features.events.service import CounterEventIdGenerator, EventService
from matchmaker.features.icebreakers.service import IcebreakerService
from matchmaker.features.persistence.duckdb_adapter import DuckDBAdapter
from matchmaker.features.persistence.service import PersistenceService
from matchmaker.features.persistence.session_store import DuckDBSessionStore
from matchmaker.features.simulation.service import (
    MatchmakingSimulation,
    SimClock,
    SimulationSummary,
)


@dataclass(frozen=True)
class BootstrapResult:
    ctx: RunContext
    duckdb_path: str
    summary: SimulationSummary


def bootstrap_run(cfg: AppConfig, config_path: str | None = None) -> BootstrapResult:
    raw: dict[str, Any] = cfg.raw if isinstance(cfg.raw, dict) else {}

    # ----- run identity -----
    run_id = deterministic_run_id_from_config(raw) if cfg.run.run_id == "auto" else cfg.run.run_id
    logger = get_logger("matchmaker", cfg.logging.level)

    rng = RNG(cfg.run.seed)
    ids = IdsService(run_id=run_id)

    start_dt_utc = datetime.fromisoformat(cfg.simulation.start_date).replace(tzinfo=UTC)
    ctx = RunContext(run_id=run_id, seed=cfg.run.seed, start_dt_utc=start_dt_utc)

    env = simpy.Environment()
    clock = SimClock(env, start_dt_utc)

    # ----- cold storage -----
    adapter = DuckDBAdapter(path=cfg.storage.duckdb_path, clean_slate=cfg.storage.clean_slate)
    persistence = PersistenceService(
        adapter=adapter,
        every_n_events=cfg.storage.flush.every_n_events,
        or_every_seconds=cfg.storage.flush.or_every_seconds,
    )
    persistence.open()
    persistence.start_periodic_flush(env)

    try:
        events = EventService(
            persistence=persistence,
            ids=CounterEventIdGenerator(run_id=run_id),
            run_id=run_id,
            clock=clock,
            logger=logger,
        )

        # ----- matchmaking core -----
        engine = Matchmaker(
            cfg=cfg.matchmaking,
            store=DuckDBSessionStore(adapter, clock=clock),
            events=events,
            icebreakers=IcebreakerService(),
            clock=clock,
            session_ttl_s=cfg.storage.session_ttl_s,
        )

        sim = MatchmakingSimulation(
            env=env,
            engine=engine,
            cfg=cfg.simulation,
            rng=rng,
            ids=ids,
        )

        events.emit(
            event_type="simulation_started",
            payload={
                "config_path": config_path,
                "seed": cfg.run.seed,
                "min_score": cfg.matchmaking.min_score,
                "duration_s": cfg.simulation.duration_s,
            },
        )
        logger.info("simulation_started", extra={"run_id": run_id, "feature": "bootstrap"})

        summary = sim.run()

        events.emit(event_type="simulation_finished", payload=asdict(summary))
        logger.info(
            "simulation_finished",
            extra={"run_id": run_id, "feature": "bootstrap", "reason": asdict(summary)},
        )
    finally:
        persistence.close()

    return BootstrapResult(ctx=ctx, duckdb_path=cfg.storage.duckdb_path, summary=summary)
