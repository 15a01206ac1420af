from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import simpy

from matchmaker.core.config import SimulationConfig
from matchmaker.core.ids import IdsService
from matchmaker.core.rng import RNG
from matchmaker.features.engine.service import Matchmaker
from matchmaker.features.engine.types import Matched, Waiting, WaitingStatus


class SimClock:
    """Engine clock bound to a SimPy environment."""

    def __init__(self, env: simpy.Environment, start_dt_utc: datetime) -> None:
        self.env = env
        self.start_dt_utc = _ensure_utc(start_dt_utc)

    def monotonic(self) -> float:
        return float(self.env.now)

    def now_utc(self) -> datetime:
        return self.start_dt_utc + timedelta(seconds=float(self.env.now))


@dataclass
class SimulationSummary:
    arrivals: int = 0
    matched_sessions: int = 0
    withdrawals: int = 0
    expired: int = 0
    sessions_ended: int = 0
    still_waiting: int = 0


class MatchmakingSimulation:
    """
    Drives a Matchmaker with synthetic traffic on simulated time.

    - Poisson arrivals, each with a random subset of the interest pool.
    - Matched pairs chat for an exponential duration, then the session ends.
    - Waiters that are still unmatched after `patience_s` withdraw.
    - Stale waiters are swept every `sweep_every_s`.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        engine: Matchmaker,
        cfg: SimulationConfig,
        rng: RNG,
        ids: IdsService,
    ) -> None:
        if cfg.arrivals_per_minute <= 0:
            raise ValueError("simulation.arrivals_per_minute must be > 0")
        if cfg.mean_chat_s <= 0:
            raise ValueError("simulation.mean_chat_s must be > 0")
        if not 0 < cfg.interests_per_participant <= len(cfg.interest_pool):
            raise ValueError(
                "simulation.interests_per_participant must be between 1 and the interest pool size"
            )

        self.env = env
        self.engine = engine
        self.cfg = cfg
        self.rng = rng
        self.ids = ids
        self.summary = SimulationSummary()
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.env.process(self._arrivals_proc())
        if self.cfg.sweep_every_s > 0:
            self.env.process(self._sweep_proc())

    def run(self) -> SimulationSummary:
        self.start()
        self.env.run(until=self.cfg.duration_s)
        self.summary.still_waiting = len(self.engine.pool)
        return self.summary

    def _arrivals_proc(self):
        rate_per_s = self.cfg.arrivals_per_minute / 60.0
        pool = list(self.cfg.interest_pool)
        while True:
            yield self.env.timeout(self.rng.expovariate(rate_per_s))

            pid = self.ids.next_id("anon")
            interests = self.rng.sample(pool, self.cfg.interests_per_participant)
            result = self.engine.submit(pid, interests)
            self.summary.arrivals += 1

            if isinstance(result, Matched):
                self.summary.matched_sessions += 1
                self.env.process(self._chat_proc(result.session_id))
            elif isinstance(result, Waiting) and self.cfg.patience_s > 0:
                self.env.process(self._patience_proc(pid))

    def _chat_proc(self, session_id: str):
        yield self.env.timeout(self.rng.expovariate(1.0 / self.cfg.mean_chat_s))
        self.engine.end_session(session_id)
        self.summary.sessions_ended += 1

    def _patience_proc(self, participant_id: str):
        yield self.env.timeout(self.cfg.patience_s)
        if isinstance(self.engine.status(participant_id), WaitingStatus):
            if self.engine.withdraw(participant_id):
                self.summary.withdrawals += 1

    def _sweep_proc(self):
        while True:
            yield self.env.timeout(self.cfg.sweep_every_s)
            self.summary.expired += len(self.engine.expire_stale())


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
