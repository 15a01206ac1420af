from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from matchmaker.core.config import MatchmakingConfig
from matchmaker.core.errors import ConflictError, InvalidInputError, NotFoundError, StoreUnavailableError
from matchmaker.features.engine.service import Matchmaker
from matchmaker.features.engine.types import (
    ExpiredStatus,
    Matched,
    MatchedStatus,
    NotFoundStatus,
    Waiting,
    WaitingStatus,
)
from matchmaker.features.events.service import (
    CounterEventIdGenerator,
    EventService,
    MemoryEventSink,
)
from matchmaker.features.registry.types import ParticipantState
from matchmaker.features.sessions.service import InMemorySessionStore
from matchmaker.features.sessions.types import SessionStatus

T0 = datetime(2026, 1, 1, tzinfo=UTC)


class ManualClock:
    def __init__(self) -> None:
        self.t = 0.0

    def advance(self, seconds: float) -> None:
        self.t += seconds

    def monotonic(self) -> float:
        return self.t

    def now_utc(self) -> datetime:
        return T0 + timedelta(seconds=self.t)


class FlakyStore(InMemorySessionStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail = True

    def save(self, session) -> None:
        if self.fail:
            raise StoreUnavailableError("store is down")
        super().save(session)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


def make_engine(clock, store=None, sink=None, **cfg_overrides) -> Matchmaker:
    cfg = MatchmakingConfig(**{"min_score": 0.3, **cfg_overrides})
    events = None
    if sink is not None:
        events = EventService(
            persistence=sink,
            ids=CounterEventIdGenerator(run_id="t"),
            run_id="t",
            clock=clock,
        )
    return Matchmaker(cfg=cfg, store=store, events=events, clock=clock, session_ttl_s=60.0)


@pytest.fixture
def engine(clock, store, sink):
    return make_engine(clock, store=store, sink=sink)


def test_two_compatible_participants_match(engine, clock, store):
    r1 = engine.submit("p1", ["gaming", "music"])
    assert r1 == Waiting(queue_position=1, queue_length=1, estimated_wait_s=30.0)

    clock.advance(1)
    r2 = engine.submit("p2", ["gaming", "movies"])
    assert isinstance(r2, Matched)
    assert r2.partner_id == "p1"
    assert r2.score == pytest.approx(1 / 3)
    assert r2.store_warning is None

    # both sides see the same session
    s1 = engine.status("p1")
    s2 = engine.status("p2")
    assert s1 == MatchedStatus(session_id=r2.session_id, partner_id="p2")
    assert s2 == MatchedStatus(session_id=r2.session_id, partner_id="p1")

    assert len(engine.pool) == 0
    engine.check_invariants()

    saved = store.load(r2.session_id)
    assert saved.participant_ids == ("p1", "p2")
    assert saved.interests == ("gaming",)
    assert saved.status == SessionStatus.ACTIVE
    assert saved.icebreaker


def test_lonely_participant_waits(engine):
    r = engine.submit("p3", ["cooking"])
    assert isinstance(r, Waiting)
    assert r.queue_position == 1
    assert engine.status("p3") == WaitingStatus(position=1, queue_length=1)


def test_below_threshold_enqueues(engine, sink):
    engine.submit("a", ["gaming", "music", "art"])
    r = engine.submit("b", ["gaming", "movies", "books"])  # 1/5 = 0.2
    assert isinstance(r, Waiting)
    assert r.queue_position == 2
    rejected = sink.of_type("candidate_rejected")
    assert rejected[0]["partner_id"] == "a"
    assert rejected[0]["payload_json"] == '{"reason":"below_threshold"}'


def test_threshold_is_configurable(clock):
    engine = make_engine(clock, min_score=0.1)
    engine.submit("a", ["gaming", "music", "art"])
    assert isinstance(engine.submit("b", ["gaming", "movies", "books"]), Matched)


def test_best_score_wins_over_arrival_order(engine, clock):
    engine.submit("early", ["a", "b", "c"])
    clock.advance(1)
    engine.submit("late", ["a", "b"])
    clock.advance(1)

    r = engine.submit("me", ["a", "b"])
    assert isinstance(r, Matched)
    assert r.partner_id == "late"
    assert r.score == 1.0


def test_tie_goes_to_earliest_arrival(engine, clock):
    engine.submit("second", ["x", "y"])
    clock.advance(5)
    engine.submit("third", ["x", "z"])

    # both score 1/3 against "me"
    r = engine.submit("me", ["x", "q"])
    assert isinstance(r, Matched)
    assert r.partner_id == "second"


def test_equal_scores_and_arrival_fall_back_to_pool_order(engine):
    engine.submit("first", ["x", "y"])
    engine.submit("second", ["x", "z"])  # same clock instant
    r = engine.submit("me", ["x", "q"])
    assert isinstance(r, Matched)
    assert r.partner_id == "first"


def test_invalid_input_is_rejected_without_side_effects(engine):
    with pytest.raises(InvalidInputError):
        engine.submit("p", [])
    with pytest.raises(InvalidInputError):
        engine.submit("", ["x"])
    assert engine.status("p") == NotFoundStatus()
    assert len(engine.pool) == 0


def test_duplicate_live_submission_conflicts(engine):
    engine.submit("p", ["x"])
    with pytest.raises(ConflictError):
        engine.submit("p", ["x"])
    assert engine.pool.ids() == ["p"]


def test_withdraw_is_idempotent_and_removes_from_pool(engine, clock, sink):
    engine.submit("p7", ["gaming"])
    clock.advance(0.2)

    assert engine.withdraw("p7") is True
    assert engine.withdraw("p7") is False
    assert engine.status("p7") == ExpiredStatus()
    assert len(sink.of_type("participant_withdrawn")) == 1

    # later submissions never see p7
    r = engine.submit("p8", ["gaming"])
    assert isinstance(r, Waiting)
    assert engine.pool.ids() == ["p8"]
    engine.check_invariants()


def test_withdraw_unknown_raises(engine):
    with pytest.raises(NotFoundError):
        engine.withdraw("ghost")


def test_withdraw_matched_is_noop(engine):
    engine.submit("a", ["x"])
    engine.submit("b", ["x"])
    assert engine.withdraw("a") is False
    assert engine.registry.state_of("a") == ParticipantState.MATCHED


def test_end_session_releases_both_to_terminal_state(engine, clock, store):
    engine.submit("a", ["x"])
    r = engine.submit("b", ["x"])
    clock.advance(120)

    ended = engine.end_session(r.session_id)
    assert ended.status == SessionStatus.ENDED
    assert ended.duration_s == 120.0
    assert engine.status("a") == ExpiredStatus()
    assert engine.status("b") == ExpiredStatus()

    # idempotent
    again = engine.end_session(r.session_id)
    assert again.ended_at == ended.ended_at

    # store copy ended, with TTL applied
    assert store.load(r.session_id).status == SessionStatus.ENDED
    clock.advance(61)
    with pytest.raises(NotFoundError):
        store.load(r.session_id)

    # ended participants may come back
    assert isinstance(engine.submit("a", ["x"]), Waiting)
    engine.check_invariants()


def test_end_session_unknown_raises(engine):
    with pytest.raises(NotFoundError):
        engine.end_session("chat_nope")


def test_pair_can_rematch_after_ending(engine):
    engine.submit("a", ["x"])
    first = engine.submit("b", ["x"])
    engine.end_session(first.session_id)

    engine.submit("a", ["x"])
    second = engine.submit("b", ["x"])
    assert isinstance(second, Matched)
    assert second.session_id == first.session_id
    assert engine.get_session(second.session_id).status == SessionStatus.ACTIVE


def test_disconnect(engine):
    engine.submit("w", ["solo"])
    assert engine.disconnect("w") is None
    assert engine.status("w") == ExpiredStatus()

    engine.submit("a", ["x"])
    r = engine.submit("b", ["x"])
    ended = engine.disconnect("a")
    assert ended is not None and ended.session_id == r.session_id
    assert engine.status("b") == ExpiredStatus()

    with pytest.raises(NotFoundError):
        engine.disconnect("ghost")


def test_expire_stale_evicts_old_waiters(engine, clock, sink):
    engine.submit("old", ["x1"])
    clock.advance(400)
    engine.submit("fresh", ["x2"])

    expired = engine.expire_stale()  # default 300s
    assert expired == ["old"]
    assert engine.pool.ids() == ["fresh"]
    assert engine.status("old") == ExpiredStatus()
    assert sink.of_type("expiry_run")[0]["value_num"] == 1.0
    engine.check_invariants()

    # expired waiter is never offered as a candidate
    r = engine.submit("late", ["x1"])
    assert isinstance(r, Waiting)


def test_union_session_interests(clock):
    engine = make_engine(clock, session_interests="union")
    engine.submit("a", ["gaming", "music"])
    r = engine.submit("b", ["gaming", "movies"])
    assert engine.get_session(r.session_id).interests == ("gaming", "movies", "music")


def test_store_failure_keeps_match_and_warns(clock, sink):
    store = FlakyStore(clock=clock)
    engine = make_engine(clock, store=store, sink=sink)

    engine.submit("a", ["x"])
    r = engine.submit("b", ["x"])
    assert isinstance(r, Matched)
    assert r.store_warning == "store is down"
    assert engine.status("a") == MatchedStatus(session_id=r.session_id, partner_id="b")
    assert engine.unpersisted_sessions() == [r.session_id]
    assert len(sink.of_type("store_write_failed")) == 1

    store.fail = False
    assert engine.retry_persistence() == 0
    assert store.load(r.session_id).participant_ids == ("a", "b")


def test_recover_restores_active_sessions(clock, store):
    first = make_engine(clock, store=store)
    first.submit("a", ["x"])
    r = first.submit("b", ["x"])
    first.submit("c", ["y"])  # waiting only, not durable

    restarted = make_engine(clock, store=store)
    assert restarted.recover() == 1
    assert restarted.status("a") == MatchedStatus(session_id=r.session_id, partner_id="b")
    assert restarted.status("c") == NotFoundStatus()
    restarted.check_invariants()

    restarted.end_session(r.session_id)
    assert restarted.status("b") == ExpiredStatus()


def test_events_for_a_match(engine, sink):
    engine.submit("p1", ["gaming", "music"])
    r = engine.submit("p2", ["gaming", "movies"])

    commits = sink.of_type("match_committed")
    assert {row["participant_id"] for row in commits} == {"p1", "p2"}
    assert all(row["session_id"] == r.session_id for row in commits)
    assert len(sink.of_type("participant_enqueued")) == 1
    assert len(sink.of_type("participant_registered")) == 2


def test_snapshot_reports_queue_and_sessions(engine):
    engine.submit("a", ["x"])
    engine.submit("b", ["x"])
    engine.submit("c", ["y"])

    snap = engine.snapshot()
    assert snap["queue"] == ["c"]
    assert snap["total_participants"] == 3
    assert snap["active_sessions"] == 1
    assert snap["total_sessions"] == 1


def test_ended_sessions_are_handed_to_the_store(engine, clock, store):
    for i in range(20):
        engine.submit(f"a{i}", ["x"])
        r = engine.submit(f"b{i}", ["x"])
        engine.end_session(r.session_id)

    assert engine.snapshot()["total_sessions"] == 0
    # still readable while the store keeps it
    assert engine.get_session(r.session_id).status == SessionStatus.ENDED
    assert engine.end_session(r.session_id).status == SessionStatus.ENDED
    assert engine.status("a0") == ExpiredStatus()


def test_purge_drops_terminal_records_after_retention(clock, sink):
    engine = make_engine(clock, sink=sink, retain_expired_s=100.0)
    engine.submit("a", ["x"])
    r = engine.submit("b", ["x"])
    engine.submit("w", ["solo"])
    engine.end_session(r.session_id)
    engine.withdraw("w")
    engine.submit("still", ["y"])

    # without a store the ended session stays in memory until purged
    assert engine.snapshot()["total_sessions"] == 1
    assert engine.purge() == 0

    clock.advance(101)
    assert engine.purge() == 4  # a, b, w and the ended session
    assert len(engine.registry) == 1
    assert engine.snapshot()["total_sessions"] == 0
    assert engine.status("a") == NotFoundStatus()
    assert engine.status("still") == WaitingStatus(position=1, queue_length=1)
    with pytest.raises(NotFoundError):
        engine.get_session(r.session_id)
    engine.check_invariants()

    # a purged id can register again
    assert isinstance(engine.submit("a", ["x"]), Waiting)


def test_expiry_sweep_also_purges(clock, sink):
    engine = make_engine(clock, sink=sink, retain_expired_s=10.0)
    engine.submit("a", ["x"])
    engine.withdraw("a")
    clock.advance(11)

    assert engine.expire_stale() == []
    assert engine.status("a") == NotFoundStatus()
    assert json.loads(sink.of_type("expiry_run")[0]["payload_json"])["purged"] == 1


def test_unpersisted_ended_session_survives_purge(clock):
    store = FlakyStore(clock=clock)
    engine = make_engine(clock, store=store, retain_expired_s=0.0)
    engine.submit("a", ["x"])
    r = engine.submit("b", ["x"])
    engine.end_session(r.session_id)

    clock.advance(5)
    engine.purge()
    assert engine.get_session(r.session_id).status == SessionStatus.ENDED

    store.fail = False
    assert engine.retry_persistence() == 0
    assert engine.snapshot()["total_sessions"] == 0
    assert store.load(r.session_id).status == SessionStatus.ENDED
