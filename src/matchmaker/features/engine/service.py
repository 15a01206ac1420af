from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import asdict, replace
from datetime import timedelta
from typing import Any

from matchmaker.core.config import MatchmakingConfig
from matchmaker.core.errors import (
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
    check,
)
from matchmaker.core.logging import get_logger
from matchmaker.core.types import Clock, SystemClock
from matchmaker.features.events.service import EventService
from matchmaker.features.icebreakers.service import IcebreakerService
from matchmaker.features.registry.service import ParticipantRegistry
from matchmaker.features.registry.types import Participant, ParticipantState
from matchmaker.features.scoring.service import InterestRules, score, session_interests
from matchmaker.features.sessions.service import end_session, new_session
from matchmaker.features.sessions.types import ChatSession, SessionStatus, SessionStore
from matchmaker.features.wait_pool.service import WaitPool

from .types import (
    ExpiredStatus,
    Matched,
    MatchedStatus,
    MatchResult,
    NotFoundStatus,
    ParticipantStatus,
    ScoredCandidate,
    Waiting,
    WaitingStatus,
    Withdrawn,
)

# (event_type, fields) collected under the lock, emitted after release
PendingEvent = tuple[str, dict[str, Any]]


class Matchmaker:
    """
    Pairs participants by interest overlap.

    Concurrency:
      - The registry's re-entrant lock guards the (registry, pool) pair and the
        in-memory session table.
      - submit() snapshots candidates under the lock, scores them without it,
        then re-takes the lock for the compare-and-commit. A lost commit moves
        on to the next-best candidate; an empty result is only enqueued if no
        one joined the pool since the snapshot, otherwise selection reruns.
      - Events, store writes and logging happen after the lock is released.
    """

    def __init__(
        self,
        *,
        cfg: MatchmakingConfig | None = None,
        registry: ParticipantRegistry | None = None,
        store: SessionStore | None = None,
        events: EventService | None = None,
        icebreakers: IcebreakerService | None = None,
        clock: Clock | None = None,
        session_ttl_s: float | None = None,
    ) -> None:
        self.cfg = cfg or MatchmakingConfig()
        self.clock = clock or SystemClock()
        self.registry = registry or ParticipantRegistry(
            clock=self.clock,
            rules=InterestRules(
                max_interests=self.cfg.max_interests,
                max_interest_length=self.cfg.max_interest_length,
            ),
        )
        self.pool = WaitPool(self.registry)
        self.store = store
        self.events = events
        self.icebreakers = icebreakers or IcebreakerService()
        self.session_ttl_s = session_ttl_s

        self._sessions: dict[str, ChatSession] = {}
        self._session_of: dict[str, str] = {}  # participant_id -> session_id
        self._unpersisted: dict[str, ChatSession] = {}
        self._persist_lock = threading.Lock()
        self._logger = get_logger(__name__)

    @property
    def lock(self):
        return self.registry.lock

    # ----------------------------
    # Public API
    # ----------------------------
    def submit(self, participant_id: str, interests: Iterable[str]) -> MatchResult:
        """
        Registers a participant and either pairs it with the best waiting
        candidate or puts it in the pool.

        Raises InvalidInputError / ConflictError from registration; nothing
        after registration is surfaced as an exception to the caller.
        """
        me = self.registry.register(participant_id, interests)
        pending: list[PendingEvent] = [
            (
                "participant_registered",
                {"participant_id": participant_id, "payload": {"interests": sorted(me.interests)}},
            )
        ]

        # (participant_id, generation) pairs that lost a commit
        excluded: set[tuple[str, int]] = set()
        result: MatchResult
        session: ChatSession | None = None

        while True:
            with self.lock:
                version = self.pool.version
                snapshot = [
                    p
                    for p in map(self.registry.get, self.pool.candidates(excluding=participant_id))
                    if (p.participant_id, p.generation) not in excluded
                ]

            ranked = self._rank(me, snapshot, pending)

            with self.lock:
                if not self.registry.is_waiting(participant_id, me.generation):
                    # withdrawn or expired mid-flight, possibly registered again since
                    result = Withdrawn(participant_id)
                    break

                session = self._commit_best(me, ranked, excluded, pending)
                if session is not None:
                    partner_id = session.partner_of(participant_id)
                    result = Matched(
                        session_id=session.session_id,
                        partner_id=partner_id,
                        score=session.score,
                    )
                    break

                if self.pool.version != version:
                    # someone joined while we were scoring; look again
                    continue

                self.pool.enqueue(participant_id)
                queue_length = len(self.pool)
                result = Waiting(
                    queue_position=self.pool.position_of(participant_id),
                    queue_length=queue_length,
                    estimated_wait_s=queue_length * self.cfg.wait_estimate_per_position_s,
                )
                pending.append(
                    (
                        "participant_enqueued",
                        {
                            "participant_id": participant_id,
                            "value_num": result.queue_position,
                            "payload": {"queue_length": queue_length},
                        },
                    )
                )
                break

        self._emit_all(pending)

        if isinstance(result, Matched):
            warning = self._persist(session.session_id)
            self._logger.info(
                "match_committed",
                extra={
                    "feature": "engine",
                    "participant_id": participant_id,
                    "partner_id": result.partner_id,
                    "session_id": result.session_id,
                    "score": result.score,
                },
            )
            if warning is not None:
                result = replace(result, store_warning=warning)

        return result

    def withdraw(self, participant_id: str) -> bool:
        """
        Takes a waiting participant out of matchmaking (-> EXPIRED).
        Returns False when there was nothing to withdraw (already matched or
        expired), so a repeated call is a no-op.
        """
        with self.lock:
            changed = self.registry.withdraw(participant_id)  # NotFoundError for unknown ids
            self.pool.remove(participant_id)

        if changed:
            self._emit("participant_withdrawn", participant_id=participant_id)
        return changed

    def end_session(self, session_id: str) -> ChatSession:
        """
        Marks a session ENDED and both participants EXPIRED (terminal; they must
        register again to chat again). Ending an ended session returns it as-is.
        """
        with self.lock:
            current = self._sessions.get(session_id)
            if current is not None:
                if current.status == SessionStatus.ENDED:
                    return replace(current)

                for pid in current.participant_ids:
                    p = self.registry.get(pid)
                    check(
                        p.matched_with == current.partner_of(pid),
                        f"{pid} in session {session_id} is matched with {p.matched_with!r}",
                    )
                    if p.state == ParticipantState.MATCHED:
                        self.registry.mark_ended(pid)
                    self._session_of.pop(pid, None)

                ended = end_session(current, ended_at=self.clock.now_utc())
                self._sessions[session_id] = ended

        if current is None:
            # already ended and handed over to the store, or never existed
            return self._load_ended(session_id)

        self._emit(
            "session_ended",
            session_id=session_id,
            value_num=ended.duration_s,
            payload={"participant_ids": list(ended.participant_ids)},
        )
        self._persist(session_id)
        return replace(ended)

    def status(self, participant_id: str) -> ParticipantStatus:
        with self.lock:
            state = self.registry.state_of(participant_id)
            if state is None:
                return NotFoundStatus()
            if state == ParticipantState.EXPIRED:
                return ExpiredStatus()
            if state == ParticipantState.MATCHED:
                sid = self._session_of.get(participant_id)
                check(sid is not None, f"{participant_id} is matched without a session")
                return MatchedStatus(
                    session_id=sid,
                    partner_id=self._sessions[sid].partner_of(participant_id),
                )

            position = (
                self.pool.position_of(participant_id) if participant_id in self.pool else None
            )
            return WaitingStatus(position=position, queue_length=len(self.pool))

    def disconnect(self, participant_id: str) -> ChatSession | None:
        """
        Participant went away: withdraw if waiting, end the chat if matched.
        Returns the ended session, if any.
        """
        with self.lock:
            state = self.registry.state_of(participant_id)
            if state is None:
                raise NotFoundError(f"Unknown participant_id={participant_id!r}")
            sid = self._session_of.get(participant_id)

        if state == ParticipantState.WAITING:
            self.withdraw(participant_id)
            return None
        if state == ParticipantState.MATCHED and sid is not None:
            return self.end_session(sid)
        return None

    def expire_stale(self, older_than_s: float | None = None) -> list[str]:
        """
        Evicts waiters older than `older_than_s` (default: matchmaking.stale_after_s).
        """
        threshold = self.cfg.stale_after_s if older_than_s is None else float(older_than_s)
        with self.lock:
            expired = self.registry.expire_stale(threshold)
            for pid in expired:
                self.pool.remove(pid)
            remaining = len(self.pool)
        purged = self.purge()

        self._emit(
            "expiry_run",
            value_num=len(expired),
            payload={"older_than_s": threshold, "still_waiting": remaining, "purged": purged},
        )
        for pid in expired:
            self._emit("participant_expired", participant_id=pid)
        if expired:
            self._logger.info(
                "expiry_run",
                extra={"feature": "engine", "reason": f"expired={len(expired)}"},
            )
        return expired

    def purge(self, older_than_s: float | None = None) -> int:
        """
        Drops terminal records older than `older_than_s` (default:
        matchmaking.retain_expired_s): EXPIRED participants, which then read as
        NotFoundStatus, and ENDED sessions still held in memory because they
        were never handed to a store. Sessions waiting on retry_persistence()
        are kept. Returns how many records were dropped.
        """
        threshold = self.cfg.retain_expired_s if older_than_s is None else float(older_than_s)
        cutoff = self.clock.now_utc() - timedelta(seconds=threshold)

        with self._persist_lock:
            with self.lock:
                participants = self.registry.purge_expired(threshold)
                stale_sessions = [
                    sid
                    for sid, s in self._sessions.items()
                    if s.status == SessionStatus.ENDED
                    and sid not in self._unpersisted
                    and s.ended_at is not None
                    and s.ended_at < cutoff
                ]
                for sid in stale_sessions:
                    del self._sessions[sid]

        dropped = len(participants) + len(stale_sessions)
        if dropped:
            self._logger.debug(
                "purged",
                extra={"feature": "engine", "reason": f"dropped={dropped}"},
            )
        return dropped

    def get_session(self, session_id: str) -> ChatSession:
        """Live sessions come from memory; ended ones may only be left in the store."""
        with self.lock:
            s = self._sessions.get(session_id)
            if s is not None:
                return replace(s)
        return self._load_ended(session_id)

    def recover(self) -> int:
        """
        Reloads ACTIVE sessions from the store and restores their participants
        as MATCHED. Waiting participants are not durable; callers resubmit.
        Returns the number of sessions restored.
        """
        if self.store is None:
            return 0
        sessions = self.store.load_active()

        restored = 0
        with self.lock:
            for s in sessions:
                if s.session_id in self._sessions:
                    continue
                a, b = s.participant_ids
                self.registry.restore_matched(
                    a, b, interests_a=s.interests, interests_b=s.interests
                )
                self._sessions[s.session_id] = replace(s)
                self._session_of[a] = s.session_id
                self._session_of[b] = s.session_id
                restored += 1
        return restored

    def retry_persistence(self) -> int:
        """Rewrites sessions whose store write failed. Returns how many remain unwritten."""
        with self._persist_lock:
            pending = list(self._unpersisted)
        for sid in pending:
            self._persist(sid)
        with self._persist_lock:
            return len(self._unpersisted)

    def unpersisted_sessions(self) -> list[str]:
        with self._persist_lock:
            return sorted(self._unpersisted)

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time view of queue, participants and sessions for debugging."""
        with self.lock:
            participants = [asdict(p) for p in self.registry.snapshot()]
            sessions = [asdict(s) for s in self._sessions.values()]
            queue = self.pool.ids()
        return {
            "queue": queue,
            "queue_length": len(queue),
            "participants": participants,
            "total_participants": len(participants),
            "sessions": sessions,
            "active_sessions": sum(1 for s in sessions if s["status"] == SessionStatus.ACTIVE),
            "total_sessions": len(sessions),
        }

    def check_invariants(self) -> None:
        """
        Asserts the quiescent-state invariants. Only meaningful when no
        submit() is in flight.
        """
        with self.lock:
            waiting = self.registry.ids_in_state(ParticipantState.WAITING)
            pooled = set(self.pool.ids())
            check(pooled == waiting, f"pool {sorted(pooled)} != waiting {sorted(waiting)}")
            self.registry.check_symmetry()
            for pid, sid in self._session_of.items():
                s = self._sessions[sid]
                check(s.status == SessionStatus.ACTIVE, f"{pid} points at ended session {sid}")
                check(
                    self.registry.state_of(pid) == ParticipantState.MATCHED,
                    f"{pid} in active session {sid} is not matched",
                )

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _rank(
        self,
        me: Participant,
        snapshot: list[Participant],
        pending: list[PendingEvent],
    ) -> list[ScoredCandidate]:
        """Candidates above the threshold, best first."""
        ranked: list[ScoredCandidate] = []
        for idx, cand in enumerate(snapshot):
            if cand.state != ParticipantState.WAITING:
                pending.append(self._rejection(me, cand.participant_id, None, "not_waiting"))
                continue
            s = score(me.interests, cand.interests)
            if s > self.cfg.min_score:
                ranked.append(
                    ScoredCandidate(
                        participant_id=cand.participant_id,
                        score=s,
                        arrival_time=cand.arrival_time,
                        pool_index=idx,
                        generation=cand.generation,
                    )
                )
            else:
                pending.append(self._rejection(me, cand.participant_id, s, "below_threshold"))
        ranked.sort(key=ScoredCandidate.sort_key)
        return ranked

    def _commit_best(
        self,
        me: Participant,
        ranked: list[ScoredCandidate],
        excluded: set[tuple[str, int]],
        pending: list[PendingEvent],
    ) -> ChatSession | None:
        """
        Must hold the lock. Tries candidates best-first; the first successful
        compare-and-commit wins. Losers are excluded from later rounds.
        """
        for cand in ranked:
            if (cand.participant_id, cand.generation) in excluded:
                continue
            try:
                self.registry.mark_matched(
                    me.participant_id,
                    cand.participant_id,
                    generations={
                        me.participant_id: me.generation,
                        cand.participant_id: cand.generation,
                    },
                )
            except ConflictError as exc:
                excluded.add((cand.participant_id, cand.generation))
                pending.append(
                    (
                        "commit_conflict",
                        {
                            "participant_id": me.participant_id,
                            "partner_id": cand.participant_id,
                            "value_num": cand.score,
                            "payload": {"reason": str(exc)},
                        },
                    )
                )
                continue

            self.pool.remove(cand.participant_id)
            check(
                me.participant_id not in self.pool and cand.participant_id not in self.pool,
                "matched participant left in the pool",
            )
            partner = self.registry.get(cand.participant_id)
            shared = session_interests(
                me.interests, partner.interests, mode=self.cfg.session_interests
            )
            session = new_session(
                me.participant_id,
                cand.participant_id,
                interests=shared,
                started_at=self.clock.now_utc(),
                score=cand.score,
            )
            session.icebreaker = self.icebreakers.pick(
                session_id=session.session_id,
                interests=session_interests(me.interests, partner.interests),
            )
            previous = self._sessions.get(session.session_id)
            check(
                previous is None or previous.status == SessionStatus.ENDED,
                f"session {session.session_id} is already active",
            )
            self._sessions[session.session_id] = session
            self._session_of[me.participant_id] = session.session_id
            self._session_of[cand.participant_id] = session.session_id

            for pid, other in (
                (me.participant_id, cand.participant_id),
                (cand.participant_id, me.participant_id),
            ):
                pending.append(
                    (
                        "match_committed",
                        {
                            "participant_id": pid,
                            "partner_id": other,
                            "session_id": session.session_id,
                            "value_num": cand.score,
                        },
                    )
                )
            return session
        return None

    def _load_ended(self, session_id: str) -> ChatSession:
        if self.store is not None:
            try:
                s = self.store.load(session_id)
            except NotFoundError:
                pass
            else:
                if s.status == SessionStatus.ENDED:
                    return s
        raise NotFoundError(f"Unknown session_id={session_id!r}")

    @staticmethod
    def _rejection(me: Participant, cand_id: str, s: float | None, reason: str) -> PendingEvent:
        return (
            "candidate_rejected",
            {
                "participant_id": me.participant_id,
                "partner_id": cand_id,
                "value_num": s,
                "payload": {"reason": reason},
            },
        )

    def _persist(self, session_id: str) -> str | None:
        """
        Writes the latest in-memory version of a session. Writes are serialized
        so an older version never lands after a newer one. Failures leave the
        in-memory state untouched and queue the session for retry_persistence().
        """
        if self.store is None:
            return None

        with self._persist_lock:
            with self.lock:
                current = self._sessions.get(session_id)
                if current is None:
                    # a later ENDED version was already written and dropped
                    return None
                session = replace(current)
            try:
                self.store.save(session)
                if session.status == SessionStatus.ENDED and self.session_ttl_s is not None:
                    self.store.expire(session_id, self.session_ttl_s)
            except StoreUnavailableError as exc:
                self._unpersisted[session_id] = session
                warning = str(exc)
            else:
                self._unpersisted.pop(session_id, None)
                if session.status == SessionStatus.ENDED:
                    with self.lock:
                        # the store owns ended sessions from here on
                        if self._sessions.get(session_id) is current:
                            del self._sessions[session_id]
                return None

        self._logger.warning(
            "store_write_failed",
            extra={"feature": "engine", "session_id": session_id, "reason": warning},
        )
        self._emit("store_write_failed", session_id=session_id, payload={"error": warning})
        return warning

    def _emit_all(self, pending: list[PendingEvent]) -> None:
        for event_type, fields in pending:
            self._emit(event_type, **fields)

    def _emit(self, event_type: str, **fields: Any) -> None:
        if self.events is None:
            return
        self.events.emit(event_type=event_type, **fields)
