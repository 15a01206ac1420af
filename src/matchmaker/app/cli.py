from __future__ import annotations

import argparse
import sys

from matchmaker.app.runner import list_sessions, run
from matchmaker.features.sessions.types import SessionStatus


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="matchmaker-sim")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sim = sub.add_parser("simulate", help="Drive the matchmaker with simulated traffic")
    p_sim.add_argument("--config", default="config/matchmaker.yaml")

    p_sessions = sub.add_parser("sessions", help="List chat sessions stored in DuckDB")
    p_sessions.add_argument("--db", required=True)
    p_sessions.add_argument("--status", choices=[s.value for s in SessionStatus], default=None)

    args = parser.parse_args(argv)

    if args.cmd == "simulate":
        result = run(args.config)
        s = result.summary
        # minimal stdout signal
        print(
            f"run_id={result.ctx.run_id} duckdb={result.duckdb_path} "
            f"arrivals={s.arrivals} matched={s.matched_sessions} "
            f"withdrawn={s.withdrawals} expired={s.expired} waiting={s.still_waiting}"
        )
        return 0

    if args.cmd == "sessions":
        for session in list_sessions(args.db, args.status):
            a, b = session.participant_ids
            print(
                f"{session.session_id} {session.status.value} {a} {b} "
                f"score={session.score:.2f} interests={','.join(session.interests)}"
            )
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
