from __future__ import annotations

import argparse
import sys

from tracker.app.runner import run, scan
from tracker.features.correlation.service import TargetNotFoundError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tracker")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Track online presence until SIGINT/SIGTERM")
    p_run.add_argument("--config", default="config/tracker.yaml")

    p_scan = sub.add_parser(
        "scan",
        help="Scan for likely alts of a character (needs the tracker database to be free)",
    )
    p_scan.add_argument("name", help="Target character name (exact, case-sensitive)")
    p_scan.add_argument("--config", default="config/tracker.yaml")
    p_scan.add_argument("--window", type=float, default=None, help="Adjacency window in seconds")
    p_scan.add_argument("--max", type=int, default=None, dest="max_results")

    args = parser.parse_args(argv)

    if args.cmd == "run":
        return run(args.config)

    if args.cmd == "scan":
        try:
            report = scan(
                args.config, args.name, window_s=args.window, max_results=args.max_results
            )
        except TargetNotFoundError as exc:
            print(f"not_found {exc.target_name}")
            return 1
        # minimal stdout signal
        for r in report.results:
            print(f"{r.confidence_tier.label} {r.actor_name} {r.adjacent_transition_count}")
        print(f"analyzed={report.actors_analyzed} duration_s={report.duration_s:.2f}")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
