"""CLI script to run one escalation sweep or register the recurring schedule."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Escalate overdue tasks now, or schedule the sweep with rq-scheduler.",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Register the recurring sweep job instead of running a sweep",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Schedule interval in seconds (default: ESCALATION_SWEEP_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum candidate rows to scan in this run",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    from app.services.escalation_sweeper import sweep_overdue_tasks

    report = await sweep_overdue_tasks(limit=args.limit)
    sys.stdout.write(f"processed={report.processed}\n")
    sys.stdout.write(
        f"scanned={report.scanned} overdue={report.overdue} "
        f"claim_lost={report.claim_lost} not_eligible={report.not_eligible} "
        f"failed={report.failed}\n",
    )
    return 1 if report.failed else 0


def main(argv: list[str] | None = None) -> None:
    """Run the sweep (or register its schedule) and exit with a status code."""
    from app.core.logging import configure_logging

    configure_logging()
    args = _parse_args(argv)
    if args.schedule:
        from app.services.escalation_sweeper import bootstrap_escalation_sweep_schedule

        bootstrap_escalation_sweep_schedule(interval_seconds=args.interval)
        sys.stdout.write("scheduled=1\n")
        raise SystemExit(0)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
