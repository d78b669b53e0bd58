# scripts/run_job.py
"""Run one batch trigger from a scheduler (cron, systemd timer, k8s CronJob).

    python scripts/run_job.py auto-drop
    python scripts/run_job.py schedule-generation --week-start 2026-03-02
    python scripts/run_job.py no-show-detection --now 2026-03-02T14:05:00+00:00
"""
from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timedelta

from dispatch.core.config import settings
from dispatch.core.db import SessionLocal
from dispatch.core.logging import configure_logging
from dispatch.core.timeutil import ensure_aware, local_today, utc_now, week_start
from dispatch.services.jobs import JOBS, run_weekly_schedule_generation


def die(msg: str) -> None:
    print(f"[run-job] ERROR: {msg}", file=sys.stderr)
    sys.exit(1)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run a dispatch batch trigger once.")
    p.add_argument("job", choices=sorted(JOBS))
    p.add_argument("--now", type=datetime.fromisoformat, default=None, help="ISO instant (default: current time)")
    p.add_argument(
        "--week-start",
        type=date.fromisoformat,
        default=None,
        help="schedule-generation only: any date of the target week (default: next week)",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(settings.log_level)

    now = ensure_aware(args.now) if args.now is not None else utc_now()
    if args.week_start is not None and args.job != "schedule-generation":
        die("--week-start only applies to schedule-generation")

    db = SessionLocal()
    try:
        if args.job == "schedule-generation":
            monday = (
                week_start(args.week_start)
                if args.week_start is not None
                else week_start(local_today(now, settings.policy)) + timedelta(days=7)
            )
            result = run_weekly_schedule_generation(db, monday, now=now)
        else:
            result = JOBS[args.job](db, now=now)
    finally:
        db.close()

    print(json.dumps({"job": args.job, "now": now.isoformat(), "result": result}, sort_keys=True))
    return 0 if not result.get("failed_organizations") else 2


if __name__ == "__main__":
    sys.exit(main())
