#!/usr/bin/env python3
"""
EquipCare -- maintenance scheduling and escalation triggers for biomedical equipment.

Each subcommand runs one engine operation to completion and exits. Point cron
(or any job runner) at these on a cadence; overlapping runs are safe.

Usage:
  python main.py schedule                    # auto-schedule every asset
  python main.py schedule --asset 12 --asset 14
  python main.py escalate                    # walk overdue work up the chains
  python main.py escalate --today 2025-04-10
  python main.py remind                      # 7/3/1-day reminders
  python main.py lifecycle                   # score assets, notify on flagged
  python main.py seed-rules --entity-type pm
  python main.py escalate --json

Exit codes:
  0  every item succeeded (an empty batch is a success)
  1  partial: some items failed, the rest were processed
  2  nothing could be processed, or the database is unavailable

Environment variables:
  DATABASE_URL  SQLAlchemy URL. Defaults to equipcare.db next to this file.
  SMTP_HOST     Enables email delivery. Unset means in-app notifications only.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from typing import Optional

from cmms.store import CMMSStore
from core.config import get_settings
from core.errors import StoreUnavailable
from core.models import BatchResult
from engine.services import Services, build_services

logger = logging.getLogger("equipcare.cli")

EXIT_CODES = {"success": 0, "partial": 1, "failure": 2}


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a YYYY-MM-DD date") from None


def _report(title: str, result: BatchResult, as_json: bool, describe) -> None:
    if as_json:
        print(
            json.dumps(
                {
                    "outcome": result.outcome,
                    "attempted": result.attempted,
                    "items": [asdict(i) for i in result.items],
                    "failures": [asdict(f) for f in result.failures],
                },
                indent=2,
            )
        )
        return

    print(f"\nEquipCare -- {title}")
    print("-" * 40)
    for item in result.items:
        print(f"  {describe(item)}")
    for failure in result.failures:
        print(f"  [!] {failure.item_id}: {failure.code} -- {failure.message}")
    print(f"\n  {result.attempted} attempted, {len(result.items)} done, {len(result.failures)} failed ({result.outcome})\n")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_schedule(services: Services, args) -> BatchResult:
    result = services.scheduler.auto_schedule(args.asset or None)
    _report(
        "auto-schedule",
        result,
        args.json,
        lambda w: f"work {w.id}: asset {w.asset_id} {w.kind} due {w.scheduled_date}",
    )
    return result


def _cmd_escalate(services: Services, args) -> BatchResult:
    result = services.escalation.check_and_escalate(today=args.today)
    _report(
        "escalation",
        result,
        args.json,
        lambda e: (
            f"work {e.work_id}: level {e.level + 1} ({e.days_overdue} day(s) overdue), "
            f"{len(e.recipient_ids)} recipient(s)"
        ),
    )
    return result


def _cmd_remind(services: Services, args) -> BatchResult:
    days = args.days or get_settings().reminder_days
    result = services.reminders.send_reminders(today=args.today, days_before=days)
    _report("reminders", result, args.json, lambda n: f"user {n.user_id}: {n.title}")
    return result


def _cmd_lifecycle(services: Services, args) -> BatchResult:
    result = services.lifecycle.review(today=args.today)
    _report(
        "lifecycle review",
        result,
        args.json,
        lambda s: f"{s.asset_name or s.asset_id}: {s.recommendation} ({s.priority}, score {s.composite:.2f})",
    )
    return result


def _cmd_seed_rules(services: Services, args) -> BatchResult:
    roles = args.role or get_settings().escalation_default_roles
    rules = services.escalation.seed_default_rules(roles, args.entity_type)
    result = BatchResult(items=rules, attempted=len(rules))
    _report(
        "seed escalation rules",
        result,
        args.json,
        lambda r: f"rule {r.id}: {r.entity_type} level {r.level} at {r.threshold:g} day(s) -> {', '.join(r.targets)}",
    )
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="equipcare",
        description="Maintenance scheduling, escalation and lifecycle triggers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py schedule
  python main.py escalate --today 2025-04-10
  python main.py remind --days 7 --days 1
  python main.py lifecycle --json
  DATABASE_URL=postgresql://user:pw@db/equipcare python main.py escalate
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Output structured JSON")
    parser.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL for this run")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("schedule", help="Create the next due work for every maintenance policy", parents=[common])
    p.add_argument("--asset", type=int, action="append", metavar="ID", help="Limit to this asset (repeatable)")
    p.set_defaults(func=_cmd_schedule)

    p = sub.add_parser("escalate", help="Escalate overdue work", parents=[common])
    p.add_argument("--today", type=_parse_date, metavar="YYYY-MM-DD", help="Evaluation date (default: today, UTC)")
    p.set_defaults(func=_cmd_escalate)

    p = sub.add_parser("remind", help="Send reminders for upcoming work", parents=[common])
    p.add_argument("--today", type=_parse_date, metavar="YYYY-MM-DD", help="Evaluation date (default: today, UTC)")
    p.add_argument("--days", type=int, action="append", metavar="N", help="Days-before offset (repeatable)")
    p.set_defaults(func=_cmd_remind)

    p = sub.add_parser("lifecycle", help="Score assets and notify about replacement candidates", parents=[common])
    p.add_argument("--today", type=_parse_date, metavar="YYYY-MM-DD", help="Evaluation date (default: today, UTC)")
    p.set_defaults(func=_cmd_lifecycle)

    p = sub.add_parser("seed-rules", help="Create the default 1/3/7-day escalation chain", parents=[common])
    p.add_argument("--entity-type", choices=["pm", "calibration"], default="pm")
    p.add_argument("--role", action="append", metavar="ROLE", help="Escalation role, in chain order (repeatable)")
    p.set_defaults(func=_cmd_seed_rules)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    try:
        store = CMMSStore(args.database_url or settings.database_url)
    except StoreUnavailable as e:
        logger.error("Database unavailable: %s", e.message)
        return 2
    try:
        result = args.func(build_services(store, settings), args)
    except StoreUnavailable as e:
        logger.error("Database unavailable during %s: %s", args.command, e.message)
        return 2
    finally:
        store.close()
    return EXIT_CODES[result.outcome]


if __name__ == "__main__":
    sys.exit(main())
