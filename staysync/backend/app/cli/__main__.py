# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
import json
import sys

from app.db import init_db
from app.logging_config import configure_logging
from app.services.cleaning_sync_runtime import build_backfill, build_reconciler

CLI_ACTOR = "cli"


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="python -m app.cli", description="Cleaning task sync tools")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("sync", help="reconcile one order's cleaning tasks")
    s.add_argument("order_id")
    s.add_argument("--deleted", action="store_true", help="treat the order as deleted")

    b = sub.add_parser("backfill", help="re-sync every order touching a date range")
    b.add_argument("--from", dest="date_from", required=True)
    b.add_argument("--to", dest="date_to", required=True)
    b.add_argument("--concurrency", type=int, default=None)

    sub.add_parser("sweep-orphans", help="cancel tasks whose order no longer exists")
    sub.add_parser("init-db", help="create tables (dev only; use alembic elsewhere)")

    args = p.parse_args(argv)
    configure_logging()

    if args.command == "init-db":
        init_db()
        _print({"ok": True})
        return 0

    if args.command == "sync":
        res = build_reconciler().sync_order(args.order_id, actor=CLI_ACTOR, deleted=args.deleted)
        _print(res.as_dict())
        return 0 if res.ok else 1

    if args.command == "backfill":
        try:
            report = build_backfill().run(args.date_from, args.date_to, args.concurrency, actor=CLI_ACTOR)
        except ValueError as e:
            p.error(str(e))
        _print(report.as_dict())
        return 0 if report.ok and report.failed == 0 else 1

    report = build_backfill().sweep_orphans(actor=CLI_ACTOR)
    _print(report.as_dict())
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
