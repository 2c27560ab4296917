from __future__ import annotations

import argparse
import json
import os

from xsolock.core.admin_reset import ResetMode, ResetRequest
from xsolock.core.errors import LockError
from xsolock.core.logger import setup_logging
from xsolock.station import build_station


def _mode(args: argparse.Namespace) -> ResetMode:
    if args.uuid:
        return ResetMode.UUID_ONE
    if args.batch:
        return ResetMode.BATCH_INUSE if args.inuse else ResetMode.BATCH_ALL
    return ResetMode.ALL_BATCHES


def main() -> None:
    ap = argparse.ArgumentParser(description="Bulk-reset token states (offline; stop the station first).")
    ap.add_argument("--root", default=".")
    ap.add_argument("--pin", required=True)
    target = ap.add_mutually_exclusive_group(required=True)
    target.add_argument("--all", action="store_true", help="Every batch.")
    target.add_argument("--batch", default=None)
    target.add_argument("--uuid", default=None)
    ap.add_argument("--inuse", action="store_true", help="With --batch: only tokens currently IN_USE.")
    ap.add_argument("--from", dest="from_", default=None, help="Comma-separated source statuses.")
    ap.add_argument("--to", default=None, help="Target status (default ISSUED).")
    ap.add_argument("--dry-run", action="store_true")
    args = ap.parse_args()
    if args.inuse and not args.batch:
        ap.error("--inuse requires --batch")

    logger = setup_logging(os.path.join(args.root, "logs"))
    station = build_station(args.root, logger=logger, reconcile=False)
    req = ResetRequest(
        pin=args.pin,
        mode=_mode(args),
        batch=args.batch,
        uuid=args.uuid,
        to=args.to,
        from_=args.from_,
        dry_run=args.dry_run,
    )
    try:
        result = station.reset_engine.reset(req, trace_id="cli")
    except LockError as e:
        logger.error(f"Reset refused: {e.user_message}")
        raise SystemExit(1)
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
