from __future__ import annotations

import argparse
import os

from xsolock.core.errors import LockError
from xsolock.core.logger import setup_logging
from xsolock.core.tokens.issuance import issue_tokens, write_batch_csv, write_batch_summary
from xsolock.station import build_station


def main() -> None:
    ap = argparse.ArgumentParser(description="Issue a batch of signed single-use tokens into the station's tokens file.")
    ap.add_argument("--root", default=".", help="Station directory.")
    ap.add_argument("--count", type=int, default=100)
    ap.add_argument("--batch", default=None, help="Batch id (defaults to the station's active batch).")
    ap.add_argument("--out", default=None, help="Directory for tokens.csv and batch.json.")
    ap.add_argument("--reset", action="store_true", help="Replace the tokens file with the new batch.")
    args = ap.parse_args()

    logger = setup_logging(os.path.join(args.root, "logs"))
    station = build_station(args.root, logger=logger, reconcile=False)
    batch = args.batch or station.cfg.station.batch_id
    out_dir = args.out or os.path.join(args.root, "qr", batch)

    try:
        records = issue_tokens(
            station.store,
            batch_id=batch,
            count=args.count,
            secret=station.cfg.station.hmac_secret,
            replace=args.reset,
        )
    except LockError as e:
        logger.error(f"Issuance failed: {e.user_message}")
        raise SystemExit(1)

    csv_path = write_batch_csv(os.path.join(out_dir, "tokens.csv"), records)
    write_batch_summary(os.path.join(out_dir, "batch.json"), batch_id=batch, records=records, output_dir=out_dir)
    logger.info(f"Issued {len(records)} token(s) for {batch}")
    logger.info(f"CSV: {csv_path}")
    logger.info(f"Tokens file: {station.store.path}")


if __name__ == "__main__":
    main()
