from __future__ import annotations

import argparse
import json

from xsolock.core.tokens.audit import audit_batch
from xsolock.station import build_station


def main() -> None:
    ap = argparse.ArgumentParser(description="Audit one batch in the tokens file.")
    ap.add_argument("batch")
    ap.add_argument("png_dir", nargs="?", default=None, help="Directory of rendered QR images to count.")
    ap.add_argument("--root", default=".")
    args = ap.parse_args()

    station = build_station(args.root, reconcile=False, read_only=True)
    report = audit_batch(station.store, args.batch, png_dir=args.png_dir)
    print(json.dumps({**report.model_dump(), "ok": report.ok}, indent=2))
    raise SystemExit(0 if report.ok else 1)


if __name__ == "__main__":
    main()
