from __future__ import annotations

import argparse
import json
import time

import requests

from xsolock.core.tokens.store import TokenStore


def main() -> None:
    ap = argparse.ArgumentParser(description="Scan + completion-hook round trips against a running station.")
    ap.add_argument("batch")
    ap.add_argument("count", nargs="?", type=int, default=5)
    ap.add_argument("--tokens", default="tokens.json", help="Tokens file of the station under test (read only).")
    ap.add_argument("--base", default="http://127.0.0.1:5858")
    ap.add_argument("--hook-secret", default="")
    ap.add_argument("--wait", type=float, default=3.2, help="Seconds between scan and hook (must exceed the grace window).")
    args = ap.parse_args()

    store = TokenStore(args.tokens, read_only=True)
    store.load()
    picks = store.filter(lambda r: r.batch_id == args.batch and r.status.value == "ISSUED")[: args.count]
    if not picks:
        print(f"No ISSUED tokens for {args.batch}")
        raise SystemExit(1)

    session = requests.Session()
    params = {"event_type": "session_end"}
    if args.hook_secret:
        params["secret"] = args.hook_secret

    failures = 0
    for i, rec in enumerate(picks, start=1):
        r = session.post(f"{args.base}/api/qr/scan", json={"payload": rec.credential}, timeout=5)
        if r.status_code != 200:
            failures += 1
            print(f"[{i}] scan {rec.id}: {r.status_code} {r.text}")
            continue
        time.sleep(args.wait)
        h = session.get(f"{args.base}/hook", params=params, timeout=5)
        print(f"[{i}] {rec.id}: scan ok, hook {h.status_code} {h.text}")
        if h.status_code != 200:
            failures += 1

    stats = session.get(f"{args.base}/api/stats", params={"batch": args.batch}, timeout=5).json()
    print(json.dumps(stats.get("counts"), indent=2))
    raise SystemExit(1 if failures else 0)


if __name__ == "__main__":
    main()
