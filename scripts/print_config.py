from __future__ import annotations

import argparse
import json

from xsolock.core.config import ConfigManager
from xsolock.core.config.paths import ConfigFsPaths
from xsolock.core.events import redact


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the effective station configuration (secrets redacted).")
    ap.add_argument("--root", default=".")
    args = ap.parse_args()

    cm = ConfigManager(fs=ConfigFsPaths(args.root), logger=None, read_only=True)
    cfg = cm.load_all()
    out = {"config": redact(cfg.model_dump()), "env_overrides": cm.env_overrides()}
    print(json.dumps(out, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
