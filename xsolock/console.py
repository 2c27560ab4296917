from __future__ import annotations

import json
from typing import Optional

from xsolock.core.tokens.audit import status_counts
from xsolock.station import Station

HELP = "Commands: /relock, /status, /stats [batch|all], /batches, /exit"


def run_command(station: Station, text: str) -> Optional[str]:
    """
    Execute one operator console line. Returns the text to print, or None
    when the console should exit.
    """
    text = (text or "").strip()
    if not text:
        return ""
    parts = text.split()
    cmd = parts[0].lower()
    if cmd == "/exit":
        return None
    if cmd == "/relock":
        cancelled = station.controller.force_relock(trace_id="console")
        return "Relocked (active token cancelled)." if cancelled else "Relocked."
    if cmd == "/status":
        return json.dumps(station.controller.status(), indent=2)
    if cmd == "/stats":
        batch = parts[1] if len(parts) > 1 else station.cfg.station.batch_id
        if batch.lower() == "all":
            batch = None
        counts = status_counts(station.store, batch)
        return f"{batch or 'all batches'}: " + ", ".join(f"{k}={v}" for k, v in counts.items()) + f" (total {sum(counts.values())})"
    if cmd == "/batches":
        return ", ".join(station.store.batches()) or "(no tokens)"
    return HELP
