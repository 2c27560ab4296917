from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, Optional

from xsolock.core.events import redact
from xsolock.core.tokens.models import iso_timestamp

SEVERITIES = ("INFO", "WARN", "ERROR")


class SecurityAuditLogger:
    """
    Append-only JSONL trail for decisions an operator may need to explain
    later: hook secret mismatches, pin failures, resets, remote relock
    attempts and the web request/response pairs around them.

    Details pass through `redact`; pins, secrets and credentials never land
    in the file.
    """

    def __init__(self, path: str = os.path.join("logs", "security.log")) -> None:
        self.path = path
        self._lock = threading.Lock()

    def log(
        self,
        *,
        trace_id: str,
        severity: str,
        event: str,
        outcome: str,
        ip: Optional[str] = None,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        sev = str(severity or "INFO").upper()
        entry = {
            "ts": iso_timestamp(),
            "trace_id": trace_id,
            "severity": sev if sev in SEVERITIES else "INFO",
            "event": event,
            "outcome": outcome,
            "ip": ip,
            "endpoint": endpoint,
            "details": redact(details or {}),
        }
        line = json.dumps(entry, ensure_ascii=False)
        with self._lock:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
