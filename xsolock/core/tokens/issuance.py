from __future__ import annotations

import csv
import json
import os
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from xsolock.core.codec import build_credential
from xsolock.core.errors import ValidationError
from xsolock.core.tokens.models import TokenRecord, TokenStatus, iso_timestamp
from xsolock.core.tokens.store import TokenStore


def new_token(batch_id: str, secret: str, *, token_id: Optional[str] = None, now: Optional[float] = None) -> TokenRecord:
    tid = token_id or str(uuid.uuid4())
    return TokenRecord(
        id=tid,
        batch_id=batch_id,
        credential=build_credential(batch_id, tid, secret),
        status=TokenStatus.ISSUED,
        created_at=iso_timestamp(now),
    )


def mint_tokens(batch_id: str, count: int, secret: str, *, now: Optional[Callable[[], float]] = None) -> List[TokenRecord]:
    if int(count) < 1:
        raise ValidationError("count must be at least 1.", count=count)
    if not batch_id:
        raise ValidationError("batch_id is required.")
    clock = now or time.time
    return [new_token(batch_id, secret, now=clock()) for _ in range(int(count))]


def issue_tokens(
    store: TokenStore,
    *,
    batch_id: str,
    count: int,
    secret: str,
    replace: bool = False,
    now: Optional[Callable[[], float]] = None,
) -> List[TokenRecord]:
    """
    Create `count` fresh ISSUED tokens and save once.

    With `replace` the new batch becomes the whole tokens file. Records are
    built before the store is touched, so a rejected request leaves it as is.
    """
    records = mint_tokens(batch_id, count, secret, now=now)
    if replace:
        store.replace_all(records)
    else:
        store.add(records)
    return records


def write_batch_csv(path: str, records: List[TokenRecord]) -> str:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f, lineterminator="\n")
        w.writerow(["uuid", "batch_id", "payload", "status"])
        for r in records:
            w.writerow([r.id, r.batch_id, r.credential, r.status.value])
    return path


def write_batch_summary(path: str, *, batch_id: str, records: List[TokenRecord], output_dir: str) -> Dict[str, Any]:
    summary = {
        "batch_id": batch_id,
        "total_generated": len(records),
        "output_dir": os.path.abspath(output_dir),
        "created_at": iso_timestamp(),
    }
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)
        f.write("\n")
    return summary
