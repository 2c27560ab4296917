from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ScanRequest(BaseModel):
    # kept loose: a non-string payload is reported as an unrecognized QR, not a schema error
    payload: Any = None


class ScanResponse(BaseModel):
    ok: bool = True
    token_id: str
    mode: str


class ResetResponse(BaseModel):
    changed: int
    before: Dict[str, int]
    after: Dict[str, int]
    dry_run: bool = False


class SessionStatusResponse(BaseModel):
    state: str
    token_id: Optional[str] = None
    unlocked_at: Optional[float] = None
    age_seconds: Optional[float] = None
    overlay_visible: bool


class StatsResponse(BaseModel):
    # None: counts cover every batch in the store
    batch: Optional[str] = None
    counts: Dict[str, int]
    total: int
    session: SessionStatusResponse


class RelockResponse(BaseModel):
    ok: bool = True
    cancelled: bool
    state: str
