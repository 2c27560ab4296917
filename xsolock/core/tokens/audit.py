from __future__ import annotations

import os
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from xsolock.core.codec import CREDENTIAL_PREFIX
from xsolock.core.tokens.store import TokenStore


def status_counts(store: TokenStore, batch: Optional[str] = None) -> Dict[str, int]:
    return store.counts(batch=batch)


class BatchAudit(BaseModel):
    batch_id: str
    tokens: int
    unique_ids: int
    unique_credentials: int
    malformed_credentials: int
    statuses: Dict[str, int]
    png_files: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            self.tokens > 0
            and self.unique_ids == self.tokens
            and self.unique_credentials == self.tokens
            and self.malformed_credentials == 0
        )


def audit_batch(store: TokenStore, batch_id: str, png_dir: Optional[str] = None) -> BatchAudit:
    records = store.filter(lambda r: r.batch_id == batch_id)
    ids = {r.id for r in records}
    creds = {r.credential for r in records}
    malformed = sum(1 for r in records if not r.credential.startswith(CREDENTIAL_PREFIX))

    png_files: Optional[int] = None
    warnings: List[str] = []
    if png_dir is not None:
        if os.path.isdir(png_dir):
            png_files = len([n for n in os.listdir(png_dir) if n.lower().endswith(".png")])
            if png_files and png_files != len(records):
                warnings.append("PNG count != token count (ok if printing was split into subsets)")
        else:
            warnings.append(f"PNG directory missing: {png_dir}")

    if not records:
        warnings.append(f"No tokens found for batch {batch_id}")

    return BatchAudit(
        batch_id=batch_id,
        tokens=len(records),
        unique_ids=len(ids),
        unique_credentials=len(creds),
        malformed_credentials=malformed,
        statuses=store.counts(batch=batch_id),
        png_files=png_files,
        warnings=warnings,
    )
