from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from xsolock.core.errors import ValidationError


class TokenStatus(str, Enum):
    ISSUED = "ISSUED"
    IN_USE = "IN_USE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: FrozenSet[TokenStatus] = frozenset({TokenStatus.COMPLETED, TokenStatus.CANCELLED})
DEFAULT_RESET_FROM: FrozenSet[TokenStatus] = frozenset({TokenStatus.IN_USE, TokenStatus.COMPLETED, TokenStatus.CANCELLED})


def parse_status(raw: Union[str, TokenStatus]) -> TokenStatus:
    if isinstance(raw, TokenStatus):
        return raw
    value = str(raw or "").strip().upper()
    try:
        return TokenStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown token status: {raw!r}", status=str(raw)) from None


def parse_status_set(raw: Union[str, Iterable[Union[str, TokenStatus]], None], *, default: Iterable[TokenStatus] = DEFAULT_RESET_FROM) -> FrozenSet[TokenStatus]:
    """Accepts "IN_USE,COMPLETED" or a list; None/empty falls back to the default."""
    if raw is None:
        return frozenset(default)
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    items = [x for x in items if str(x).strip()]
    if not items:
        return frozenset(default)
    return frozenset(parse_status(x) for x in items)


def iso_timestamp(ts: Optional[float] = None) -> str:
    t = time.time() if ts is None else float(ts)
    ms = int((t - int(t)) * 1000)
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(int(t))) + f".{ms:03d}Z"


class TokenRecord(BaseModel):
    """
    One issued credential. Persisted with the key names used by the station's
    tokens.json (`uuid`, `payload`), exposed in code as `id` / `credential`.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="ignore")

    id: str = Field(alias="uuid", min_length=1)
    batch_id: str = Field(min_length=1)
    credential: str = Field(alias="payload")
    status: TokenStatus = TokenStatus.ISSUED
    claimed_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str = Field(default_factory=iso_timestamp)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
