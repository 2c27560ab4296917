from __future__ import annotations

import json
import os
from typing import Any, Dict, Iterable, List, Optional

from xsolock.core.codec import build_credential
from xsolock.core.config.models import AdminConfig, HookConfig, StationConfig
from xsolock.core.tokens.store import TokenStore

BATCH = "B1"
SECRET = "test-secret"


def token_dict(token_id: str, *, batch: str = BATCH, status: str = "ISSUED", secret: str = SECRET, **extra: Any) -> Dict[str, Any]:
    out = {
        "uuid": token_id,
        "batch_id": batch,
        "payload": build_credential(batch, token_id, secret),
        "status": status,
        "claimed_at": None,
        "completed_at": None,
        "created_at": "2025-09-08T10:00:00.000Z",
    }
    out.update(extra)
    return out


def write_tokens(path: str, items: Iterable[Dict[str, Any]]) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(list(items), f, indent=2)
    return path


def make_store(tmp_path, items: Optional[List[Dict[str, Any]]] = None, **kwargs: Any) -> TokenStore:
    path = str(tmp_path / "tokens.json")
    write_tokens(path, items or [])
    store = TokenStore(path, backups_dir=str(tmp_path / "backups"), **kwargs)
    store.load()
    return store


def read_tokens(store: TokenStore) -> Dict[str, Dict[str, Any]]:
    with open(store.path, "r", encoding="utf-8") as f:
        return {t["uuid"]: t for t in json.load(f)}


def station_cfg(**overrides: Any) -> StationConfig:
    base = {"batch_id": BATCH, "hmac_secret": SECRET}
    base.update(overrides)
    return StationConfig(**base)


def hook_cfg(**overrides: Any) -> HookConfig:
    return HookConfig(**overrides)


def admin_cfg(**overrides: Any) -> AdminConfig:
    base = {"pin": "1234"}
    base.update(overrides)
    return AdminConfig(**base)
