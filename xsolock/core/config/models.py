from __future__ import annotations

import ipaddress
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    created_at: str = "1970-01-01T00:00:00Z"
    backups: Dict[str, Any] = Field(default_factory=lambda: {"max_backups_per_file": 10})
    log_dir: str = "logs"


class StationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    batch_id: str = Field(default="B2025-09-08-A", min_length=1)
    hmac_secret: str = Field(default="XSO_TEST_SECRET_2025", min_length=1)
    # Accept a credential that is listed verbatim in the token store without a signature check.
    accept_listed_tokens: bool = True
    admin_credential_id: str = ""


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bind_host: str = "127.0.0.1"
    port: int = Field(default=5858, ge=1, le=65535)
    max_request_bytes: int = Field(default=16384, ge=256)

    @field_validator("bind_host")
    @classmethod
    def _host(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("bind_host must not be empty")
        if v == "localhost":
            return v
        try:
            ipaddress.ip_address(v)
        except ValueError as e:
            raise ValueError(f"bind_host must be an IP address: {v}") from e
        return v


class HookConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    secret: str = ""
    min_seconds_before_session_end: float = Field(default=3.0, ge=0.0)
    completion_phase: str = "session_end"


class AdminConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # Empty pin disables the bulk-reset endpoint.
    pin: str = ""
    default_from: list[str] = Field(default_factory=lambda: ["IN_USE", "COMPLETED", "CANCELLED"])
    default_to: str = "ISSUED"


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    tokens_file: str = "tokens.json"
    backups_dir: str = "backups"
    backup_keep: int = Field(default=20, ge=0, le=500)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    app: AppFileConfig
    station: StationConfig
    web: WebConfig
    hook: HookConfig
    admin: AdminConfig
    store: StoreConfig
