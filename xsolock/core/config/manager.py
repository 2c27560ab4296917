from __future__ import annotations

import math
import os
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ValidationError

from xsolock.core.config.models import (
    AdminConfig,
    AppConfig,
    AppFileConfig,
    HookConfig,
    StationConfig,
    StoreConfig,
    WebConfig,
)
from xsolock.core.config.paths import ConfigFsPaths
from xsolock.core.errors import ConfigError
from xsolock.core.jsonfile import ReadResult, atomic_write_json, read_json, recover_from_corrupt, snapshot_last_known_good


CONFIG_FILES: Dict[str, type[BaseModel]] = {
    "app.json": AppFileConfig,
    "station.json": StationConfig,
    "web.json": WebConfig,
    "hook.json": HookConfig,
    "admin.json": AdminConfig,
    "store.json": StoreConfig,
}

# env var -> (file, field, kind); the station historically was configured through these.
ENV_OVERRIDES: Dict[str, Tuple[str, str, str]] = {
    "PORT": ("web.json", "port", "int"),
    "BIND_HOST": ("web.json", "bind_host", "str"),
    "BATCH_ID": ("station.json", "batch_id", "str"),
    "HMAC_SECRET": ("station.json", "hmac_secret", "str"),
    "DEV_ACCEPT_LISTED_TOKENS": ("station.json", "accept_listed_tokens", "bool"),
    "ADMIN_QR_UUID": ("station.json", "admin_credential_id", "str"),
    "HOOK_SECRET": ("hook.json", "secret", "str"),
    "MIN_SECONDS_BEFORE_SESSION_END": ("hook.json", "min_seconds_before_session_end", "float"),
    "ADMIN_PIN": ("admin.json", "pin", "str"),
    "TOKENS_FILE": ("store.json", "tokens_file", "str"),
}

_TRUTHY = {"1", "true", "yes", "on"}


def _coerce_env(raw: str, kind: str) -> Any:
    if kind == "bool":
        return str(raw).strip().lower() in _TRUTHY
    if kind in {"int", "float"}:
        try:
            num = float(raw)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(num):
            return None
        return int(num) if kind == "int" else num
    return raw


class ConfigManager:
    def __init__(
        self,
        *,
        fs: Optional[ConfigFsPaths] = None,
        logger=None,
        read_only: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self.environ = os.environ if environ is None else environ
        self._cfg: Optional[AppConfig] = None
        self._env_applied: Dict[str, str] = {}

    # ---------- public API ----------
    def load_all(self) -> AppConfig:
        os.makedirs(self.fs.config_dir, exist_ok=True)
        os.makedirs(self.fs.backups_dir, exist_ok=True)
        os.makedirs(self.fs.last_known_good_dir, exist_ok=True)

        files = self._load_raw_files()
        max_backups = int(((files.get("app.json") or {}).get("backups") or {}).get("max_backups_per_file", 10))
        ensured = self._ensure_defaults(files, max_backups=max_backups)

        # validate the on-disk set first so a bad env var never hides a bad file
        self._validate_all(ensured)
        cfg = self._validate_all(self._apply_env_overrides(ensured))
        self._cfg = cfg

        if not self.read_only:
            snapshot_last_known_good(self.fs.config_dir, self.fs.last_known_good_dir)
        return cfg

    def get(self) -> AppConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def env_overrides(self) -> Dict[str, str]:
        """Names of env vars that changed the effective config (values never exposed)."""
        return dict(self._env_applied)

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> AppConfig:
        """
        Atomic write + backups, then reload and validate the whole config set.
        If validation fails, raise (the prewrite backup remains available).
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if filename not in CONFIG_FILES:
            raise ConfigError(f"Unknown config file: {filename}")
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.")
        max_backups = int((self.get().app.backups or {}).get("max_backups_per_file", 10))
        atomic_write_json(os.path.join(self.fs.config_dir, filename), data, self.fs.backups_dir, keep=max_backups)
        return self.load_all()

    def resolve_path(self, path: str) -> str:
        return self.fs.resolve(path)

    # ---------- internals ----------
    def _load_raw_files(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name in CONFIG_FILES:
            path = os.path.join(self.fs.config_dir, name)
            rr: ReadResult = read_json(path)
            if rr.ok:
                out[name] = rr.data
                continue
            if rr.corrupt and self.read_only:
                lkg = read_json(os.path.join(self.fs.last_known_good_dir, name))
                if self.logger:
                    self.logger.warning(f"Corrupt config {name}; read-only, using last known good={lkg.ok}")
                out[name] = lkg.data
                continue
            if rr.corrupt:
                data, recovered = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir, keep=10)
                if self.logger:
                    self.logger.warning(f"Corrupt config {name} -> recovered={recovered}")
                out[name] = data
                continue
            # missing or empty: defaults later
            out[name] = {}
        return out

    def _ensure_defaults(self, files: Dict[str, Dict[str, Any]], *, max_backups: int) -> Dict[str, Dict[str, Any]]:
        out = dict(files)
        for name, model in CONFIG_FILES.items():
            if out.get(name):
                continue
            dflt = model().model_dump()
            out[name] = dflt
            if self.logger:
                self.logger.warning(f"Missing config {name}; creating defaults.")
            if not self.read_only:
                atomic_write_json(os.path.join(self.fs.config_dir, name), dflt, self.fs.backups_dir, keep=max_backups)
        return out

    def _apply_env_overrides(self, files: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        out = {k: dict(v) for k, v in files.items()}
        self._env_applied = {}
        for var, (filename, field, kind) in ENV_OVERRIDES.items():
            raw = self.environ.get(var)
            if raw is None:
                continue
            value = _coerce_env(raw, kind)
            if value is None:
                if self.logger:
                    self.logger.warning(f"Ignoring non-numeric {var}; keeping configured value.")
                continue
            out.setdefault(filename, {})[field] = value
            self._env_applied[var] = f"{filename}:{field}"
        return out

    def _validate_all(self, files: Dict[str, Dict[str, Any]]) -> AppConfig:
        try:
            return AppConfig(
                app=AppFileConfig.model_validate(files.get("app.json") or {}),
                station=StationConfig.model_validate(files.get("station.json") or {}),
                web=WebConfig.model_validate(files.get("web.json") or {}),
                hook=HookConfig.model_validate(files.get("hook.json") or {}),
                admin=AdminConfig.model_validate(files.get("admin.json") or {}),
                store=StoreConfig.model_validate(files.get("store.json") or {}),
            )
        except ValidationError as e:
            # user-friendly error
            raise ConfigError(str(e)) from e
