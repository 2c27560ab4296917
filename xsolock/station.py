from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from fastapi import FastAPI

from xsolock.core.admin_reset import BulkResetEngine
from xsolock.core.config import ConfigFsPaths, ConfigManager
from xsolock.core.config.models import AppConfig
from xsolock.core.error_reporter import ErrorReporter
from xsolock.core.events import EventLogger
from xsolock.core.logger import get_logger
from xsolock.core.presentation import LoggingPresenter, OverlayPresenter
from xsolock.core.security_events import SecurityAuditLogger
from xsolock.core.session import SessionController
from xsolock.core.tokens.store import TokenStore
from xsolock.core.webhook import WebhookDebounceEngine
from xsolock.web.api import create_app


@dataclass
class Station:
    root: str
    config: ConfigManager
    cfg: AppConfig
    logger: object
    event_logger: EventLogger
    audit_logger: SecurityAuditLogger
    error_reporter: ErrorReporter
    store: TokenStore
    controller: SessionController
    webhook: WebhookDebounceEngine
    reset_engine: BulkResetEngine
    orphans_cancelled: int = 0

    def create_app(self, *, allow_remote_relock: bool = False) -> FastAPI:
        return create_app(
            controller=self.controller,
            webhook=self.webhook,
            reset_engine=self.reset_engine,
            web_cfg=self.cfg.web,
            event_logger=self.event_logger,
            audit_logger=self.audit_logger,
            error_reporter=self.error_reporter,
            allow_remote_relock=allow_remote_relock,
        )


def build_station(
    root: str = ".",
    *,
    environ: Optional[Mapping[str, str]] = None,
    presenter: Optional[OverlayPresenter] = None,
    now: Optional[Callable[[], float]] = None,
    logger=None,
    reconcile: bool = True,
    read_only: bool = False,
) -> Station:
    """
    Wire config, logs, the token store and the engines for one station root.

    `reconcile` cancels tokens left IN_USE by a previous run; offline tools
    that may run next to a live station pass False. `read_only` leaves the
    config and tokens files untouched.
    """
    logger = logger or get_logger()
    config = ConfigManager(fs=ConfigFsPaths(root), logger=logger, read_only=read_only, environ=environ)
    cfg = config.load_all()

    log_dir = config.resolve_path(cfg.app.log_dir)
    event_logger = EventLogger(os.path.join(log_dir, "events.jsonl"))
    audit_logger = SecurityAuditLogger(path=os.path.join(log_dir, "security.log"))
    reporter = ErrorReporter(path=os.path.join(log_dir, "errors.jsonl"))

    store = TokenStore(
        config.resolve_path(cfg.store.tokens_file),
        backups_dir=config.resolve_path(cfg.store.backups_dir),
        backup_keep=cfg.store.backup_keep,
        logger=logger,
        error_reporter=reporter,
        read_only=read_only,
    )
    loaded = store.load()
    logger.info(f"Loaded {loaded} token(s) from {store.path}")
    orphans = store.reconcile_orphans() if reconcile and not read_only else 0

    controller = SessionController(
        store=store,
        station_cfg=cfg.station,
        presenter=presenter or LoggingPresenter(logger=logger),
        event_logger=event_logger,
        logger=logger,
        now=now,
    )
    webhook = WebhookDebounceEngine(controller=controller, hook_cfg=cfg.hook, audit_logger=audit_logger, logger=logger)
    reset_engine = BulkResetEngine(store=store, controller=controller, admin_cfg=cfg.admin, audit_logger=audit_logger, logger=logger)
    return Station(
        root=root,
        config=config,
        cfg=cfg,
        logger=logger,
        event_logger=event_logger,
        audit_logger=audit_logger,
        error_reporter=reporter,
        store=store,
        controller=controller,
        webhook=webhook,
        reset_engine=reset_engine,
        orphans_cancelled=orphans,
    )
