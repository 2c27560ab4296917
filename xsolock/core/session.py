from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Collection, Dict, Optional

from xsolock.core import codec
from xsolock.core.config.models import StationConfig
from xsolock.core.errors import CodecError, ScanRejected, StateConflictError
from xsolock.core.logger import get_logger
from xsolock.core.presentation import LoggingPresenter, OverlayPresenter
from xsolock.core.tokens.models import TokenRecord, TokenStatus, iso_timestamp
from xsolock.core.tokens.store import TokenStore
from xsolock.core.trace import resolve_trace_id


class SessionKind(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED_GUEST = "UNLOCKED_GUEST"
    UNLOCKED_ADMIN = "UNLOCKED_ADMIN"


class FinalOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class SessionState:
    kind: SessionKind = SessionKind.LOCKED
    token_id: Optional[str] = None
    unlocked_at: Optional[float] = None

    @classmethod
    def locked(cls) -> "SessionState":
        return cls()

    @classmethod
    def guest(cls, token_id: str, unlocked_at: float) -> "SessionState":
        return cls(kind=SessionKind.UNLOCKED_GUEST, token_id=token_id, unlocked_at=unlocked_at)

    @classmethod
    def admin(cls, unlocked_at: float) -> "SessionState":
        return cls(kind=SessionKind.UNLOCKED_ADMIN, unlocked_at=unlocked_at)

    @property
    def armed(self) -> bool:
        return self.kind != SessionKind.LOCKED

    def age(self, now: float) -> Optional[float]:
        if self.unlocked_at is None:
            return None
        return float(now) - float(self.unlocked_at)


@dataclass(frozen=True)
class ScanResult:
    token_id: str
    mode: str  # "guest" | "admin"


class SessionController:
    """
    Owns the station's single session pointer.

    All state-changing paths (scan, webhook, relock, admin reset) run under
    `self.lock`, so at most one guest session is ever armed.
    """

    def __init__(
        self,
        *,
        store: TokenStore,
        station_cfg: StationConfig,
        presenter: Optional[OverlayPresenter] = None,
        event_logger: Any = None,
        logger=None,
        now: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.cfg = station_cfg
        self.logger = logger or get_logger()
        self.presenter = presenter or LoggingPresenter(logger=self.logger)
        self.event_logger = event_logger
        self._now = now or time.time
        self.lock = threading.RLock()
        self._state = SessionState.locked()

    @property
    def state(self) -> SessionState:
        with self.lock:
            return self._state

    def now(self) -> float:
        return float(self._now())

    def status(self) -> Dict[str, Any]:
        with self.lock:
            st = self._state
        age = st.age(self.now())
        return {
            "state": st.kind.value,
            "token_id": st.token_id,
            "unlocked_at": st.unlocked_at,
            "age_seconds": round(age, 3) if age is not None else None,
            "overlay_visible": bool(self.presenter.is_visible()),
        }

    # ---- scan ----
    def scan(self, credential: Any, *, trace_id: Optional[str] = None) -> ScanResult:
        trace_id = resolve_trace_id(trace_id)
        with self.lock:
            try:
                result = self._scan_locked(credential, trace_id)
            except ScanRejected as e:
                self.logger.info(f"Scan rejected: {e.code}")
                self._event(trace_id, "session.scan_rejected", {"reason": e.code, **(e.context or {})})
                raise
        self.logger.info(f"Scan accepted ({result.mode}): {result.token_id}")
        self._event(trace_id, "session.scan_accepted", {"token_id": result.token_id, "mode": result.mode})
        return result

    def _scan_locked(self, credential: Any, trace_id: str) -> ScanResult:
        current = self._state
        if current.kind == SessionKind.UNLOCKED_GUEST:
            raise StateConflictError("session_active", token_id=current.token_id)

        verified = codec.verify(
            credential,
            self.cfg.batch_id,
            self.cfg.hmac_secret,
            self.store,
            accept_listed=bool(self.cfg.accept_listed_tokens),
        )

        admin_id = self.cfg.admin_credential_id
        if admin_id and verified.id == admin_id:
            self._state = SessionState.admin(self.now())
            self.presenter.hide()
            return ScanResult(token_id=verified.id, mode="admin")

        rec = self.store.find_by_id_and_batch(verified.id, verified.batch)
        if rec is None:
            raise CodecError("unknown_token", id=verified.id)
        _require_issued(rec)

        if current.kind == SessionKind.UNLOCKED_ADMIN:
            self._event(trace_id, "session.admin_superseded", {"token_id": rec.id})

        claimed_at = self.now()
        stamp = iso_timestamp(claimed_at)

        def claim(r: TokenRecord) -> None:
            r.status = TokenStatus.IN_USE
            r.claimed_at = stamp
            r.completed_at = None

        self.store.mutate(rec.id, claim)
        self._state = SessionState.guest(rec.id, claimed_at)
        self.presenter.hide()
        return ScanResult(token_id=rec.id, mode="guest")

    # ---- finalize / relock ----
    def finalize(self, outcome: FinalOutcome, *, trace_id: Optional[str] = None) -> bool:
        """
        Close the guest session. Returns True when the token actually moved
        out of IN_USE; the pointer is cleared either way.
        """
        outcome = FinalOutcome(outcome)
        trace_id = resolve_trace_id(trace_id)
        with self.lock:
            st = self._state
            if st.kind != SessionKind.UNLOCKED_GUEST or st.token_id is None:
                return False
            token_id = st.token_id
            changed = False
            rec = self.store.find_by_id(token_id)
            if rec is not None and rec.status == TokenStatus.IN_USE:
                stamp = iso_timestamp(self.now())

                def finish(r: TokenRecord) -> None:
                    r.status = TokenStatus(outcome.value)
                    r.completed_at = stamp if outcome == FinalOutcome.COMPLETED else None

                changed = self.store.mutate(token_id, finish)
            self._state = SessionState.locked()
            self.presenter.show()
        self._event(trace_id, "session.finalized", {"token_id": token_id, "outcome": outcome.value, "changed": changed})
        return changed

    def end_admin(self, *, trace_id: Optional[str] = None) -> bool:
        with self.lock:
            if self._state.kind != SessionKind.UNLOCKED_ADMIN:
                return False
            self._state = SessionState.locked()
            self.presenter.show()
        self._event(resolve_trace_id(trace_id), "session.admin_ended", {})
        return True

    def force_relock(self, *, trace_id: Optional[str] = None) -> bool:
        """Operator relock: always ends LOCKED; cancels an armed guest token."""
        with self.lock:
            kind = self._state.kind
            if kind == SessionKind.UNLOCKED_GUEST:
                changed = self.finalize(FinalOutcome.CANCELLED, trace_id=trace_id)
            elif kind == SessionKind.UNLOCKED_ADMIN:
                self.end_admin(trace_id=trace_id)
                changed = False
            else:
                self.presenter.show()
                changed = False
        if changed:
            self.logger.info("Force relock: cancelled active token")
        return changed

    def release_if_references(self, token_ids: Collection[str], *, trace_id: Optional[str] = None) -> bool:
        """Drop the guest pointer when an administrative change touched its token."""
        with self.lock:
            st = self._state
            if st.kind != SessionKind.UNLOCKED_GUEST or st.token_id not in token_ids:
                return False
            self._state = SessionState.locked()
            self.presenter.show()
        self._event(resolve_trace_id(trace_id), "session.released", {"token_id": st.token_id})
        return True

    def _event(self, trace_id: str, event: str, details: Dict[str, Any]) -> None:
        if self.event_logger is None:
            return
        try:
            self.event_logger.log(trace_id, event, details)
        except OSError as e:
            self.logger.warning(f"Unable to write event {event}: {e}")


def _require_issued(rec: TokenRecord) -> None:
    if rec.status == TokenStatus.ISSUED:
        return
    if rec.status == TokenStatus.COMPLETED:
        raise StateConflictError("already_used", id=rec.id)
    if rec.status == TokenStatus.IN_USE:
        raise StateConflictError("in_use", id=rec.id)
    raise StateConflictError("invalid_state", id=rec.id, status=rec.status.value)
