from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Callable, Optional

from xsolock.core.config.models import HookConfig
from xsolock.core.errors import AuthorizationError
from xsolock.core.logger import get_logger
from xsolock.core.session import FinalOutcome, SessionController, SessionKind
from xsolock.core.trace import resolve_trace_id


def normalize_phase(raw: Any) -> str:
    return str(raw or "").strip().lower().replace("-", "_")


@dataclass(frozen=True)
class HookOutcome:
    result: str  # "ok" | "ignored"
    finalized: bool = False
    phase: str = ""


class WebhookDebounceEngine:
    """
    Turns photo-booth phase notifications into relocks.

    Only the completion phase counts, and only once the session has been
    armed for at least `min_seconds_before_session_end`. Earlier or repeated
    completion notifications are answered "ok" with no effect.
    """

    def __init__(
        self,
        *,
        controller: SessionController,
        hook_cfg: HookConfig,
        audit_logger: Any = None,
        logger=None,
        now: Optional[Callable[[], float]] = None,
    ) -> None:
        self.controller = controller
        self.cfg = hook_cfg
        self.audit_logger = audit_logger
        self.logger = logger or get_logger()
        self._now = now or controller.now
        self.completion_phase = normalize_phase(hook_cfg.completion_phase)

    def check_secret(self, secret: Optional[str]) -> bool:
        expected = self.cfg.secret or ""
        if not expected:
            return True
        return hmac.compare_digest(str(secret or "").encode("utf-8"), expected.encode("utf-8"))

    def handle(self, phase: Any, secret: Optional[str] = None, *, trace_id: Optional[str] = None, ip: Optional[str] = None) -> HookOutcome:
        trace_id = resolve_trace_id(trace_id)
        normalized = normalize_phase(phase)
        if not self.check_secret(secret):
            self._audit(trace_id, "hook.forbidden", ip, "denied", {"phase": normalized})
            raise AuthorizationError("forbidden", code="forbidden", phase=normalized)

        if normalized != self.completion_phase:
            self.logger.info(f"Webhook phase {normalized or '<none>'}: ignored")
            return HookOutcome(result="ignored", phase=normalized)

        finalized = False
        with self.controller.lock:
            state = self.controller.state
            age = state.age(float(self._now()))
            floor = float(self.cfg.min_seconds_before_session_end)
            if not state.armed:
                self.logger.info("Webhook completion while locked: no-op")
            elif age is None or age < floor:
                self.logger.info(f"Webhook completion {age or 0.0:.2f}s after unlock (< {floor:g}s): ignored")
            elif state.kind == SessionKind.UNLOCKED_GUEST:
                finalized = self.controller.finalize(FinalOutcome.COMPLETED, trace_id=trace_id)
            else:
                self.controller.end_admin(trace_id=trace_id)
        if finalized:
            self._audit(trace_id, "hook.session_completed", ip, "ok", {"phase": normalized})
        return HookOutcome(result="ok", finalized=finalized, phase=normalized)

    def _audit(self, trace_id: str, event: str, ip: Optional[str], outcome: str, details: dict) -> None:
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.log(
                trace_id=trace_id,
                severity="WARN" if outcome == "denied" else "INFO",
                event=event,
                ip=ip,
                endpoint="/hook",
                outcome=outcome,
                details=details,
            )
        except OSError as e:
            self.logger.warning(f"Unable to write audit line {event}: {e}")
