from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from xsolock.core.config.models import AdminConfig
from xsolock.core.errors import AuthorizationError, ValidationError
from xsolock.core.logger import get_logger
from xsolock.core.session import SessionController
from xsolock.core.tokens.models import TokenRecord, TokenStatus, iso_timestamp, parse_status, parse_status_set
from xsolock.core.tokens.store import TokenStore
from xsolock.core.trace import resolve_trace_id


class ResetMode(str, Enum):
    BATCH_ALL = "batch_all"
    BATCH_INUSE = "batch_inuse"
    UUID_ONE = "uuid_one"
    ALL_BATCHES = "all_batches"


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    pin: str = ""
    mode: ResetMode
    batch: Optional[str] = None
    uuid: Optional[str] = None
    to: Optional[str] = None
    from_: Optional[Union[List[str], str]] = Field(default=None, alias="from")
    dry_run: bool = False


@dataclass
class ResetResult:
    changed: int
    before: Dict[str, int] = field(default_factory=dict)
    after: Dict[str, int] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"changed": self.changed, "before": dict(self.before), "after": dict(self.after), "dry_run": self.dry_run}


def reset_mutation(target: TokenStatus, now: float) -> Callable[[TokenRecord], None]:
    """Status change plus the timestamp rules that go with the target status."""
    stamp = iso_timestamp(now)

    def apply(rec: TokenRecord) -> None:
        rec.status = target
        if target == TokenStatus.ISSUED:
            rec.claimed_at = None
            rec.completed_at = None
        elif target == TokenStatus.IN_USE:
            rec.claimed_at = stamp
            rec.completed_at = None
        elif target == TokenStatus.COMPLETED:
            rec.completed_at = rec.completed_at or stamp
        else:
            rec.completed_at = None

    return apply


class BulkResetEngine:
    def __init__(
        self,
        *,
        store: TokenStore,
        controller: SessionController,
        admin_cfg: AdminConfig,
        audit_logger: Any = None,
        logger=None,
        now: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.controller = controller
        self.cfg = admin_cfg
        self.audit_logger = audit_logger
        self.logger = logger or get_logger()
        self._now = now or controller.now

    def check_pin(self, pin: Optional[str]) -> bool:
        expected = self.cfg.pin or ""
        if not expected:
            return False
        return hmac.compare_digest(str(pin or "").encode("utf-8"), expected.encode("utf-8"))

    def reset(self, request: ResetRequest, *, trace_id: Optional[str] = None, ip: Optional[str] = None) -> ResetResult:
        trace_id = resolve_trace_id(trace_id)
        if not self.check_pin(request.pin):
            self._audit(trace_id, "admin.reset_denied", ip, "denied", {"mode": request.mode.value})
            raise AuthorizationError(code="unauthorized", mode=request.mode.value)

        target = parse_status(request.to or self.cfg.default_to)
        from_set = parse_status_set(request.from_, default=parse_status_set(self.cfg.default_from))
        predicate, scope_batch = self._predicate(request, from_set)
        fn = reset_mutation(target, float(self._now()))

        with self.controller.lock:
            matched = self.store.filter(predicate)
            before: Dict[str, int] = {}
            for rec in matched:
                before[rec.status.value] = before.get(rec.status.value, 0) + 1
            ids = [r.id for r in matched]

            if request.dry_run:
                changed = sum(1 for r in matched if _would_change(r, fn))
            else:
                matched_set = set(ids)
                changed = len(self.store.mutate_many(lambda r: r.id in matched_set, fn))
                self.controller.release_if_references(matched_set, trace_id=trace_id)
            after = self.store.counts(batch=scope_batch)

        result = ResetResult(changed=changed, before=before, after=after, dry_run=request.dry_run)
        self.logger.info(
            f"Admin reset mode={request.mode.value} to={target.value} matched={len(ids)} changed={changed}"
            + (" (dry-run)" if request.dry_run else "")
        )
        self._audit(
            trace_id,
            "admin.reset",
            ip,
            "ok",
            {
                "mode": request.mode.value,
                "batch": request.batch,
                "uuid": request.uuid,
                "to": target.value,
                "from": sorted(s.value for s in from_set),
                "changed": changed,
                "before": before,
                "dry_run": request.dry_run,
            },
        )
        return result

    def _predicate(self, request: ResetRequest, from_set: FrozenSet[TokenStatus]):
        mode = request.mode
        if mode in {ResetMode.BATCH_ALL, ResetMode.BATCH_INUSE}:
            batch = (request.batch or "").strip()
            if not batch:
                raise ValidationError("batch is required for this mode.", mode=mode.value)
            if mode == ResetMode.BATCH_INUSE:
                return (lambda r: r.batch_id == batch and r.status == TokenStatus.IN_USE), batch
            return (lambda r: r.batch_id == batch and r.status in from_set), batch
        if mode == ResetMode.UUID_ONE:
            token_id = (request.uuid or "").strip()
            if not token_id:
                raise ValidationError("uuid is required for this mode.", mode=mode.value)
            return (lambda r: r.id == token_id and r.status in from_set), None
        return (lambda r: r.status in from_set), None

    def _audit(self, trace_id: str, event: str, ip: Optional[str], outcome: str, details: Dict[str, Any]) -> None:
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.log(
                trace_id=trace_id,
                severity="WARN" if outcome == "denied" else "INFO",
                event=event,
                ip=ip,
                endpoint="/api/admin/reset",
                outcome=outcome,
                details=details,
            )
        except OSError as e:
            self.logger.warning(f"Unable to write audit line {event}: {e}")


def _would_change(rec: TokenRecord, fn: Callable[[TokenRecord], None]) -> bool:
    work = rec.model_copy()
    fn(work)
    return work.model_dump() != rec.model_dump()
