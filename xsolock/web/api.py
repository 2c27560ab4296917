from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from xsolock.core.admin_reset import BulkResetEngine, ResetRequest
from xsolock.core.config.models import WebConfig
from xsolock.core.error_reporter import ErrorReporter
from xsolock.core.errors import AuthorizationError, CodecError, LockError, StateConflictError, ValidationError
from xsolock.core.events import EventLogger
from xsolock.core.security_events import SecurityAuditLogger
from xsolock.core.session import SessionController
from xsolock.core.tokens.audit import status_counts
from xsolock.core.webhook import WebhookDebounceEngine
from xsolock.web.middleware import StationRequestMiddleware, client_ip
from xsolock.web.models import RelockResponse, ResetResponse, ScanRequest, ScanResponse, SessionStatusResponse, StatsResponse


_STATUS_BY_CODE = {
    "unauthorized": 401,
    "forbidden": 403,
    "validation_error": 400,
    "storage_error": 503,
    "config_error": 500,
}


def _is_localhost(request: Request) -> bool:
    host = client_ip(request) or ""
    return host in {"127.0.0.1", "::1", "localhost"}


def _trace_id(request: Request) -> str:
    return getattr(getattr(request, "state", None), "trace_id", "web")


def status_for(exc: LockError) -> int:
    if isinstance(exc, StateConflictError):
        return 409
    if isinstance(exc, CodecError):
        return 400
    return _STATUS_BY_CODE.get(exc.code, 500)


def create_app(
    *,
    controller: SessionController,
    webhook: WebhookDebounceEngine,
    reset_engine: BulkResetEngine,
    web_cfg: Optional[WebConfig] = None,
    event_logger: Optional[EventLogger] = None,
    audit_logger: Optional[SecurityAuditLogger] = None,
    error_reporter: Optional[ErrorReporter] = None,
    allow_remote_relock: bool = False,
) -> FastAPI:
    app = FastAPI(title="XSO Lock", version="0.1.0")
    web_cfg = web_cfg or WebConfig()
    audit_logger = audit_logger or SecurityAuditLogger()
    reporter = error_reporter or ErrorReporter()
    store = controller.store

    app.middleware("http")(StationRequestMiddleware(web_cfg=web_cfg, event_logger=event_logger, audit_logger=audit_logger))

    @app.exception_handler(LockError)
    async def lock_error_handler(request: Request, exc: LockError):
        code = status_for(exc)
        if code >= 500:
            reporter.write_error(exc, trace_id=_trace_id(request), subsystem="web", internal_exc=None)
        return JSONResponse(status_code=code, content={"error": exc.user_message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError(errors=exc.errors())
        return JSONResponse(status_code=400, content={"error": err.user_message, "code": err.code})

    @app.get("/health")
    def health():
        return {"ok": True}

    def _hook(request: Request, event: Optional[str], path_secret: Optional[str]) -> PlainTextResponse:
        q = request.query_params
        # query event_type wins over the path piece
        phase = q.get("event_type") or event or ""
        secret = q.get("secret") or path_secret
        try:
            outcome = webhook.handle(phase, secret, trace_id=_trace_id(request), ip=client_ip(request))
        except AuthorizationError:
            return PlainTextResponse("forbidden", status_code=403)
        return PlainTextResponse(outcome.result)

    @app.get("/hook")
    def hook_query(request: Request):
        return _hook(request, None, None)

    @app.get("/hook/{event}")
    def hook_event(event: str, request: Request):
        return _hook(request, event, None)

    @app.get("/hook/{event}/{secret}")
    def hook_event_secret(event: str, secret: str, request: Request):
        return _hook(request, event, secret)

    @app.post("/api/qr/scan", response_model=ScanResponse)
    def scan(req: ScanRequest, request: Request):
        result = controller.scan(req.payload, trace_id=_trace_id(request))
        return ScanResponse(token_id=result.token_id, mode=result.mode)

    @app.post("/api/admin/reset", response_model=ResetResponse)
    def admin_reset(req: ResetRequest, request: Request):
        result = reset_engine.reset(req, trace_id=_trace_id(request), ip=client_ip(request))
        return ResetResponse(**result.to_dict())

    @app.get("/api/session", response_model=SessionStatusResponse)
    def session_status():
        return SessionStatusResponse(**controller.status())

    @app.get("/api/stats", response_model=StatsResponse)
    def stats(batch: Optional[str] = None):
        name = (batch or "").strip() or None
        counts = status_counts(store, name)
        return StatsResponse(batch=name, counts=counts, total=sum(counts.values()), session=SessionStatusResponse(**controller.status()))

    @app.post("/api/relock", response_model=RelockResponse)
    def relock(request: Request):
        if not allow_remote_relock and not _is_localhost(request):
            audit_logger.log(trace_id=_trace_id(request), severity="WARN", event="relock.remote_denied", ip=client_ip(request), endpoint="/api/relock", outcome="denied")
            raise AuthorizationError("Relock is only available on the station.", code="forbidden")
        cancelled = controller.force_relock(trace_id=_trace_id(request))
        return RelockResponse(cancelled=cancelled, state=controller.state.kind.value)

    return app
