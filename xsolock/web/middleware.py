from __future__ import annotations

import time
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from xsolock.core.config.models import WebConfig
from xsolock.core.events import EventLogger
from xsolock.core.security_events import SecurityAuditLogger
from xsolock.core.trace import new_trace_id
from xsolock.web.request_guard import RequestRejected, enforce_body_limits, json_depth, parse_json_body


def client_ip(request: Request) -> Optional[str]:
    return getattr(getattr(request, "client", None), "host", None)


def _audit_endpoint(path: str) -> str:
    # hook secrets may travel in the path
    if path.startswith("/hook/"):
        return "/hook/" + path[len("/hook/") :].split("/", 1)[0]
    return path


class StationRequestMiddleware:
    """
    Per-request chain (order matters):
    1) trace_id + request audit
    2) body size + JSON guard for POST bodies
    3) response audit
    """

    def __init__(self, *, web_cfg: WebConfig, event_logger: Optional[EventLogger], audit_logger: SecurityAuditLogger):
        self.web_cfg = web_cfg
        self.event_logger = event_logger
        self.audit_logger = audit_logger

    async def __call__(self, request: Request, call_next):  # noqa: ANN001
        trace_id = request.headers.get("X-Trace-Id") or new_trace_id()
        request.state.trace_id = trace_id
        ip = client_ip(request)
        path = _audit_endpoint(request.url.path)
        method = request.method
        t0 = time.time()

        self.audit_logger.log(trace_id=trace_id, severity="INFO", event="web.request", ip=ip, endpoint=path, outcome="received", details={"method": method})
        if self.event_logger is not None:
            self.event_logger.log(trace_id, "web.request", {"path": path, "method": method, "client_host": ip})

        if method in {"POST", "PUT", "PATCH"}:
            try:
                body = await request.body()
                enforce_body_limits(body, max_bytes=int(self.web_cfg.max_request_bytes))
                if "application/json" in request.headers.get("content-type", ""):
                    obj = parse_json_body(body)
                    if obj is not None:
                        json_depth(obj)
            except RequestRejected as e:
                self.audit_logger.log(trace_id=trace_id, severity="WARN", event="web.request_rejected", ip=ip, endpoint=path, outcome="rejected", details={"reason": e.reason})
                return JSONResponse(status_code=e.status_code, content={"error": "Request rejected.", "code": e.reason})

        try:
            resp = await call_next(request)
        except Exception as e:
            self.audit_logger.log(trace_id=trace_id, severity="ERROR", event="web.exception", ip=ip, endpoint=path, outcome="error", details={"error": str(e)})
            raise
        resp.headers["X-Trace-Id"] = trace_id
        self.audit_logger.log(
            trace_id=trace_id,
            severity="INFO",
            event="web.response",
            ip=ip,
            endpoint=path,
            outcome=str(resp.status_code),
            details={"latency_ms": round((time.time() - t0) * 1000.0, 1)},
        )
        return resp
