from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from xsolock.core.admin_reset import BulkResetEngine
from xsolock.core.codec import build_credential
from xsolock.core.config.models import WebConfig
from xsolock.core.error_reporter import ErrorReporter
from xsolock.core.events import EventLogger
from xsolock.core.security_events import SecurityAuditLogger
from xsolock.core.session import SessionController
from xsolock.core.tokens.issuance import new_token
from xsolock.core.webhook import WebhookDebounceEngine
from xsolock.web.api import create_app

from .helpers.builders import BATCH, SECRET, admin_cfg, hook_cfg, make_store, read_tokens, station_cfg, token_dict
from .helpers.fakes import DummyLogger, FakeClock, RecordingPresenter


class Harness:
    def __init__(self, tmp_path, *, hook_secret: str = "", allow_remote_relock: bool = False, max_request_bytes: int = 16384):
        self.clock = FakeClock()
        self.store = make_store(tmp_path, [token_dict("t1"), token_dict("t2"), token_dict("done", status="COMPLETED")], logger=DummyLogger())
        self.presenter = RecordingPresenter()
        self.controller = SessionController(store=self.store, station_cfg=station_cfg(), presenter=self.presenter, logger=DummyLogger(), now=self.clock.time)
        self.audit_path = tmp_path / "logs" / "security.log"
        audit = SecurityAuditLogger(path=str(self.audit_path))
        webhook = WebhookDebounceEngine(controller=self.controller, hook_cfg=hook_cfg(secret=hook_secret), audit_logger=audit, logger=DummyLogger())
        reset = BulkResetEngine(store=self.store, controller=self.controller, admin_cfg=admin_cfg(), audit_logger=audit, logger=DummyLogger())
        app = create_app(
            controller=self.controller,
            webhook=webhook,
            reset_engine=reset,
            web_cfg=WebConfig(max_request_bytes=max_request_bytes),
            event_logger=EventLogger(str(tmp_path / "logs" / "events.jsonl")),
            audit_logger=audit,
            error_reporter=ErrorReporter(path=str(tmp_path / "logs" / "errors.jsonl")),
            allow_remote_relock=allow_remote_relock,
        )
        self.client = TestClient(app)

    def scan(self, token_id: str, batch: str = BATCH):
        return self.client.post("/api/qr/scan", json={"payload": build_credential(batch, token_id, SECRET)})

    def audit_events(self):
        return [json.loads(x)["event"] for x in self.audit_path.read_text(encoding="utf-8").splitlines() if x.strip()]


@pytest.fixture
def h(tmp_path):
    return Harness(tmp_path)


def test_health(h):
    r = h.client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_scan_success(h):
    r = h.scan("t1")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "token_id": "t1", "mode": "guest"}
    assert read_tokens(h.store)["t1"]["status"] == "IN_USE"
    assert "X-Trace-Id" in r.headers


@pytest.mark.parametrize(
    "body,code",
    [
        ({"payload": "nonsense"}, "unrecognized_format"),
        ({}, "unrecognized_format"),
        ({"payload": 12}, "unrecognized_format"),
        ({"payload": build_credential("B9", "t1", SECRET)}, "batch_mismatch"),
        ({"payload": build_credential(BATCH, "t1", "nope")}, "bad_signature"),
        ({"payload": build_credential(BATCH, "ghost", SECRET)}, "unknown_token"),
    ],
)
def test_scan_client_errors_are_400(h, body, code):
    r = h.client.post("/api/qr/scan", json=body)
    assert r.status_code == 400
    assert r.json()["code"] == code
    assert r.json()["error"]


def test_scan_state_conflicts_are_409(h):
    r = h.scan("done")
    assert r.status_code == 409
    assert r.json() == {"error": "QR already used", "code": "already_used"}

    assert h.scan("t1").status_code == 200
    r = h.scan("t2")
    assert r.status_code == 409
    assert r.json()["code"] == "session_active"


def test_hook_debounce_over_http(h):
    h.scan("t1")
    h.clock.advance(1)
    r = h.client.get("/hook", params={"event_type": "session_end"})
    assert r.status_code == 200 and r.text == "ok"
    assert h.controller.state.kind.value == "UNLOCKED_GUEST"

    h.clock.advance(3)
    r = h.client.get("/hook/session_end")
    assert r.text == "ok"
    assert h.controller.state.kind.value == "LOCKED"
    assert read_tokens(h.store)["t1"]["status"] == "COMPLETED"


def test_hook_query_event_type_wins_over_path(h):
    h.scan("t1")
    h.clock.advance(10)
    r = h.client.get("/hook/session_end", params={"event_type": "countdown"})
    assert r.text == "ignored"
    assert h.controller.state.kind.value == "UNLOCKED_GUEST"


def test_hook_secret(tmp_path):
    h = Harness(tmp_path, hook_secret="s3cret")
    r = h.client.get("/hook/session_start")
    assert r.status_code == 403 and r.text == "forbidden"
    r = h.client.get("/hook/session_start", params={"secret": "bad"})
    assert r.status_code == 403
    assert h.client.get("/hook/session_start/s3cret").text == "ignored"
    assert h.client.get("/hook", params={"event_type": "session_end", "secret": "s3cret"}).text == "ok"
    assert "hook.forbidden" in h.audit_events()


def test_admin_reset_endpoint(h):
    h.scan("t1")
    r = h.client.post("/api/admin/reset", json={"pin": "1234", "mode": "batch_inuse", "batch": BATCH})
    assert r.status_code == 200
    body = r.json()
    assert body["changed"] == 1
    assert body["before"] == {"IN_USE": 1}
    assert body["after"]["ISSUED"] == 2
    assert body["dry_run"] is False
    assert h.controller.state.kind.value == "LOCKED"


def test_admin_reset_errors(h):
    r = h.client.post("/api/admin/reset", json={"pin": "9999", "mode": "all_batches"})
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized"

    r = h.client.post("/api/admin/reset", json={"pin": "1234", "mode": "batch_all"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    r = h.client.post("/api/admin/reset", json={"pin": "1234", "mode": "everything"})
    assert r.status_code == 400

    r = h.client.post("/api/admin/reset", json={"pin": "1234", "mode": "all_batches", "to": "GONE"})
    assert r.status_code == 400
    assert "admin.reset_denied" in h.audit_events()


def test_stats_and_session(h):
    h.scan("t1")
    r = h.client.get("/api/stats")
    assert r.status_code == 200
    body = r.json()
    assert body["batch"] is None
    assert body["counts"] == {"ISSUED": 1, "IN_USE": 1, "COMPLETED": 1, "CANCELLED": 0}
    assert body["total"] == 3
    assert body["session"]["state"] == "UNLOCKED_GUEST"

    assert h.client.get("/api/stats", params={"batch": "B2"}).json()["total"] == 0
    s = h.client.get("/api/session").json()
    assert s["token_id"] == "t1" and s["overlay_visible"] is False


def test_stats_without_batch_cover_every_batch(h):
    h.store.add([new_token("B2", SECRET, token_id="x1")])
    h.scan("t1")

    body = h.client.get("/api/stats").json()
    assert body["batch"] is None
    assert body["total"] == 4
    assert body["counts"] == {"ISSUED": 2, "IN_USE": 1, "COMPLETED": 1, "CANCELLED": 0}

    b1 = h.client.get("/api/stats", params={"batch": BATCH}).json()
    assert (b1["batch"], b1["total"]) == (BATCH, 3)
    b2 = h.client.get("/api/stats", params={"batch": "B2"}).json()
    assert (b2["batch"], b2["total"]) == ("B2", 1)
    assert h.client.get("/api/stats", params={"batch": "  "}).json()["total"] == 4


def test_relock_is_local_only(h):
    h.scan("t1")
    r = h.client.post("/api/relock")
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"
    assert h.controller.state.kind.value == "UNLOCKED_GUEST"


def test_relock_cancels_active_token(tmp_path):
    h = Harness(tmp_path, allow_remote_relock=True)
    h.scan("t1")
    r = h.client.post("/api/relock")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "cancelled": True, "state": "LOCKED"}
    assert read_tokens(h.store)["t1"]["status"] == "CANCELLED"
    assert h.presenter.visible is True


def test_oversized_body_is_rejected(tmp_path):
    h = Harness(tmp_path, max_request_bytes=256)
    r = h.client.post("/api/qr/scan", json={"payload": "x" * 1000})
    assert r.status_code == 413
    assert r.json()["code"] == "request_too_large"
    assert h.controller.state.kind.value == "LOCKED"


def test_malformed_json_is_rejected(h):
    r = h.client.post("/api/qr/scan", content=b"{nope", headers={"content-type": "application/json"})
    assert r.status_code == 400


def test_requests_are_audited(h):
    h.client.get("/health")
    events = h.audit_events()
    assert "web.request" in events and "web.response" in events


def test_hook_secret_in_path_is_not_audited(tmp_path):
    h = Harness(tmp_path, hook_secret="s3cret")
    h.client.get("/hook/session_start/s3cret")
    assert "s3cret" not in h.audit_path.read_text(encoding="utf-8")
