from __future__ import annotations

import json
from typing import Any


class RequestRejected(ValueError):
    def __init__(self, reason: str, status_code: int = 400):
        super().__init__(reason)
        self.reason = reason
        self.status_code = int(status_code)


def enforce_body_limits(body: bytes, *, max_bytes: int) -> None:
    if not body:
        return
    if len(body) > int(max_bytes):
        raise RequestRejected("request_too_large", 413)
    if b"\x00" in body:
        raise RequestRejected("binary_payload")


def parse_json_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise RequestRejected("malformed_json") from None


def json_depth(obj: Any, max_depth: int = 6) -> int:
    """Nesting depth of a decoded JSON value; raises when it exceeds max_depth."""
    stack = [(obj, 1)]
    deepest = 1
    while stack:
        cur, d = stack.pop()
        if d > max_depth:
            raise RequestRejected("json_too_deep")
        deepest = max(deepest, d)
        if isinstance(cur, dict):
            stack.extend((v, d + 1) for v in cur.values())
        elif isinstance(cur, list):
            stack.extend((v, d + 1) for v in cur)
    return deepest
