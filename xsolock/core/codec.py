from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Optional

from xsolock.core.errors import CodecError

CREDENTIAL_VERSION = "ciu:1"
CREDENTIAL_PREFIX = CREDENTIAL_VERSION + "|"


@dataclass(frozen=True)
class ParsedCredential:
    batch: str
    id: str
    signature: str


@dataclass(frozen=True)
class VerifiedCredential:
    batch: str
    id: str
    listed: bool = False


def b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def sign(batch: str, token_id: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), f"{batch}.{token_id}".encode("utf-8"), hashlib.sha256).digest()
    return b64url(mac)


def build_credential(batch: str, token_id: str, secret: str) -> str:
    return f"{CREDENTIAL_PREFIX}{batch}|{token_id}|{sign(batch, token_id, secret)}"


def parse(credential: Any) -> ParsedCredential:
    if not isinstance(credential, str) or not credential.startswith(CREDENTIAL_PREFIX):
        raise CodecError("unrecognized_format")
    parts = credential.split("|")
    if len(parts) != 4:
        raise CodecError("unrecognized_format", parts=len(parts))
    _, batch, token_id, signature = parts
    return ParsedCredential(batch=batch, id=token_id, signature=signature)


def verify(
    credential: Any,
    expected_batch: str,
    signing_secret: str,
    store: Optional[Any] = None,
    *,
    accept_listed: bool = True,
) -> VerifiedCredential:
    """
    Check a scanned credential against the station's batch and secret.

    A credential stored verbatim in the token store is accepted without the
    signature check when `accept_listed` is on. Otherwise the HMAC is
    recomputed and compared in constant time.
    """
    parsed = parse(credential)
    if parsed.batch != expected_batch:
        raise CodecError("batch_mismatch", batch=parsed.batch, expected=expected_batch)

    if accept_listed and store is not None:
        rec = store.find_by_id_and_batch(parsed.id, parsed.batch)
        if rec is not None and rec.credential == credential:
            return VerifiedCredential(batch=parsed.batch, id=parsed.id, listed=True)

    expected = sign(parsed.batch, parsed.id, signing_secret)
    if not hmac.compare_digest(parsed.signature.encode("utf-8"), expected.encode("utf-8")):
        raise CodecError("bad_signature", id=parsed.id)
    return VerifiedCredential(batch=parsed.batch, id=parsed.id)
