from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from xsolock.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LockError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# Operator-facing messages for every scan rejection reason.
SCAN_REJECTION_MESSAGES: Dict[str, str] = {
    "unrecognized_format": "QR not recognized",
    "batch_mismatch": "QR is not for this event",
    "bad_signature": "QR is not valid",
    "unknown_token": "QR not recognized",
    "already_used": "QR already used",
    "in_use": "QR in use",
    "invalid_state": "QR is not in ISSUED state",
    "session_active": "Another session is in progress",
}


class ScanRejected(LockError):
    """Base for every rejection on the scan path; `code` is the stable reason."""

    @property
    def reason(self) -> str:
        return self.code


class CodecError(ScanRejected):
    def __init__(self, reason: str, **ctx: Any):
        super().__init__(reason, SCAN_REJECTION_MESSAGES.get(reason, "Invalid QR"), severity=Severity.WARN, recoverable=True, context=ctx)


class StateConflictError(ScanRejected):
    def __init__(self, reason: str, **ctx: Any):
        super().__init__(reason, SCAN_REJECTION_MESSAGES.get(reason, "Invalid QR"), severity=Severity.WARN, recoverable=True, context=ctx)


class AuthorizationError(LockError):
    def __init__(self, user_message: str = "Unauthorized.", *, code: str = "unauthorized", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class StorageError(LockError):
    def __init__(self, user_message: str = "Token store unavailable.", **ctx: Any):
        super().__init__("storage_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ValidationError(LockError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ConfigError(LockError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
