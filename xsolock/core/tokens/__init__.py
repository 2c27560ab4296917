from xsolock.core.tokens.models import (
    DEFAULT_RESET_FROM,
    TERMINAL_STATUSES,
    TokenRecord,
    TokenStatus,
    iso_timestamp,
    parse_status,
    parse_status_set,
)
from xsolock.core.tokens.store import TokenStore

__all__ = [
    "DEFAULT_RESET_FROM",
    "TERMINAL_STATUSES",
    "TokenRecord",
    "TokenStatus",
    "TokenStore",
    "iso_timestamp",
    "parse_status",
    "parse_status_set",
]
