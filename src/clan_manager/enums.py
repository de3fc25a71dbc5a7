"""
Enumeration types for the clan manager.

These enums provide type-safe constants for fetch outcomes, key health
and logging severity throughout the system.
"""

from enum import Enum


class FetchStatus(Enum):
    """Classification of a single fetched URL."""

    OK = "ok"
    NOT_FOUND = "not_found"
    AUTH_FAILED = "auth_failed"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    CLIENT_ERROR = "client_error"
    BUDGET_EXCEEDED = "budget_exceeded"

    @property
    def is_retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def is_cacheable(self) -> bool:
        return self in (FetchStatus.OK, FetchStatus.NOT_FOUND)


_RETRYABLE = frozenset({
    FetchStatus.AUTH_FAILED,
    FetchStatus.RATE_LIMITED,
    FetchStatus.SERVER_ERROR,
    FetchStatus.NETWORK_ERROR,
})


class KeyHealth(Enum):
    """Result of pinging the stats API with a single key."""

    ACTIVE = "active"
    BANNED = "banned"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR]
