"""
Enumeration types for the sync service.

These enums provide type-safe constants for log levels, DNS record types
and retry decisions throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        """Numeric severity used for threshold filtering."""
        return _SEVERITY[self]


_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class RecordType(Enum):
    """DNS record types this service creates."""

    A = "A"
    CNAME = "CNAME"


class RetryDecision(Enum):
    """How the retry policy treats a failed attempt."""

    NEVER = "never"  # fatal or fail-fast
    BACKOFF = "backoff"  # exponential backoff
    RETRY_AFTER = "retry_after"  # honor server-provided delay
