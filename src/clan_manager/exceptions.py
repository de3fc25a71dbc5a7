"""
Exception classes for the clan manager.

All exceptions inherit from ClanManagerError and carry a machine-readable
code, a human-readable message and optional structured details.
"""

from typing import Optional


class ClanManagerError(Exception):
    """Base exception for all clan manager errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ClanManagerError):
    """Raised when configuration is missing or invalid."""


class ValidationError(ClanManagerError):
    """Raised when a player or clan tag cannot be normalized."""


class NetworkError(ClanManagerError):
    """Raised when requests fail at the transport level or with 5xx responses."""


class KeyPoolExhaustedError(ClanManagerError):
    """Raised when every API key of a run has been banned."""


class RetryExhaustedError(ClanManagerError):
    """Raised when a batch still has unresolved URLs after the last attempt."""


class UpstreamDataError(ClanManagerError):
    """Raised when a required upstream payload is missing or malformed."""


class PersistenceError(ClanManagerError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""


class PersistedStateCorruptError(PersistenceError):
    """Raised when a persisted value cannot be decoded."""


class SafetyLockError(ClanManagerError):
    """Raised when a ranking run would replace existing rows with nothing."""


class RunLockError(ClanManagerError):
    """Raised when the run lock cannot be acquired in time."""
