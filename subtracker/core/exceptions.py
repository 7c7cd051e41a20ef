"""
Error taxonomy surfaced to the UI layer.
Remote failures are classified into network, authentication, not-found
and server errors so the caller can tell "working offline" apart from
"please log in again" and from "something went wrong".
"""
from typing import Any, Dict, Optional


class SubTrackerError(Exception):
    """
    Base exception for all SubTracker errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether retrying later may succeed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "ST_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class NetworkError(SubTrackerError):
    """No connectivity, refused connection or timeout."""

    def __init__(self, message: str = "Network unavailable", **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message=message, code="NET_001", **kwargs)


class RemoteError(SubTrackerError):
    """The server answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: str = "API_000", **kwargs):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message=message, code=code, details=details, **kwargs)
        self.status_code = status_code


class AuthenticationError(RemoteError):
    """401/403: the session must be re-established."""

    def __init__(self, message: str = "Authentication failed", status_code: Optional[int] = 401, **kwargs):
        super().__init__(message=message, status_code=status_code, code="AUTH_001", **kwargs)


class NotFoundError(RemoteError):
    """404 on an update or delete target."""

    def __init__(self, message: str = "Resource not found", status_code: Optional[int] = 404, **kwargs):
        super().__init__(message=message, status_code=status_code, code="API_404", **kwargs)


class ServerError(RemoteError):
    """5xx or any unclassified error response."""

    def __init__(self, message: str = "Server error", status_code: Optional[int] = 500, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message=message, status_code=status_code, code="API_500", **kwargs)


class LocalStoreError(SubTrackerError):
    """The on-device cache could not satisfy a read or write."""

    def __init__(self, message: str, table: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        super().__init__(message=message, code="STORE_001", details=details, **kwargs)
