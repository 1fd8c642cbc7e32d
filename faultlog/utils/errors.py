"""Error hierarchy for faultlog.

Errors fall into three groups:
- Transport errors (HTTPError, NetworkError) raised by wrapped network calls
- Retry control errors (RetryAbortedError, UnknownPolicyError)
- Diagnostic-store errors (StorageError, RemoteDeliveryError), which never
  escape DiagnosticLog
"""

from typing import Any, Optional


class FaultlogError(Exception):
    """Base exception for all faultlog errors."""

    pass


class HTTPError(FaultlogError):
    """Raised when a server answers with an error status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @classmethod
    def from_response(cls, response: Any) -> "HTTPError":
        """Build from an httpx.Response."""
        try:
            target = f"{response.request.method} {response.request.url}"
        except RuntimeError:
            # Response built without a request
            target = "Request"
        return cls(
            f"{target} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            request_id=response.headers.get("X-Request-ID"),
        )


class NetworkError(FaultlogError):
    """Raised when a request could not complete at the transport level.

    connect_failed is True when the request never reached the server, which
    makes it safe to retry even for non-idempotent operations.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        connect_failed: bool = False,
    ):
        super().__init__(message)
        self.url = url
        self.connect_failed = connect_failed


class RetryAbortedError(FaultlogError):
    """Raised when a retry loop is aborted through its AbortSignal."""

    def __init__(
        self,
        message: str = "Retry aborted",
        attempts: int = 0,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.reason = reason


class UnknownPolicyError(FaultlogError):
    """Raised when a retry policy name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown retry policy: {name!r}")
        self.name = name


class StorageError(FaultlogError):
    """Raised by storage backends when a read, write or remove fails."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class StorageQuotaExceededError(StorageError):
    """Raised when a stored value would exceed the backend quota."""

    def __init__(self, key: str, size: int, quota: int):
        super().__init__(
            f"Value for {key!r} is {size} bytes, quota is {quota} bytes",
            key=key,
        )
        self.size = size
        self.quota = quota


class RemoteDeliveryError(FaultlogError):
    """Raised when the remote sink fails to deliver a record."""

    def __init__(
        self,
        message: str,
        endpoint: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
