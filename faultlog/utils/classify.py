"""Failure classification.

Two views of the same failure:
- is_transient / is_unprocessed: should a retry policy try again?
- classify_api_error / classify_response: what should a caller tell the user?
"""

import json
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from .errors import HTTPError, NetworkError

# Statuses worth retrying besides 5xx: request timeout, too many requests
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})

# Statuses where the server did not act on the request
UNPROCESSED_STATUSES = frozenset({408, 429, 503})


def status_of(error: BaseException) -> Optional[int]:
    """Extract the HTTP status carried by an error, if any."""
    if isinstance(error, HTTPError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_transient(error: BaseException) -> bool:
    """Network failures, 5xx, 408 and 429 are transient. Everything else is not."""
    if isinstance(error, (NetworkError, httpx.TransportError)):
        return True
    status = status_of(error)
    if status is None:
        return False
    return status >= 500 or status in RETRYABLE_CLIENT_STATUSES


def is_unprocessed(error: BaseException) -> bool:
    """True when the failed request is known not to have been processed.

    Retrying such a request cannot duplicate a side effect.
    """
    if isinstance(error, NetworkError):
        return error.connect_failed
    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True
    return status_of(error) in UNPROCESSED_STATUSES


class ApiErrorType(str, Enum):
    """User-facing failure categories."""

    NETWORK = "network"
    AUTH = "auth"
    PERMISSION = "permission"
    VALIDATION = "validation"
    SERVER = "server"
    UNKNOWN = "unknown"


class ApiErrorInfo(BaseModel):
    """Classified API failure."""

    type: ApiErrorType
    message: str
    status_code: Optional[int] = None


_DEFAULT_MESSAGES = {
    401: (ApiErrorType.AUTH, "Authentication required. Please sign in again."),
    403: (ApiErrorType.PERMISSION, "You do not have permission to perform this action"),
    400: (ApiErrorType.VALIDATION, "The submitted values are invalid"),
}


def _classify_status(status: int, message: Optional[str] = None) -> ApiErrorInfo:
    if status in _DEFAULT_MESSAGES:
        error_type, default = _DEFAULT_MESSAGES[status]
        return ApiErrorInfo(type=error_type, message=message or default, status_code=status)
    if status >= 500:
        return ApiErrorInfo(
            type=ApiErrorType.SERVER,
            message=message or "Server error. Please try again later.",
            status_code=status,
        )
    return ApiErrorInfo(
        type=ApiErrorType.UNKNOWN,
        message=message or "The request could not be completed",
        status_code=status,
    )


def classify_api_error(error: Any) -> ApiErrorInfo:
    """Classify an arbitrary failure value.

    Args:
        error: Exception, string, or mapping with "status_code"/"message"

    Returns:
        ApiErrorInfo describing the failure
    """
    if isinstance(error, (NetworkError, httpx.TransportError)):
        return ApiErrorInfo(
            type=ApiErrorType.NETWORK,
            message="Please check your network connection",
        )

    if isinstance(error, str):
        return ApiErrorInfo(type=ApiErrorType.UNKNOWN, message=error)

    status = status_of(error) if isinstance(error, BaseException) else None
    if status is not None:
        return _classify_status(status, str(error) or None)

    if isinstance(error, json.JSONDecodeError):
        return ApiErrorInfo(
            type=ApiErrorType.SERVER,
            message="The server response was malformed",
        )

    if isinstance(error, BaseException):
        return ApiErrorInfo(
            type=ApiErrorType.UNKNOWN,
            message=str(error) or type(error).__name__,
        )

    if isinstance(error, dict):
        status = error.get("status_code")
        message = error.get("message")
        if isinstance(status, int):
            return _classify_status(status, message)
        if message:
            return ApiErrorInfo(type=ApiErrorType.UNKNOWN, message=str(message))

    return ApiErrorInfo(type=ApiErrorType.UNKNOWN, message="An unknown error occurred")


def classify_response(response: httpx.Response) -> ApiErrorInfo:
    """Classify a completed HTTP response.

    The body's "message" field is used for 400 and unclassified statuses
    when the body is JSON.
    """
    status = response.status_code

    if response.is_success:
        return ApiErrorInfo(
            type=ApiErrorType.UNKNOWN,
            message="The request succeeded",
            status_code=status,
        )

    body_message = None
    if status == 400 or (status < 500 and status not in _DEFAULT_MESSAGES):
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("message"):
            body_message = str(data["message"])

    return _classify_status(status, body_message)
