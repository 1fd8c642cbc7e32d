"""Retry execution, error hierarchy and failure classification."""

from .errors import (
    FaultlogError,
    HTTPError,
    NetworkError,
    RetryAbortedError,
    UnknownPolicyError,
    StorageError,
    StorageQuotaExceededError,
    RemoteDeliveryError,
)
from .classify import (
    ApiErrorType,
    ApiErrorInfo,
    classify_api_error,
    classify_response,
    is_transient,
    is_unprocessed,
)
from .retry import (
    AbortSignal,
    RetryExecutor,
    RetryPolicy,
    POLICIES,
    QUERY_POLICY,
    MUTATION_POLICY,
    CRITICAL_POLICY,
    default_should_retry,
    mutation_should_retry,
    get_policy,
    register_policy,
    with_retry,
)

__all__ = [
    "FaultlogError",
    "HTTPError",
    "NetworkError",
    "RetryAbortedError",
    "UnknownPolicyError",
    "StorageError",
    "StorageQuotaExceededError",
    "RemoteDeliveryError",
    "ApiErrorType",
    "ApiErrorInfo",
    "classify_api_error",
    "classify_response",
    "is_transient",
    "is_unprocessed",
    "AbortSignal",
    "RetryExecutor",
    "RetryPolicy",
    "POLICIES",
    "QUERY_POLICY",
    "MUTATION_POLICY",
    "CRITICAL_POLICY",
    "default_should_retry",
    "mutation_should_retry",
    "get_policy",
    "register_policy",
    "with_retry",
]
