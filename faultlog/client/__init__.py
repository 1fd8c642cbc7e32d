"""HTTP helpers built on the retry executor."""

from .http import fetch_with_retry, retry_logger, send_once

__all__ = [
    "fetch_with_retry",
    "retry_logger",
    "send_once",
]
