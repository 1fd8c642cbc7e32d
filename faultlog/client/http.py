"""httpx requests wrapped in retry policies, with retries recorded in a DiagnosticLog.

Response handling:
- 2xx and 4xx responses are returned to the caller (4xx is not retried)
- 5xx responses raise HTTPError, which the policy may retry
- Transport failures raise NetworkError
"""

import logging
from typing import Any, Callable, Optional, Union

import httpx

from faultlog.diagnostics.logger import DiagnosticLog
from faultlog.utils.errors import HTTPError, NetworkError
from faultlog.utils.retry import AbortSignal, RetryExecutor, RetryObserver, RetryPolicy

logger = logging.getLogger(__name__)

_default_executor = RetryExecutor()


async def send_once(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Send one request, converting failures into faultlog errors."""
    try:
        response = await client.request(method, url, **kwargs)
    except (httpx.ConnectError, httpx.ConnectTimeout) as e:
        raise NetworkError(
            f"Connection failed: {method} {url}",
            url=url,
            connect_failed=True,
        ) from e
    except httpx.TimeoutException as e:
        raise NetworkError(f"Request timeout: {method} {url}", url=url) from e
    except httpx.TransportError as e:
        raise NetworkError(f"Request error: {e}", url=url) from e

    if response.is_server_error:
        raise HTTPError.from_response(response)
    return response


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    policy: Union[str, RetryPolicy] = "query",
    on_retry: Optional[RetryObserver] = None,
    abort: Optional[AbortSignal] = None,
    executor: Optional[RetryExecutor] = None,
    **kwargs,
) -> httpx.Response:
    """Send a request under a retry policy.

    Args:
        client: httpx client (its timeout bounds each attempt)
        method: HTTP method
        url: URL or path relative to the client's base_url
        policy: RetryPolicy or registered policy name
        on_retry: Observer called with (attempt, error)
        abort: Optional AbortSignal
        executor: Executor to use (module default if None)
        **kwargs: Passed to httpx.AsyncClient.request

    Returns:
        The final response (2xx-4xx)

    Raises:
        HTTPError: 5xx on the last attempt
        NetworkError: Transport failure on the last attempt
        RetryAbortedError: The abort signal fired
    """
    return await (executor or _default_executor).run(
        lambda: send_once(client, method, url, **kwargs),
        policy=policy,
        on_retry=on_retry,
        abort=abort,
    )


def retry_logger(log: DiagnosticLog, operation: str, **context: Any) -> Callable[[int, BaseException], None]:
    """Build an on_retry observer that records each retry at WARNING.

    Example:
        await fetch_with_retry(
            client, "GET", "/api/stats",
            on_retry=retry_logger(log, "Stats fetch", endpoint="/api/stats"),
        )
    """

    def observer(attempt: int, error: BaseException) -> None:
        log.warn(
            f"{operation} retry (attempt {attempt})",
            error,
            {**context, "attempt": attempt},
        )

    return observer
