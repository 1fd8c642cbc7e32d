"""Policy-driven retry execution with exponential backoff.

Named policies:
- query: idempotent reads, 3 attempts, 0.8s doubling up to 10s, 20% jitter
- mutation: writes, 2 attempts, only when the request was not processed
- critical: payments, registrations and the like, never retried

The executor never times out an attempt. A wrapped operation that can hang
must carry its own timeout (e.g. httpx.Timeout).
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .classify import is_transient, is_unprocessed
from .errors import RetryAbortedError, UnknownPolicyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]
RetryObserver = Callable[[int, BaseException], Any]


def default_should_retry(error: BaseException, attempt: int) -> bool:
    """Retry network failures, 5xx, 408 and 429."""
    return is_transient(error)


def mutation_should_retry(error: BaseException, attempt: int) -> bool:
    """Retry only failures the server never acted on."""
    return is_unprocessed(error)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget, retryability predicate and delay rule.

    The delay before retry n (n = failed attempt number) is
    min(initial_delay * multiplier ** (n - 1), max_delay), reduced by up to
    `jitter` of itself at random.
    """

    name: str
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0
    should_retry: RetryPredicate = default_should_retry
    on_retry: Optional[RetryObserver] = field(default=None, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if not 0 <= self.jitter <= 1:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    def base_delay(self, attempt: int) -> float:
        """Delay envelope after failed attempt `attempt` (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Jittered delay, within [base * (1 - jitter), base]."""
        base = self.base_delay(attempt)
        if not self.jitter:
            return base
        sample = (rng or random).random()
        return base * (1 - self.jitter * sample)


QUERY_POLICY = RetryPolicy(
    name="query",
    max_attempts=3,
    initial_delay=0.8,
    multiplier=2.0,
    max_delay=10.0,
    jitter=0.2,
)

MUTATION_POLICY = RetryPolicy(
    name="mutation",
    max_attempts=2,
    initial_delay=1.0,
    multiplier=2.0,
    max_delay=10.0,
    jitter=0.2,
    should_retry=mutation_should_retry,
)

CRITICAL_POLICY = RetryPolicy(
    name="critical",
    max_attempts=1,
    initial_delay=0.0,
    multiplier=1.0,
    max_delay=0.0,
)

POLICIES: Dict[str, RetryPolicy] = {
    policy.name: policy for policy in (QUERY_POLICY, MUTATION_POLICY, CRITICAL_POLICY)
}


def register_policy(policy: RetryPolicy) -> None:
    """Register (or replace) a named policy."""
    POLICIES[policy.name] = policy


def get_policy(policy: Union[str, RetryPolicy]) -> RetryPolicy:
    """Resolve a policy name to its RetryPolicy."""
    if isinstance(policy, RetryPolicy):
        return policy
    try:
        return POLICIES[policy]
    except KeyError:
        raise UnknownPolicyError(policy) from None


class AbortSignal:
    """Cancellation token for in-flight retries.

    Checked before every attempt and before every delay. An abort during a
    delay ends the wait early.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class RetryExecutor:
    """Runs fallible async operations under a RetryPolicy.

    Usage:
        executor = RetryExecutor()
        result = await executor.run(
            lambda: client.get("/stats"),
            policy="query",
            on_retry=lambda attempt, error: log.warn("Retrying stats", error),
        )

    Each run() keeps its attempt counter in locals, so concurrent runs on one
    executor do not interfere.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize executor.

        Args:
            sleep: Coroutine function used to wait between attempts
            rng: Random source for jitter (module random if None)
        """
        self._sleep = sleep
        self._rng = rng
        self._observer_tasks: set = set()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Union[str, RetryPolicy] = "query",
        on_retry: Optional[RetryObserver] = None,
        abort: Optional[AbortSignal] = None,
    ) -> T:
        """Execute operation, retrying per policy.

        Args:
            operation: Zero-argument callable returning an awaitable
            policy: RetryPolicy or registered policy name
            on_retry: Observer called with (attempt, error) after each failed
                attempt that will be retried
            abort: Optional AbortSignal

        Returns:
            The operation's result

        Raises:
            The final attempt's exception, or RetryAbortedError
        """
        policy = get_policy(policy)
        attempt = 1

        while True:
            self._check_abort(abort, attempt - 1)

            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
                if attempt > 1:
                    logger.debug(f"{policy.name}: succeeded on attempt {attempt}")
                return result
            except Exception as e:
                if attempt >= policy.max_attempts or not policy.should_retry(e, attempt):
                    raise

                delay = policy.delay_for(attempt, self._rng)
                logger.debug(
                    f"{policy.name}: attempt {attempt}/{policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                self._notify(policy.on_retry, attempt, e)
                self._notify(on_retry, attempt, e)

            self._check_abort(abort, attempt)
            await self._pause(delay, abort)
            self._check_abort(abort, attempt)
            attempt += 1

    def _check_abort(self, abort: Optional[AbortSignal], attempts: int) -> None:
        if abort is not None and abort.aborted:
            raise RetryAbortedError(attempts=attempts, reason=abort.reason)

    async def _pause(self, delay: float, abort: Optional[AbortSignal]) -> None:
        if abort is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()

    def _notify(self, observer: Optional[RetryObserver], attempt: int, error: BaseException) -> None:
        """Call an observer without letting it affect the retry loop."""
        if observer is None:
            return
        try:
            result = observer(attempt, error)
        except Exception as e:
            logger.warning(f"Retry observer failed: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._observer_tasks.add(task)
            task.add_done_callback(self._observer_done)

    def _observer_done(self, task: "asyncio.Future") -> None:
        self._observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Retry observer failed: {task.exception()}")


_default_executor = RetryExecutor()


def with_retry(
    policy: Union[str, RetryPolicy] = "query",
    on_retry: Optional[RetryObserver] = None,
    executor: Optional[RetryExecutor] = None,
):
    """Decorator running an async function under a retry policy.

    Args:
        policy: RetryPolicy or registered policy name
        on_retry: Observer called with (attempt, error)
        executor: Executor to use (module default if None)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await (executor or _default_executor).run(
                lambda: func(*args, **kwargs),
                policy=policy,
                on_retry=on_retry,
            )

        return wrapper

    return decorator
