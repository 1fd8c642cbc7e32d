"""Delivery sinks for log entries.

A sink receives every entry at or above its min_level through deliver().
Sinks must not block the caller. DiagnosticLog contains any exception a
sink raises, but the sinks here already keep their own failures local.
"""

import asyncio
import logging
import queue
import threading
import time
from typing import Any, Dict, Optional, Protocol, Set

import httpx
from rich.console import Console
from rich.text import Text

from faultlog import __version__
from faultlog.utils.errors import RemoteDeliveryError

from .models import LogEntry, LogLevel

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TIMEOUT = 5.0
DEFAULT_MAX_QUEUE = 1000


class LogSink(Protocol):
    """Destination for log entries."""

    min_level: LogLevel

    def deliver(self, entry: LogEntry) -> None:
        """Receive an entry. Must not block the caller."""


LEVEL_STYLES = {
    LogLevel.DEBUG: "dim",
    LogLevel.INFO: "blue",
    LogLevel.WARNING: "bold yellow",
    LogLevel.ERROR: "bold red",
    LogLevel.CRITICAL: "bold white on red",
}


class ConsoleSink:
    """Developer console output rendered with rich."""

    def __init__(
        self,
        console: Optional[Console] = None,
        min_level: LogLevel = LogLevel.DEBUG,
        show_stack: bool = True,
    ):
        self.console = console or Console(stderr=True)
        self.min_level = min_level
        self.show_stack = show_stack

    def deliver(self, entry: LogEntry) -> None:
        header = Text(f"[{entry.level.value}] {entry.message}", style=LEVEL_STYLES[entry.level])
        self.console.print(header)
        self.console.print(Text(f"  Error Type: {entry.error_type}", style="dim"))
        self.console.print(Text(f"  Time: {entry.timestamp.isoformat()}", style="dim"))
        if entry.context:
            self.console.print(Text(f"  Context: {entry.to_dict()['context']}", style="dim"))
        if entry.stack and self.show_stack:
            self.console.print(Text(f"  Stack: {entry.stack.rstrip()}", style="dim"))


class LoggingSink:
    """Forward entries to a stdlib logger at the matching level."""

    def __init__(self, logger_name: str = "faultlog.entries", min_level: LogLevel = LogLevel.DEBUG):
        self.min_level = min_level
        self._logger = logging.getLogger(logger_name)

    def deliver(self, entry: LogEntry) -> None:
        message = f"{entry.message} [{entry.error_type}]"
        if entry.context:
            message = f"{message} | {entry.to_dict()['context']}"
        self._logger.log(entry.level.severity, message)


class RemoteSink:
    """Fire-and-forget POST of ERROR/CRITICAL entries to a collector.

    Without an endpoint this sink does nothing. With a running event loop
    each delivery is an asyncio task. Otherwise the entry goes on a bounded
    queue drained by one daemon worker thread holding one httpx.Client;
    entries arriving while the queue is full are dropped with a warning.
    Delivery failures produce a stdlib warning and nothing else.

    Usage:
        sink = RemoteSink("https://collector.example.com/api/logs/errors")
        log = DiagnosticLog(sinks=[sink])
        ...
        await sink.aclose()  # wait for pending async deliveries
        sink.flush(timeout=5)  # wait for queued thread deliveries
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        min_level: LogLevel = LogLevel.ERROR,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[Any] = None,
        max_queue: int = DEFAULT_MAX_QUEUE,
    ):
        """Initialize remote sink.

        Args:
            endpoint: Collector URL (None disables delivery)
            timeout: Per-request timeout in seconds
            min_level: Lowest level forwarded
            headers: Extra request headers
            transport: httpx transport override
            max_queue: Entries waiting for the worker thread before new ones are dropped
        """
        if max_queue < 1:
            raise ValueError(f"max_queue must be >= 1, got {max_queue}")
        self.endpoint = endpoint
        self.timeout = timeout
        self.min_level = min_level
        self.headers = {"User-Agent": f"faultlog/{__version__}", **(headers or {})}
        self._transport = transport
        self._tasks: Set[asyncio.Task] = set()
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=max_queue)
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

    def deliver(self, entry: LogEntry) -> None:
        if not self.endpoint:
            return

        payload = entry.to_dict()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._post_async(payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return

        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            logger.warning(f"Remote sink queue full, dropping log entry {entry.id}")
            return
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._drain,
                name="faultlog-remote-sink",
                daemon=True,
            )
            self._worker.start()

    def _check(self, response: httpx.Response) -> None:
        if response.is_error:
            raise RemoteDeliveryError(
                f"Collector answered HTTP {response.status_code}",
                endpoint=self.endpoint,
                status_code=response.status_code,
            )

    async def _post_async(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, transport=self._transport
            ) as client:
                self._check(await client.post(self.endpoint, json=payload))
        except Exception as e:
            logger.warning(f"Failed to send log entry to {self.endpoint}: {e}")

    def _drain(self) -> None:
        """Worker thread: post queued entries until the process exits."""
        with httpx.Client(
            timeout=self.timeout, headers=self.headers, transport=self._transport
        ) as client:
            while True:
                payload = self._queue.get()
                try:
                    self._check(client.post(self.endpoint, json=payload))
                except Exception as e:
                    logger.warning(f"Failed to send log entry to {self.endpoint}: {e}")
                finally:
                    self._queue.task_done()

    @property
    def pending(self) -> int:
        return len(self._tasks) + self._queue.unfinished_tasks

    async def aclose(self) -> None:
        """Wait for in-flight async deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued thread deliveries.

        Returns:
            True if the queue drained within timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True
