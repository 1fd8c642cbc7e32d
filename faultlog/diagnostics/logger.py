"""Bounded, persisted diagnostic log store.

Provides:
- Ring-buffer storage (oldest entry evicted past max_logs)
- Persistence of the whole collection after every change
- Level filtering and case-insensitive search
- Delivery to pluggable sinks (console, stdlib logging, remote collector)

Nothing here raises because of storage or sink failures. Those are reported
through the stdlib logger of this module and the in-memory collection stays
authoritative.
"""

import json
import logging
import threading
from collections import Counter, deque
from typing import Any, Deque, Dict, Iterator, List, Optional, TYPE_CHECKING

from pydantic import ValidationError

from .models import (
    USER_AGENT,
    LogEntry,
    LogLevel,
    classify_error,
    current_location,
    sanitize_context,
)
from .sinks import ConsoleSink, LogSink, RemoteSink
from .storage import FileStorage, LogStorage

if TYPE_CHECKING:
    from faultlog.config import DiagnosticsSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOGS = 100
DEFAULT_STORAGE_KEY = "error_logs"


class DiagnosticLog:
    """Bounded store of structured log entries.

    Usage:
        log = DiagnosticLog(max_logs=100, storage=FileStorage(path))
        log.warn("Stats fetch retry", error, {"attempt": 1})
        log.error("Dashboard load failed", error)

        recent_errors = log.get_logs(level=LogLevel.ERROR, limit=10)
        timeouts = log.search_logs("timeout")
    """

    def __init__(
        self,
        max_logs: int = DEFAULT_MAX_LOGS,
        storage: Optional[LogStorage] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        sinks: Optional[List[LogSink]] = None,
    ):
        """Initialize the store and load persisted entries.

        Args:
            max_logs: Capacity; the oldest entry is evicted beyond it
            storage: Persistence backend (memory only if None)
            storage_key: Key holding the serialized collection
            sinks: Delivery sinks
        """
        if max_logs < 1:
            raise ValueError(f"max_logs must be >= 1, got {max_logs}")
        self.max_logs = max_logs
        self.storage = storage
        self.storage_key = storage_key
        self._sinks: List[LogSink] = list(sinks or [])
        self._logs: Deque[LogEntry] = deque(maxlen=max_logs)
        self._lock = threading.RLock()
        self._load()

    @classmethod
    def from_settings(cls, settings: "DiagnosticsSettings") -> "DiagnosticLog":
        """Build a store with file storage and the sinks settings call for."""
        sinks: List[LogSink] = []
        if settings.dev_mode:
            sinks.append(ConsoleSink())
        if settings.remote_endpoint:
            sinks.append(
                RemoteSink(settings.remote_endpoint, timeout=settings.remote_timeout)
            )
        return cls(
            max_logs=settings.max_logs,
            storage=FileStorage(settings.storage_dir, quota_bytes=settings.storage_quota_bytes),
            storage_key=settings.storage_key,
            sinks=sinks,
        )

    # Recording

    def log(
        self,
        message: str,
        level: LogLevel = LogLevel.ERROR,
        error: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        """Record an entry.

        Args:
            message: Short human-readable description
            level: Severity
            error: Fault that triggered the entry, if any
            context: Shallow JSON-compatible mapping

        Returns:
            The stored LogEntry
        """
        error_type, stack = classify_error(error)
        entry = LogEntry(
            level=LogLevel.parse(level),
            message=str(message),
            error_type=error_type,
            context=sanitize_context(context),
            user_agent=USER_AGENT,
            url=current_location(),
            stack=stack,
        )

        with self._lock:
            self._logs.append(entry)
            self._save()

        self._deliver(entry)
        return entry

    def debug(self, message: str, error: Any = None, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self.log(message, LogLevel.DEBUG, error, context)

    def info(self, message: str, error: Any = None, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self.log(message, LogLevel.INFO, error, context)

    def warn(self, message: str, error: Any = None, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self.log(message, LogLevel.WARNING, error, context)

    warning = warn

    def error(self, message: str, error: Any = None, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self.log(message, LogLevel.ERROR, error, context)

    def critical(self, message: str, error: Any = None, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self.log(message, LogLevel.CRITICAL, error, context)

    # Queries

    def get_logs(
        self,
        level: Optional[LogLevel] = None,
        limit: Optional[int] = None,
        min_level: Optional[LogLevel] = None,
    ) -> List[LogEntry]:
        """Get entries in insertion order.

        Args:
            level: Keep only entries of exactly this level
            limit: Keep only the most recent `limit` matches (None or 0: all)
            min_level: Keep only entries at or above this level

        Returns:
            Matching entries, oldest first

        Raises:
            ValueError: If limit is negative
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        with self._lock:
            entries = list(self._logs)

        if level is not None:
            level = LogLevel.parse(level)
            entries = [e for e in entries if e.level == level]
        if min_level is not None:
            min_level = LogLevel.parse(min_level)
            entries = [e for e in entries if e.level >= min_level]
        if limit:
            entries = entries[-limit:]
        return entries

    def search_logs(self, query: str) -> List[LogEntry]:
        """Case-insensitive substring search over message and error_type."""
        needle = query.lower()
        with self._lock:
            return [
                e
                for e in self._logs
                if needle in e.message.lower() or needle in e.error_type.lower()
            ]

    def count_by_level(self) -> Dict[LogLevel, int]:
        with self._lock:
            counts = Counter(e.level for e in self._logs)
        return {level: counts.get(level, 0) for level in LogLevel}

    def clear_logs(self) -> None:
        """Drop every entry and the persisted copy."""
        with self._lock:
            self._logs = deque(maxlen=self.max_logs)
            if self.storage is None:
                return
            try:
                self.storage.remove(self.storage_key)
            except Exception as e:
                logger.warning(f"Failed to remove persisted logs: {e}")

    def to_json(self, indent: Optional[int] = 2) -> str:
        """All entries as a JSON array."""
        with self._lock:
            return json.dumps([e.to_dict() for e in self._logs], indent=indent)

    def __len__(self) -> int:
        return len(self._logs)

    def __iter__(self) -> Iterator[LogEntry]:
        with self._lock:
            return iter(list(self._logs))

    # Sinks

    @property
    def sinks(self) -> List[LogSink]:
        return list(self._sinks)

    def add_sink(self, sink: LogSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: LogSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def _deliver(self, entry: LogEntry) -> None:
        for sink in list(self._sinks):
            if entry.level < getattr(sink, "min_level", LogLevel.DEBUG):
                continue
            try:
                sink.deliver(entry)
            except Exception as e:
                # Reported to stdlib logging only, never back into this store
                logger.warning(f"Log sink {type(sink).__name__} failed: {e}")

    # Persistence

    def _save(self) -> None:
        if self.storage is None:
            return
        try:
            self.storage.set(self.storage_key, self.to_json(indent=None))
        except Exception as e:
            logger.warning(f"Failed to persist logs: {e}")

    def _load(self) -> None:
        if self.storage is None:
            return
        try:
            stored = self.storage.get(self.storage_key)
            if not stored:
                return
            parsed = json.loads(stored)
            if not isinstance(parsed, list):
                raise ValueError(f"expected a JSON array, got {type(parsed).__name__}")
            entries = [LogEntry.from_dict(item) for item in parsed]
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning(f"Discarding malformed persisted logs: {e}")
            return
        except Exception as e:
            logger.warning(f"Failed to load persisted logs: {e}")
            return

        # deque(maxlen) keeps the most recent max_logs
        self._logs.extend(entries)
