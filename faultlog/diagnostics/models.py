"""Log entry model, severity levels and error classification.

Entries are frozen pydantic models. Their JSON form (model_dump(mode="json"))
is what gets persisted and what the remote sink POSTs.
"""

import json
import platform
import secrets
import sys
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from faultlog import __version__


class LogLevel(str, Enum):
    """Log levels, ordered by severity."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def severity(self) -> int:
        """Numeric severity, aligned with the stdlib logging levels."""
        return _SEVERITY[self.value]

    @classmethod
    def parse(cls, value: Any) -> "LogLevel":
        """Accept a LogLevel, a level name in any case, or "WARN"."""
        if isinstance(value, LogLevel):
            return value
        name = str(value).strip().upper()
        if name == "WARN":
            name = "WARNING"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}") from None

    def __lt__(self, other):
        if isinstance(other, LogLevel):
            return self.severity < other.severity
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, LogLevel):
            return self.severity <= other.severity
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, LogLevel):
            return self.severity > other.severity
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, LogLevel):
            return self.severity >= other.severity
        return NotImplemented


_SEVERITY = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

JSON_SCALARS = (str, int, float, bool, type(None))


def _is_json_scalar(value: Any) -> bool:
    if isinstance(value, float):
        return value == value and value not in (float("inf"), float("-inf"))
    return isinstance(value, JSON_SCALARS)


def is_shallow_json(value: Any) -> bool:
    """A JSON scalar, or a list/dict (str keys) of JSON scalars."""
    if _is_json_scalar(value):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_json_scalar(v) for v in value)
    if isinstance(value, Mapping):
        return all(isinstance(k, str) and _is_json_scalar(v) for k, v in value.items())
    return False


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    if isinstance(value, Mapping):
        return MappingProxyType(dict(value))
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, Mapping):
        return dict(value)
    return value


def sanitize_context(context: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Coerce a context mapping into the shallow JSON contract.

    The result shares no containers with the input. Tuples become lists
    when their members are scalars. Any other value outside the contract is
    replaced by its repr().
    """
    if context is None:
        return None
    clean: Dict[str, Any] = {}
    for key, value in context.items():
        if not is_shallow_json(value):
            clean[str(key)] = repr(value)
        elif isinstance(value, (list, tuple)):
            clean[str(key)] = list(value)
        elif isinstance(value, Mapping):
            clean[str(key)] = dict(value)
        else:
            clean[str(key)] = value
    return clean


def new_entry_id() -> str:
    """Time-based id with a random suffix: "<epoch-ms>-<12 hex>"."""
    return f"{time.time_ns() // 1_000_000}-{secrets.token_hex(6)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


USER_AGENT = (
    f"faultlog/{__version__} Python/{platform.python_version()} ({platform.system()})"
)

_location: ContextVar[Optional[str]] = ContextVar("faultlog_location", default=None)


def set_location(url: Optional[str]) -> Token:
    """Set the location recorded on entries logged from this context."""
    return _location.set(url)


def reset_location(token: Token) -> None:
    _location.reset(token)


@contextmanager
def location(url: Optional[str]) -> Iterator[None]:
    """Scope a location, e.g. the URL of the request being served."""
    token = set_location(url)
    try:
        yield
    finally:
        reset_location(token)


def current_location() -> Optional[str]:
    """Location set for this context, else the running program."""
    url = _location.get()
    if url is not None:
        return url
    return sys.argv[0] if sys.argv and sys.argv[0] else None


def classify_error(error: Any) -> Tuple[str, Optional[str]]:
    """Derive (error_type, stack) from a fault value.

    Returns:
        ("HTTP <status>", ...) for responses and HTTP status errors,
        (class name, ...) for other exceptions, ("String", None) for str,
        ("Unknown", None) for anything else. The stack is only present when
        the exception carries a traceback.
    """
    if isinstance(error, httpx.Response):
        return f"HTTP {error.status_code}", None

    if isinstance(error, BaseException):
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        status = getattr(error, "status_code", None)
        if status is None and isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
        if isinstance(status, int):
            return f"HTTP {status}", stack
        return type(error).__name__, stack

    if isinstance(error, str):
        return "String", None
    return "Unknown", None


class LogEntry(BaseModel):
    """One immutable structured diagnostic record.

    context is stored read-only: a mappingproxy whose list values are tuples
    and whose dict values are mappingproxies. It serializes back to plain
    dicts and lists.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_entry_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    level: LogLevel = LogLevel.ERROR
    message: str
    error_type: str = "Unknown"
    context: Optional[Mapping[str, Any]] = None
    user_agent: Optional[str] = None
    url: Optional[str] = None
    stack: Optional[str] = None

    @field_validator("context")
    @classmethod
    def check_context(cls, value: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
        if value is None:
            return value
        for key, item in value.items():
            if not is_shallow_json(item):
                raise ValueError(
                    f"context[{key!r}] must be a JSON scalar or a flat list/dict of scalars"
                )
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})

    @field_serializer("context")
    def dump_context(self, value: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        return {key: _thaw(item) for key, item in value.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls.model_validate(data)
