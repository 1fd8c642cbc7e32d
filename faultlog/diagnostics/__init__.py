"""Diagnostic log store, sinks, storage and global fault hooks."""

from .models import LogEntry, LogLevel, classify_error, location, set_location
from .logger import DiagnosticLog
from .sinks import LogSink, ConsoleSink, LoggingSink, RemoteSink
from .storage import LogStorage, FileStorage, MemoryStorage
from .fault_tap import GlobalFaultTap, ConsoleErrorMirror

__all__ = [
    "LogEntry",
    "LogLevel",
    "classify_error",
    "location",
    "set_location",
    "DiagnosticLog",
    "LogSink",
    "ConsoleSink",
    "LoggingSink",
    "RemoteSink",
    "LogStorage",
    "FileStorage",
    "MemoryStorage",
    "GlobalFaultTap",
    "ConsoleErrorMirror",
]
