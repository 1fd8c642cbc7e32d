"""Process-wide routing of unhandled faults into a DiagnosticLog.

Hooks chained on install():
- sys.excepthook: uncaught exceptions on the main thread
- threading.excepthook: uncaught exceptions in worker threads
- asyncio loop exception handler: task exceptions nobody retrieved, on the
  running loop and on every loop the event loop policy creates afterwards

Each hook records the fault, then hands it to the hook it replaced, so the
usual traceback output is unchanged. There is no uninstall; the tap lives
as long as the process.
"""

import asyncio
import logging
import sys
import threading
import traceback
import warnings
import weakref
from types import TracebackType
from typing import Any, Dict, Optional, Type

from .logger import DiagnosticLog

logger = logging.getLogger(__name__)

_install_lock = threading.Lock()


def source_location(tb: Optional[TracebackType]) -> Dict[str, Any]:
    """Filename, line and function of the innermost frame of a traceback."""
    frames = traceback.extract_tb(tb) if tb is not None else []
    if not frames:
        return {}
    last = frames[-1]
    return {"filename": last.filename, "lineno": last.lineno, "function": last.name}


class ConsoleErrorMirror(logging.Handler):
    """Mirror ERROR records from application loggers into the log at WARNING.

    Records from faultlog's own loggers are ignored, and a per-thread guard
    stops a record emitted while mirroring from being mirrored again.
    """

    def __init__(self, log: DiagnosticLog, level: int = logging.ERROR):
        super().__init__(level=level)
        self.log = log
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "faultlog" or record.name.startswith("faultlog."):
            return
        if getattr(self._local, "active", False):
            return

        self._local.active = True
        try:
            error = record.exc_info[1] if record.exc_info else None
            self.log.warn(
                "Console error",
                error,
                {"logger": record.name, "args": [record.getMessage()]},
            )
        except Exception:
            self.handleError(record)
        finally:
            self._local.active = False


class GlobalFaultTap:
    """Installs the process-wide fault hooks for one DiagnosticLog.

    Usage:
        log = DiagnosticLog(storage=FileStorage())
        GlobalFaultTap(log, dev_mode=settings.dev_mode).install()

    Only one tap can be installed per process. install() on a second tap,
    or a second install() on the same tap, returns False.
    """

    _active: Optional["GlobalFaultTap"] = None

    def __init__(self, log: DiagnosticLog, dev_mode: bool = False):
        self.log = log
        self.dev_mode = dev_mode
        self.mirror: Optional[ConsoleErrorMirror] = None
        self._previous_excepthook = None
        self._previous_threading_excepthook = None
        self._loops: "weakref.WeakSet[asyncio.AbstractEventLoop]" = weakref.WeakSet()

    @property
    def installed(self) -> bool:
        return GlobalFaultTap._active is self

    def install(self) -> bool:
        """Install the hooks once per process.

        Returns:
            True if this call installed the hooks
        """
        with _install_lock:
            active = GlobalFaultTap._active
            if active is not None:
                if active is not self:
                    logger.warning("A global fault tap is already installed; ignoring")
                return False
            GlobalFaultTap._active = self

            self._previous_excepthook = sys.excepthook
            sys.excepthook = self._handle_exception

            self._previous_threading_excepthook = threading.excepthook
            threading.excepthook = self._handle_thread_exception

            if self.dev_mode:
                self.mirror = ConsoleErrorMirror(self.log)
                logging.getLogger().addHandler(self.mirror)

            self._wrap_loop_factory()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self.attach_loop(loop)

        logger.debug("Global fault tap installed")
        return True

    def attach_loop(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        """Route unhandled task exceptions of an event loop into the log.

        Args:
            loop: Loop to attach (the running loop if None)

        Returns:
            False if the loop was already attached
        """
        loop = loop or asyncio.get_running_loop()
        if loop in self._loops:
            return False

        previous = loop.get_exception_handler()

        def handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
            self._handle_loop_exception(loop, context, previous)

        loop.set_exception_handler(handler)
        self._loops.add(loop)
        return True

    def _wrap_loop_factory(self) -> None:
        """Attach every loop the current event loop policy creates from now on.

        asyncio.run() and asyncio.new_event_loop() both go through the
        policy, so loops started after install() are covered. Replacing the
        policy afterwards drops the wrapper.
        """
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DeprecationWarning)
            policy = asyncio.get_event_loop_policy()
        create = policy.new_event_loop

        def new_event_loop() -> asyncio.AbstractEventLoop:
            loop = create()
            self.attach_loop(loop)
            return loop

        policy.new_event_loop = new_event_loop

    def _handle_exception(
        self,
        exc_type: Type[BaseException],
        exc_value: BaseException,
        exc_tb: Optional[TracebackType],
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self.log.error("Uncaught exception", exc_value, source_location(exc_tb))
        (self._previous_excepthook or sys.__excepthook__)(exc_type, exc_value, exc_tb)

    def _handle_thread_exception(self, args: "threading.ExceptHookArgs") -> None:
        if args.exc_type is not SystemExit:
            context = source_location(args.exc_traceback)
            context["thread"] = args.thread.name if args.thread is not None else None
            self.log.error("Uncaught thread exception", args.exc_value, context)
        (self._previous_threading_excepthook or threading.__excepthook__)(args)

    def _handle_loop_exception(
        self,
        loop: asyncio.AbstractEventLoop,
        context: Dict[str, Any],
        previous: Optional[Any],
    ) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")

        metadata: Dict[str, Any] = {"detail": message}
        if context.get("task") is not None:
            metadata["task"] = repr(context["task"])
        if context.get("future") is not None:
            metadata["future"] = repr(context["future"])
        if exc is not None:
            metadata.update(source_location(exc.__traceback__))

        self.log.error(
            "Unhandled task exception",
            exc if exc is not None else message,
            metadata,
        )

        if previous is not None:
            previous(loop, context)
        else:
            loop.default_exception_handler(context)
