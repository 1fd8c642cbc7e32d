"""Tests for console, logging and remote sinks."""

import io
import json
import logging
import threading

import httpx
import pytest
from rich.console import Console

from faultlog.diagnostics import DiagnosticLog, LogLevel
from faultlog.diagnostics.models import LogEntry
from faultlog.diagnostics.sinks import ConsoleSink, LoggingSink, RemoteSink


def make_entry(level=LogLevel.ERROR, message="Stats failed", **kwargs):
    return LogEntry(level=level, message=message, error_type="HTTP 503", **kwargs)


class Collector:
    """MockTransport handler recording POSTed records."""

    def __init__(self, status=202):
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status)

    @property
    def records(self):
        return [json.loads(r.content) for r in self.requests]


class TestConsoleSink:
    """Tests for ConsoleSink."""

    def test_renders_entry(self):
        """Should print level, message, type, time and context."""
        buffer = io.StringIO()
        sink = ConsoleSink(console=Console(file=buffer, width=200))
        sink.deliver(make_entry(context={"endpoint": "/api/stats"}, stack="Traceback: boom"))
        output = buffer.getvalue()
        assert "[ERROR] Stats failed" in output
        assert "Error Type: HTTP 503" in output
        assert "Time:" in output
        assert "/api/stats" in output
        assert "Traceback: boom" in output

    def test_hides_stack(self):
        """show_stack=False should omit the stack."""
        buffer = io.StringIO()
        sink = ConsoleSink(console=Console(file=buffer, width=200), show_stack=False)
        sink.deliver(make_entry(stack="Traceback: boom"))
        assert "Traceback" not in buffer.getvalue()

    def test_receives_everything_by_default(self):
        """Console sink should accept DEBUG and up."""
        assert ConsoleSink(console=Console(file=io.StringIO())).min_level == LogLevel.DEBUG


class TestLoggingSink:
    """Tests for LoggingSink."""

    def test_forwards_at_matching_level(self, caplog):
        """Should emit a stdlib record at the entry's level."""
        sink = LoggingSink("faultlog.entries")
        with caplog.at_level(logging.DEBUG, logger="faultlog.entries"):
            sink.deliver(make_entry(level=LogLevel.WARNING, message="Retrying", context={"attempt": 1}))
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.name == "faultlog.entries"
        assert "Retrying [HTTP 503]" in record.getMessage()
        assert "attempt" in record.getMessage()


class TestRemoteSink:
    """Tests for RemoteSink."""

    def test_defaults_to_error_level(self):
        """Remote delivery should default to ERROR and above."""
        assert RemoteSink().min_level == LogLevel.ERROR

    def test_no_endpoint_is_noop(self):
        """Without an endpoint nothing should be scheduled."""
        sink = RemoteSink()
        sink.deliver(make_entry())
        assert sink.pending == 0

    @pytest.mark.asyncio
    async def test_posts_record_from_event_loop(self):
        """Inside a loop delivery should be a task posting one JSON record."""
        collector = Collector()
        sink = RemoteSink("http://collector.test/api/logs/errors", transport=httpx.MockTransport(collector))
        entry = make_entry()

        sink.deliver(entry)
        await sink.aclose()

        assert len(collector.requests) == 1
        request = collector.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://collector.test/api/logs/errors"
        assert request.headers["content-type"] == "application/json"
        assert collector.records[0]["id"] == entry.id
        assert collector.records[0]["message"] == "Stats failed"

    def test_posts_record_from_thread(self):
        """Outside a loop delivery should run on a thread."""
        collector = Collector()
        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(collector))
        sink.deliver(make_entry(message="from sync code"))
        sink.flush(timeout=5)
        assert collector.records[0]["message"] == "from sync code"

    def test_burst_uses_one_worker(self):
        """Many entries from sync code should share one worker thread."""
        collector = Collector()
        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(collector))
        existing = set(threading.enumerate())

        for n in range(50):
            sink.deliver(make_entry(message=f"burst {n}"))
        workers = [t for t in set(threading.enumerate()) - existing if t.name == "faultlog-remote-sink"]
        assert sink.flush(timeout=5)

        assert len(workers) == 1
        assert [r["message"] for r in collector.records] == [f"burst {n}" for n in range(50)]
        assert sink.pending == 0

    def test_full_queue_drops_entry(self, caplog):
        """Entries beyond the queue bound should be dropped with a warning."""
        entered, release = threading.Event(), threading.Event()
        collector = Collector()

        def slow(request):
            entered.set()
            release.wait(5)
            return collector(request)

        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(slow), max_queue=2)
        with caplog.at_level(logging.WARNING, logger="faultlog"):
            sink.deliver(make_entry(message="in flight"))
            assert entered.wait(5)
            sink.deliver(make_entry(message="queued 1"))
            sink.deliver(make_entry(message="queued 2"))
            dropped = make_entry(message="dropped")
            sink.deliver(dropped)
            release.set()
            assert sink.flush(timeout=5)

        assert [r["message"] for r in collector.records] == ["in flight", "queued 1", "queued 2"]
        assert f"dropping log entry {dropped.id}" in caplog.text

    def test_rejects_empty_queue_bound(self):
        with pytest.raises(ValueError):
            RemoteSink("http://collector.test/logs", max_queue=0)

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, caplog):
        """Collector errors should only produce a warning."""
        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(Collector(status=500)))
        with caplog.at_level(logging.WARNING, logger="faultlog"):
            sink.deliver(make_entry())
            await sink.aclose()
        assert "Failed to send log entry" in caplog.text

    @pytest.mark.asyncio
    async def test_network_error_is_swallowed(self, caplog):
        """Transport errors should only produce a warning."""

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(refuse))
        with caplog.at_level(logging.WARNING, logger="faultlog"):
            sink.deliver(make_entry())
            await sink.aclose()
        assert "refused" in caplog.text

    @pytest.mark.asyncio
    async def test_only_error_and_critical_forwarded(self):
        """Through a DiagnosticLog only ERROR and CRITICAL should be posted."""
        collector = Collector()
        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(collector))
        log = DiagnosticLog(sinks=[sink])

        log.debug("d")
        log.info("i")
        log.warn("w")
        log.error("e")
        log.critical("c")
        await sink.aclose()

        assert sorted(r["level"] for r in collector.records) == ["CRITICAL", "ERROR"]

    @pytest.mark.asyncio
    async def test_does_not_block_caller(self):
        """deliver() should return before the POST happens."""
        collector = Collector()
        sink = RemoteSink("http://collector.test/logs", transport=httpx.MockTransport(collector))
        sink.deliver(make_entry())
        assert collector.requests == []
        assert sink.pending == 1
        await sink.aclose()
        assert len(collector.requests) == 1
