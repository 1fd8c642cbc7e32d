"""Tests for retried httpx requests."""

import httpx
import pytest

from faultlog.client.http import fetch_with_retry, retry_logger, send_once
from faultlog.diagnostics import DiagnosticLog, LogLevel
from faultlog.utils.errors import HTTPError, NetworkError
from faultlog.utils.retry import RetryExecutor


class Sequence:
    """MockTransport handler answering from a list of statuses or exceptions."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("simulated", request=request)
        return httpx.Response(step, json={"ok": step < 400})


async def no_sleep(delay):
    return None


@pytest.fixture
def executor():
    return RetryExecutor(sleep=no_sleep)


def client_for(handler):
    return httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))


class TestSendOnce:
    """Tests for send_once error conversion."""

    @pytest.mark.asyncio
    async def test_success(self):
        async with client_for(Sequence(200)) as client:
            response = await send_once(client, "GET", "/api/stats")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_client_error_returned(self):
        """4xx should be returned, not raised."""
        async with client_for(Sequence(404)) as client:
            response = await send_once(client, "GET", "/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_server_error_raised(self):
        async with client_for(Sequence(502)) as client:
            with pytest.raises(HTTPError) as exc_info:
                await send_once(client, "GET", "/api/stats")
        assert exc_info.value.status_code == 502
        assert "GET http://api.test/api/stats" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connect_error(self):
        async with client_for(Sequence(httpx.ConnectError)) as client:
            with pytest.raises(NetworkError) as exc_info:
                await send_once(client, "POST", "/api/orders")
        assert exc_info.value.connect_failed

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        async with client_for(Sequence(httpx.ReadTimeout)) as client:
            with pytest.raises(NetworkError) as exc_info:
                await send_once(client, "GET", "/api/stats")
        assert not exc_info.value.connect_failed
        assert "timeout" in str(exc_info.value)


class TestFetchWithRetry:
    """Tests for fetch_with_retry."""

    @pytest.mark.asyncio
    async def test_recovers_from_unavailable(self, executor):
        """Two 503s then 200 should succeed on the third attempt."""
        handler = Sequence(503, 503, 200)
        async with client_for(handler) as client:
            response = await fetch_with_retry(client, "GET", "/api/stats", executor=executor)
        assert response.status_code == 200
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_not_found_not_retried(self, executor):
        handler = Sequence(404)
        async with client_for(handler) as client:
            response = await fetch_with_retry(client, "GET", "/api/missing", executor=executor)
        assert response.status_code == 404
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_exhausted(self, executor):
        """Persistent 500s should raise after the query budget."""
        handler = Sequence(500)
        async with client_for(handler) as client:
            with pytest.raises(HTTPError) as exc_info:
                await fetch_with_retry(client, "GET", "/api/stats", executor=executor)
        assert exc_info.value.status_code == 500
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_mutation_retries_refused_connection(self, executor):
        handler = Sequence(httpx.ConnectError, 201)
        async with client_for(handler) as client:
            response = await fetch_with_retry(client, "POST", "/api/orders", policy="mutation", executor=executor)
        assert response.status_code == 201
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_mutation_does_not_retry_internal_error(self, executor):
        """A 500 may have had side effects, so writes are not retried."""
        handler = Sequence(500, 201)
        async with client_for(handler) as client:
            with pytest.raises(HTTPError):
                await fetch_with_retry(client, "POST", "/api/orders", policy="mutation", executor=executor)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_critical_single_attempt(self, executor):
        handler = Sequence(503, 200)
        async with client_for(handler) as client:
            with pytest.raises(HTTPError):
                await fetch_with_retry(client, "POST", "/api/payments", policy="critical", executor=executor)
        assert handler.calls == 1


class TestRetryLogger:
    """Tests for recording retries in a DiagnosticLog."""

    @pytest.mark.asyncio
    async def test_records_each_retry(self, executor):
        """Each retry should become a WARNING entry with its attempt number."""
        log = DiagnosticLog()
        handler = Sequence(503, 503, 200)
        async with client_for(handler) as client:
            await fetch_with_retry(
                client,
                "GET",
                "/api/stats",
                on_retry=retry_logger(log, "Stats fetch", endpoint="/api/stats"),
                executor=executor,
            )

        entries = log.get_logs()
        assert [e.level for e in entries] == [LogLevel.WARNING, LogLevel.WARNING]
        assert [e.context["attempt"] for e in entries] == [1, 2]
        assert entries[0].message == "Stats fetch retry (attempt 1)"
        assert entries[0].error_type == "HTTP 503"
        assert entries[0].context["endpoint"] == "/api/stats"
