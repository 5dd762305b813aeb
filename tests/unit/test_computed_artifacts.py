"""Unit tests for the computed artifact cache and network records."""

import asyncio

import pytest

from pagegather.computed.cache import ComputedArtifact, ComputedArtifactCache
from pagegather.computed.network_records import NetworkRecorder, NetworkRecords


class CountingArtifact(ComputedArtifact):
    """Computed artifact that counts its evaluations."""

    calls = 0

    @classmethod
    async def compute(cls, dependencies, context):
        cls.calls += 1
        await asyncio.sleep(0)
        return sum(dependencies)


class FailingArtifact(ComputedArtifact):
    name = "Failing"

    @classmethod
    async def compute(cls, dependencies, context):
        raise ValueError("cannot compute")


class CacheContext:
    def __init__(self):
        self.computed_cache = ComputedArtifactCache()


@pytest.fixture(autouse=True)
def reset_counter():
    CountingArtifact.calls = 0


class TestComputedArtifactCache:
    """Tests for memoization."""

    @pytest.mark.asyncio
    async def test_equal_inputs_compute_once(self):
        """Test that structurally equal inputs share one computation."""
        cache = ComputedArtifactCache()

        first = await cache.request(CountingArtifact, [1, 2, 3])
        second = await cache.request(CountingArtifact, [1, 2, 3])

        assert first == second == 6
        assert CountingArtifact.calls == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_different_inputs_compute_separately(self):
        cache = ComputedArtifactCache()

        await cache.request(CountingArtifact, [1])
        await cache.request(CountingArtifact, [2])

        assert CountingArtifact.calls == 2
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_computation(self):
        """Test that concurrent requests await the same in-flight computation."""
        cache = ComputedArtifactCache()

        results = await asyncio.gather(
            cache.request(CountingArtifact, [4, 5]),
            cache.request(CountingArtifact, [4, 5]),
        )

        assert results == [9, 9]
        assert CountingArtifact.calls == 1

    @pytest.mark.asyncio
    async def test_failures_are_cached(self):
        """Test that a failed computation raises for every requester."""
        cache = ComputedArtifactCache()

        for _ in range(2):
            with pytest.raises(ValueError, match="cannot compute"):
                await cache.request(FailingArtifact, [])

        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = ComputedArtifactCache()
        await cache.request(CountingArtifact, [1])

        cache.clear()
        await cache.request(CountingArtifact, [1])

        assert CountingArtifact.calls == 2

    @pytest.mark.asyncio
    async def test_request_through_context(self):
        """Test requesting through a context exposing the cache."""
        context = CacheContext()

        assert await CountingArtifact.request([2, 2], context) == 4
        assert await CountingArtifact.request([2, 2], context) == 4
        assert CountingArtifact.calls == 1

    def test_artifact_name(self):
        assert CountingArtifact.artifact_name() == "CountingArtifact"
        assert FailingArtifact.artifact_name() == "Failing"
        assert NetworkRecords.artifact_name() == "NetworkRecords"

    @pytest.mark.asyncio
    async def test_base_compute_not_implemented(self):
        with pytest.raises(NotImplementedError):
            await ComputedArtifact.compute([], None)


def request_will_be_sent(request_id, url, resource_type="Document", redirect_from=None, timestamp=1.0):
    params = {
        "requestId": request_id,
        "request": {"url": url},
        "documentURL": url,
        "frameId": "main",
        "type": resource_type,
        "timestamp": timestamp,
    }
    if redirect_from:
        params["redirectResponse"] = {"url": redirect_from, "status": 302, "mimeType": "text/html"}
    return {"method": "Network.requestWillBeSent", "params": params}


class TestNetworkRecords:
    """Tests for reconstructing requests from a DevTools log."""

    @pytest.mark.asyncio
    async def test_successful_request(self):
        """Test a request that receives a response and finishes."""
        log = [
            request_will_be_sent("1", "https://example.com/"),
            {"method": "Network.responseReceived", "params": {
                "requestId": "1", "type": "Document",
                "response": {"url": "https://example.com/", "status": 200, "mimeType": "text/html"},
            }},
            {"method": "Network.loadingFinished", "params": {"requestId": "1", "timestamp": 1.25}},
        ]

        records = await NetworkRecords.compute(log, None)

        assert len(records) == 1
        record = records[0]
        assert record.status_code == 200
        assert record.mime_type == "text/html"
        assert record.finished and not record.failed
        assert record.is_document
        assert record.host == "example.com"
        assert record.duration_ms == pytest.approx(250)

    @pytest.mark.asyncio
    async def test_failed_request(self):
        log = [
            request_will_be_sent("1", "https://nope.invalid/"),
            {"method": "Network.loadingFailed", "params": {
                "requestId": "1", "errorText": "net::ERR_NAME_NOT_RESOLVED", "type": "Document",
            }},
        ]

        records = await NetworkRecords.compute(log, None)

        assert records[0].failed
        assert records[0].localized_fail_description == "net::ERR_NAME_NOT_RESOLVED"
        assert records[0].status_code == -1

    @pytest.mark.asyncio
    async def test_redirect_chain(self):
        """Test that redirect hops become linked records."""
        log = [
            request_will_be_sent("1", "http://example.com/"),
            request_will_be_sent("1", "https://example.com/", redirect_from="http://example.com/", timestamp=1.1),
            {"method": "Network.responseReceived", "params": {
                "requestId": "1",
                "response": {"url": "https://example.com/", "status": 200, "mimeType": "text/html"},
            }},
        ]

        records = await NetworkRecords.compute(log, None)

        assert [record.request_id for record in records] == ["1:redirect", "1"]
        first, second = records
        assert first.status_code == 302
        assert first.finished
        assert first.redirect_destination is second
        assert second.redirect_source_id == "1:redirect"
        assert second.status_code == 200

    @pytest.mark.asyncio
    async def test_unrelated_events_ignored(self):
        log = [
            {"method": "Page.loadEventFired", "params": {}},
            {"method": "Network.responseReceived", "params": {"requestId": "missing", "response": {}}},
            {"method": "Network.loadingFinished", "params": {"requestId": "missing"}},
            {"method": "Network.requestWillBeSent", "params": {}},
        ]

        assert await NetworkRecords.compute(log, None) == []

    def test_recorder_returns_copy(self):
        recorder = NetworkRecorder()
        recorder.dispatch("Network.requestWillBeSent", request_will_be_sent("1", "https://example.com/")["params"])

        records = recorder.records
        records.clear()

        assert len(recorder.records) == 1
