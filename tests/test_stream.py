"""Tests for stream.py: the stream search state machine."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from pexsdk.config import ClientConfig
from pexsdk.errors import (
    ConnectionFailedError,
    InvalidInputError,
    LookupTimedOutError,
    ResourceClosedError,
    StreamStateError,
)
from pexsdk.mockbackend import MockBackend
from pexsdk.schemas import StreamEventType
from pexsdk.stream import StreamSearch, StreamSearchClient, StreamSearchRequest, StreamState
from pexsdk.transport import MockTransport

URL = "https://live.example.com/stream.m3u8"


def drain(search):
    return [event for event in search]


class SlowBackend(MockBackend):
    """Holds event pulls of selected streams before answering."""

    def __init__(self, delay: float, **kwargs):
        self.delay = delay
        self.slow_streams = set()
        self.slow_pull_started = threading.Event()
        super().__init__(**kwargs)

    def _next_event(self, client_id, payload, params, stream_id):
        if stream_id in self.slow_streams:
            self.slow_pull_started.set()
            time.sleep(self.delay)
        return super()._next_event(client_id, payload, params, stream_id)


class TestEventOrdering:
    def test_default_sequence(self, stream_client):
        with stream_client.start_search(StreamSearchRequest(url=URL)) as search:
            events = drain(search)

        types = [e.type for e in events]
        assert types[0] == StreamEventType.SEARCH_STARTED
        assert types[-1] == StreamEventType.SEARCH_ENDED
        assert types.count(StreamEventType.SEARCH_ENDED) == 1
        assert StreamEventType.STREAM_ENDED in types

        # Every started match ends before the search does
        open_matches = set()
        for event in events:
            if event.type == StreamEventType.MATCH_STARTED:
                open_matches.add(event.asset.id)
            elif event.type == StreamEventType.MATCH_ENDED:
                assert event.asset.id in open_matches
                open_matches.remove(event.asset.id)
        assert open_matches == set()

    def test_search_error_does_not_end_search(self, stream_client):
        search = stream_client.start_search(StreamSearchRequest(url=URL))
        events = drain(search)
        errors = [e for e in events if e.type == StreamEventType.SEARCH_ERROR]
        assert len(errors) == 1
        assert isinstance(errors[0].error.to_exception(), LookupTimedOutError)
        assert events.index(errors[0]) < len(events) - 1
        search.close()

    def test_empty_polls_are_reissued(self, stream_client, backend):
        search = stream_client.start_search(StreamSearchRequest(url=URL))
        events = drain(search)
        pulls = [p for _, p in backend.requests if p.endswith("/next")]
        assert len(pulls) == len(events) + 1
        search.close()

    def test_trailing_matches_after_stream_ended(self, stream_client, backend):
        backend.set_stream_script(URL, [
            {"type": "SearchStarted"},
            {"type": "MatchStarted", "asset": {"id": "a1"}, "query_timestamp": 0, "asset_timestamp": 5},
            {"type": "StreamEnded"},
            {"type": "MatchEnded", "asset": {"id": "a1"}, "query_timestamp": 9, "asset_timestamp": 14},
            {"type": "SearchEnded"},
        ])
        search = stream_client.start_search(StreamSearchRequest(url=URL))
        assert search.state == StreamState.STARTED
        search.next_event()
        search.next_event()
        assert search.state == StreamState.PRODUCING
        assert search.next_event().type == StreamEventType.STREAM_ENDED
        assert search.state == StreamState.STREAM_ENDED

        trailing = search.next_event()
        assert trailing.type == StreamEventType.MATCH_ENDED
        assert trailing.asset_timestamp == 14
        assert search.next_event().type == StreamEventType.SEARCH_ENDED
        assert search.state == StreamState.ENDED
        search.close()


class TestLifecycle:
    def test_pull_after_end(self, stream_client):
        search = stream_client.start_search(StreamSearchRequest(url=URL))
        drain(search)
        assert search.done
        with pytest.raises(StreamStateError):
            search.next_event()
        search.close()

    def test_close_exactly_once(self, stream_client, backend):
        search = stream_client.start_search(StreamSearchRequest(url=URL))
        search.next_event()
        search.close()
        assert search.state == StreamState.CLOSED
        assert ("POST", f"/v1/stream/{search.stream_id}/end") in backend.requests
        with pytest.raises(ResourceClosedError):
            search.close()
        with pytest.raises(ResourceClosedError):
            search.next_event()

    def test_context_manager_after_explicit_close(self, stream_client):
        with stream_client.start_search(StreamSearchRequest(url=URL)) as search:
            search.close()
        assert search.state == StreamState.CLOSED

    def test_failed_pull_errors_the_search(self):
        client = MagicMock()
        client.closed = False
        client.config = ClientConfig(client_id="x", client_secret="y")
        transport = MagicMock()
        transport.call.side_effect = ConnectionFailedError("reset by peer")
        search = StreamSearch(client, "s1", transport)

        with pytest.raises(ConnectionFailedError):
            search.next_event()
        assert search.state == StreamState.ERRORED
        with pytest.raises(StreamStateError):
            search.next_event()
        assert transport.call.call_count == 1
        client._call.assert_not_called()

    def test_independent_searches(self, stream_client):
        first = stream_client.start_search(StreamSearchRequest(url=URL))
        second = stream_client.start_search(StreamSearchRequest(url=URL))
        assert first.stream_id != second.stream_id
        first.next_event()
        first.close()
        assert second.next_event().type == StreamEventType.SEARCH_STARTED
        second.close()


class TestStart:
    def test_missing_url(self, stream_client, backend):
        before = len(backend.requests)
        with pytest.raises(InvalidInputError):
            stream_client.start_search(StreamSearchRequest(url=""))
        assert len(backend.requests) == before

    def test_url_rejected_by_service(self, stream_client):
        with pytest.raises(InvalidInputError):
            stream_client.start_search(StreamSearchRequest(url="ftp://nope"))


class TestConcurrency:
    def test_long_poll_does_not_block_the_client(self, config, song_a):
        backend = SlowBackend(delay=2.0)
        backend.add_asset("asset-a", song_a, title="First Song")
        with StreamSearchClient(config=config, transport=MockTransport(backend)) as client:
            slow = client.start_search(StreamSearchRequest(url=URL))
            fast = client.start_search(StreamSearchRequest(url=URL))
            backend.slow_streams.add(slow.stream_id)

            puller = threading.Thread(target=slow.next_event)
            puller.start()
            assert backend.slow_pull_started.wait(1.0)

            started = time.monotonic()
            first = fast.next_event()
            asset = client.asset_library().get_asset("asset-a")
            elapsed = time.monotonic() - started

            puller.join()
            slow.close()
            fast.close()

        assert first.type == StreamEventType.SEARCH_STARTED
        assert asset.id == "asset-a"
        assert elapsed < 0.5

    def test_pull_after_client_closed(self, backend, config):
        client = StreamSearchClient(config=config, transport=MockTransport(backend))
        search = client.start_search(StreamSearchRequest(url=URL))
        client.close()
        with pytest.raises(ResourceClosedError):
            search.next_event()
