"""
Stream search: continuous, pull-based match events for live content.

A StreamSearch moves through these states:

    STARTED -> PRODUCING -> STREAM_ENDED -> ENDED
                    \\            \\
                     +-> ERRORED   +-> ERRORED

- STREAM_ENDED: the input media ended; trailing match events may follow
- ENDED: SearchEnded was received, nothing more will be produced
- ERRORED: a next_event() round trip failed
- CLOSED: close() was called (reachable from every state)

SearchError events are returned to the caller and do not end the search.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from .client import BaseClient, ClientType
from .decoder import decode_stream_event
from .errors import (
    InvalidInputError,
    PexError,
    ResourceClosedError,
    ResultDecodeError,
    StreamStateError,
)
from .schemas import StreamEvent, StreamEventType
from .transport import Transport

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    STARTED = "started"
    PRODUCING = "producing"
    STREAM_ENDED = "stream_ended"
    ENDED = "ended"
    ERRORED = "errored"
    CLOSED = "closed"


@dataclass
class StreamSearchRequest:
    url: str  # Media URL of the live content


class StreamSearch:
    """
    Handle on a running stream search.

    Drive it from a dedicated thread; next_event() blocks until one event
    is available. Each search talks over its own transport forked from the
    client session, so a pending long poll does not hold up other searches
    or requests of the same client. close() must be called exactly once
    and must not be called while another thread is inside next_event().

    Usage:
        with client.start_search(StreamSearchRequest(url=url)) as search:
            for event in search:
                handle(event)
    """

    def __init__(self, client: BaseClient, stream_id: str, transport: Transport):
        self._client = client
        self._transport = transport
        self.stream_id = stream_id
        self._state = StreamState.STARTED
        self._lock = threading.Lock()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state in (StreamState.ENDED, StreamState.ERRORED, StreamState.CLOSED)

    def _check_pullable(self):
        if self._state == StreamState.CLOSED:
            raise ResourceClosedError(f"stream search {self.stream_id} is closed")
        if self._state in (StreamState.ENDED, StreamState.ERRORED):
            raise StreamStateError(
                f"stream search {self.stream_id} is {self._state.value}; no more events"
            )

    def _round_trip(self, method: str, path: str, **kwargs):
        if self._client.closed:
            raise ResourceClosedError(f"client of stream search {self.stream_id} is closed")
        return self._transport.call(method, path, **kwargs)

    def _advance(self, event: StreamEvent):
        if event.type == StreamEventType.SEARCH_ENDED:
            self._state = StreamState.ENDED
        elif event.type == StreamEventType.STREAM_ENDED:
            self._state = StreamState.STREAM_ENDED
        elif self._state == StreamState.STARTED:
            self._state = StreamState.PRODUCING

    def next_event(self) -> StreamEvent:
        """
        Block until the next event is available.

        Returns:
            The next StreamEvent; SearchError events carry their error
            in `event.error` instead of raising

        Raises:
            StreamStateError: the search already ended or errored
            ResourceClosedError: the search was closed
            PexError: the round trip failed (the search is then ERRORED)
        """
        with self._lock:
            self._check_pullable()
            wait = self._client.config.stream_wait
            timeout = wait + self._client.config.request_timeout
            while True:
                try:
                    body = self._round_trip(
                        "GET",
                        f"/v1/stream/{self.stream_id}/next",
                        params={"wait": wait},
                        timeout=timeout,
                    )
                    if body is None:
                        # Long-poll window elapsed without an event
                        continue
                    event = decode_stream_event(body)
                except PexError as e:
                    self._state = StreamState.ERRORED
                    logger.error(f"Stream search {self.stream_id} failed: {e}")
                    raise

                self._advance(event)
                if event.type == StreamEventType.SEARCH_ERROR:
                    logger.warning(f"Stream search {self.stream_id} reported: {event.error}")
                return event

    def __iter__(self) -> Iterator[StreamEvent]:
        """Yield events until SearchEnded (inclusive)."""
        while self._state not in (StreamState.ENDED, StreamState.ERRORED, StreamState.CLOSED):
            yield self.next_event()

    def close(self):
        """
        Terminate the remote search and release the handle.

        Raises:
            ResourceClosedError: close() was already called
        """
        if self._state == StreamState.CLOSED:
            raise ResourceClosedError(f"stream search {self.stream_id} already closed")
        previous = self._state
        self._state = StreamState.CLOSED
        try:
            self._round_trip("POST", f"/v1/stream/{self.stream_id}/end")
        finally:
            self._transport.close()
        logger.info(f"Stream search {self.stream_id} closed (was {previous.value})")

    def __enter__(self) -> "StreamSearch":
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._state != StreamState.CLOSED:
            self.close()

    def __repr__(self) -> str:
        return f"StreamSearch({self.stream_id}, {self._state.value})"


class StreamSearchClient(BaseClient):
    """Starts stream searches on live media."""
    client_type = ClientType.STREAM_SEARCH

    def start_search(self, request: StreamSearchRequest) -> StreamSearch:
        """
        Start searching a media stream.

        Raises:
            InvalidInputError: missing URL or URL rejected by the service
            UnauthenticatedError: the session was rejected
            ConnectionFailedError: the service is unreachable
        """
        if not isinstance(request, StreamSearchRequest) or not request.url:
            raise InvalidInputError("a StreamSearchRequest with a media URL is required")
        body = self._call("POST", "/v1/stream/start", payload={"url": request.url})
        stream_id = (body or {}).get("stream_id")
        if not isinstance(stream_id, str) or not stream_id:
            raise ResultDecodeError("start response carries no stream_id", "stream_id")
        logger.info(f"Stream search {stream_id} started for {request.url}")
        return StreamSearch(self, stream_id, self._fork_transport())
