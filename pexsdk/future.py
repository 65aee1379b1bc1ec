"""
Single-use handles for submitted searches.

A SearchFuture wraps the lookup IDs the service assigned to one search.
All lookup IDs are checked in a single round trip and resolved into one
merged result. The first call to get() consumes the future, whether it
returns a result or raises; every later call raises AlreadyConsumedError.
"""

import logging
import threading
import time
from typing import List, Optional, Sequence

from .decoder import decode_search_result, decode_status
from .errors import AlreadyConsumedError, DeadlineExceededError, ResultDecodeError
from .schemas import SearchKind

logger = logging.getLogger(__name__)

CHECK_PATH = "/v1/search/check"


class SearchFuture:
    """
    Pending result of a search.

    Not created directly; returned by start_search() of a search client.
    """

    def __init__(self, client, kind: SearchKind, lookup_ids: Sequence[str],
                 poll_interval: float = 1.0, lookup_timeout: Optional[float] = None):
        self._client = client
        self.kind = SearchKind(kind)
        self._lookup_ids = tuple(lookup_ids)
        self.poll_interval = poll_interval
        self.lookup_timeout = lookup_timeout
        self._lock = threading.Lock()
        self._consumed = False

    @property
    def lookup_ids(self) -> List[str]:
        return list(self._lookup_ids)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def _claim(self):
        with self._lock:
            if self._consumed:
                raise AlreadyConsumedError(self._lookup_ids)
            self._consumed = True

    def get(self):
        """
        Block until the search completes and return its result.

        Returns:
            The search result of this future's kind, matches in service order

        Raises:
            AlreadyConsumedError: the result was already retrieved
            DeadlineExceededError: lookup_timeout elapsed while pending
            PexError: the check round trip or the search itself failed
        """
        self._claim()
        deadline = None
        if self.lookup_timeout is not None:
            deadline = time.monotonic() + self.lookup_timeout

        payload = {"type": self.kind.value, "lookup_ids": list(self._lookup_ids)}
        checks = 0
        while True:
            body = self._client._call("POST", CHECK_PATH, payload=payload)
            checks += 1
            status = (body or {}).get("status")

            if status == "completed":
                logger.debug(f"Lookup {self._lookup_ids} completed after {checks} checks")
                return decode_search_result(self.kind, self._lookup_ids, body.get("result"))
            if status == "failed":
                error = decode_status(body.get("error"), "error").to_exception()
                logger.warning(f"Lookup {self._lookup_ids} failed: {error}")
                raise error
            if status != "pending":
                raise ResultDecodeError(f"unknown search status: {status!r}", "status")

            if deadline is not None and time.monotonic() + self.poll_interval > deadline:
                raise DeadlineExceededError(
                    f"lookup {','.join(self._lookup_ids)} still pending after "
                    f"{self.lookup_timeout}s"
                )
            # Client lock is not held while sleeping
            time.sleep(self.poll_interval)

    check = get

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "pending"
        return f"SearchFuture({self.kind.value}, {list(self._lookup_ids)}, {state})"
