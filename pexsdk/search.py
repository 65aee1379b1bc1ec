"""
Search clients: aggregate pex search, metadata search and license search.

Every search follows the same protocol:
1. start_search() registers the query in one round trip and returns a
   SearchFuture holding the lookup IDs assigned by the service
2. SearchFuture.get() polls until the search completes and returns the
   decoded result exactly once

Nothing is retried: a failed start or check is surfaced to the caller,
who decides whether to run the whole search again.
"""

import logging
from dataclasses import dataclass
from typing import List

from .client import BaseClient, ClientType, fingerprint_payload
from .errors import InvalidInputError, ResultDecodeError
from .fingerprint import Fingerprint
from .future import SearchFuture
from .schemas import SearchKind

logger = logging.getLogger(__name__)

START_PATH = "/v1/search/start"


@dataclass
class SearchRequest:
    """Query for any search variant."""
    fingerprint: Fingerprint


@dataclass
class PexSearchRequest(SearchRequest):
    pass


@dataclass
class MetadataSearchRequest(SearchRequest):
    pass


@dataclass
class LicenseSearchRequest(SearchRequest):
    pass


def parse_lookup_ids(body) -> List[str]:
    lookup_ids = (body or {}).get("lookup_ids")
    if not isinstance(lookup_ids, list) or not lookup_ids:
        raise ResultDecodeError("start response carries no lookup_ids", "lookup_ids")
    for i, lookup_id in enumerate(lookup_ids):
        if not isinstance(lookup_id, str) or not lookup_id:
            raise ResultDecodeError(f"invalid lookup id: {lookup_id!r}", f"lookup_ids[{i}]")
    return lookup_ids


class SearchClient(BaseClient):
    """Submit/poll protocol shared by the one-shot search variants."""

    search_kind: SearchKind = SearchKind.PEX

    def start_search(self, request: SearchRequest) -> SearchFuture:
        """
        Register a search.

        Args:
            request: Search request holding the query fingerprint

        Returns:
            SearchFuture resolving to the search result

        Raises:
            InvalidInputError: the request has no usable fingerprint
            ResourceClosedError: the fingerprint or the client is closed
            PexError: the service rejected the search
        """
        if not isinstance(request, SearchRequest):
            raise InvalidInputError(
                f"expected a search request, got {type(request).__name__}"
            )
        payload = {"type": self.search_kind.value}
        payload.update(fingerprint_payload(request.fingerprint))

        body = self._call("POST", START_PATH, payload=payload)
        lookup_ids = parse_lookup_ids(body)
        logger.info(f"Started {self.search_kind.value} search: {lookup_ids}")

        return SearchFuture(
            self,
            self.search_kind,
            lookup_ids,
            poll_interval=self.config.poll_interval,
            lookup_timeout=self.config.lookup_timeout,
        )


class PexSearchClient(SearchClient):
    """
    Searches the global reference catalog.

    One start registers a sub-search per fingerprint type; the returned
    future checks all of them at once and yields a single merged result.
    """
    client_type = ClientType.PEX_SEARCH
    search_kind = SearchKind.PEX


class MetadataSearchClient(SearchClient):
    client_type = ClientType.METADATA_SEARCH
    search_kind = SearchKind.METADATA


class LicenseSearchClient(SearchClient):
    """Searches assets and returns per-territory licensing policies."""
    client_type = ClientType.LICENSE_SEARCH
    search_kind = SearchKind.LICENSE
