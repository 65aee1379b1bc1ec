"""
Private catalog management: ingestion, archival and cursor-paginated listing.

The catalog is scoped to the credentials of the client. Listing holds no
client-side cache; each page is fetched from live server state, so entries
ingested or archived between two pages may or may not show up.
"""

import logging
from typing import Iterator, Optional

from .client import fingerprint_payload
from .decoder import decode_catalog_page
from .engine import validate_types
from .errors import InvalidInputError
from .fingerprint import Fingerprint
from .schemas import CatalogEntry, CatalogPage, FingerprintType

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000
DEFAULT_LIST_LIMIT = 100


def _check_provided_id(provided_id: str):
    if not isinstance(provided_id, str) or not provided_id.strip():
        raise InvalidInputError("provided_id must be a non-empty string")


class CatalogManager:
    """
    Ingest, archive and list fingerprints of a private catalog.

    Usage:
        catalog = client.catalog
        catalog.ingest("song-1", ft)

        for entry in catalog.iter_entries(limit=100):
            print(entry.provided_id, entry.archived)
    """

    def __init__(self, client):
        self._client = client

    def ingest(self, provided_id: str, fingerprint: Fingerprint) -> None:
        """
        Register a fingerprint under a caller-chosen ID.

        Ingesting again under the same ID replaces the stored fingerprint.

        Raises:
            InvalidInputError: empty ID or fingerprint rejected by the service
            PermissionDeniedError: the credentials lack write access
        """
        _check_provided_id(provided_id)
        payload = {"provided_id": provided_id}
        payload.update(fingerprint_payload(fingerprint))
        self._client._call("POST", "/v1/catalog/ingest", payload=payload)
        logger.info(f"Ingested {provided_id} ({fingerprint.types.names()})")

    def archive(self, provided_id: str, types: FingerprintType = FingerprintType.ALL) -> None:
        """
        Exclude fingerprint types of an entry from future matches.

        The entry stays listed for audit purposes.

        Args:
            provided_id: ID given at ingestion time
            types: Fingerprint types to archive (all by default)

        Raises:
            NotFoundError: no entry with this ID
        """
        _check_provided_id(provided_id)
        types = validate_types(types)
        self._client._call("POST", "/v1/catalog/archive", payload={
            "provided_id": provided_id,
            "fingerprint_types": types.names(),
        })
        logger.info(f"Archived {types.names()} of {provided_id}")

    def list_entries(self, limit: int = DEFAULT_LIST_LIMIT,
                     after: Optional[str] = None) -> CatalogPage:
        """
        Fetch one page of catalog entries.

        Args:
            limit: Maximum number of entries (1..1000)
            after: end_cursor of the previous page, passed back verbatim

        Returns:
            CatalogPage with entries, end_cursor and has_next_page

        Raises:
            InvalidInputError: bad limit, or a stale/unknown cursor
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIST_LIMIT:
            raise InvalidInputError(f"limit must be between 1 and {MAX_LIST_LIMIT}, got {limit!r}")
        params = {"limit": limit}
        if after is not None:
            params["after"] = after
        body = self._client._call("GET", "/v1/catalog/entries", params=params)
        page = decode_catalog_page(body)
        logger.debug(
            f"Listed {len(page.entries)} entries (has_next_page={page.has_next_page})"
        )
        return page

    def iter_entries(self, limit: int = DEFAULT_LIST_LIMIT) -> Iterator[CatalogEntry]:
        """
        Iterate over the whole catalog, one page per round trip.

        Errors on any page (including an expired cursor) are raised from
        the iterator; it never restarts from the beginning.
        """
        after = None
        while True:
            page = self.list_entries(limit=limit, after=after)
            for entry in page.entries:
                yield entry
            if not page.has_next_page:
                return
            after = page.end_cursor
