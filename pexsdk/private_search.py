"""
Private search: matching against the caller's own catalog.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from .catalog import DEFAULT_LIST_LIMIT, CatalogManager
from .client import ClientType
from .fingerprint import Fingerprint
from .schemas import CatalogEntry, CatalogPage, FingerprintType, SearchKind
from .search import SearchClient, SearchRequest

logger = logging.getLogger(__name__)


@dataclass
class PrivateSearchRequest(SearchRequest):
    pass


class PrivateSearchClient(SearchClient):
    """
    Searches fingerprints previously ingested with ingest().

    Matches carry the provided_id chosen at ingestion time instead of an
    asset. Catalog operations are delegated to a CatalogManager bound to
    the same session.
    """
    client_type = ClientType.PRIVATE_SEARCH
    search_kind = SearchKind.PRIVATE

    def __init__(self, *args, **kwargs):
        self.catalog = CatalogManager(self)
        super().__init__(*args, **kwargs)

    def ingest(self, provided_id: str, fingerprint: Fingerprint) -> None:
        self.catalog.ingest(provided_id, fingerprint)

    def archive(self, provided_id: str, types: FingerprintType = FingerprintType.ALL) -> None:
        self.catalog.archive(provided_id, types)

    def list_entries(self, limit: int = DEFAULT_LIST_LIMIT,
                     after: Optional[str] = None) -> CatalogPage:
        return self.catalog.list_entries(limit=limit, after=after)

    def iter_entries(self, limit: int = DEFAULT_LIST_LIMIT) -> Iterator[CatalogEntry]:
        return self.catalog.iter_entries(limit=limit)
