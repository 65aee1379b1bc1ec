"""
pexsdk - Content Identification Client

Submit fingerprints of audio/video content and receive matches against the
reference catalog, licensing policies, live stream match events, or matches
against a private catalog of your own.

Client variants:
- PexSearchClient: aggregate search over the reference catalog
- MetadataSearchClient / LicenseSearchClient: asset and licensing searches
- PrivateSearchClient: search plus ingest/archive/list on a private catalog
- StreamSearchClient: pull-based events for live media
"""

__version__ = "4.0.0"

from .client import BaseClient, ClientType, mock_client
from .config import ClientConfig
from .errors import (
    AlreadyConsumedError,
    ClientUsageError,
    PexError,
    ResourceClosedError,
    ResultDecodeError,
    StatusCode,
    StreamStateError,
)
from .fingerprint import Fingerprint, Fingerprinter
from .future import SearchFuture
from .mockbackend import MockBackend
from .private_search import PrivateSearchClient, PrivateSearchRequest
from .schemas import (
    CatalogEntry,
    CatalogPage,
    FingerprintType,
    SegmentType,
    StreamEvent,
    StreamEventType,
)
from .search import (
    LicenseSearchClient,
    LicenseSearchRequest,
    MetadataSearchClient,
    MetadataSearchRequest,
    PexSearchClient,
    PexSearchRequest,
)
from .stream import StreamSearch, StreamSearchClient, StreamSearchRequest

__all__ = [
    "BaseClient",
    "ClientType",
    "mock_client",
    "ClientConfig",
    "AlreadyConsumedError",
    "ClientUsageError",
    "PexError",
    "ResourceClosedError",
    "ResultDecodeError",
    "StatusCode",
    "StreamStateError",
    "Fingerprint",
    "Fingerprinter",
    "SearchFuture",
    "MockBackend",
    "PrivateSearchClient",
    "PrivateSearchRequest",
    "CatalogEntry",
    "CatalogPage",
    "FingerprintType",
    "SegmentType",
    "StreamEvent",
    "StreamEventType",
    "LicenseSearchClient",
    "LicenseSearchRequest",
    "MetadataSearchClient",
    "MetadataSearchRequest",
    "PexSearchClient",
    "PexSearchRequest",
    "StreamSearch",
    "StreamSearchClient",
    "StreamSearchRequest",
]
