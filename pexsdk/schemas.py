"""
Pydantic schemas for the content-identification domain model.

These schemas define what callers receive from every search variant,
from the stream search and from the private catalog.
"""

from enum import Enum, IntFlag
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import PexError, StatusCode, error_from_status


class FingerprintType(IntFlag):
    """Which parts of the content a fingerprint (or an archive) covers."""
    VIDEO = 1
    AUDIO = 2
    MELODY = 4
    ALL = 7

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "FingerprintType":
        """Parse the wire form (a list of lowercase type names)."""
        result = cls(0)
        for name in names:
            try:
                result |= cls[str(name).upper()]
            except KeyError:
                raise ValueError(f"unknown fingerprint type: {name!r}")
        return result

    def names(self) -> List[str]:
        """Return the wire form, e.g. ["video", "audio"]."""
        return [
            t.name.lower()
            for t in (FingerprintType.VIDEO, FingerprintType.AUDIO, FingerprintType.MELODY)
            if self & t
        ]


class FingerprintKind(str, Enum):
    """A single fingerprint type as it appears in catalog listings."""
    VIDEO = "video"
    AUDIO = "audio"
    MELODY = "melody"


class SegmentType(str, Enum):
    """Whether the segment matched on audio, video or melody."""
    UNSPECIFIED = "unspecified"
    AUDIO = "audio"
    VIDEO = "video"
    MELODY = "melody"


class Policy(str, Enum):
    """Coarse per-territory licensing decision."""
    ALLOW = "allow"
    BLOCK = "block"


class StreamEventType(str, Enum):
    """Kinds of events emitted by a stream search."""
    SEARCH_STARTED = "SearchStarted"    # before any match event
    MATCH_STARTED = "MatchStarted"      # a match was first found
    MATCH_ENDED = "MatchEnded"          # a started match has ended
    STREAM_ENDED = "StreamEnded"        # input media ended, trailing match events may follow
    SEARCH_ERROR = "SearchError"        # reported failure, the search goes on
    SEARCH_ENDED = "SearchEnded"        # final event


class SearchKind(str, Enum):
    """Search variants understood by the service."""
    PEX = "pex"
    PRIVATE = "private"
    METADATA = "metadata"
    LICENSE = "license"


# ============================================================================
# Matches
# ============================================================================

class Segment(BaseModel):
    """
    The range [start, end) in both the query and the asset where the
    match was found, in seconds.
    """
    model_config = ConfigDict(frozen=True)

    type: SegmentType = Field(default=SegmentType.UNSPECIFIED, description="Matched modality")
    query_start: int = Field(..., ge=0, description="Start in the query (inclusive)")
    query_end: int = Field(..., ge=0, description="End in the query (exclusive)")
    asset_start: int = Field(..., ge=0, description="Start in the asset (inclusive)")
    asset_end: int = Field(..., ge=0, description="End in the asset (exclusive)")
    confidence: int = Field(default=0, ge=0, le=100, description="Match confidence (0-100)")
    pitch: Optional[float] = Field(None, description="Detected pitch shift, if any")
    speed: Optional[float] = Field(None, description="Detected speed change, if any")
    melody_transposition: Optional[int] = Field(
        None,
        description="Detected melody transposition in semitones, if any"
    )

    @model_validator(mode="after")
    def check_ranges(self) -> "Segment":
        if self.query_start > self.query_end:
            raise ValueError(
                f"query range is inverted: [{self.query_start}, {self.query_end})"
            )
        if self.asset_start > self.asset_end:
            raise ValueError(
                f"asset range is inverted: [{self.asset_start}, {self.asset_end})"
            )
        return self


class Asset(BaseModel):
    """A reference work that a query matched against."""
    id: str
    type: str = ""
    title: str = ""
    artist: str = ""


class PexSearchAsset(BaseModel):
    """Asset as returned by the aggregate pex search."""
    id: str
    title: str = ""
    subtitle: str = ""
    artist: str = ""
    isrc: str = Field(default="", description="International Standard Recording Code")
    label: str = Field(default="", description="Label that owns the asset")
    distributor: str = ""
    duration: float = Field(default=0.0, ge=0, description="Total duration in seconds")


class PexSearchMatch(BaseModel):
    asset: PexSearchAsset
    segments: List[Segment] = Field(default_factory=list)


class PrivateSearchMatch(BaseModel):
    provided_id: str = Field(..., description="The ID given at ingestion time")
    segments: List[Segment] = Field(default_factory=list)


class MetadataSearchMatch(BaseModel):
    asset: Asset
    segments: List[Segment] = Field(default_factory=list)


class Rightsholder(BaseModel):
    id: int
    title: str = ""


class LicensePolicy(BaseModel):
    id: int
    category_id: int
    category_name: str = ""


class RightsholderPolicy(BaseModel):
    rightsholder: Rightsholder
    policy: LicensePolicy


class LicenseSearchMatch(BaseModel):
    """
    A license search match.

    Territory keys are ISO 3166-1 alpha-2 codes. Within a territory the
    rightsholder policies keep the order the service sent them in.
    """
    asset: Asset
    segments: List[Segment] = Field(default_factory=list)
    policies: Dict[str, List[RightsholderPolicy]] = Field(default_factory=dict)
    decisions: Dict[str, Policy] = Field(default_factory=dict)


# ============================================================================
# Results
# ============================================================================

class PexSearchResult(BaseModel):
    lookup_ids: List[str]
    matches: List[PexSearchMatch] = Field(default_factory=list)


class PrivateSearchResult(BaseModel):
    lookup_ids: List[str]
    matches: List[PrivateSearchMatch] = Field(default_factory=list)


class MetadataSearchResult(BaseModel):
    lookup_ids: List[str]
    matches: List[MetadataSearchMatch] = Field(default_factory=list)


class LicenseSearchResult(BaseModel):
    lookup_ids: List[str]
    ugc_id: Optional[str] = Field(None, description="Identifies the UGC for metadata feedback")
    matches: List[LicenseSearchMatch] = Field(default_factory=list)


# ============================================================================
# Stream search
# ============================================================================

class StatusInfo(BaseModel):
    """A status embedded in a response rather than raised."""
    code: StatusCode
    message: str = ""

    def to_exception(self) -> PexError:
        return error_from_status(self.code, self.message)


class StreamEvent(BaseModel):
    type: StreamEventType
    asset: Optional[Asset] = None
    query_timestamp: Optional[int] = Field(None, ge=0)
    asset_timestamp: Optional[int] = Field(None, ge=0)
    error: Optional[StatusInfo] = None

    @model_validator(mode="after")
    def check_payload(self) -> "StreamEvent":
        if self.is_match_event:
            missing = [
                name for name in ("asset", "query_timestamp", "asset_timestamp")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"{self.type.value} event lacks {', '.join(missing)}")
        if self.type == StreamEventType.SEARCH_ERROR and self.error is None:
            raise ValueError("SearchError event carries no error")
        return self

    @property
    def is_match_event(self) -> bool:
        return self.type in (StreamEventType.MATCH_STARTED, StreamEventType.MATCH_ENDED)


# ============================================================================
# Private catalog
# ============================================================================

class CatalogEntry(BaseModel):
    """
    One fingerprint registered in the private catalog.

    Archived types stay listed for audit but no longer produce matches.
    """
    provided_id: str
    fingerprint_types: List[FingerprintKind] = Field(default_factory=list)
    archived_types: List[FingerprintKind] = Field(default_factory=list)
    archived: bool = False

    @property
    def types(self) -> FingerprintType:
        return FingerprintType.from_names(t.value for t in self.fingerprint_types)

    @property
    def active_types(self) -> FingerprintType:
        archived = FingerprintType.from_names(t.value for t in self.archived_types)
        return self.types & ~archived


class CatalogPage(BaseModel):
    entries: List[CatalogEntry] = Field(default_factory=list)
    end_cursor: Optional[str] = Field(None, description="Opaque; pass back verbatim as `after`")
    has_next_page: bool = False


# ============================================================================
# Asset library
# ============================================================================

class AssetMetadata(BaseModel):
    isrc: str = ""
    title: str = ""
    artists: List[str] = Field(default_factory=list)
    upcs: List[str] = Field(default_factory=list)
    licensors: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Territory code -> licensor names"
    )


class AssetDetail(BaseModel):
    id: str
    metadata: AssetMetadata
