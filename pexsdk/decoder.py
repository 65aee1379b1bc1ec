"""
Mapping of raw service responses onto the domain model.

Every function here is pure: it takes the decoded JSON body of a response
and returns schema objects. A record that does not fit the model raises
ResultDecodeError naming the record path (e.g. "matches[2].segments[0]");
no match or segment is ever dropped.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ResultDecodeError, StatusCode, parse_status_code
from .schemas import (
    Asset,
    AssetDetail,
    CatalogPage,
    LicenseSearchMatch,
    LicenseSearchResult,
    MetadataSearchMatch,
    MetadataSearchResult,
    PexSearchAsset,
    PexSearchMatch,
    PexSearchResult,
    Policy,
    PrivateSearchMatch,
    PrivateSearchResult,
    RightsholderPolicy,
    SearchKind,
    Segment,
    SegmentType,
    StatusInfo,
    StreamEvent,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# ============================================================================
# Helpers
# ============================================================================

def _validate(model: Type[M], data: Any, path: str) -> M:
    if not isinstance(data, dict):
        raise ResultDecodeError(
            f"expected an object for {model.__name__}, got {type(data).__name__}", path
        )
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        detail = f"{where}: {first['msg']}" if where else first["msg"]
        raise ResultDecodeError(f"invalid {model.__name__}: {detail}", path)


def _child(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else str(key)


def _get_list(body: Dict[str, Any], key: str, path: str, required: bool = False) -> List[Any]:
    value = body.get(key)
    if value is None:
        if required:
            raise ResultDecodeError(f"missing field '{key}'", path)
        return []
    if not isinstance(value, list):
        raise ResultDecodeError(
            f"field '{key}' must be a list, got {type(value).__name__}", path
        )
    return value


def _get_dict(body: Dict[str, Any], key: str, path: str) -> Dict[str, Any]:
    value = body.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ResultDecodeError(
            f"field '{key}' must be an object, got {type(value).__name__}", path
        )
    return value


def _decode_matches(body: Any, decode_match: Callable[[Dict[str, Any], str], Any]) -> List[Any]:
    if not isinstance(body, dict):
        raise ResultDecodeError(f"search result must be an object, got {type(body).__name__}")
    records = _get_list(body, "matches", "")
    return [
        decode_match(record, _child("matches", i))
        for i, record in enumerate(records)
    ]


# ============================================================================
# Segments
# ============================================================================

def decode_segment(record: Any, path: str = "segment",
                   segment_type: Optional[SegmentType] = None) -> Segment:
    """
    Decode a single segment record.

    Args:
        record: Raw segment object
        path: Record path used in error messages
        segment_type: Type implied by the enclosing record, if any

    Returns:
        Validated Segment (start <= end on both axes)
    """
    if segment_type is not None and isinstance(record, dict) and "type" not in record:
        record = dict(record, type=segment_type.value)
    return _validate(Segment, record, path)


def decode_segments(body: Dict[str, Any], path: str) -> List[Segment]:
    """Decode the 'segments' list of a match record."""
    return [
        decode_segment(record, _child(_child(path, "segments"), i))
        for i, record in enumerate(_get_list(body, "segments", path))
    ]


def decode_match_details(body: Dict[str, Any], path: str) -> List[Segment]:
    """
    Flatten a 'match_details' object keyed by modality into segments.

    Modalities are visited in the order the service sent them.
    """
    details = _get_dict(body, "match_details", path)
    details_path = _child(path, "match_details")
    segments = []
    for modality, detail in details.items():
        modality_path = _child(details_path, modality)
        try:
            segment_type = SegmentType(modality)
        except ValueError:
            raise ResultDecodeError(f"unknown match modality '{modality}'", modality_path)
        if not isinstance(detail, dict):
            raise ResultDecodeError("match detail must be an object", modality_path)
        for i, record in enumerate(_get_list(detail, "segments", modality_path)):
            segments.append(decode_segment(
                record,
                _child(_child(modality_path, "segments"), i),
                segment_type=segment_type,
            ))
    return segments


# ============================================================================
# Search results
# ============================================================================

def _decode_pex_match(record: Any, path: str) -> PexSearchMatch:
    if not isinstance(record, dict):
        raise ResultDecodeError("match must be an object", path)
    asset = dict(_get_dict(record, "asset", path))
    # The service reports the asset duration as "duration_seconds".
    if "duration_seconds" in asset:
        asset["duration"] = asset.pop("duration_seconds")
    return PexSearchMatch(
        asset=_validate(PexSearchAsset, asset, _child(path, "asset")),
        segments=decode_segments(record, path) + decode_match_details(record, path),
    )


def _decode_private_match(record: Any, path: str) -> PrivateSearchMatch:
    if not isinstance(record, dict):
        raise ResultDecodeError("match must be an object", path)
    provided_id = record.get("provided_id")
    if not isinstance(provided_id, str) or not provided_id:
        raise ResultDecodeError("match has no provided_id", path)
    return PrivateSearchMatch(
        provided_id=provided_id,
        segments=decode_segments(record, path),
    )


def _decode_metadata_match(record: Any, path: str) -> MetadataSearchMatch:
    if not isinstance(record, dict):
        raise ResultDecodeError("match must be an object", path)
    return MetadataSearchMatch(
        asset=_validate(Asset, record.get("asset"), _child(path, "asset")),
        segments=decode_segments(record, path),
    )


def _territory(code: Any, path: str) -> str:
    """Normalize an ISO 3166-1 alpha-2 territory code."""
    if not isinstance(code, str) or len(code) != 2 or not (code.isascii() and code.isalpha()):
        raise ResultDecodeError(f"invalid territory code: {code!r}", path)
    return code.upper()


def group_policies(records: List[Any], path: str) -> Dict[str, List[RightsholderPolicy]]:
    """
    Group flat policy records by territory.

    Each record carries a 'territory' code next to its rightsholder and
    policy. Within a territory, records keep their service order.
    """
    grouped: Dict[str, List[RightsholderPolicy]] = {}
    for i, record in enumerate(records):
        record_path = _child(path, i)
        if not isinstance(record, dict):
            raise ResultDecodeError("policy record must be an object", record_path)
        territory = _territory(record.get("territory"), record_path)
        payload = {k: v for k, v in record.items() if k != "territory"}
        grouped.setdefault(territory, []).append(
            _validate(RightsholderPolicy, payload, record_path)
        )
    return grouped


def _decode_license_match(record: Any, path: str) -> LicenseSearchMatch:
    if not isinstance(record, dict):
        raise ResultDecodeError("match must be an object", path)
    policies = group_policies(
        _get_list(record, "policies", path),
        _child(path, "policies"),
    )
    return LicenseSearchMatch(
        asset=_validate(Asset, record.get("asset"), _child(path, "asset")),
        segments=decode_segments(record, path),
        policies=policies,
        decisions=_decode_decisions(record, path),
    )


def _decode_decisions(record: Dict[str, Any], path: str) -> Dict[str, Policy]:
    decisions_path = _child(path, "decisions")
    decisions = {}
    for key, value in _get_dict(record, "decisions", path).items():
        territory = _territory(key, _child(decisions_path, key))
        try:
            decisions[territory] = Policy(value)
        except ValueError:
            raise ResultDecodeError(
                f"unknown policy decision: {value!r}", _child(decisions_path, key)
            )
    return decisions


def decode_pex_result(lookup_ids: List[str], body: Any) -> PexSearchResult:
    return PexSearchResult(lookup_ids=list(lookup_ids), matches=_decode_matches(body, _decode_pex_match))


def decode_private_result(lookup_ids: List[str], body: Any) -> PrivateSearchResult:
    return PrivateSearchResult(lookup_ids=list(lookup_ids), matches=_decode_matches(body, _decode_private_match))


def decode_metadata_result(lookup_ids: List[str], body: Any) -> MetadataSearchResult:
    return MetadataSearchResult(lookup_ids=list(lookup_ids), matches=_decode_matches(body, _decode_metadata_match))


def decode_license_result(lookup_ids: List[str], body: Any) -> LicenseSearchResult:
    matches = _decode_matches(body, _decode_license_match)
    ugc_id = body.get("ugc_id")
    if ugc_id is not None and not isinstance(ugc_id, str):
        raise ResultDecodeError("ugc_id must be a string", "ugc_id")
    return LicenseSearchResult(lookup_ids=list(lookup_ids), ugc_id=ugc_id, matches=matches)


_RESULT_DECODERS = {
    SearchKind.PEX: decode_pex_result,
    SearchKind.PRIVATE: decode_private_result,
    SearchKind.METADATA: decode_metadata_result,
    SearchKind.LICENSE: decode_license_result,
}


def decode_search_result(kind: SearchKind, lookup_ids: List[str], body: Any):
    """Decode the result of a completed search of the given kind."""
    result = _RESULT_DECODERS[SearchKind(kind)](lookup_ids, body)
    logger.debug(f"Decoded {kind.value} result with {len(result.matches)} matches")
    return result


# ============================================================================
# Stream events, catalog pages and assets
# ============================================================================

def decode_status(record: Any, path: str = "error") -> StatusInfo:
    """Decode an embedded {code, message} status."""
    if not isinstance(record, dict):
        raise ResultDecodeError("status must be an object", path)
    code = parse_status_code(record.get("code"))
    if code is None or code == StatusCode.OK:
        raise ResultDecodeError(f"unknown status code: {record.get('code')!r}", path)
    return StatusInfo(code=code, message=str(record.get("message") or ""))


def decode_stream_event(body: Any) -> StreamEvent:
    if not isinstance(body, dict):
        raise ResultDecodeError("stream event must be an object", "event")
    record = dict(body)
    if record.get("error") is not None:
        record["error"] = decode_status(record["error"], "event.error")
    return _validate(StreamEvent, record, "event")


def decode_catalog_page(body: Any) -> CatalogPage:
    if not isinstance(body, dict):
        raise ResultDecodeError("catalog page must be an object")
    for i, record in enumerate(_get_list(body, "entries", "")):
        if not isinstance(record, dict):
            raise ResultDecodeError("catalog entry must be an object", _child("entries", i))
    page = _validate(CatalogPage, body, "")
    if page.has_next_page and not page.end_cursor:
        raise ResultDecodeError("page has more entries but no end_cursor", "end_cursor")
    return page


def decode_asset(body: Any) -> AssetDetail:
    return _validate(AssetDetail, body, "asset")
