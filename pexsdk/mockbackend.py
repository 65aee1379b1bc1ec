"""
In-memory reference implementation of the service protocol.

MockBackend answers every endpoint the clients use, so the whole SDK can
be exercised without network access:
- In-process, through MockTransport (see mock_client())
- Over HTTP, through the FastAPI app in pexsdk.mockserver

Matching runs on the window hashes of LocalFingerprintEngine, so a query
made from the same content as a reference asset or an ingested
fingerprint produces real segments.
"""

import base64
import binascii
import logging
import re
import threading
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

import numpy as np

from .engine import LocalFingerprintEngine, validate_types, window_hashes
from .errors import (
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    PexError,
    StatusCode,
    UnauthenticatedError,
)
from .matcher import match_segments
from .schemas import FingerprintType, SearchKind, Segment, StreamEventType

logger = logging.getLogger(__name__)

_HTTP_BY_CODE = {
    StatusCode.INVALID_INPUT: 400,
    StatusCode.UNAUTHENTICATED: 401,
    StatusCode.PERMISSION_DENIED: 403,
    StatusCode.NOT_FOUND: 404,
    StatusCode.CONNECTION_ERROR: 503,
    StatusCode.DEADLINE_EXCEEDED: 504,
    StatusCode.LOOKUP_TIMED_OUT: 504,
}

_STREAM_URL = re.compile(r"^(https?|rtmps?)://\S+$")


@dataclass
class ReferenceAsset:
    """An asset of the reference catalog."""
    id: str
    hashes: np.ndarray
    types: FingerprintType
    title: str = ""
    subtitle: str = ""
    artist: str = ""
    isrc: str = ""
    label: str = ""
    distributor: str = ""
    type: str = "recording"
    upcs: List[str] = field(default_factory=list)
    licensors: Dict[str, List[str]] = field(default_factory=dict)
    policies: List[Dict[str, Any]] = field(default_factory=list)  # flat, with "territory"
    decisions: Dict[str, str] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return float(len(self.hashes))

    def short(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "title": self.title, "artist": self.artist}


@dataclass
class _CatalogRecord:
    hashes: np.ndarray
    types: FingerprintType
    archived: FingerprintType = FingerprintType(0)

    @property
    def active(self) -> FingerprintType:
        return self.types & ~self.archived


@dataclass
class _Lookup:
    client_id: str
    kind: SearchKind
    group: str
    hashes: np.ndarray
    types: FingerprintType
    checks_left: int


@dataclass
class _Stream:
    client_id: str
    url: str
    events: Deque[Optional[Dict[str, Any]]]
    finished: bool = False


class MockBackend:
    """
    Thread-safe in-memory service.

    Args:
        credentials: Accepted client_id -> client_secret pairs (any
            non-empty pair is accepted when None)
        read_only: Client IDs lacking write access to their catalog
        pending_checks: Number of checks answered "pending" before a
            lookup completes
        cursor_ttl: Seconds after which a listing cursor expires
        engine: Engine used to fingerprint reference assets
    """

    def __init__(
        self,
        credentials: Optional[Dict[str, str]] = None,
        read_only: Optional[Set[str]] = None,
        pending_checks: int = 0,
        cursor_ttl: float = 3600.0,
        engine: Optional[LocalFingerprintEngine] = None
    ):
        self.credentials = credentials
        self.read_only = set(read_only or ())
        self.pending_checks = pending_checks
        self.cursor_ttl = cursor_ttl
        self.engine = engine or LocalFingerprintEngine()

        self._lock = threading.RLock()
        self._tokens: Dict[str, str] = {}  # token -> client_id
        self._assets: "OrderedDict[str, ReferenceAsset]" = OrderedDict()
        self._catalogs: Dict[str, "OrderedDict[str, _CatalogRecord]"] = {}  # client_id -> entries
        self._cursors: Dict[str, Tuple[str, str, float]] = {}  # cursor -> (client_id, last id, issued)
        self._lookups: Dict[str, _Lookup] = {}
        self._streams: Dict[str, _Stream] = {}
        self._stream_scripts: Dict[str, List[Optional[Dict[str, Any]]]] = {}
        self._lookup_failures: Deque[Tuple[StatusCode, str]] = deque()
        self.requests: List[Tuple[str, str]] = []  # (method, path) log

        # (method, path pattern, handler, public); public routes need no token
        self._routes: List[Tuple[str, re.Pattern, Callable, bool]] = [
            ("POST", re.compile(r"^/v1/auth/token$"), self._issue_token, True),
            ("POST", re.compile(r"^/v1/search/start$"), self._start_search, False),
            ("POST", re.compile(r"^/v1/search/check$"), self._check_search, False),
            ("POST", re.compile(r"^/v1/catalog/ingest$"), self._ingest, False),
            ("POST", re.compile(r"^/v1/catalog/archive$"), self._archive, False),
            ("GET", re.compile(r"^/v1/catalog/entries$"), self._list_entries, False),
            ("POST", re.compile(r"^/v1/stream/start$"), self._start_stream, False),
            ("GET", re.compile(r"^/v1/stream/(?P<stream_id>[^/]+)/next$"), self._next_event, False),
            ("POST", re.compile(r"^/v1/stream/(?P<stream_id>[^/]+)/end$"), self._end_stream, False),
            ("GET", re.compile(r"^/v1/assets/(?P<asset_id>[^/]+)$"), self._get_asset, False),
        ]

    # ========================================================================
    # Setup helpers
    # ========================================================================

    def add_asset(self, asset_id: str, content: bytes,
                  types: FingerprintType = FingerprintType.ALL, **attrs) -> ReferenceAsset:
        """
        Add an asset to the reference catalog, fingerprinting its content.

        Extra keyword arguments set ReferenceAsset attributes (title,
        artist, isrc, policies, decisions, licensors, ...).
        """
        types = validate_types(types)
        hashes = window_hashes(self.engine.extract_buffer(content, types))
        asset = ReferenceAsset(id=asset_id, hashes=hashes, types=types, **attrs)
        with self._lock:
            self._assets[asset_id] = asset
        logger.debug(f"Added reference asset {asset_id} ({len(hashes)} windows)")
        return asset

    def set_stream_script(self, url: str, events: List[Optional[Dict[str, Any]]]):
        """
        Script the events of stream searches started on `url`.

        A None entry is answered with "no event yet" (HTTP 204).
        """
        with self._lock:
            self._stream_scripts[url] = list(events)

    def fail_next_lookup(self, code: StatusCode = StatusCode.LOOKUP_FAILED,
                         message: str = "lookup failed"):
        """Make the next completing lookup report a failure."""
        with self._lock:
            self._lookup_failures.append((code, message))

    def expire_cursors(self):
        with self._lock:
            self._cursors.clear()

    def catalog_size(self, client_id: str) -> int:
        with self._lock:
            return len(self._catalogs.get(client_id, {}))

    # ========================================================================
    # Dispatch
    # ========================================================================

    def handle(self, method: str, path: str,
               payload: Optional[Dict[str, Any]] = None,
               params: Optional[Dict[str, Any]] = None,
               token: Optional[str] = None) -> Tuple[int, Optional[Dict[str, Any]]]:
        """
        Answer one request.

        Returns:
            (HTTP status, JSON body or None)
        """
        method = method.upper()
        with self._lock:
            self.requests.append((method, path))
        for route_method, pattern, handler, public in self._routes:
            match = pattern.match(path)
            if not match or route_method != method:
                continue
            try:
                client_id = "" if public else self._authorize(token)
                return handler(client_id, payload or {}, params or {}, **match.groupdict())
            except PexError as e:
                logger.debug(f"{method} {path} -> {e}")
                return _HTTP_BY_CODE.get(e.code, 500), e.to_dict()
        return 404, {"code": StatusCode.NOT_FOUND.name, "message": f"no route for {method} {path}"}

    def _authorize(self, token: Optional[str]) -> str:
        with self._lock:
            client_id = self._tokens.get(token or "")
        if client_id is None:
            raise UnauthenticatedError("missing or invalid access token")
        return client_id

    # ========================================================================
    # Session
    # ========================================================================

    def _issue_token(self, _, payload, params):
        client_id = payload.get("client_id") or ""
        client_secret = payload.get("client_secret") or ""
        if not client_id or not client_secret:
            raise UnauthenticatedError("client_id and client_secret are required")
        if self.credentials is not None and self.credentials.get(client_id) != client_secret:
            raise UnauthenticatedError("invalid client credentials")
        token = uuid.uuid4().hex
        with self._lock:
            self._tokens[token] = client_id
        logger.info(f"Issued token for {client_id} ({payload.get('client_type', 'unknown')})")
        return 200, {"access_token": token}

    # ========================================================================
    # Searches
    # ========================================================================

    @staticmethod
    def _decode_fingerprint(payload: Dict[str, Any]) -> Tuple[np.ndarray, FingerprintType]:
        encoded = payload.get("fingerprint")
        if not isinstance(encoded, str) or not encoded:
            raise InvalidInputError("fingerprint is required")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidInputError("fingerprint is not valid base64")
        try:
            types = FingerprintType.from_names(payload.get("fingerprint_types") or [])
        except ValueError as e:
            raise InvalidInputError(str(e))
        return window_hashes(data), validate_types(types)

    def _start_search(self, client_id, payload, params):
        try:
            kind = SearchKind(payload.get("type"))
        except ValueError:
            raise InvalidInputError(f"unknown search type: {payload.get('type')!r}")
        hashes, types = self._decode_fingerprint(payload)

        # The aggregate search runs one sub-search per fingerprint type
        parts = types.names() if kind == SearchKind.PEX else [kind.value]
        group = uuid.uuid4().hex
        lookup_ids = []
        with self._lock:
            for part in parts:
                lookup_id = f"{group[:16]}-{part}"
                self._lookups[lookup_id] = _Lookup(
                    client_id=client_id,
                    kind=kind,
                    group=group,
                    hashes=hashes,
                    types=types,
                    checks_left=self.pending_checks,
                )
                lookup_ids.append(lookup_id)
        logger.info(f"Started {kind.value} lookup {lookup_ids}")
        return 200, {"lookup_ids": lookup_ids}

    def _check_search(self, client_id, payload, params):
        lookup_ids = payload.get("lookup_ids")
        if not isinstance(lookup_ids, list) or not lookup_ids:
            raise InvalidInputError("lookup_ids is required")

        with self._lock:
            lookups = []
            for lookup_id in lookup_ids:
                lookup = self._lookups.get(lookup_id)
                if lookup is None or lookup.client_id != client_id:
                    raise NotFoundError(f"unknown lookup id: {lookup_id}")
                lookups.append(lookup)
            if len({lookup.group for lookup in lookups}) != 1:
                raise InvalidInputError("lookup ids belong to different searches")
            first = lookups[0]
            if payload.get("type") not in (None, first.kind.value):
                raise InvalidInputError(f"lookup is not a {payload.get('type')} search")

            if first.checks_left > 0:
                for lookup in lookups:
                    lookup.checks_left -= 1
                return 200, {"status": "pending"}

            for lookup_id in lookup_ids:
                del self._lookups[lookup_id]
            failure = self._lookup_failures.popleft() if self._lookup_failures else None
            if failure is not None:
                code, message = failure
                return 200, {"status": "failed", "error": {"code": code.name, "message": message}}

            result = self._compute_result(first)
        return 200, {"status": "completed", "result": result}

    def _compute_result(self, lookup: _Lookup) -> Dict[str, Any]:
        if lookup.kind == SearchKind.PRIVATE:
            catalog = self._catalogs.get(lookup.client_id, OrderedDict())
            matches = []
            for provided_id, record in catalog.items():
                segments = match_segments(lookup.hashes, lookup.types, record.hashes, record.active)
                if segments:
                    matches.append({
                        "provided_id": provided_id,
                        "segments": [_segment_dict(s) for s in segments],
                    })
            return {"matches": matches}

        matches = []
        for asset in self._assets.values():
            segments = match_segments(lookup.hashes, lookup.types, asset.hashes, asset.types)
            if not segments:
                continue
            if lookup.kind == SearchKind.PEX:
                details: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
                for segment in segments:
                    record = _segment_dict(segment)
                    modality = record.pop("type")
                    details.setdefault(modality, {"segments": []})["segments"].append(record)
                matches.append({
                    "asset": {
                        "id": asset.id,
                        "title": asset.title,
                        "subtitle": asset.subtitle,
                        "artist": asset.artist,
                        "isrc": asset.isrc,
                        "label": asset.label,
                        "distributor": asset.distributor,
                        "duration_seconds": asset.duration,
                    },
                    "match_details": details,
                })
                continue

            match = {"asset": asset.short(), "segments": [_segment_dict(s) for s in segments]}
            if lookup.kind == SearchKind.LICENSE:
                match["policies"] = list(asset.policies)
                match["decisions"] = dict(asset.decisions)
            matches.append(match)

        result: Dict[str, Any] = {"matches": matches}
        if lookup.kind == SearchKind.LICENSE:
            result["ugc_id"] = lookup.group
        return result

    # ========================================================================
    # Private catalog
    # ========================================================================

    def _check_writable(self, client_id: str):
        if client_id in self.read_only:
            raise PermissionDeniedError(f"{client_id} has no write access to its catalog")

    def _ingest(self, client_id, payload, params):
        self._check_writable(client_id)
        provided_id = payload.get("provided_id")
        if not isinstance(provided_id, str) or not provided_id.strip():
            raise InvalidInputError("provided_id is required")
        hashes, types = self._decode_fingerprint(payload)
        with self._lock:
            catalog = self._catalogs.setdefault(client_id, OrderedDict())
            catalog[provided_id] = _CatalogRecord(hashes=hashes, types=types)
        logger.info(f"Ingested {provided_id} for {client_id}")
        return 200, {}

    def _archive(self, client_id, payload, params):
        self._check_writable(client_id)
        provided_id = payload.get("provided_id")
        try:
            types = validate_types(FingerprintType.from_names(payload.get("fingerprint_types") or []))
        except ValueError as e:
            raise InvalidInputError(str(e))
        with self._lock:
            record = self._catalogs.get(client_id, {}).get(provided_id)
            if record is None:
                raise NotFoundError(f"no catalog entry with id {provided_id!r}")
            record.archived |= types & record.types
        logger.info(f"Archived {types.names()} of {provided_id} for {client_id}")
        return 200, {}

    def _list_entries(self, client_id, payload, params):
        try:
            limit = int(params.get("limit", 100))
        except (TypeError, ValueError):
            raise InvalidInputError(f"invalid limit: {params.get('limit')!r}")
        if not 1 <= limit <= 1000:
            raise InvalidInputError(f"limit must be between 1 and 1000, got {limit}")

        with self._lock:
            catalog = self._catalogs.get(client_id, OrderedDict())
            ids = list(catalog.keys())
            start = 0
            after = params.get("after")
            if after:
                cursor = self._cursors.get(after)
                if cursor is None or cursor[0] != client_id:
                    raise InvalidInputError("unknown or expired cursor")
                _, last_id, issued = cursor
                if time.monotonic() - issued > self.cursor_ttl:
                    del self._cursors[after]
                    raise InvalidInputError("unknown or expired cursor")
                start = ids.index(last_id) + 1

            page_ids = ids[start:start + limit]
            entries = []
            for provided_id in page_ids:
                record = catalog[provided_id]
                entries.append({
                    "provided_id": provided_id,
                    "fingerprint_types": record.types.names(),
                    "archived_types": record.archived.names(),
                    "archived": int(record.active) == 0,
                })

            end_cursor = None
            if page_ids:
                end_cursor = uuid.uuid4().hex
                self._cursors[end_cursor] = (client_id, page_ids[-1], time.monotonic())

        return 200, {
            "entries": entries,
            "end_cursor": end_cursor,
            "has_next_page": start + limit < len(ids),
        }

    # ========================================================================
    # Stream search
    # ========================================================================

    def _default_script(self) -> List[Optional[Dict[str, Any]]]:
        assets = list(self._assets.values())[:2]
        events: List[Optional[Dict[str, Any]]] = [_event(StreamEventType.SEARCH_STARTED), None]
        for i, asset in enumerate(assets):
            events.append(_event(StreamEventType.MATCH_STARTED, asset, 10 * i, 0))
        if assets:
            events.append({
                "type": StreamEventType.SEARCH_ERROR.value,
                "error": {"code": StatusCode.LOOKUP_TIMED_OUT.name, "message": "segment lookup timed out"},
            })
            events.append(_event(StreamEventType.MATCH_ENDED, assets[0], 30, 30))
        events.append(_event(StreamEventType.STREAM_ENDED))
        for asset in assets[1:]:
            events.append(_event(StreamEventType.MATCH_ENDED, asset, 40, 30))
        events.append(_event(StreamEventType.SEARCH_ENDED))
        return events

    def _start_stream(self, client_id, payload, params):
        url = payload.get("url")
        if not isinstance(url, str) or not _STREAM_URL.match(url):
            raise InvalidInputError(f"invalid media url: {url!r}")
        stream_id = uuid.uuid4().hex
        with self._lock:
            script = self._stream_scripts.get(url) or self._default_script()
            self._streams[stream_id] = _Stream(client_id=client_id, url=url, events=deque(script))
        logger.info(f"Started stream {stream_id} for {url}")
        return 200, {"stream_id": stream_id}

    def _get_stream(self, client_id: str, stream_id: str) -> _Stream:
        stream = self._streams.get(stream_id)
        if stream is None or stream.client_id != client_id:
            raise NotFoundError(f"unknown stream search: {stream_id}")
        return stream

    def _next_event(self, client_id, payload, params, stream_id):
        with self._lock:
            stream = self._get_stream(client_id, stream_id)
            if stream.finished:
                raise InvalidInputError(f"stream search {stream_id} has ended")
            if not stream.events:
                return 204, None
            event = stream.events.popleft()
            if event is None:
                return 204, None
            if event.get("type") == StreamEventType.SEARCH_ENDED.value:
                stream.finished = True
        return 200, event

    def _end_stream(self, client_id, payload, params, stream_id):
        with self._lock:
            self._get_stream(client_id, stream_id)
            del self._streams[stream_id]
        logger.info(f"Ended stream {stream_id}")
        return 200, {}

    # ========================================================================
    # Asset library
    # ========================================================================

    def _get_asset(self, client_id, payload, params, asset_id):
        with self._lock:
            asset = self._assets.get(asset_id)
        if asset is None:
            raise NotFoundError(f"unknown asset: {asset_id}")
        return 200, {
            "id": asset.id,
            "metadata": {
                "isrc": asset.isrc,
                "title": asset.title,
                "artists": [asset.artist] if asset.artist else [],
                "upcs": list(asset.upcs),
                "licensors": {k: list(v) for k, v in asset.licensors.items()},
            },
        }


def _segment_dict(segment: Segment) -> Dict[str, Any]:
    return segment.model_dump(mode="json", exclude_none=True)


def _event(event_type: StreamEventType, asset: Optional[ReferenceAsset] = None,
           query_timestamp: Optional[int] = None,
           asset_timestamp: Optional[int] = None) -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": event_type.value}
    if asset is not None:
        event["asset"] = asset.short()
        event["query_timestamp"] = query_timestamp
        event["asset_timestamp"] = asset_timestamp
    return event
