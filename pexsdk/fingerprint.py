"""
Fingerprint handles and the fingerprinting capability.

A Fingerprint is an immutable, content-addressed handle around the payload
produced by an extraction engine. Handles are only created by a
Fingerprinter (directly from media, or restored from a dump), and release
their payload on close().
"""

import hashlib
import logging
import struct
from typing import Optional, Union

from .engine import FingerprintEngine, LocalFingerprintEngine, validate_types
from .errors import InvalidInputError, ResourceClosedError
from .schemas import FingerprintType

logger = logging.getLogger(__name__)

DUMP_MAGIC = b"PXFP"
DUMP_VERSION = 1
_HEADER = struct.Struct(">4sBB")

# Only holders of this token can construct Fingerprint objects.
_CONSTRUCT = object()


class Fingerprint:
    """
    Opaque content identifier used as a search or ingestion query.

    Two fingerprints are equal when they carry the same payload and the
    same types. Use as a context manager to release the payload on exit:

        with client.fingerprint_file("clip.mp4") as ft:
            future = client.start_search(PexSearchRequest(fingerprint=ft))
    """

    def __init__(self, data: bytes, types: FingerprintType, _token: object = None):
        if _token is not _CONSTRUCT:
            raise TypeError(
                "Fingerprint objects are created by a Fingerprinter "
                "(fingerprint_file, fingerprint_buffer or load_fingerprint)"
            )
        if not data:
            raise InvalidInputError("fingerprint payload is empty")
        self._data: Optional[bytes] = bytes(data)
        self._types = validate_types(types)
        self._digest = hashlib.sha256(self._data).hexdigest()

    @property
    def closed(self) -> bool:
        return self._data is None

    @property
    def data(self) -> bytes:
        self._check_open()
        return self._data

    @property
    def types(self) -> FingerprintType:
        return self._types

    @property
    def digest(self) -> str:
        """Hex sha256 of the payload."""
        return self._digest

    def _check_open(self):
        if self._data is None:
            raise ResourceClosedError(f"fingerprint {self._digest[:12]} is closed")

    def dump(self) -> bytes:
        """
        Serialize the fingerprint so it can be stored and loaded later.

        Returns:
            Self-describing blob accepted by Fingerprinter.load()
        """
        self._check_open()
        return _HEADER.pack(DUMP_MAGIC, DUMP_VERSION, int(self._types)) + self._data

    def close(self):
        """Release the payload. Closing twice is a no-op."""
        if self._data is not None:
            self._data = None
            logger.debug(f"Released fingerprint {self._digest[:12]}")

    def __enter__(self) -> "Fingerprint":
        self._check_open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Fingerprint):
            return NotImplemented
        return self._digest == other._digest and self._types == other._types

    def __hash__(self) -> int:
        return hash((self._digest, int(self._types)))

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{len(self._data)} bytes"
        return f"Fingerprint({self._digest[:12]}, types={self._types.names()}, {state})"


def load_fingerprint(blob: bytes) -> Fingerprint:
    """
    Restore a fingerprint from the output of Fingerprint.dump().

    Raises:
        InvalidInputError: the blob is truncated or not a fingerprint dump
    """
    if len(blob) <= _HEADER.size:
        raise InvalidInputError("fingerprint dump is truncated")
    magic, version, types = _HEADER.unpack_from(blob)
    if magic != DUMP_MAGIC:
        raise InvalidInputError("not a fingerprint dump")
    if version != DUMP_VERSION:
        raise InvalidInputError(f"unsupported fingerprint dump version: {version}")
    return Fingerprint(blob[_HEADER.size:], validate_types(types), _token=_CONSTRUCT)


class Fingerprinter:
    """
    Fingerprinting capability shared by every client variant.

    Clients hold a Fingerprinter and delegate to it rather than inheriting
    extraction behavior.
    """

    def __init__(self, engine: Optional[FingerprintEngine] = None):
        self.engine = engine or LocalFingerprintEngine()

    def fingerprint_file(self, path: str,
                         types: FingerprintType = FingerprintType.ALL) -> Fingerprint:
        """
        Generate a fingerprint from a media file stored on disk.

        Args:
            path: Path to the media file
            types: Fingerprint types to generate

        Returns:
            A new Fingerprint handle
        """
        types = validate_types(types)
        payload = self.engine.extract_file(str(path), types)
        return Fingerprint(payload, types, _token=_CONSTRUCT)

    def fingerprint_buffer(self, buffer: Union[bytes, bytearray, memoryview],
                           types: FingerprintType = FingerprintType.ALL) -> Fingerprint:
        """Generate a fingerprint from media held in memory."""
        types = validate_types(types)
        payload = self.engine.extract_buffer(bytes(buffer), types)
        return Fingerprint(payload, types, _token=_CONSTRUCT)

    def load(self, blob: bytes) -> Fingerprint:
        return load_fingerprint(blob)
