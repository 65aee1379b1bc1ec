"""
Fingerprint extraction engines.

An engine turns a media file or an in-memory buffer into an opaque
payload for the requested fingerprint types. The payload is only ever
interpreted by the engine that produced it and by the matcher of the
mock backend.

Supports:
- FingerprintEngine: the interface every engine implements
- LocalFingerprintEngine: deterministic window hashing, used for local
  development and as the reference engine of the mock backend
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np

from .errors import InternalError, InvalidInputError
from .schemas import FingerprintType

logger = logging.getLogger(__name__)

# Bytes of content hashed into a single window. One window counts as one
# second on the query and asset timelines.
DEFAULT_WINDOW_SIZE = 1024

HASH_DTYPE = np.dtype("<u8")


def validate_types(types: FingerprintType) -> FingerprintType:
    """Reject empty or out-of-range type masks."""
    value = int(types)
    if value == 0 or value & ~int(FingerprintType.ALL):
        raise InvalidInputError(f"invalid fingerprint types: {value}")
    return FingerprintType(value)


class FingerprintEngine(ABC):
    """Abstract base class for fingerprint extraction engines."""

    @abstractmethod
    def extract_buffer(self, buffer: bytes, types: FingerprintType) -> bytes:
        """
        Extract a fingerprint payload from media held in memory.

        Args:
            buffer: Raw media bytes
            types: Requested fingerprint types

        Returns:
            Opaque payload bytes

        Raises:
            InvalidInputError: the media cannot be fingerprinted
            InternalError: the engine failed
        """
        pass

    def extract_file(self, path: str, types: FingerprintType) -> bytes:
        """
        Extract a fingerprint payload from a media file.

        The default implementation reads the whole file and delegates to
        extract_buffer().
        """
        file_path = Path(path)
        try:
            buffer = file_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, PermissionError) as e:
            raise InvalidInputError(f"cannot read media file {path}: {e}")
        except OSError as e:
            raise InternalError(f"failed to read media file {path}: {e}")
        logger.debug(f"Read {len(buffer)} bytes from {file_path.name}")
        return self.extract_buffer(buffer, types)


class LocalFingerprintEngine(FingerprintEngine):
    """
    Deterministic engine hashing fixed-size content windows.

    The payload is a little-endian uint64 array with one blake2b hash per
    window, so identical input always yields an identical fingerprint and
    content shared between two inputs shows up as equal hashes.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.window_size = window_size

    def extract_buffer(self, buffer: bytes, types: FingerprintType) -> bytes:
        types = validate_types(types)
        if not buffer:
            raise InvalidInputError("media buffer is empty")

        view = memoryview(bytes(buffer))
        count = (len(view) + self.window_size - 1) // self.window_size
        hashes = np.empty(count, dtype=HASH_DTYPE)
        for i in range(count):
            window = view[i * self.window_size:(i + 1) * self.window_size]
            digest = hashlib.blake2b(window, digest_size=8).digest()
            hashes[i] = int.from_bytes(digest, "little")

        logger.debug(f"Extracted {count} windows for types {types.names()}")
        return hashes.tobytes()


def window_hashes(payload: bytes) -> np.ndarray:
    """
    Decode a payload produced by LocalFingerprintEngine.

    Raises:
        InvalidInputError: the payload is not a whole number of windows
    """
    if not payload or len(payload) % HASH_DTYPE.itemsize:
        raise InvalidInputError(
            f"malformed fingerprint payload ({len(payload)} bytes)"
        )
    return np.frombuffer(payload, dtype=HASH_DTYPE)
