"""
Base client shared by every search variant.

A client owns one authenticated session and a lock serializing its round
trips. Sessions are independent: any number of clients can be used in
parallel from different threads.
"""

import base64
import logging
import threading
from enum import Enum
from typing import Any, Dict, Optional, Union

from .asset_library import AssetLibrary
from .config import ClientConfig
from .engine import FingerprintEngine
from .errors import InvalidInputError, NotInitializedError, ResourceClosedError
from .fingerprint import Fingerprint, Fingerprinter
from .mockbackend import MockBackend
from .schemas import FingerprintType
from .transport import MockTransport, RestTransport, Transport

logger = logging.getLogger(__name__)


class ClientType(str, Enum):
    """Client variants; sent to the service when the session is established."""
    PEX_SEARCH = "pex_search"
    PRIVATE_SEARCH = "private_search"
    METADATA_SEARCH = "metadata_search"
    LICENSE_SEARCH = "license_search"
    STREAM_SEARCH = "stream_search"


def fingerprint_payload(fingerprint: Fingerprint) -> Dict[str, Any]:
    """
    Wire form of a fingerprint.

    Raises:
        InvalidInputError: not a Fingerprint
        ResourceClosedError: the fingerprint was closed
    """
    if not isinstance(fingerprint, Fingerprint):
        raise InvalidInputError(
            f"expected a Fingerprint, got {type(fingerprint).__name__}"
        )
    return {
        "fingerprint": base64.b64encode(fingerprint.data).decode("ascii"),
        "fingerprint_types": fingerprint.types.names(),
    }


class BaseClient:
    """
    Session holder for one client variant.

    Usage:
        with PexSearchClient("client-id", "client-secret") as client:
            ft = client.fingerprint_file("/path/to/clip.mp3")
            result = client.start_search(PexSearchRequest(fingerprint=ft)).get()

    Args:
        client_id: Client ID (falls back to PEXSDK_CLIENT_ID)
        client_secret: Client secret (falls back to PEXSDK_CLIENT_SECRET)
        config: Full configuration; built from the environment if omitted
        transport: Transport to use instead of the one implied by config
        engine: Fingerprint extraction engine
        connect: Establish the session right away
    """

    client_type: ClientType = ClientType.PEX_SEARCH

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        engine: Optional[FingerprintEngine] = None,
        connect: bool = True
    ):
        if config is None:
            config = ClientConfig.from_env(client_id=client_id, client_secret=client_secret)
        else:
            updates = {k: v for k, v in (("client_id", client_id), ("client_secret", client_secret)) if v}
            if updates:
                config = config.model_copy(update=updates)
        self.config = config

        self._fingerprinter = Fingerprinter(engine)
        self._lock = threading.Lock()
        self._transport = transport or self._default_transport()
        self._connected = False
        self._closed = False

        if connect:
            self.connect()

    def _default_transport(self) -> Transport:
        if self.config.use_mock:
            logger.info("Using mock transport")
            return MockTransport()
        return RestTransport(self.config.base_url, request_timeout=self.config.request_timeout)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self):
        """Establish the session. Does nothing when already connected."""
        self._check_open()
        if not self.config.client_id or not self.config.client_secret:
            raise InvalidInputError("client_id and client_secret are required")
        with self._lock:
            if self._connected:
                return
            self._transport.authenticate(
                self.config.client_id,
                self.config.client_secret,
                self.client_type.value,
            )
            self._connected = True
        logger.info(f"Session established for {self.client_type.value} client")

    def _retarget(self, transport: Transport):
        """Swap the transport and re-establish the session on it."""
        self._check_open()
        with self._lock:
            old, self._transport = self._transport, transport
            self._connected = False
        old.close()
        self.connect()

    def _check_open(self):
        if self._closed:
            raise ResourceClosedError(f"{type(self).__name__} is closed")

    def _check_connected(self):
        if not self._connected:
            raise NotInitializedError(
                f"{type(self).__name__} has no session; call connect() first"
            )

    def _fork_transport(self) -> Transport:
        """Independent channel on this session, not serialized with _call()."""
        self._check_open()
        with self._lock:
            self._check_connected()
            return self._transport.fork()

    def _call(self, method: str, path: str,
              payload: Optional[Dict[str, Any]] = None,
              params: Optional[Dict[str, Any]] = None,
              timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """One round trip on this client's session, serialized with all others."""
        with self._lock:
            self._check_open()
            self._check_connected()
            return self._transport.call(method, path, payload=payload, params=params, timeout=timeout)

    # ------------------------------------------------------------------
    # Fingerprinting
    # ------------------------------------------------------------------

    def fingerprint_file(self, path: str,
                         types: FingerprintType = FingerprintType.ALL) -> Fingerprint:
        self._check_open()
        return self._fingerprinter.fingerprint_file(path, types)

    def fingerprint_buffer(self, buffer: Union[bytes, bytearray, memoryview],
                           types: FingerprintType = FingerprintType.ALL) -> Fingerprint:
        self._check_open()
        return self._fingerprinter.fingerprint_buffer(buffer, types)

    def load_fingerprint(self, blob: bytes) -> Fingerprint:
        return self._fingerprinter.load(blob)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def asset_library(self) -> AssetLibrary:
        """Asset metadata lookups sharing this client's session."""
        return AssetLibrary(self)

    def close(self):
        """Release the session. Closing twice is a no-op."""
        if self._closed:
            return
        with self._lock:
            self._closed = True
            self._transport.close()
        logger.info(f"{self.client_type.value} client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("connected" if self._connected else "idle")
        return f"{type(self).__name__}({self.config.base_url}, {state})"


def mock_client(client: BaseClient, backend: Optional[MockBackend] = None) -> BaseClient:
    """
    Re-target a client to a mock backend.

    The client then only talks to the in-process backend, which is useful
    for tests and local development.

    Returns:
        The same client, for chaining
    """
    client._retarget(MockTransport(backend))
    logger.info(f"{type(client).__name__} re-targeted to the mock backend")
    return client
