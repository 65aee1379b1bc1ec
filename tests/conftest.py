"""Shared test fixtures.

Clients talk to an in-process MockBackend through MockTransport, so no
test needs network access.
"""

import random

import pytest

from pexsdk.config import ClientConfig
from pexsdk.mockbackend import MockBackend
from pexsdk.private_search import PrivateSearchClient
from pexsdk.search import LicenseSearchClient, MetadataSearchClient, PexSearchClient
from pexsdk.stream import StreamSearchClient
from pexsdk.transport import MockTransport

CLIENT_ID = "client-id"
CLIENT_SECRET = "client-secret"
OTHER_ID = "other-id"
OTHER_SECRET = "other-secret"
READ_ONLY_ID = "read-only-id"
READ_ONLY_SECRET = "read-only-secret"

WINDOW = 1024  # bytes per second of LocalFingerprintEngine


def make_content(seed: int, seconds: int) -> bytes:
    """Deterministic pseudo-random media of the given length in seconds."""
    rng = random.Random(seed)
    return bytes(rng.getrandbits(8) for _ in range(seconds * WINDOW))


# === FIXTURES: Media ===


@pytest.fixture
def song_a() -> bytes:
    return make_content(1, 40)


@pytest.fixture
def song_b() -> bytes:
    return make_content(2, 30)


@pytest.fixture
def unrelated() -> bytes:
    return make_content(99, 20)


# === FIXTURES: Backend and config ===


@pytest.fixture
def backend(song_a, song_b) -> MockBackend:
    """Backend with two reference assets and three known credential pairs."""
    backend = MockBackend(
        credentials={
            CLIENT_ID: CLIENT_SECRET,
            OTHER_ID: OTHER_SECRET,
            READ_ONLY_ID: READ_ONLY_SECRET,
        },
        read_only={READ_ONLY_ID},
    )
    backend.add_asset(
        "asset-a",
        song_a,
        title="First Song",
        artist="The Band",
        isrc="USAAA0000001",
        label="Label A",
        upcs=["000000000001"],
        licensors={"US": ["Label A"], "DE": ["Label A Europe"]},
        policies=[
            {"territory": "US", "rightsholder": {"id": 1, "title": "Label A"},
             "policy": {"id": 10, "category_id": 1, "category_name": "Monetize"}},
            {"territory": "DE", "rightsholder": {"id": 2, "title": "Label A Europe"},
             "policy": {"id": 11, "category_id": 2, "category_name": "Block"}},
            {"territory": "US", "rightsholder": {"id": 3, "title": "Publisher"},
             "policy": {"id": 12, "category_id": 3, "category_name": "Track"}},
        ],
        decisions={"US": "allow", "DE": "block"},
    )
    backend.add_asset("asset-b", song_b, title="Second Song", artist="Someone Else")
    return backend


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        poll_interval=0.0,
    )


def _client(cls, backend, config):
    return cls(config=config, transport=MockTransport(backend))


# === FIXTURES: Clients ===


@pytest.fixture
def pex_client(backend, config):
    client = _client(PexSearchClient, backend, config)
    yield client
    client.close()


@pytest.fixture
def metadata_client(backend, config):
    client = _client(MetadataSearchClient, backend, config)
    yield client
    client.close()


@pytest.fixture
def license_client(backend, config):
    client = _client(LicenseSearchClient, backend, config)
    yield client
    client.close()


@pytest.fixture
def private_client(backend, config):
    client = _client(PrivateSearchClient, backend, config)
    yield client
    client.close()


@pytest.fixture
def stream_client(backend, config):
    client = _client(StreamSearchClient, backend, config)
    yield client
    client.close()
