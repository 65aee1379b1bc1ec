"""Tests for search.py and client.py: start/poll protocol and sessions."""

import threading
from unittest.mock import MagicMock

import pytest

from pexsdk.client import mock_client
from pexsdk.errors import (
    InvalidInputError,
    NotInitializedError,
    ResourceClosedError,
    UnauthenticatedError,
)
from pexsdk.schemas import FingerprintType, Policy, SegmentType
from pexsdk.search import (
    LicenseSearchRequest,
    MetadataSearchRequest,
    PexSearchClient,
    PexSearchRequest,
)
from pexsdk.transport import MockTransport, RestTransport

from conftest import CLIENT_ID, CLIENT_SECRET


def count(backend, path):
    return sum(1 for _, p in backend.requests if p == path)


# ---------------------------------------------------------------------------
# Pex search
# ---------------------------------------------------------------------------

class TestPexSearch:
    def test_lookup_ids_merged_into_one_check(self, pex_client, backend, song_a):
        ft = pex_client.fingerprint_buffer(song_a, FingerprintType.ALL)
        future = pex_client.start_search(PexSearchRequest(fingerprint=ft))
        assert len(future.lookup_ids) == 3

        result = future.get()
        assert result.lookup_ids == future.lookup_ids
        assert count(backend, "/v1/search/check") == 1

        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.asset.id == "asset-a"
        assert match.asset.isrc == "USAAA0000001"
        assert match.asset.duration == 40.0
        assert match.segments[0].type == SegmentType.AUDIO
        assert (match.segments[0].query_start, match.segments[0].query_end) == (0, 40)
        assert match.segments[0].confidence == 100

    def test_single_type_single_lookup(self, pex_client, song_a):
        ft = pex_client.fingerprint_buffer(song_a, FingerprintType.VIDEO)
        future = pex_client.start_search(PexSearchRequest(fingerprint=ft))
        assert len(future.lookup_ids) == 1
        assert future.get().matches[0].segments[0].type == SegmentType.VIDEO

    def test_excerpt_matches_at_offset(self, pex_client, song_a):
        excerpt = song_a[10 * 1024:25 * 1024]
        ft = pex_client.fingerprint_buffer(excerpt)
        segment = pex_client.start_search(PexSearchRequest(fingerprint=ft)).get().matches[0].segments[0]
        assert (segment.query_start, segment.query_end) == (0, 15)
        assert (segment.asset_start, segment.asset_end) == (10, 25)

    def test_match_order_follows_service(self, pex_client, song_a, song_b):
        ft = pex_client.fingerprint_buffer(song_b + song_a)
        result = pex_client.start_search(PexSearchRequest(fingerprint=ft)).get()
        assert [m.asset.id for m in result.matches] == ["asset-a", "asset-b"]

    def test_no_match(self, pex_client, unrelated):
        ft = pex_client.fingerprint_buffer(unrelated)
        assert pex_client.start_search(PexSearchRequest(fingerprint=ft)).get().matches == []

    def test_loaded_dump_searches_identically(self, pex_client, song_a):
        ft = pex_client.fingerprint_buffer(song_a[:20 * 1024])
        restored = pex_client.load_fingerprint(ft.dump())

        direct = pex_client.start_search(PexSearchRequest(fingerprint=ft)).get()
        via_dump = pex_client.start_search(PexSearchRequest(fingerprint=restored)).get()
        assert direct.matches == via_dump.matches


class TestOtherVariants:
    def test_metadata_search(self, metadata_client, song_b):
        ft = metadata_client.fingerprint_buffer(song_b)
        result = metadata_client.start_search(MetadataSearchRequest(fingerprint=ft)).get()
        assert result.matches[0].asset.title == "Second Song"
        assert result.matches[0].asset.type == "recording"

    def test_license_search(self, license_client, song_a):
        ft = license_client.fingerprint_buffer(song_a)
        result = license_client.start_search(LicenseSearchRequest(fingerprint=ft)).get()
        assert result.ugc_id
        match = result.matches[0]
        assert [p.rightsholder.id for p in match.policies["US"]] == [1, 3]
        assert match.policies["DE"][0].policy.category_name == "Block"
        assert match.decisions == {"US": Policy.ALLOW, "DE": Policy.BLOCK}


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

class TestStartValidation:
    def test_rejects_non_request(self, pex_client, backend):
        before = len(backend.requests)
        with pytest.raises(InvalidInputError):
            pex_client.start_search("not a request")
        assert len(backend.requests) == before

    def test_rejects_non_fingerprint(self, pex_client):
        with pytest.raises(InvalidInputError):
            pex_client.start_search(PexSearchRequest(fingerprint=b"raw bytes"))

    def test_closed_fingerprint(self, pex_client, backend, song_a):
        ft = pex_client.fingerprint_buffer(song_a)
        ft.close()
        before = len(backend.requests)
        with pytest.raises(ResourceClosedError):
            pex_client.start_search(PexSearchRequest(fingerprint=ft))
        assert len(backend.requests) == before


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSession:
    def test_wrong_secret(self, backend, config):
        bad = config.model_copy(update={"client_secret": "wrong"})
        with pytest.raises(UnauthenticatedError):
            PexSearchClient(config=bad, transport=MockTransport(backend))

    def test_missing_credentials(self, backend, config):
        empty = config.model_copy(update={"client_id": ""})
        with pytest.raises(InvalidInputError):
            PexSearchClient(config=empty, transport=MockTransport(backend))

    def test_session_established_once(self, backend, config, song_a):
        client = PexSearchClient(config=config, transport=MockTransport(backend))
        ft = client.fingerprint_buffer(song_a)
        client.start_search(PexSearchRequest(fingerprint=ft)).get()
        client.connect()
        assert count(backend, "/v1/auth/token") == 1

    def test_use_before_connect(self, backend, config, song_a):
        client = PexSearchClient(config=config, transport=MockTransport(backend), connect=False)
        ft = client.fingerprint_buffer(song_a)
        with pytest.raises(NotInitializedError):
            client.start_search(PexSearchRequest(fingerprint=ft))

    def test_call_waits_for_connect_in_progress(self, backend, config):
        client = PexSearchClient(config=config, transport=MockTransport(backend), connect=False)
        outcome = []

        def fetch():
            try:
                outcome.append(client._call("GET", "/v1/assets/asset-a"))
            except NotInitializedError as e:
                outcome.append(e)

        with client._lock:
            worker = threading.Thread(target=fetch)
            worker.start()
            worker.join(0.2)
            client._transport.authenticate(CLIENT_ID, CLIENT_SECRET, "pex_search")
            client._connected = True
        worker.join(5.0)

        assert len(outcome) == 1
        assert outcome[0]["id"] == "asset-a"

    def test_use_after_close(self, pex_client, song_a):
        ft = pex_client.fingerprint_buffer(song_a)
        pex_client.close()
        with pytest.raises(ResourceClosedError):
            pex_client.start_search(PexSearchRequest(fingerprint=ft))
        with pytest.raises(ResourceClosedError):
            pex_client.fingerprint_buffer(song_a)

    def test_context_manager_closes(self, backend, config):
        with PexSearchClient(config=config, transport=MockTransport(backend)) as client:
            assert client.connected
        assert client.closed

    def test_mock_client_retargets(self, backend, config, song_a):
        session = MagicMock()
        client = PexSearchClient(
            config=config,
            transport=RestTransport("https://api.example.invalid", session=session),
            connect=False,
        )
        assert mock_client(client, backend) is client
        assert client.connected

        ft = client.fingerprint_buffer(song_a)
        assert client.start_search(PexSearchRequest(fingerprint=ft)).get().matches
        session.request.assert_not_called()
        session.close.assert_called_once()

    def test_credentials_override_config(self, backend, config):
        client = PexSearchClient(
            CLIENT_ID, CLIENT_SECRET,
            config=config.model_copy(update={"client_id": "", "client_secret": ""}),
            transport=MockTransport(backend),
        )
        assert client.config.client_id == CLIENT_ID
        client.close()
