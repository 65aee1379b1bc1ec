"""Tests for private_search.py: ingest, search and archive scenarios."""

import pytest

from pexsdk.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from pexsdk.private_search import PrivateSearchClient, PrivateSearchRequest
from pexsdk.schemas import FingerprintType, SegmentType
from pexsdk.transport import MockTransport

from conftest import OTHER_ID, OTHER_SECRET, READ_ONLY_ID, READ_ONLY_SECRET


def search(client, content):
    ft = client.fingerprint_buffer(content)
    return client.start_search(PrivateSearchRequest(fingerprint=ft)).get()


def provided_ids(result):
    return [m.provided_id for m in result.matches]


class TestIngestSearchArchive:
    def test_ingested_content_matches(self, private_client, unrelated):
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))

        result = search(private_client, unrelated)
        assert provided_ids(result) == ["id1"]
        assert any(s.asset_end > s.asset_start for s in result.matches[0].segments)

    def test_archive_all_removes_match(self, private_client, unrelated):
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))
        private_client.archive("id1", FingerprintType.ALL)

        assert "id1" not in provided_ids(search(private_client, unrelated))

        # Still listed for audit
        entry = private_client.list_entries(limit=10).entries[0]
        assert entry.provided_id == "id1"
        assert entry.archived is True

    def test_partial_archive_keeps_other_types(self, private_client, unrelated):
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))
        private_client.archive("id1", FingerprintType.AUDIO)

        result = search(private_client, unrelated)
        assert provided_ids(result) == ["id1"]
        assert result.matches[0].segments[0].type == SegmentType.VIDEO

        entry = private_client.list_entries(limit=10).entries[0]
        assert entry.archived is False
        assert entry.active_types == FingerprintType.VIDEO | FingerprintType.MELODY

    def test_reingest_restores_matching(self, private_client, unrelated):
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))
        private_client.archive("id1")
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))
        assert provided_ids(search(private_client, unrelated)) == ["id1"]

    def test_reference_assets_not_in_private_results(self, private_client, song_a):
        assert search(private_client, song_a).matches == []


class TestCatalogErrors:
    def test_archive_unknown_id(self, private_client):
        with pytest.raises(NotFoundError):
            private_client.archive("missing")

    def test_empty_provided_id(self, private_client, unrelated):
        with pytest.raises(InvalidInputError):
            private_client.ingest("  ", private_client.fingerprint_buffer(unrelated))

    def test_read_only_credentials(self, backend, config, unrelated):
        read_only = config.model_copy(
            update={"client_id": READ_ONLY_ID, "client_secret": READ_ONLY_SECRET}
        )
        with PrivateSearchClient(config=read_only, transport=MockTransport(backend)) as client:
            with pytest.raises(PermissionDeniedError):
                client.ingest("id1", client.fingerprint_buffer(unrelated))


class TestCatalogScope:
    def test_catalog_scoped_to_credentials(self, private_client, backend, config, unrelated):
        private_client.ingest("id1", private_client.fingerprint_buffer(unrelated))

        other = config.model_copy(update={"client_id": OTHER_ID, "client_secret": OTHER_SECRET})
        with PrivateSearchClient(config=other, transport=MockTransport(backend)) as client:
            assert client.list_entries(limit=10).entries == []
            assert search(client, unrelated).matches == []
            client.ingest("id1", client.fingerprint_buffer(unrelated))

        assert len(private_client.list_entries(limit=10).entries) == 1
