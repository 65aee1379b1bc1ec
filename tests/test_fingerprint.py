"""Tests for fingerprint.py and engine.py: handles, dumps and extraction."""

import pytest

from pexsdk.engine import LocalFingerprintEngine, window_hashes
from pexsdk.errors import InvalidInputError, ResourceClosedError
from pexsdk.fingerprint import DUMP_MAGIC, Fingerprint, Fingerprinter, load_fingerprint
from pexsdk.schemas import FingerprintType

from conftest import make_content


@pytest.fixture
def fingerprinter() -> Fingerprinter:
    return Fingerprinter()


class TestConstruction:
    def test_cannot_construct_directly(self):
        with pytest.raises(TypeError):
            Fingerprint(b"\x00" * 8, FingerprintType.AUDIO)

    def test_empty_buffer_is_invalid_input(self, fingerprinter):
        with pytest.raises(InvalidInputError):
            fingerprinter.fingerprint_buffer(b"")

    @pytest.mark.parametrize("types", [0, 8, 15])
    def test_invalid_types(self, fingerprinter, types):
        with pytest.raises(InvalidInputError):
            fingerprinter.fingerprint_buffer(b"media", types)

    def test_missing_file_is_invalid_input(self, fingerprinter, tmp_path):
        with pytest.raises(InvalidInputError):
            fingerprinter.fingerprint_file(str(tmp_path / "missing.mp3"))

    def test_from_file_matches_buffer(self, fingerprinter, tmp_path):
        content = make_content(5, 3)
        path = tmp_path / "clip.mp3"
        path.write_bytes(content)
        assert fingerprinter.fingerprint_file(str(path)) == fingerprinter.fingerprint_buffer(content)


class TestIdentity:
    def test_deterministic(self, fingerprinter):
        content = make_content(7, 5)
        a = fingerprinter.fingerprint_buffer(content, FingerprintType.AUDIO)
        b = fingerprinter.fingerprint_buffer(content, FingerprintType.AUDIO)
        assert a == b
        assert hash(a) == hash(b)
        assert a.digest == b.digest
        assert len(a.digest) == 64

    def test_types_are_part_of_identity(self, fingerprinter):
        content = make_content(7, 5)
        audio = fingerprinter.fingerprint_buffer(content, FingerprintType.AUDIO)
        video = fingerprinter.fingerprint_buffer(content, FingerprintType.VIDEO)
        assert audio.digest == video.digest
        assert audio != video

    def test_different_content_differs(self, fingerprinter):
        assert (fingerprinter.fingerprint_buffer(make_content(1, 2))
                != fingerprinter.fingerprint_buffer(make_content(2, 2)))

    def test_types_names(self, fingerprinter):
        ft = fingerprinter.fingerprint_buffer(b"x", FingerprintType.AUDIO | FingerprintType.MELODY)
        assert ft.types.names() == ["audio", "melody"]


class TestDumpLoad:
    def test_round_trip(self, fingerprinter):
        ft = fingerprinter.fingerprint_buffer(make_content(3, 4), FingerprintType.VIDEO)
        blob = ft.dump()
        assert blob.startswith(DUMP_MAGIC)

        restored = fingerprinter.load(blob)
        assert restored == ft
        assert restored.types == FingerprintType.VIDEO
        assert restored.data == ft.data

    def test_bad_magic(self):
        with pytest.raises(InvalidInputError):
            load_fingerprint(b"NOPE\x01\x07" + b"\x00" * 8)

    def test_bad_version(self):
        with pytest.raises(InvalidInputError):
            load_fingerprint(DUMP_MAGIC + b"\x09\x07" + b"\x00" * 8)

    def test_truncated(self):
        with pytest.raises(InvalidInputError):
            load_fingerprint(DUMP_MAGIC + b"\x01\x07")


class TestClose:
    def test_use_after_close(self, fingerprinter):
        ft = fingerprinter.fingerprint_buffer(b"media")
        ft.close()
        assert ft.closed
        with pytest.raises(ResourceClosedError):
            ft.data
        with pytest.raises(ResourceClosedError):
            ft.dump()

    def test_close_twice_is_noop(self, fingerprinter):
        ft = fingerprinter.fingerprint_buffer(b"media")
        ft.close()
        ft.close()
        assert ft.closed

    def test_context_manager_releases(self, fingerprinter):
        with fingerprinter.fingerprint_buffer(b"media") as ft:
            assert not ft.closed
        assert ft.closed

    def test_identity_survives_close(self, fingerprinter):
        a = fingerprinter.fingerprint_buffer(b"media")
        b = fingerprinter.fingerprint_buffer(b"media")
        a.close()
        assert a == b


class TestLocalEngine:
    def test_one_hash_per_window(self):
        engine = LocalFingerprintEngine(window_size=4)
        hashes = window_hashes(engine.extract_buffer(b"aaaabbbbaaaac", FingerprintType.AUDIO))
        assert len(hashes) == 4
        assert hashes[0] == hashes[2]
        assert hashes[0] != hashes[1]

    def test_malformed_payload(self):
        with pytest.raises(InvalidInputError):
            window_hashes(b"\x00" * 7)
