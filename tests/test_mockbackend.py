"""Tests for mockbackend.py: session handling and request dispatch."""

import pytest

from pexsdk.mockbackend import MockBackend

from conftest import CLIENT_ID, CLIENT_SECRET

TOKEN_PATH = "/v1/auth/token"


def issue(backend, client_id=CLIENT_ID, client_secret=CLIENT_SECRET):
    return backend.handle("POST", TOKEN_PATH, payload={
        "client_id": client_id,
        "client_secret": client_secret,
        "client_type": "pex_search",
    })


class TestSession:
    def test_token_issued_without_prior_session(self, backend):
        status, body = issue(backend)
        assert status == 200
        assert body["access_token"]

    def test_any_credentials_when_unrestricted(self):
        status, _ = issue(MockBackend(), "someone", "anything")
        assert status == 200

    @pytest.mark.parametrize("client_id,client_secret", [
        (CLIENT_ID, "wrong"),
        ("unknown", CLIENT_SECRET),
        ("", ""),
    ])
    def test_rejected_credentials(self, backend, client_id, client_secret):
        status, body = issue(backend, client_id, client_secret)
        assert status == 401
        assert body["code"] == "UNAUTHENTICATED"

    def test_issued_token_authorizes_requests(self, backend):
        token = issue(backend)[1]["access_token"]
        status, body = backend.handle(
            "GET", "/v1/catalog/entries", params={"limit": 5}, token=token
        )
        assert status == 200
        assert body["entries"] == []

    @pytest.mark.parametrize("token", [None, "not-a-token"])
    def test_protected_routes_need_token(self, backend, token):
        status, body = backend.handle("GET", "/v1/assets/asset-a", token=token)
        assert status == 401
        assert body["code"] == "UNAUTHENTICATED"


class TestDispatch:
    def test_unknown_route(self, backend):
        status, body = backend.handle("GET", "/v1/nowhere")
        assert status == 404
        assert body["code"] == "NOT_FOUND"

    def test_method_must_match(self, backend):
        token = issue(backend)[1]["access_token"]
        status, _ = backend.handle("GET", "/v1/search/start", token=token)
        assert status == 404

    def test_requests_logged(self, backend):
        issue(backend)
        backend.handle("GET", "/v1/nowhere")
        assert backend.requests == [("POST", TOKEN_PATH), ("GET", "/v1/nowhere")]
