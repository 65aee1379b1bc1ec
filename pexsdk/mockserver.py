"""
Mock content-identification service.

FastAPI app exposing MockBackend over HTTP so that RestTransport (and any
other HTTP client) can be tested against a local server:

    pexsdk mockserver --port 8080
    PEXSDK_BASE_URL=http://localhost:8080 pexsdk search clip.mp3
"""

import logging
import os
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, Header, Query
from fastapi.responses import JSONResponse, Response

from . import __version__
from .mockbackend import MockBackend

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration
# ============================================================================

PENDING_CHECKS = int(os.getenv("PEXSDK_MOCK_PENDING_CHECKS", "0"))
HOST = os.getenv("PEXSDK_MOCK_HOST", "127.0.0.1")
PORT = int(os.getenv("PEXSDK_MOCK_PORT", "8080"))


def _token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else None


def _respond(status: int, body: Optional[Dict[str, Any]]) -> Response:
    if status == 204:
        return Response(status_code=204)
    return JSONResponse(status_code=status, content=body)


# ============================================================================
# App Setup
# ============================================================================

def create_app(backend: Optional[MockBackend] = None) -> FastAPI:
    """
    Build the mock service app around a backend.

    Args:
        backend: Backend to serve (a fresh one by default)
    """
    backend = backend or MockBackend(pending_checks=PENDING_CHECKS)
    app = FastAPI(
        title="pexsdk mock service",
        description="In-memory implementation of the content-identification protocol.",
        version=__version__,
    )
    app.state.backend = backend

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "version": __version__}

    @app.post("/v1/auth/token")
    def issue_token(payload: Dict[str, Any] = Body(...)):
        return _respond(*backend.handle("POST", "/v1/auth/token", payload=payload))

    @app.post("/v1/search/start")
    def start_search(payload: Dict[str, Any] = Body(...),
                     authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", "/v1/search/start", payload=payload, token=_token(authorization)
        ))

    @app.post("/v1/search/check")
    def check_search(payload: Dict[str, Any] = Body(...),
                     authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", "/v1/search/check", payload=payload, token=_token(authorization)
        ))

    @app.post("/v1/catalog/ingest")
    def ingest(payload: Dict[str, Any] = Body(...),
               authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", "/v1/catalog/ingest", payload=payload, token=_token(authorization)
        ))

    @app.post("/v1/catalog/archive")
    def archive(payload: Dict[str, Any] = Body(...),
                authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", "/v1/catalog/archive", payload=payload, token=_token(authorization)
        ))

    @app.get("/v1/catalog/entries")
    def list_entries(limit: str = Query(default="100"),
                     after: Optional[str] = Query(default=None),
                     authorization: Optional[str] = Header(default=None)):
        params = {"limit": limit}
        if after is not None:
            params["after"] = after
        return _respond(*backend.handle(
            "GET", "/v1/catalog/entries", params=params, token=_token(authorization)
        ))

    @app.post("/v1/stream/start")
    def start_stream(payload: Dict[str, Any] = Body(...),
                     authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", "/v1/stream/start", payload=payload, token=_token(authorization)
        ))

    @app.get("/v1/stream/{stream_id}/next")
    def next_event(stream_id: str, wait: Optional[float] = Query(default=None),
                   authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "GET", f"/v1/stream/{stream_id}/next",
            params={"wait": wait}, token=_token(authorization)
        ))

    @app.post("/v1/stream/{stream_id}/end")
    def end_stream(stream_id: str, authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "POST", f"/v1/stream/{stream_id}/end", token=_token(authorization)
        ))

    @app.get("/v1/assets/{asset_id}")
    def get_asset(asset_id: str, authorization: Optional[str] = Header(default=None)):
        return _respond(*backend.handle(
            "GET", f"/v1/assets/{asset_id}", token=_token(authorization)
        ))

    return app


def run(host: str = HOST, port: int = PORT, backend: Optional[MockBackend] = None):
    """Serve the mock service until interrupted."""
    logger.info(f"Mock service listening on http://{host}:{port}")
    uvicorn.run(create_app(backend), host=host, port=port)


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    run()
