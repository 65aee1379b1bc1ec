from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
import json
import logging

import requests

from .errors import (
    ConnectionFailedError,
    DeadlineExceededError,
    InternalError,
    ResultDecodeError,
    error_from_http,
)
from .mockbackend import MockBackend

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/auth/token"


class Transport(ABC):
    """Abstract base class for the channel between a client and the service."""

    @abstractmethod
    def authenticate(self, client_id: str, client_secret: str, client_type: str) -> None:
        """
        Establish a session. Called once per client lifetime.

        Raises:
            UnauthenticatedError: the credentials were rejected
            ConnectionFailedError: the service is unreachable
        """
        pass

    @abstractmethod
    def call(self, method: str, path: str,
             payload: Optional[Dict[str, Any]] = None,
             params: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Perform one round trip.

        Args:
            method: HTTP method
            path: Endpoint path, e.g. "/v1/search/start"
            payload: JSON body
            params: Query parameters
            timeout: Per-call timeout in seconds (transport default if None)

        Returns:
            Decoded JSON object, or None when the service had nothing to
            return (HTTP 204)
        """
        pass

    @abstractmethod
    def fork(self) -> "Transport":
        """
        Open an independent channel on the same session.

        The fork shares the access token but not the connection, so calls
        on it do not wait for calls on this transport. Used by stream
        searches, whose long polls must not hold up other requests.
        """
        pass

    def close(self):
        """Release connections held by the transport."""
        pass


class MockTransport(Transport):
    """Transport talking to an in-process MockBackend."""

    def __init__(self, backend: Optional[MockBackend] = None):
        self.backend = backend or MockBackend()
        self._token: Optional[str] = None

    def authenticate(self, client_id: str, client_secret: str, client_type: str) -> None:
        body = self._exchange("POST", TOKEN_PATH, {
            "client_id": client_id,
            "client_secret": client_secret,
            "client_type": client_type,
        }, None)
        self._token = body["access_token"]

    def fork(self) -> "MockTransport":
        forked = MockTransport(self.backend)
        forked._token = self._token
        return forked

    def call(self, method, path, payload=None, params=None, timeout=None):
        return self._exchange(method, path, payload, params)

    def _exchange(self, method, path, payload, params):
        # Round-trip through JSON so only wire-representable values reach the backend
        wire_payload = json.loads(json.dumps(payload)) if payload is not None else None
        status, body = self.backend.handle(
            method, path, payload=wire_payload, params=params, token=self._token
        )
        if status == 204:
            return None
        if status >= 400:
            raise error_from_http(status, body)
        return json.loads(json.dumps(body))


class RestTransport(Transport):
    """REST API implementation of the transport."""

    def __init__(self, base_url: str, request_timeout: float = 30.0,
                 session: Optional[requests.Session] = None,
                 session_factory: Callable[[], requests.Session] = requests.Session):
        self.base_url = base_url.rstrip('/')
        self.request_timeout = request_timeout
        self._session_factory = session_factory
        self._session = session or session_factory()  # Reuse connections
        self._token: Optional[str] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def authenticate(self, client_id: str, client_secret: str, client_type: str) -> None:
        """
        Exchange the client credentials for an access token.

        Calls: POST /v1/auth/token
        """
        body = self.call("POST", TOKEN_PATH, payload={
            "client_id": client_id,
            "client_secret": client_secret,
            "client_type": client_type,
        })
        token = (body or {}).get("access_token")
        if not isinstance(token, str) or not token:
            raise InternalError("token response carries no access_token")
        self._token = token
        logger.info(f"Authenticated against {self.base_url}")

    def fork(self) -> "RestTransport":
        forked = RestTransport(
            self.base_url,
            request_timeout=self.request_timeout,
            session_factory=self._session_factory,
        )
        forked._token = self._token
        return forked

    def call(self, method, path, payload=None, params=None, timeout=None):
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(),
                timeout=timeout or self.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"Request to {url} timed out: {e}")
            raise DeadlineExceededError(f"request to {url} timed out")
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Service not reachable at {self.base_url}: {e}")
            raise ConnectionFailedError(f"connection failed: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {url} failed: {e}")
            raise ConnectionFailedError(str(e))

        status = response.status_code
        logger.debug(f"{method} {path} -> {status}")
        if status == 204:
            return None

        try:
            body = response.json()
        except ValueError:
            body = None

        if not 200 <= status < 300:
            raise error_from_http(status, body if isinstance(body, dict) else None)
        if not isinstance(body, dict):
            raise ResultDecodeError("response body is not a JSON object", path)
        return body

    def close(self):
        self._session.close()
