"""
Error taxonomy for the content-identification client.

Two separate families are defined here:
- PexError: a status reported by the remote service (or by the transport
  on its behalf). Every instance carries a StatusCode and a message.
- ClientUsageError: caller misuse detected locally (consumed futures,
  closed handles, uninitialized clients). These never carry a remote
  status code and must not be confused with service failures.
"""

from enum import IntEnum
from typing import Any, Dict, Optional, Type


class StatusCode(IntEnum):
    """Status codes shared by every operation of the protocol."""
    OK = 0
    DEADLINE_EXCEEDED = 1
    PERMISSION_DENIED = 2
    UNAUTHENTICATED = 3
    NOT_FOUND = 4
    INVALID_INPUT = 5
    OUT_OF_MEMORY = 6
    INTERNAL_ERROR = 7
    NOT_INITIALIZED = 8
    CONNECTION_ERROR = 9
    LOOKUP_FAILED = 10
    LOOKUP_TIMED_OUT = 11


# ============================================================================
# Remote statuses
# ============================================================================

class PexError(Exception):
    """Base class for every status reported by the service."""

    code: StatusCode = StatusCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str, code: Optional[StatusCode] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"{self.code.value}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.name, "message": self.message}


class InputError(PexError):
    """The request was malformed. Never retried."""


class AuthError(PexError):
    """Credentials were rejected. Terminal for the client session."""


class AvailabilityError(PexError):
    """Transient failure; retrying the whole operation is the caller's call."""
    retryable = True


class ServerError(PexError):
    """The service failed to process a well-formed request."""


class InvalidInputError(InputError):
    code = StatusCode.INVALID_INPUT


class UnauthenticatedError(AuthError):
    code = StatusCode.UNAUTHENTICATED


class PermissionDeniedError(AuthError):
    code = StatusCode.PERMISSION_DENIED


class ConnectionFailedError(AvailabilityError):
    code = StatusCode.CONNECTION_ERROR


class DeadlineExceededError(AvailabilityError):
    code = StatusCode.DEADLINE_EXCEEDED


class LookupTimedOutError(AvailabilityError):
    code = StatusCode.LOOKUP_TIMED_OUT


class InternalError(ServerError):
    code = StatusCode.INTERNAL_ERROR


class LookupFailedError(ServerError):
    code = StatusCode.LOOKUP_FAILED


class NotFoundError(ServerError):
    code = StatusCode.NOT_FOUND


class OutOfMemoryError(ServerError):
    code = StatusCode.OUT_OF_MEMORY


class ServiceNotInitializedError(ServerError):
    """The service reports that the session was never initialized."""
    code = StatusCode.NOT_INITIALIZED


class ResultDecodeError(ServerError):
    """A service response could not be mapped onto the domain model.

    Raised instead of skipping the offending record.
    """
    code = StatusCode.INTERNAL_ERROR

    def __init__(self, message: str, path: str = ""):
        self.path = path
        if path:
            message = f"{message} (at {path})"
        super().__init__(message)


_ERRORS_BY_CODE: Dict[StatusCode, Type[PexError]] = {
    StatusCode.DEADLINE_EXCEEDED: DeadlineExceededError,
    StatusCode.PERMISSION_DENIED: PermissionDeniedError,
    StatusCode.UNAUTHENTICATED: UnauthenticatedError,
    StatusCode.NOT_FOUND: NotFoundError,
    StatusCode.INVALID_INPUT: InvalidInputError,
    StatusCode.OUT_OF_MEMORY: OutOfMemoryError,
    StatusCode.INTERNAL_ERROR: InternalError,
    StatusCode.NOT_INITIALIZED: ServiceNotInitializedError,
    StatusCode.CONNECTION_ERROR: ConnectionFailedError,
    StatusCode.LOOKUP_FAILED: LookupFailedError,
    StatusCode.LOOKUP_TIMED_OUT: LookupTimedOutError,
}

_CODES_BY_HTTP_STATUS: Dict[int, StatusCode] = {
    400: StatusCode.INVALID_INPUT,
    401: StatusCode.UNAUTHENTICATED,
    403: StatusCode.PERMISSION_DENIED,
    404: StatusCode.NOT_FOUND,
    408: StatusCode.DEADLINE_EXCEEDED,
    422: StatusCode.INVALID_INPUT,
    504: StatusCode.DEADLINE_EXCEEDED,
}


def parse_status_code(value: Any) -> Optional[StatusCode]:
    """
    Parse a status code from its wire form.

    Accepts the enum name ("INVALID_INPUT"), the integer value or its
    string form. Returns None for anything unrecognized.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        try:
            return StatusCode(value)
        except ValueError:
            return None
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return parse_status_code(int(name))
        return StatusCode.__members__.get(name)
    return None


def error_from_status(code: StatusCode, message: str) -> PexError:
    """Build the exception matching a remote status code."""
    if code == StatusCode.OK:
        raise ValueError("OK is not an error status")
    error_cls = _ERRORS_BY_CODE.get(code, InternalError)
    return error_cls(message)


def error_from_http(http_status: int, body: Optional[Dict[str, Any]]) -> PexError:
    """
    Build the exception for a failed HTTP exchange.

    The body's "code" wins; the HTTP status is only used when the body
    carries no recognizable code.

    Args:
        http_status: HTTP status code of the response
        body: Decoded JSON body, if any

    Returns:
        The matching PexError instance
    """
    body = body or {}
    message = str(body.get("message") or body.get("detail") or f"HTTP {http_status}")
    code = parse_status_code(body.get("code"))
    if code is None or code == StatusCode.OK:
        code = _CODES_BY_HTTP_STATUS.get(http_status)
    if code is None:
        code = StatusCode.INTERNAL_ERROR if http_status >= 500 else StatusCode.INVALID_INPUT
    return error_from_status(code, message)


# ============================================================================
# Local misuse
# ============================================================================

class ClientUsageError(Exception):
    """Caller misuse detected locally; never a remote status."""


class AlreadyConsumedError(ClientUsageError):
    """A search future's result was already retrieved."""

    def __init__(self, lookup_ids=None):
        self.lookup_ids = list(lookup_ids or [])
        super().__init__(f"search result already consumed (lookup_ids={self.lookup_ids})")


class ResourceClosedError(ClientUsageError):
    """A handle was used after it was released."""


class NotInitializedError(ClientUsageError):
    """A client was used before its session was established."""


class StreamStateError(ClientUsageError):
    """A stream search was pulled after it reached a terminal state."""
