"""
Failure classification for sync attempts.

Every failure a sync caller can see is one of these kinds. Conflicts are
not failures: they are returned as data and applied by the orchestrator.

- Unauthenticated: no usable credential, abort before any call.
- Transport failure: timeout or connection error, dirty flags are kept
  and the attempt is safe to retry.
- Server error: the server answered with an unexpected status.
"""

from enum import Enum


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"

    # Resource failures
    NOT_FOUND = "not_found"

    # Credential failures
    UNAUTHENTICATED = "unauthenticated"

    # Network / service failures
    TRANSPORT_FAILURE = "transport_failure"
    SERVER_ERROR = "server_error"
    INVALID_RESPONSE = "invalid_response"

    # Store contention
    WRITE_CONFLICT = "write_conflict"


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)


class UnauthenticatedError(KnownError):
    """No credential is available, or the server rejected it."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            kind=FailureKind.UNAUTHENTICATED,
            message="Please sign in to continue",
            detail=detail,
            suggestion="Sign in again, then retry the sync.",
            status_code=401,
        )


class TransportError(KnownError):
    """The request never produced a response: timeout or connection failure."""

    def __init__(self, detail: str | None = None):
        message = "Network error"
        if detail:
            message = f"Network error: {detail}"
        super().__init__(
            kind=FailureKind.TRANSPORT_FAILURE,
            message=message,
            detail=detail,
            suggestion="Local changes are kept and will be sent on the next sync.",
            status_code=503,
        )


class ServerError(KnownError):
    """The server answered with a non-success status."""

    def __init__(self, status_code: int, server_message: str | None = None):
        super().__init__(
            kind=FailureKind.SERVER_ERROR,
            message=server_message or f"Server error ({status_code})",
            detail=server_message,
            status_code=status_code,
        )


class WriteConflictError(KnownError):
    """A guarded write kept losing to concurrent writers on the same row."""

    def __init__(self, card_id: str):
        super().__init__(
            kind=FailureKind.WRITE_CONFLICT,
            message=f"Card {card_id} is being changed by another request",
            detail=card_id,
            suggestion="Retry the request.",
            status_code=409,
        )
