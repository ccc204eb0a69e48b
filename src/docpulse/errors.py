"""Exception hierarchy for docpulse.

Every error that can cross the ingestion boundary carries the HTTP status
the server answers with, so handlers and the HTTP client agree on mapping.
"""


class DocPulseError(Exception):
    """Base exception for all docpulse errors."""

    status = 500


class ValidationError(DocPulseError):
    """Required fields are missing or malformed."""

    status = 400


class AuthenticationError(DocPulseError):
    """API key missing or not bound to any account."""

    status = 401


class AuthorizationError(DocPulseError):
    """Claimed email does not match the account behind the API key."""

    status = 403


class TransientIOError(DocPulseError):
    """Network or storage failure; retried by the next scheduled tick."""

    status = 503


class AggregationConflict(DocPulseError):
    """Rollup write collided with an existing daily total."""

    status = 409


class HandshakeError(DocPulseError):
    """Identity handshake was started with unusable input."""

    status = 400


ERRORS_BY_STATUS = {
    ValidationError.status: ValidationError,
    AuthenticationError.status: AuthenticationError,
    AuthorizationError.status: AuthorizationError,
}


def error_for_status(status_code: int, message: str) -> DocPulseError:
    """Build the exception matching an HTTP status returned by the server."""
    error_class = ERRORS_BY_STATUS.get(status_code, TransientIOError)
    return error_class(message)
