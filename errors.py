class ServiceError(Exception):
    """Base class for errors that are rendered as an error envelope.

    Each subclass carries the HTTP status it maps to; the message is what the
    client sees, so it must never contain internal details.
    """

    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    """Missing or malformed input (400)."""

    status_code = 400


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credentials (401)."""

    status_code = 401


class InvalidTokenError(AuthenticationError):
    """The bearer token is malformed or its signature does not verify."""


class TokenExpiredError(AuthenticationError):
    """The bearer token is well formed but past its expiry."""


class NotFoundError(ServiceError):
    """The resolved resource no longer exists (404)."""

    status_code = 404


class UpstreamFailure(ServiceError):
    """A store or delivery collaborator failed or timed out (500)."""

    status_code = 500


class CacheUnavailableError(Exception):
    """The fast cache could not be reached. Callers treat this as a miss."""
