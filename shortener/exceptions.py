"""Domain errors raised by the shortener core.

Every error carries an ``error_code`` so the HTTP layer and the logs can
refer to it without matching on class names.
"""

__all__ = [
    "CodeSpaceExhaustedError",
    "DuplicateCodeError",
    "ForbiddenError",
    "InvalidURLError",
    "NotFoundError",
    "ShortenerError",
    "TransientBackendError",
    "UnauthenticatedError",
]


class ShortenerError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortener_error"


class InvalidURLError(ShortenerError):
    """Raised when a submitted URL is empty, malformed or not absolute."""

    error_code = "request:invalid_url"


class UnauthenticatedError(ShortenerError):
    """Raised when a request carries no valid access token."""

    error_code = "auth:unauthenticated"


class ForbiddenError(ShortenerError):
    """Raised when a user acts on a short URL owned by someone else."""

    error_code = "auth:forbidden"


class NotFoundError(ShortenerError):
    """Raised when a short code does not exist."""

    error_code = "request:not_found"


class CodeSpaceExhaustedError(ShortenerError):
    """Raised when no free short code could be drawn within the retry budget."""

    error_code = "ops:code_space_exhausted"


class DuplicateCodeError(ShortenerError):
    """Raised by the store when an insert lost a race for the same code."""

    error_code = "store:duplicate_code"


class TransientBackendError(ShortenerError):
    """Raised when the durable store timed out or is unreachable."""

    error_code = "infra:transient_backend_error"
