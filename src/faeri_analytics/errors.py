"""
Error taxonomy for the analytics core.

Every error carries the HTTP status it maps to and a message that is safe to
show to the client. Route handlers turn these into ``{"error": message}``
responses; nothing below is allowed to reach the transport layer unhandled.
"""


class AnalyticsError(Exception):
    """Base class for errors returned to API callers."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AnalyticsError):
    """Malformed, missing or out-of-range input. Client-fixable."""

    status_code = 400
    default_message = "Invalid request"


class NotFoundError(AnalyticsError):
    """Referenced page or link does not exist or is not publicly visible."""

    status_code = 404
    default_message = "Not found"


class AuthorizationError(AnalyticsError):
    """Caller is not allowed to read the requested analytics."""

    status_code = 401
    default_message = "Unauthorized"


class RateLimitedError(AnalyticsError):
    """Too many requests from one client within the window."""

    status_code = 429
    default_message = "Too many requests"


class PersistenceError(AnalyticsError):
    """Datastore read or write failed.

    The message is always generic; the underlying cause is logged by the
    raiser and kept on ``__cause__``.
    """

    status_code = 500
    default_message = "Internal server error"


class GeoLookupError(Exception):
    """Raised by geo resolvers. Swallowed by ``resolve_geo``, never surfaced."""
    pass
