"""Exception types shared across the weather push services."""


class WeatherPushError(Exception):
    """Base class for all service errors."""

    status_code = 500
    code = "INTERNAL_ERROR"


class AuthError(WeatherPushError):
    """Caller could not be authenticated. Never retried."""

    status_code = 401
    code = "UNAUTHORIZED"


class MissingConfiguration(AuthError):
    """The token verification secret is not configured."""

    code = "AUTH_NOT_CONFIGURED"


class ExpiredToken(AuthError):
    """The token's expiry has passed."""

    code = "TOKEN_EXPIRED"


class MalformedToken(AuthError):
    """Bad signature, bad format or missing required claims."""

    code = "INVALID_TOKEN"


class IdentityMismatch(AuthError):
    """The claimed userId does not match the token's userId claim."""

    code = "USER_MISMATCH"


class ValidationError(WeatherPushError):
    """A required message field is missing or malformed."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UpstreamTransient(WeatherPushError):
    """A store, transport or provider call failed in a way that may succeed on retry."""

    code = "UPSTREAM_UNAVAILABLE"


class RateLimited(WeatherPushError):
    """The weather provider throttled the request. Not retried."""

    status_code = 429
    code = "RATE_LIMITED"


class InvalidLocation(WeatherPushError):
    """The weather provider rejected the location query."""

    status_code = 400
    code = "INVALID_LOCATION"


class ProviderError(WeatherPushError):
    """The weather provider returned an unusable response."""

    status_code = 502
    code = "PROVIDER_ERROR"


class EndpointGone(WeatherPushError):
    """The push endpoint for a connection is permanently unreachable."""

    status_code = 410
    code = "GONE"


class TransportError(WeatherPushError):
    """The push transport rejected a message for a non-transient reason."""

    code = "TRANSPORT_ERROR"


class ConnectionNotRegistered(WeatherPushError):
    """The connection has no registry record (never connected, expired or removed)."""

    status_code = 410
    code = "CONNECTION_GONE"
