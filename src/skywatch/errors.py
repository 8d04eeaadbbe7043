"""Error taxonomy shared by every component.

Mandatory-path failures (configuration, invalid input, forecast unavailable)
propagate as exceptions. Degraded paths (alerts, reverse lookup, IP
geolocation) never raise past their component.
"""

from enum import StrEnum

BODY_EXCERPT_LIMIT = 200


def excerpt(body: str | None, limit: int = BODY_EXCERPT_LIMIT) -> str:
    """Truncate an upstream body for diagnostics."""
    if not body:
        return ""
    body = body.strip()
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


class SkywatchError(Exception):
    """Base class for all errors raised by the aggregation core."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(SkywatchError):
    """A provider credential or identification string is missing."""

    kind = "configuration"


class InvalidInputError(SkywatchError):
    """Input was rejected before any network call."""

    kind = "invalid_input"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PlaceNotFoundError(SkywatchError):
    """A free-text place did not resolve to a usable candidate."""

    kind = "not_found"

    def __init__(self, query: str) -> None:
        super().__init__("City not found")
        self.query = query


class UpstreamError(SkywatchError):
    """An upstream provider answered with an error or could not be reached."""

    kind = "upstream"

    def __init__(self, provider: str, status: int | None = None, detail: str = "") -> None:
        self.provider = provider
        self.status = status
        self.detail = excerpt(detail)
        if status is None:
            message = f"{provider} unreachable"
        else:
            message = f"{provider} returned HTTP {status}"
        if self.detail:
            message = f"{message}: {self.detail}"
        super().__init__(message)


class ForecastUnavailableError(UpstreamError):
    """The mandatory forecast path failed; the whole request fails with it."""

    kind = "forecast_unavailable"

    @classmethod
    def wrap(cls, error: UpstreamError) -> "ForecastUnavailableError":
        return cls(error.provider, error.status, error.detail)


class GeolocationFailure(StrEnum):
    PERMISSION_DENIED = "permission_denied"
    POLICY_BLOCKED = "policy_blocked"
    TIMEOUT = "timeout"
    POSITION_UNAVAILABLE = "position_unavailable"
    UNSUPPORTED = "unsupported"


# Failures worth a second, high-accuracy attempt.
RETRYABLE_GEOLOCATION = frozenset({GeolocationFailure.TIMEOUT, GeolocationFailure.POSITION_UNAVAILABLE})

_REMEDIATION = {
    GeolocationFailure.PERMISSION_DENIED: (
        "Location access was denied. Allow location for this site in your browser settings, "
        "or search for a place manually."
    ),
    GeolocationFailure.POLICY_BLOCKED: (
        "Location access is blocked by this page's permissions policy. Search for a place manually."
    ),
    GeolocationFailure.TIMEOUT: "Finding your location took too long. Try again.",
    GeolocationFailure.POSITION_UNAVAILABLE: "Your position is currently unavailable. Try again.",
    GeolocationFailure.UNSUPPORTED: "Your browser doesn't support location. Search for a place manually.",
}


class GeolocationError(SkywatchError):
    """Device geolocation failed with a specific, user-explainable cause."""

    kind = "geolocation"

    def __init__(self, failure: GeolocationFailure, detail: str = "") -> None:
        self.failure = GeolocationFailure(failure)
        self.detail = detail
        super().__init__(detail or self.failure.value)

    @property
    def retryable(self) -> bool:
        return self.failure in RETRYABLE_GEOLOCATION

    @property
    def is_permission(self) -> bool:
        return self.failure in (GeolocationFailure.PERMISSION_DENIED, GeolocationFailure.POLICY_BLOCKED)

    @property
    def actionable(self) -> str:
        return _REMEDIATION[self.failure]
