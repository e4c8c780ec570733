"""Central error types used across the tracking engine."""

from __future__ import annotations

from enum import IntEnum


class FootpathError(RuntimeError):
    """Base error for the tracking engine."""


class SessionStoreError(FootpathError):
    """Raised when the durable session store rejects or fails a request."""


class SessionNotFoundError(SessionStoreError):
    """Raised when a session id does not exist in the durable store."""


class TrackingStateError(FootpathError):
    """Raised when an explicit lifecycle call is invalid for the current state."""


class FlagStoreError(FootpathError):
    """Raised when the local flag file cannot be read or written."""


class LocationErrorCode(IntEnum):
    """Error codes reported by a location source (geolocation API numbering)."""

    UNKNOWN = 0
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


_LOCATION_MESSAGES = {
    LocationErrorCode.PERMISSION_DENIED: (
        "PERMISSION_DENIED: location access was denied while tracking"
    ),
    LocationErrorCode.POSITION_UNAVAILABLE: (
        "POSITION_UNAVAILABLE: the current position could not be determined"
    ),
    LocationErrorCode.TIMEOUT: "TIMEOUT: the location request timed out",
}


class LocationSourceError(FootpathError):
    """Raised or reported when the location source cannot deliver a fix."""

    def __init__(
        self,
        code: LocationErrorCode | int = LocationErrorCode.UNKNOWN,
        detail: str = "",
    ) -> None:
        try:
            self.code = LocationErrorCode(code)
        except ValueError:
            self.code = LocationErrorCode.UNKNOWN
        self.raw_code = int(code)
        self.detail = detail
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        """Message suitable for a user-visible notification."""

        message = _LOCATION_MESSAGES.get(self.code)
        if message is None:
            message = f"UNKNOWN_ERROR: unknown location error (code: {self.raw_code})"
        if self.detail:
            return f"{message} ({self.detail})"
        return message


__all__ = [
    "FootpathError",
    "FlagStoreError",
    "LocationErrorCode",
    "LocationSourceError",
    "SessionNotFoundError",
    "SessionStoreError",
    "TrackingStateError",
]
