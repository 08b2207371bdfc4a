"""Custom exception hierarchy for pydonegeon."""

from __future__ import annotations


class DonegeonError(Exception):
    """Base exception for all pydonegeon errors."""


class DonegeonConfigError(DonegeonError):
    """Invalid or missing configuration."""


class DonegeonSyncError(DonegeonError):
    """A Pull against the sync endpoint failed.

    The coordinator catches every subclass and turns it into an ``error``
    sync status; the store is never touched by a failed Pull.
    """

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class DonegeonNetworkError(DonegeonSyncError):
    """Transport failure reaching the server (DNS, refused, reset, timeout)."""


class DonegeonProtocolError(DonegeonSyncError):
    """Server answered with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        super().__init__(message, endpoint=endpoint)


class DonegeonParseError(DonegeonSyncError):
    """Response body is not valid JSON or does not match the sync envelope."""


class DonegeonProbeError(DonegeonError):
    """The optional capability probe failed.

    Never surfaces as a sync error; callers log and move on.
    """

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)
