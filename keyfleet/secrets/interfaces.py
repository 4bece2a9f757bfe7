"""Typed result and error contracts for the credential lifecycle."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one successful refresh call.

    Attributes:
        updated: True when the cache swapped to a newer bundle.
        version: Cache version after the call.
        previous_version: Cache version before the call, None on first load.
    """

    updated: bool
    version: int
    previous_version: int | None

    def refresh_is_rotation(self) -> bool:
        """Return whether the refresh replaced an already-loaded bundle."""

        return self.updated and self.previous_version is not None


class RefreshError(RuntimeError):
    """Raised when a refresh could not fetch a cacheable bundle; the cache is unchanged."""


class StartupLoadError(RuntimeError):
    """Raised when the first credential load never succeeds; the process must not serve."""
