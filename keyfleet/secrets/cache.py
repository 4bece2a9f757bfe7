"""Versioned in-memory credential cache with compare-and-swap replacement."""

from __future__ import annotations

import asyncio

from keyfleet.domain import CredentialBundle


class SecretCache:
    """Holds the most recently accepted credential bundle.

    Readers take a single reference to an immutable bundle and never block.
    Writers serialize on an asyncio lock and only swap in a strictly newer
    version, so concurrent refreshes cannot regress or double-apply a version.
    The cache starts empty and never returns to empty once populated.
    """

    def __init__(self) -> None:
        self._bundle: CredentialBundle | None = None
        self._write_lock = asyncio.Lock()

    def cache_get(self) -> CredentialBundle | None:
        """Return the current bundle snapshot, or None when not loaded.

        Returns:
            CredentialBundle | None: Immutable bundle or None.

        Raises:
            RuntimeError: This method does not raise runtime errors.
        """

        return self._bundle

    def cache_is_loaded(self) -> bool:
        return self._bundle is not None

    def cache_version(self) -> int | None:
        bundle = self._bundle
        return bundle.version if bundle is not None else None

    async def cache_replace_if_newer(self, bundle: CredentialBundle) -> tuple[bool, int | None]:
        """Swap in `bundle` when the cache is empty or its version is strictly greater.

        Args:
            bundle: Candidate bundle from a successful fetch.

        Returns:
            tuple[bool, int | None]: Whether the swap happened and the version held before the call.

        Raises:
            ValueError: Raised when bundle is None.
        """

        if bundle is None:
            raise ValueError("bundle must not be None")

        async with self._write_lock:
            current_bundle = self._bundle
            previous_version = current_bundle.version if current_bundle is not None else None
            if previous_version is not None and bundle.version <= previous_version:
                return False, previous_version
            self._bundle = bundle
            return True, previous_version
