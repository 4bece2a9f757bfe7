"""Rotation poller: first load, periodic refresh, and on-demand refresh."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from keyfleet.adapters import (
    AuditRecorderPort,
    AuthError,
    CredentialStorePort,
    FetchError,
    StoreAuthRejectedError,
)
from keyfleet.domain import AuditEvent

from .cache import SecretCache
from .interfaces import RefreshError, RefreshResult, StartupLoadError

logger = logging.getLogger(__name__)


class RotationPoller:
    """Keeps the secret cache current without ever emptying it.

    Periodic and manual refreshes share `poller_refresh`, whose version
    compare-and-swap makes racing calls idempotent. The background task is
    only allowed to start after the first load succeeded, so the startup
    fetch and the periodic loop never run concurrently.
    """

    def __init__(
        self,
        store: CredentialStorePort,
        cache: SecretCache,
        audit_recorder: AuditRecorderPort,
        refresh_interval_seconds: float = 60.0,
        startup_retry_attempts: int = 5,
        startup_backoff_base_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize the rotation poller.

        Args:
            store: Secret store adapter.
            cache: Cache to populate and refresh.
            audit_recorder: Sink for refresh and rotation audit records.
            refresh_interval_seconds: Delay between periodic refreshes.
            startup_retry_attempts: Attempts for the first load.
            startup_backoff_base_seconds: Base delay between first-load attempts, doubled each time.
            sleep: Optional async sleep used for backoff and the poll interval.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if store is None:
            raise ValueError("store must not be None")
        if cache is None:
            raise ValueError("cache must not be None")
        if audit_recorder is None:
            raise ValueError("audit_recorder must not be None")
        if refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be > 0")
        if startup_retry_attempts < 1:
            raise ValueError("startup_retry_attempts must be >= 1")
        if startup_backoff_base_seconds < 0:
            raise ValueError("startup_backoff_base_seconds must be >= 0")

        self._store = store
        self._cache = cache
        self._audit_recorder = audit_recorder
        self._refresh_interval_seconds = refresh_interval_seconds
        self._startup_retry_attempts = startup_retry_attempts
        self._startup_backoff_base_seconds = startup_backoff_base_seconds
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None

    async def poller_load_initial(self) -> RefreshResult:
        """Populate the cache once before the process may serve traffic.

        Transient authentication and fetch failures are retried with
        exponential backoff. A rejected identity is fatal immediately.

        Returns:
            RefreshResult: Result of the successful load.

        Raises:
            StartupLoadError: Raised when the identity is rejected or all attempts fail.
        """

        last_error: Exception | None = None
        for attempt_index in range(self._startup_retry_attempts):
            try:
                bundle = await self._store.store_read_bundle()
            except StoreAuthRejectedError as error:
                logger.error("Fatal startup error: store rejected machine identity: %s", error)
                raise StartupLoadError(f"Store rejected machine identity: {error}") from error
            except (AuthError, FetchError) as error:
                last_error = error
                if attempt_index + 1 >= self._startup_retry_attempts:
                    break
                delay_seconds = self._startup_backoff_base_seconds * (2**attempt_index)
                logger.warning(
                    "Initial secret load failed (attempt=%s/%s, delay=%.2fs): %s",
                    attempt_index + 1,
                    self._startup_retry_attempts,
                    delay_seconds,
                    error,
                )
                if delay_seconds > 0:
                    await self._sleep(delay_seconds)
                continue

            updated, previous_version = await self._cache.cache_replace_if_newer(bundle)
            version = self._cache.cache_version()
            logger.info("Initial secrets loaded (version=%s, credential_count=%s)", version, len(bundle.values))
            return RefreshResult(updated=updated, version=int(version), previous_version=previous_version)

        raise StartupLoadError(
            f"Initial secret load failed after {self._startup_retry_attempts} attempts: {last_error}"
        ) from last_error

    async def poller_refresh(self, trigger: str = "periodic") -> RefreshResult:
        """Fetch the bundle and swap it in when its version is strictly newer.

        On failure the cache keeps the last good bundle and the error is
        logged and audited before being raised to the caller.

        Args:
            trigger: Label of the caller, `periodic` or `manual`.

        Returns:
            RefreshResult: Whether the cache was updated and the resulting version.

        Raises:
            RefreshError: Raised when authentication or fetch failed.
        """

        source_label = self._store.store_source_label()
        logger.info("Refreshing secrets from store (trigger=%s)", trigger)
        try:
            bundle = await self._store.store_read_bundle()
        except (AuthError, FetchError) as error:
            logger.error("Failed to refresh secrets, retaining cached values (trigger=%s): %s", trigger, error)
            self._audit_recorder.audit_record(
                event=AuditEvent.SECRET_REFRESH.value,
                path=source_label,
                success=False,
                details={"error": str(error), "trigger": trigger, "kv_version": self._cache.cache_version()},
            )
            raise RefreshError(str(error)) from error

        updated, previous_version = await self._cache.cache_replace_if_newer(bundle)
        version = int(self._cache.cache_version())
        result = RefreshResult(updated=updated, version=version, previous_version=previous_version)

        if result.refresh_is_rotation():
            logger.info(
                "Secret rotation detected, in-memory credentials updated without restart (%s -> %s)",
                previous_version,
                version,
            )
        elif bundle.version < version:
            logger.warning(
                "Store returned version %s older than cached version %s; keeping cached bundle",
                bundle.version,
                version,
            )
        else:
            logger.info("Secrets refreshed successfully, no rotation (version=%s)", version)

        self._audit_recorder.audit_record(
            event=AuditEvent.SECRET_REFRESH.value,
            path=source_label,
            success=True,
            details={"kv_version": version, "rotation_detected": result.refresh_is_rotation(), "trigger": trigger},
        )
        if result.refresh_is_rotation():
            self._audit_recorder.audit_record(
                event=AuditEvent.ROTATION_DETECTED.value,
                path=source_label,
                success=True,
                details={"previous_kv_version": previous_version, "new_kv_version": version},
            )
        return result

    async def poller_trigger_refresh(self) -> RefreshResult:
        """Run one administrative refresh through the shared refresh path."""

        return await self.poller_refresh(trigger="manual")

    def poller_start(self) -> None:
        """Start the periodic refresh task on the running event loop.

        Returns:
            None: Schedules the background task as side effect.

        Raises:
            RuntimeError: Raised when the cache was never loaded or the poller already runs.
        """

        if not self._cache.cache_is_loaded():
            raise RuntimeError("poller cannot start before the initial secret load succeeded")
        if self.poller_is_running():
            raise RuntimeError("poller is already running")
        self._task = asyncio.get_running_loop().create_task(self._poller_run(), name="keyfleet-rotation-poller")
        logger.info("Periodic secret refresh scheduled (interval=%ss)", self._refresh_interval_seconds)

    async def poller_stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""

        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic secret refresh stopped")

    def poller_is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _poller_run(self) -> None:
        while True:
            await self._sleep(self._refresh_interval_seconds)
            try:
                await self.poller_refresh(trigger="periodic")
            except RefreshError:
                # already logged and audited; next tick retries
                continue
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Periodic secret refresh failed unexpectedly")
