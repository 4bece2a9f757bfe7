"""Tests for initial credential load, fail-open refresh, and rotation detection."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from keyfleet.adapters import AuthError, FetchError, StoreAuthRejectedError
from keyfleet.domain import AccessToken, CredentialBundle, ReadinessStatus
from keyfleet.secrets import (
    InMemoryAuditLog,
    ReadinessGate,
    RefreshError,
    RotationPoller,
    SecretCache,
    StartupLoadError,
)

_FETCHED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
_FULL_VALUES = {
    "PROCESSOR_A_API_KEY": "a-key",
    "PROCESSOR_A_SECRET": "a-secret",
    "PROCESSOR_B_MERCHANT_ID": "b-merchant",
    "PROCESSOR_B_API_KEY": "b-key",
    "PROCESSOR_C_ENDPOINT": "https://c.example.test",
    "PROCESSOR_C_TOKEN": "c-token",
}


def _bundle(version: int, api_key: str = "a-key") -> CredentialBundle:
    values = dict(_FULL_VALUES)
    values["PROCESSOR_A_API_KEY"] = api_key
    return CredentialBundle.bundle_create(values=values, version=version, fetched_at=_FETCHED_AT)


class _SequencedStore:
    """Credential store stub returning scripted bundles or raising scripted errors."""

    def __init__(self, outcomes: list[CredentialBundle | Exception], repeat_last: bool = False):
        self.outcomes = list(outcomes)
        self.repeat_last = repeat_last
        self.read_calls = 0

    def store_source_label(self) -> str:
        return "secret/data/flexpay/processors"

    async def store_authenticate(self) -> AccessToken:
        return AccessToken(client_token="token", lease_duration_seconds=3600, issued_at=_FETCHED_AT)

    async def store_fetch_bundle(self, token: AccessToken) -> CredentialBundle:
        _ = token
        return await self.store_read_bundle()

    async def store_read_bundle(self) -> CredentialBundle:
        """Return or raise the next scripted outcome.

        Returns:
            CredentialBundle: Scripted bundle.

        Raises:
            Exception: Scripted error outcome.
        """

        self.read_calls += 1
        outcome = self.outcomes[0] if self.repeat_last and len(self.outcomes) == 1 else self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _build_poller(
    store: _SequencedStore,
    cache: SecretCache | None = None,
    audit_log: InMemoryAuditLog | None = None,
    refresh_interval_seconds: float = 60.0,
    sleep_calls: list[float] | None = None,
) -> RotationPoller:
    recorded_sleeps = sleep_calls if sleep_calls is not None else []

    async def _record_sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    return RotationPoller(
        store=store,
        cache=cache or SecretCache(),
        audit_recorder=audit_log or InMemoryAuditLog(instance_id="test-instance"),
        refresh_interval_seconds=refresh_interval_seconds,
        startup_retry_attempts=3,
        startup_backoff_base_seconds=2.0,
        sleep=_record_sleep,
    )


async def test_secrets_poller_initial_load_retries_transient_failures() -> None:
    """Retry first load with exponential backoff and populate the cache.

    Returns:
        None: Assertions validate startup retry behavior.

    Raises:
        AssertionError: Raised when startup does not retry or populate.
    """

    store = _SequencedStore([AuthError("HTTP 503: sealed"), FetchError("HTTP 500: boom"), _bundle(5)])
    cache = SecretCache()
    sleep_calls: list[float] = []
    poller = _build_poller(store, cache=cache, sleep_calls=sleep_calls)

    result = await poller.poller_load_initial()

    assert result.updated is True
    assert result.version == 5
    assert result.previous_version is None
    assert cache.cache_version() == 5
    assert sleep_calls == [2.0, 4.0]


async def test_secrets_poller_initial_load_fails_fast_on_rejected_identity() -> None:
    """Raise StartupLoadError without retries when the identity is rejected."""

    store = _SequencedStore([StoreAuthRejectedError("HTTP 403: permission denied", status_code=403)])
    cache = SecretCache()
    poller = _build_poller(store, cache=cache)

    with pytest.raises(StartupLoadError, match="rejected"):
        await poller.poller_load_initial()

    assert store.read_calls == 1
    assert cache.cache_is_loaded() is False


async def test_secrets_poller_initial_load_exhaustion_raises_startup_error() -> None:
    """Raise StartupLoadError after the configured attempts all fail."""

    store = _SequencedStore([FetchError("HTTP 502: bad gateway")], repeat_last=True)
    poller = _build_poller(store)

    with pytest.raises(StartupLoadError, match="after 3 attempts"):
        await poller.poller_load_initial()

    assert store.read_calls == 3


async def test_secrets_poller_refresh_failure_keeps_cached_bundle() -> None:
    """Keep serving the last good bundle when a refresh fails, and audit the failure.

    Returns:
        None: Assertions validate fail-open refresh behavior.

    Raises:
        AssertionError: Raised when the cache is cleared or readiness drops.
    """

    store = _SequencedStore([_bundle(5), FetchError("Store read failed after 3 attempts: HTTP 503")])
    cache = SecretCache()
    audit_log = InMemoryAuditLog(instance_id="test-instance")
    gate = ReadinessGate(cache=cache)
    poller = _build_poller(store, cache=cache, audit_log=audit_log)
    await poller.poller_load_initial()
    cached_bundle = cache.cache_get()

    with pytest.raises(RefreshError, match="HTTP 503"):
        await poller.poller_refresh()

    assert cache.cache_get() is cached_bundle
    assert gate.readiness_status() is ReadinessStatus.READY
    last_entry = audit_log.audit_recent_entries()[-1]
    assert last_entry["event"] == "SECRET_REFRESH"
    assert last_entry["success"] is False
    assert last_entry["kv_version"] == 5


async def test_secrets_poller_rotation_is_detected_once_per_version_advance() -> None:
    """Swap to a newer version once and audit rotation with both versions."""

    store = _SequencedStore([_bundle(5), _bundle(6, api_key="rotated-key"), _bundle(6, api_key="rotated-key")])
    cache = SecretCache()
    audit_log = InMemoryAuditLog(instance_id="test-instance")
    poller = _build_poller(store, cache=cache, audit_log=audit_log)
    await poller.poller_load_initial()

    first_refresh = await poller.poller_refresh()
    second_refresh = await poller.poller_trigger_refresh()

    assert (first_refresh.updated, first_refresh.version, first_refresh.previous_version) == (True, 6, 5)
    assert (second_refresh.updated, second_refresh.version) == (False, 6)
    assert cache.cache_get().values["PROCESSOR_A_API_KEY"] == "rotated-key"
    rotation_entries = [entry for entry in audit_log.audit_recent_entries() if entry["event"] == "ROTATION_DETECTED"]
    assert len(rotation_entries) == 1
    assert rotation_entries[0]["previous_kv_version"] == 5
    assert rotation_entries[0]["new_kv_version"] == 6
    assert audit_log.audit_recent_entries()[-1]["trigger"] == "manual"


async def test_secrets_poller_ignores_older_store_version() -> None:
    """Keep the cached bundle when the store answers with an older version."""

    store = _SequencedStore([_bundle(7), _bundle(6)])
    cache = SecretCache()
    poller = _build_poller(store, cache=cache)
    await poller.poller_load_initial()

    result = await poller.poller_refresh()

    assert result.updated is False
    assert cache.cache_version() == 7


async def test_secrets_poller_concurrent_refreshes_report_single_update() -> None:
    """Report `updated=True` exactly once when periodic and manual refresh race."""

    store = _SequencedStore([_bundle(5), _bundle(6), _bundle(6)])
    cache = SecretCache()
    poller = _build_poller(store, cache=cache)
    await poller.poller_load_initial()

    results = await asyncio.gather(poller.poller_refresh(), poller.poller_trigger_refresh())

    assert sorted(result.updated for result in results) == [False, True]
    assert cache.cache_version() == 6


async def test_secrets_poller_background_loop_survives_failed_refresh() -> None:
    """Keep polling after a failed periodic refresh and pick up the next rotation.

    Returns:
        None: Assertions validate periodic loop behavior.

    Raises:
        AssertionError: Raised when the loop stops after a failure.
    """

    store = _SequencedStore([_bundle(5), FetchError("HTTP 503: sealed"), _bundle(6)], repeat_last=True)
    cache = SecretCache()
    rotated = asyncio.Event()

    async def _fast_sleep(_seconds: float) -> None:
        await asyncio.sleep(0)
        if cache.cache_version() == 6:
            rotated.set()

    poller = RotationPoller(
        store=store,
        cache=cache,
        audit_recorder=InMemoryAuditLog(instance_id="test-instance"),
        refresh_interval_seconds=0.01,
        sleep=_fast_sleep,
    )
    with pytest.raises(RuntimeError, match="initial secret load"):
        poller.poller_start()

    await poller.poller_load_initial()
    poller.poller_start()
    assert poller.poller_is_running() is True
    await asyncio.wait_for(rotated.wait(), timeout=1.0)
    await poller.poller_stop()

    assert cache.cache_version() == 6
    assert poller.poller_is_running() is False
