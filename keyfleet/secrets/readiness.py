"""Readiness gate deriving a tri-state signal from secret cache contents."""

from __future__ import annotations

from keyfleet.domain import DEFAULT_CONSUMER_GROUPS, ConsumerGroup, CredentialBundle, ReadinessStatus

from .cache import SecretCache


class ReadinessGate:
    """Single source of truth for external health signals.

    Status is a pure function of the cache: the per-bundle evaluation is
    memoised on bundle identity, so each call is a reference read plus a
    cached lookup and never contends with refreshes.
    """

    def __init__(self, cache: SecretCache, consumer_groups: tuple[ConsumerGroup, ...] = DEFAULT_CONSUMER_GROUPS):
        """Initialize the readiness gate.

        Args:
            cache: Secret cache to observe.
            consumer_groups: Consumers whose required keys define completeness.

        Raises:
            ValueError: Raised when cache is None.
        """

        if cache is None:
            raise ValueError("cache must not be None")
        self._cache = cache
        self._consumer_groups = tuple(consumer_groups)
        # (bundle, available group names); replaced as one tuple so readers never see a mix.
        self._evaluation: tuple[CredentialBundle | None, tuple[str, ...]] = (None, ())

    def readiness_status(self) -> ReadinessStatus:
        """Return NOT_READY, DEGRADED, or READY for the current cache state.

        Returns:
            ReadinessStatus: Derived readiness.

        Raises:
            RuntimeError: This method does not raise runtime errors.
        """

        bundle = self._cache.cache_get()
        if bundle is None:
            return ReadinessStatus.NOT_READY
        available_groups = self._readiness_available_for(bundle)
        if len(available_groups) == len(self._consumer_groups):
            return ReadinessStatus.READY
        return ReadinessStatus.DEGRADED

    def readiness_available_groups(self) -> tuple[str, ...]:
        """Return names of consumer groups whose keys are all present.

        Returns:
            tuple[str, ...]: Complete group names, empty when not loaded.

        Raises:
            RuntimeError: This method does not raise runtime errors.
        """

        bundle = self._cache.cache_get()
        if bundle is None:
            return ()
        return self._readiness_available_for(bundle)

    def readiness_expected_groups(self) -> tuple[str, ...]:
        return tuple(group.name for group in self._consumer_groups)

    def _readiness_available_for(self, bundle: CredentialBundle) -> tuple[str, ...]:
        evaluated_bundle, available_groups = self._evaluation
        if evaluated_bundle is bundle:
            return available_groups

        available_groups = tuple(
            group.name
            for group in self._consumer_groups
            if all(bundle.bundle_has_value(key) for key in group.required_keys)
        )
        self._evaluation = (bundle, available_groups)
        return available_groups
