"""Typed domain models shared across runtime layers.

This module provides the data contracts exchanged between the credential
lifecycle components and the rolling deployment controller. Credential values
only ever live inside `CredentialBundle` and never appear in any `repr`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class MachineIdentity:
    """Two-part machine identity used to authenticate with the secret store.

    Attributes:
        public_id: Non-secret identifier (AppRole `role_id`).
        private_secret: Secret half of the identity (AppRole `secret_id`).
    """

    public_id: str
    private_secret: str = field(repr=False)

    def identity_masked_public_id(self) -> str:
        """Return an audit-safe rendering of the public identifier.

        Returns:
            str: First characters of the public id followed by an ellipsis.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return f"{self.public_id[:8]}..." if len(self.public_id) > 8 else self.public_id


@dataclass(frozen=True)
class AccessToken:
    """Short-lived bearer credential issued by the secret store.

    Attributes:
        client_token: Bearer token value.
        lease_duration_seconds: Declared lease length; `0` means non-expiring.
        issued_at: UTC timestamp when the token was issued.
    """

    client_token: str = field(repr=False)
    lease_duration_seconds: int
    issued_at: datetime

    def token_is_expired(self, now: datetime, skew_seconds: float = 5.0) -> bool:
        """Return whether the token lease has elapsed, with a safety skew.

        Args:
            now: Current UTC time.
            skew_seconds: Seconds subtracted from the lease to renew early.

        Returns:
            bool: True when the token should no longer be used.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        if self.lease_duration_seconds <= 0:
            return False
        expires_at = self.issued_at + timedelta(seconds=max(0.0, self.lease_duration_seconds - skew_seconds))
        return now >= expires_at


@dataclass(frozen=True)
class CredentialBundle:
    """Immutable, versioned snapshot of all credentials under one store path.

    Attributes:
        version: Store-assigned monotonically increasing version.
        fetched_at: UTC timestamp of the fetch that produced the bundle.
        values: Read-only key to value view over a private copy.
    """

    version: int
    fetched_at: datetime
    values: Mapping[str, str] = field(repr=False)

    @classmethod
    def bundle_create(cls, values: Mapping[str, str], version: int, fetched_at: datetime) -> "CredentialBundle":
        """Build a bundle that owns a private read-only copy of `values`.

        Args:
            values: Credential key to value mapping.
            version: Store version stamp.
            fetched_at: Fetch timestamp.

        Returns:
            CredentialBundle: Immutable bundle instance.

        Raises:
            ValueError: Raised when version is negative.
        """

        if version < 0:
            raise ValueError("version must be >= 0")
        return cls(version=version, fetched_at=fetched_at, values=MappingProxyType(dict(values)))

    def bundle_keys(self) -> tuple[str, ...]:
        """Return credential keys in store order.

        Returns:
            tuple[str, ...]: Credential key names.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return tuple(self.values.keys())

    def bundle_has_value(self, key: str) -> bool:
        """Return whether `key` is present with a non-empty value.

        Args:
            key: Credential key name.

        Returns:
            bool: True when a usable value exists.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return bool(self.values.get(key))


@dataclass(frozen=True)
class ConsumerGroup:
    """Named set of credential keys one consumer needs to operate.

    Attributes:
        name: Short stable group name.
        display_name: Human-readable label.
        required_keys: Keys that must all be present for the group to be usable.
    """

    name: str
    display_name: str
    required_keys: tuple[str, ...]


DEFAULT_CONSUMER_GROUPS: tuple[ConsumerGroup, ...] = (
    ConsumerGroup(
        name="A",
        display_name="ProcessorA (Stripe-like)",
        required_keys=("PROCESSOR_A_API_KEY", "PROCESSOR_A_SECRET"),
    ),
    ConsumerGroup(
        name="B",
        display_name="ProcessorB (Adyen-like)",
        required_keys=("PROCESSOR_B_MERCHANT_ID", "PROCESSOR_B_API_KEY"),
    ),
    ConsumerGroup(
        name="C",
        display_name="ProcessorC (Regional acquirer)",
        required_keys=("PROCESSOR_C_ENDPOINT", "PROCESSOR_C_TOKEN"),
    ),
)


class AuditEvent(str, Enum):
    """Audit event types for structured filtering."""

    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_FAILURE = "AUTH_FAILURE"
    SECRET_FETCH = "SECRET_FETCH"
    SECRET_REFRESH = "SECRET_REFRESH"
    ROTATION_DETECTED = "ROTATION_DETECTED"


class ReadinessStatus(str, Enum):
    """Tri-state readiness signal derived from secret cache contents."""

    NOT_READY = "not_ready"
    DEGRADED = "degraded"
    READY = "ready"


class InstanceState(str, Enum):
    """Lifecycle states of one service instance during a deployment."""

    STARTING = "starting"
    READY = "ready"
    RETIRING = "retiring"
    STOPPED = "stopped"


_ALLOWED_INSTANCE_TRANSITIONS: dict[InstanceState, frozenset[InstanceState]] = {
    InstanceState.STARTING: frozenset({InstanceState.READY, InstanceState.STOPPED}),
    InstanceState.READY: frozenset({InstanceState.RETIRING}),
    InstanceState.RETIRING: frozenset({InstanceState.STOPPED}),
    InstanceState.STOPPED: frozenset(),
}


@dataclass
class InstanceRecord:
    """Controller-owned bookkeeping for one running or requested instance.

    Attributes:
        instance_id: Opaque runtime identifier.
        created_at: Instance creation timestamp used for plan ordering.
        state: Current lifecycle state.
    """

    instance_id: str
    created_at: datetime
    state: InstanceState = InstanceState.STARTING

    def record_transition(self, new_state: InstanceState) -> None:
        """Move the record to `new_state`, rejecting illegal transitions.

        Args:
            new_state: Target lifecycle state.

        Returns:
            None: Record is updated in place.

        Raises:
            ValueError: Raised when the transition is not allowed.
        """

        if new_state not in _ALLOWED_INSTANCE_TRANSITIONS[self.state]:
            raise ValueError(
                f"illegal instance transition {self.state.value} -> {new_state.value} for {self.instance_id}"
            )
        self.state = new_state
