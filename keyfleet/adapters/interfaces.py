"""Typed interfaces for adapter-layer responsibilities."""

from typing import Protocol

from keyfleet.domain import AccessToken, CredentialBundle


class AuditRecorderPort(Protocol):
    """Port for emitting metadata-only audit records."""

    def audit_record(self, event: str, path: str, success: bool, details: dict[str, object] | None = None) -> None:
        """Record one audit event.

        Args:
            event: Audit event type.
            path: Store path involved in the event.
            success: Outcome of the audited operation.
            details: Optional metadata. Must never contain credential values.

        Returns:
            None: Record is stored as side effect.

        Raises:
            RuntimeError: Raised when the record cannot be emitted.
        """


class CredentialStorePort(Protocol):
    """Port definition for authenticating to and reading from the secret store."""

    def store_source_label(self) -> str:
        """Return the bundle path label used in diagnostics and audit records.

        Returns:
            str: Human-readable bundle path.

        Raises:
            RuntimeError: Raised when source metadata is unavailable.
        """

    async def store_authenticate(self) -> AccessToken:
        """Exchange the machine identity for a short-lived access token.

        Returns:
            AccessToken: Bearer credential with its lease.

        Raises:
            AuthError: Raised when no token could be obtained.
        """

    async def store_fetch_bundle(self, token: AccessToken) -> CredentialBundle:
        """Perform one authenticated read of the configured bundle path.

        Args:
            token: Access token from `store_authenticate`.

        Returns:
            CredentialBundle: Complete, validated bundle.

        Raises:
            FetchError: Raised when no cacheable bundle could be read.
        """

    async def store_read_bundle(self) -> CredentialBundle:
        """Read the bundle, authenticating first when no valid token is held.

        Returns:
            CredentialBundle: Complete, validated bundle.

        Raises:
            AuthError: Raised when authentication fails.
            FetchError: Raised when the read fails.
        """
