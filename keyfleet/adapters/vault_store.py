"""Vault AppRole + KV v2 adapter implementation for credential bundle retrieval."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Final, TypeVar

import httpx

from keyfleet.domain import AccessToken, AuditEvent, CredentialBundle, MachineIdentity, domain_utc_now

from .interfaces import AuditRecorderPort, CredentialStorePort
from .store_errors import (
    AuthError,
    FetchError,
    StoreAuthRejectedError,
    StoreBundleInvalidError,
    StoreTokenRejectedError,
    StoreTransientError,
)
from .store_status_codes import (
    STORE_REJECTION_STATUS_CODES,
    StoreStatusCode,
    store_status_default_message,
    store_status_is_retryable,
)

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")


@dataclass(frozen=True)
class _StoreRetryStrategy:
    """Immutable retry strategy config and calculation helpers.

    Attributes:
        backoff_base_seconds: Base delay for exponential backoff.
        max_backoff_seconds: Exponential delay cap before jitter.
        jitter_min_multiplier: Minimum jitter multiplier.
        jitter_max_multiplier: Maximum jitter multiplier.
        random_unit_interval_provider: Provider returning value in [0.0, 1.0].
    """

    backoff_base_seconds: float
    max_backoff_seconds: float
    jitter_min_multiplier: float
    jitter_max_multiplier: float
    random_unit_interval_provider: Callable[[], float]

    def strategy_calculate_retry_wait_seconds(self, retry_index: int) -> float:
        """Calculate exponential retry wait with cap and jitter.

        Args:
            retry_index: Zero-based retry attempt index.

        Returns:
            float: Computed wait seconds before the next attempt.

        Raises:
            ValueError: Raised when retry index is negative.
            RuntimeError: Raised when jitter provider returns out-of-range value.
        """

        if retry_index < 0:
            raise ValueError("retry_index must be >= 0")

        backoff_seconds = self.backoff_base_seconds * (2**retry_index)
        capped_backoff_seconds = min(backoff_seconds, self.max_backoff_seconds)
        return float(capped_backoff_seconds * self.strategy_calculate_jitter_multiplier())

    def strategy_calculate_jitter_multiplier(self) -> float:
        """Return jitter multiplier using configured min/max bounds.

        Returns:
            float: Jitter multiplier value.

        Raises:
            RuntimeError: Raised when jitter source returns value outside [0.0, 1.0].
        """

        random_ratio = float(self.random_unit_interval_provider())
        if random_ratio < 0.0 or random_ratio > 1.0:
            raise RuntimeError("random_unit_interval_provider must return a value in [0.0, 1.0]")

        jitter_span = self.jitter_max_multiplier - self.jitter_min_multiplier
        return self.jitter_min_multiplier + (random_ratio * jitter_span)


class VaultCredentialStoreAdapter(CredentialStorePort):
    """Adapter implementation for Vault AppRole login and KV v2 bundle reads."""

    _USER_AGENT: Final[str] = "keyfleet/1.0 (Python/httpx)"
    _AUTH_AUDIT_PATH_TEMPLATE: Final[str] = "auth/{mount}/login"

    def __init__(
        self,
        identity: MachineIdentity,
        audit_recorder: AuditRecorderPort,
        vault_addr: str = "http://vault:8200",
        approle_mount: str = "approle",
        kv_mount: str = "secret",
        secret_path: str = "flexpay/processors",
        required_keys: tuple[str, ...] = (),
        actor_id: str = "unknown",
        auth_retry_attempts: int = 5,
        fetch_retry_attempts: int = 3,
        retry_backoff_base_seconds: float = 1.0,
        retry_max_backoff_seconds: float = 30.0,
        jitter_min_multiplier: float = 1.0,
        jitter_max_multiplier: float = 1.0,
        random_unit_interval_provider: Callable[[], float] | None = None,
        request_timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], datetime] = domain_utc_now,
    ):
        """Initialize the Vault store adapter.

        Args:
            identity: AppRole machine identity.
            audit_recorder: Sink for metadata-only audit records.
            vault_addr: Base URL of the Vault server.
            approle_mount: Mount path of the AppRole auth method.
            kv_mount: Mount path of the KV v2 engine.
            secret_path: Bundle path inside the KV mount.
            required_keys: Keys a bundle must contain to be accepted.
            actor_id: Instance identity recorded in audit records.
            auth_retry_attempts: Attempts for transient login failures.
            fetch_retry_attempts: Attempts for transient read failures.
            retry_backoff_base_seconds: Base retry delay used by exponential backoff.
            retry_max_backoff_seconds: Maximum retry delay cap before applying jitter.
            jitter_min_multiplier: Minimum jitter multiplier for computed retry delay.
            jitter_max_multiplier: Maximum jitter multiplier for computed retry delay.
            random_unit_interval_provider: Optional provider returning random values in [0.0, 1.0].
            request_timeout_seconds: HTTP request timeout in seconds.
            transport: Optional httpx transport, used by tests to stub the store.
            sleep: Optional async sleep used between retries.
            clock: UTC timestamp provider.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when required config values are invalid.
        """

        normalized_vault_addr = vault_addr.strip()
        normalized_secret_path = secret_path.strip().strip("/")

        if identity is None:
            raise ValueError("identity must not be None")
        if audit_recorder is None:
            raise ValueError("audit_recorder must not be None")
        if not normalized_vault_addr:
            raise ValueError("vault_addr must not be blank")
        if not normalized_secret_path:
            raise ValueError("secret_path must not be blank")
        if auth_retry_attempts < 1:
            raise ValueError("auth_retry_attempts must be >= 1")
        if fetch_retry_attempts < 1:
            raise ValueError("fetch_retry_attempts must be >= 1")
        if retry_backoff_base_seconds < 0:
            raise ValueError("retry_backoff_base_seconds must be >= 0")
        if retry_max_backoff_seconds <= 0:
            raise ValueError("retry_max_backoff_seconds must be > 0")
        if jitter_min_multiplier <= 0:
            raise ValueError("jitter_min_multiplier must be > 0")
        if jitter_max_multiplier < jitter_min_multiplier:
            raise ValueError("jitter_max_multiplier must be >= jitter_min_multiplier")
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")

        self._identity = identity
        self._audit_recorder = audit_recorder
        self._approle_mount = approle_mount.strip().strip("/")
        self._kv_mount = kv_mount.strip().strip("/")
        self._secret_path = normalized_secret_path
        self._required_keys = tuple(required_keys)
        self._actor_id = actor_id
        self._auth_retry_attempts = auth_retry_attempts
        self._fetch_retry_attempts = fetch_retry_attempts
        self._retry_strategy = _StoreRetryStrategy(
            backoff_base_seconds=retry_backoff_base_seconds,
            max_backoff_seconds=retry_max_backoff_seconds,
            jitter_min_multiplier=jitter_min_multiplier,
            jitter_max_multiplier=jitter_max_multiplier,
            random_unit_interval_provider=random_unit_interval_provider or random.random,
        )
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=normalized_vault_addr.rstrip("/"),
            timeout=request_timeout_seconds,
            headers={"User-Agent": self._USER_AGENT},
            transport=transport,
        )
        self._token: AccessToken | None = None
        self._token_lock = asyncio.Lock()

    def store_source_label(self) -> str:
        """Return the KV v2 data path of the bundle.

        Returns:
            str: Bundle path label.

        Raises:
            RuntimeError: This implementation does not raise runtime errors.
        """

        return f"{self._kv_mount}/data/{self._secret_path}"

    async def store_close(self) -> None:
        """Close the underlying HTTP client.

        Returns:
            None: Releases connections as side effect.

        Raises:
            RuntimeError: This implementation does not raise runtime errors.
        """

        await self._client.aclose()

    async def store_authenticate(self) -> AccessToken:
        """Log in with AppRole, retrying transient failures with backoff.

        Returns:
            AccessToken: Issued client token and lease.

        Raises:
            StoreAuthRejectedError: Raised when the identity is definitively rejected.
            AuthError: Raised when all transient retries are exhausted or the response is malformed.
        """

        try:
            token = await self._store_with_retry(
                operation=self._store_authenticate_once,
                attempts=self._auth_retry_attempts,
                label="store_authenticate",
            )
        except StoreTransientError as error:
            raise AuthError(
                f"Store authentication failed after {self._auth_retry_attempts} attempts: {error}",
                status_code=error.status_code,
            ) from error

        logger.info("Store authentication successful (lease_duration=%ss)", token.lease_duration_seconds)
        return token

    async def store_fetch_bundle(self, token: AccessToken) -> CredentialBundle:
        """Read and validate the credential bundle, retrying transient failures.

        Args:
            token: Access token used for the read.

        Returns:
            CredentialBundle: Complete bundle with its store version.

        Raises:
            StoreTokenRejectedError: Raised when the store refuses the token.
            StoreBundleInvalidError: Raised when the bundle is partial or malformed.
            FetchError: Raised when all transient retries are exhausted.
        """

        async def _fetch_once() -> CredentialBundle:
            return await self._store_fetch_bundle_once(token)

        try:
            bundle = await self._store_with_retry(
                operation=_fetch_once,
                attempts=self._fetch_retry_attempts,
                label="store_fetch_bundle",
            )
        except StoreTransientError as error:
            raise FetchError(
                f"Store read failed after {self._fetch_retry_attempts} attempts: {error}",
                status_code=error.status_code,
            ) from error

        logger.info(
            "Loaded %s credentials from %s (version=%s)",
            len(bundle.values),
            self.store_source_label(),
            bundle.version,
        )
        return bundle

    async def store_read_bundle(self) -> CredentialBundle:
        """Read the bundle with token reuse and one re-authentication on rejection.

        Returns:
            CredentialBundle: Complete bundle with its store version.

        Raises:
            AuthError: Raised when authentication fails.
            FetchError: Raised when the read fails.
        """

        token = await self._store_current_token(force_renew=False)
        try:
            return await self.store_fetch_bundle(token)
        except StoreTokenRejectedError:
            logger.warning("Store rejected access token; re-authenticating once")
            token = await self._store_current_token(force_renew=True)
            return await self.store_fetch_bundle(token)

    async def _store_current_token(self, force_renew: bool) -> AccessToken:
        """Return a usable token, authenticating when absent, expired, or forced.

        Args:
            force_renew: Discard the held token even if its lease is valid.

        Returns:
            AccessToken: Token safe to use for the next read.

        Raises:
            AuthError: Raised when authentication fails.
        """

        async with self._token_lock:
            if force_renew or self._token is None or self._token.token_is_expired(self._clock()):
                self._token = None
                self._token = await self.store_authenticate()
            return self._token

    async def _store_authenticate_once(self) -> AccessToken:
        """Perform one AppRole login attempt and audit its outcome.

        Returns:
            AccessToken: Issued client token and lease.

        Raises:
            StoreTransientError: Raised for retryable transport or status failures.
            StoreAuthRejectedError: Raised when the identity is rejected.
            AuthError: Raised when the login response is malformed.
        """

        audit_path = self._AUTH_AUDIT_PATH_TEMPLATE.format(mount=self._approle_mount)
        try:
            response = await self._store_send(
                method="POST",
                url=f"/v1/{audit_path}",
                json_payload={
                    "role_id": self._identity.public_id,
                    "secret_id": self._identity.private_secret,
                },
            )
            if response.status_code >= 400:
                message = self._store_error_message(response)
                if store_status_is_retryable(response.status_code):
                    raise StoreTransientError(message, status_code=response.status_code)
                if response.status_code in STORE_REJECTION_STATUS_CODES:
                    raise StoreAuthRejectedError(message, status_code=response.status_code)
                raise AuthError(message, status_code=response.status_code)

            try:
                auth_payload = self._store_json_object(response).get("auth")
            except StoreBundleInvalidError as error:
                raise AuthError(str(error), status_code=response.status_code) from error
            if not isinstance(auth_payload, dict) or not isinstance(auth_payload.get("client_token"), str):
                raise AuthError("Store login response missing auth.client_token", status_code=response.status_code)
            lease_duration = auth_payload.get("lease_duration", 0)
            if not isinstance(lease_duration, int) or isinstance(lease_duration, bool):
                raise AuthError("Store login response has invalid auth.lease_duration", status_code=response.status_code)
        except (StoreTransientError, AuthError) as error:
            self._store_audit(
                event=AuditEvent.AUTH_FAILURE,
                path=audit_path,
                success=False,
                details={"error": str(error), "status_code": error.status_code},
            )
            raise

        token = AccessToken(
            client_token=auth_payload["client_token"],
            lease_duration_seconds=lease_duration,
            issued_at=self._clock(),
        )
        self._store_audit(
            event=AuditEvent.AUTH_SUCCESS,
            path=audit_path,
            success=True,
            details={"lease_duration": lease_duration},
        )
        return token

    async def _store_fetch_bundle_once(self, token: AccessToken) -> CredentialBundle:
        """Perform one bundle read attempt and audit its outcome.

        Args:
            token: Access token used for the read.

        Returns:
            CredentialBundle: Validated bundle.

        Raises:
            StoreTransientError: Raised for retryable transport or status failures.
            StoreTokenRejectedError: Raised when the token is refused.
            StoreBundleInvalidError: Raised when the bundle is partial or malformed.
            FetchError: Raised for other non-retryable read failures.
        """

        source_label = self.store_source_label()
        try:
            response = await self._store_send(
                method="GET",
                url=f"/v1/{source_label}",
                headers={"X-Vault-Token": token.client_token},
            )
            if response.status_code >= 400:
                message = self._store_error_message(response)
                if store_status_is_retryable(response.status_code):
                    raise StoreTransientError(message, status_code=response.status_code)
                if response.status_code == StoreStatusCode.FORBIDDEN.value:
                    raise StoreTokenRejectedError(message, status_code=response.status_code)
                if response.status_code == StoreStatusCode.NOT_FOUND.value:
                    raise StoreBundleInvalidError(
                        f"No data found at store path: {source_label}",
                        status_code=response.status_code,
                    )
                raise FetchError(message, status_code=response.status_code)

            bundle = self._store_parse_bundle(self._store_json_object(response))
        except (StoreTransientError, FetchError) as error:
            self._store_audit(
                event=AuditEvent.SECRET_FETCH,
                path=source_label,
                success=False,
                details={"error": str(error), "status_code": error.status_code},
            )
            raise

        self._store_audit(
            event=AuditEvent.SECRET_FETCH,
            path=source_label,
            success=True,
            details={"kv_version": bundle.version, "credential_count": len(bundle.values)},
        )
        return bundle

    def _store_parse_bundle(self, payload: dict[str, Any]) -> CredentialBundle:
        """Validate a KV v2 read payload and build an immutable bundle.

        Args:
            payload: Decoded JSON response body.

        Returns:
            CredentialBundle: Validated bundle.

        Raises:
            StoreBundleInvalidError: Raised when data, version, or required keys are missing.
        """

        envelope = payload.get("data")
        if not isinstance(envelope, dict):
            raise StoreBundleInvalidError(f"No data found at store path: {self.store_source_label()}")

        values = envelope.get("data")
        metadata = envelope.get("metadata")
        if not isinstance(values, dict) or not values:
            raise StoreBundleInvalidError("Store bundle has no credential data (deleted or destroyed version)")
        if not all(isinstance(key, str) and isinstance(value, str) for key, value in values.items()):
            raise StoreBundleInvalidError("Store bundle contains non-string credential entries")

        version = metadata.get("version") if isinstance(metadata, dict) else None
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            raise StoreBundleInvalidError("Store bundle is missing metadata.version")

        missing_keys = [key for key in self._required_keys if not values.get(key)]
        if missing_keys:
            raise StoreBundleInvalidError(
                f"Store bundle version {version} is missing required keys: {', '.join(sorted(missing_keys))}"
            )

        return CredentialBundle.bundle_create(values=values, version=version, fetched_at=self._clock())

    async def _store_with_retry(
        self,
        operation: Callable[[], Awaitable[_ResultT]],
        attempts: int,
        label: str,
    ) -> _ResultT:
        """Run `operation`, retrying only `StoreTransientError` with backoff.

        Args:
            operation: Coroutine factory performing one attempt.
            attempts: Maximum attempt count.
            label: Operation label for logs.

        Returns:
            _ResultT: Result of the first successful attempt.

        Raises:
            StoreTransientError: Raised when all attempts failed transiently.
            StoreAdapterError: Non-transient errors propagate immediately.
        """

        last_error: StoreTransientError | None = None
        for retry_index in range(attempts):
            try:
                return await operation()
            except StoreTransientError as error:
                last_error = error
                if retry_index + 1 >= attempts:
                    break
                wait_seconds = self._retry_strategy.strategy_calculate_retry_wait_seconds(retry_index=retry_index)
                logger.warning(
                    "Retrying %s after failure (attempt=%s/%s, delay=%.2fs): %s",
                    label,
                    retry_index + 1,
                    attempts,
                    wait_seconds,
                    error,
                )
                if wait_seconds > 0:
                    await self._sleep(wait_seconds)

        if last_error is None:
            raise RuntimeError(f"{label} made no attempts")
        raise last_error

    async def _store_send(
        self,
        method: str,
        url: str,
        json_payload: dict[str, object] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one HTTP request and map transport failures.

        Args:
            method: HTTP method.
            url: Path relative to the store base URL.
            json_payload: Optional JSON request body.
            headers: Optional extra request headers.

        Returns:
            httpx.Response: Raw response of any status.

        Raises:
            StoreTransientError: Raised for timeouts and transport failures.
        """

        try:
            return await self._client.request(method, url, json=json_payload, headers=headers)
        except httpx.TimeoutException as error:
            raise StoreTransientError("Store transport request timed out") from error
        except httpx.TransportError as error:
            raise StoreTransientError(f"Store transport request failed: {type(error).__name__}") from error

    def _store_json_object(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a response body that must be a JSON object.

        Args:
            response: Successful HTTP response.

        Returns:
            dict[str, Any]: Decoded body.

        Raises:
            StoreBundleInvalidError: Raised when the body is not a JSON object.
        """

        try:
            payload = response.json()
        except ValueError as error:
            raise StoreBundleInvalidError("Store response is not valid JSON", status_code=response.status_code) from error
        if not isinstance(payload, dict):
            raise StoreBundleInvalidError("Store response is not a JSON object", status_code=response.status_code)
        return payload

    def _store_error_message(self, response: httpx.Response) -> str:
        """Extract a normalized error message from a failed response.

        Args:
            response: Failed HTTP response.

        Returns:
            str: `HTTP <code>: <message>` text safe to log.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        upstream_message = ""
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            errors = payload.get("errors")
            if isinstance(errors, list) and errors:
                upstream_message = "; ".join(str(error) for error in errors)
        if not upstream_message:
            upstream_message = store_status_default_message(response.status_code, "unexpected store response")
        return f"HTTP {response.status_code}: {upstream_message}"

    def _store_audit(
        self,
        event: AuditEvent,
        path: str,
        success: bool,
        details: dict[str, object] | None = None,
    ) -> None:
        """Emit one audit record tagged with the adapter actor.

        Args:
            event: Audit event type.
            path: Store path involved.
            success: Outcome flag.
            details: Optional metadata. Never credential values.

        Returns:
            None: Record is emitted as side effect.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        audit_details: dict[str, object] = {
            "actor": self._actor_id,
            "role_id": self._identity.identity_masked_public_id(),
        }
        if details:
            audit_details.update(details)
        self._audit_recorder.audit_record(event=event.value, path=path, success=success, details=audit_details)
