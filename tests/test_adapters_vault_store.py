"""Regression tests for Vault store adapter authentication, read, and retry behavior."""

from __future__ import annotations

import json

import httpx

import pytest

from keyfleet.adapters import (
    AuthError,
    FetchError,
    StoreAuthRejectedError,
    StoreBundleInvalidError,
    StoreTokenRejectedError,
)
from keyfleet.adapters.vault_store import VaultCredentialStoreAdapter
from keyfleet.domain import MachineIdentity
from keyfleet.secrets import InMemoryAuditLog

_FULL_BUNDLE = {
    "PROCESSOR_A_API_KEY": "a-key",
    "PROCESSOR_A_SECRET": "a-secret",
    "PROCESSOR_B_MERCHANT_ID": "b-merchant",
    "PROCESSOR_B_API_KEY": "b-key",
    "PROCESSOR_C_ENDPOINT": "https://c.example.test",
    "PROCESSOR_C_TOKEN": "c-token",
}


class _ScriptedVault:
    """Minimal Vault double serving scripted login and KV v2 responses."""

    def __init__(
        self,
        login_responses: list[httpx.Response] | None = None,
        read_responses: list[httpx.Response] | None = None,
    ):
        self.login_responses = list(login_responses or [])
        self.read_responses = list(read_responses or [])
        self.login_calls = 0
        self.read_tokens: list[str | None] = []
        self.login_bodies: list[dict[str, object]] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Route one request to the next scripted response.

        Args:
            request: Outgoing request captured by the mock transport.

        Returns:
            httpx.Response: Scripted response.

        Raises:
            AssertionError: Raised when an unexpected path is requested.
        """

        if request.url.path == "/v1/auth/approle/login":
            self.login_calls += 1
            self.login_bodies.append(json.loads(request.content))
            if self.login_responses:
                return self.login_responses.pop(0)
            return _login_response(f"token-{self.login_calls}")
        if request.url.path == "/v1/secret/data/flexpay/processors":
            self.read_tokens.append(request.headers.get("X-Vault-Token"))
            return self.read_responses.pop(0)
        raise AssertionError(f"unexpected path {request.url.path}")


def _login_response(client_token: str, lease_duration: int = 3600) -> httpx.Response:
    return httpx.Response(200, json={"auth": {"client_token": client_token, "lease_duration": lease_duration}})


def _read_response(values: dict[str, str], version: int) -> httpx.Response:
    return httpx.Response(200, json={"data": {"data": values, "metadata": {"version": version}}})


def _build_adapter(
    vault: _ScriptedVault,
    audit_log: InMemoryAuditLog | None = None,
    required_keys: tuple[str, ...] = (),
    sleep_calls: list[float] | None = None,
) -> VaultCredentialStoreAdapter:
    recorded_sleeps = sleep_calls if sleep_calls is not None else []

    async def _record_sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    return VaultCredentialStoreAdapter(
        identity=MachineIdentity(public_id="role-1234567890", private_secret="secret-id-value"),
        audit_recorder=audit_log or InMemoryAuditLog(instance_id="test-instance"),
        required_keys=required_keys,
        actor_id="test-instance",
        auth_retry_attempts=3,
        fetch_retry_attempts=2,
        retry_backoff_base_seconds=1.0,
        retry_max_backoff_seconds=10.0,
        transport=httpx.MockTransport(vault.handle),
        sleep=_record_sleep,
    )


async def test_adapters_vault_authenticate_retries_transient_status_then_succeeds() -> None:
    """Retry login after 503 with exponential backoff and return the issued token.

    Returns:
        None: Assertions validate retry and token behavior.

    Raises:
        AssertionError: Raised when retry behavior is not respected.
    """

    vault = _ScriptedVault(
        login_responses=[
            httpx.Response(503, json={"errors": ["Vault is sealed"]}),
            httpx.Response(503, json={"errors": ["Vault is sealed"]}),
            _login_response("token-ok", lease_duration=120),
        ]
    )
    sleep_calls: list[float] = []
    adapter = _build_adapter(vault, sleep_calls=sleep_calls)

    token = await adapter.store_authenticate()

    assert token.client_token == "token-ok"
    assert token.lease_duration_seconds == 120
    assert vault.login_calls == 3
    assert sleep_calls == [1.0, 2.0]
    assert vault.login_bodies[0] == {"role_id": "role-1234567890", "secret_id": "secret-id-value"}


async def test_adapters_vault_authenticate_rejection_is_not_retried() -> None:
    """Raise rejection immediately on 403 without consuming retry attempts.

    Returns:
        None: Assertions validate rejection mapping.

    Raises:
        AssertionError: Raised when rejection is retried.
    """

    vault = _ScriptedVault(login_responses=[httpx.Response(403, json={"errors": ["permission denied"]})])
    adapter = _build_adapter(vault)

    with pytest.raises(StoreAuthRejectedError, match="permission denied") as error_info:
        await adapter.store_authenticate()

    assert error_info.value.status_code == 403
    assert isinstance(error_info.value, AuthError)
    assert vault.login_calls == 1


async def test_adapters_vault_authenticate_exhausted_retries_raise_auth_error() -> None:
    """Wrap exhausted transient failures into AuthError."""

    vault = _ScriptedVault(login_responses=[httpx.Response(502) for _ in range(3)])
    adapter = _build_adapter(vault)

    with pytest.raises(AuthError, match="after 3 attempts"):
        await adapter.store_authenticate()

    assert vault.login_calls == 3


async def test_adapters_vault_authenticate_malformed_response_raises_auth_error() -> None:
    """Reject a 200 login body without a client token."""

    vault = _ScriptedVault(login_responses=[httpx.Response(200, json={"auth": {"lease_duration": 60}})])
    audit_log = InMemoryAuditLog(instance_id="test-instance")
    adapter = _build_adapter(vault, audit_log=audit_log)

    with pytest.raises(AuthError, match="client_token"):
        await adapter.store_authenticate()

    assert audit_log.audit_recent_entries()[-1]["event"] == "AUTH_FAILURE"


async def test_adapters_vault_read_bundle_returns_versioned_bundle_and_reuses_token() -> None:
    """Return an immutable versioned bundle and reuse a valid token across reads.

    Returns:
        None: Assertions validate bundle parsing and token reuse.

    Raises:
        AssertionError: Raised when bundle or token behavior is wrong.
    """

    vault = _ScriptedVault(read_responses=[_read_response(_FULL_BUNDLE, 5), _read_response(_FULL_BUNDLE, 6)])
    adapter = _build_adapter(vault)

    first_bundle = await adapter.store_read_bundle()
    second_bundle = await adapter.store_read_bundle()

    assert first_bundle.version == 5
    assert second_bundle.version == 6
    assert first_bundle.values["PROCESSOR_A_API_KEY"] == "a-key"
    assert vault.login_calls == 1
    assert vault.read_tokens == ["token-1", "token-1"]
    with pytest.raises(TypeError):
        first_bundle.values["PROCESSOR_A_API_KEY"] = "changed"  # type: ignore[index]


async def test_adapters_vault_read_bundle_reauthenticates_once_after_token_rejection() -> None:
    """Re-authenticate once when the store refuses the held token."""

    vault = _ScriptedVault(
        read_responses=[
            httpx.Response(403, json={"errors": ["permission denied"]}),
            _read_response(_FULL_BUNDLE, 7),
        ]
    )
    adapter = _build_adapter(vault)

    bundle = await adapter.store_read_bundle()

    assert bundle.version == 7
    assert vault.login_calls == 2
    assert vault.read_tokens == ["token-1", "token-2"]


async def test_adapters_vault_read_bundle_second_token_rejection_propagates() -> None:
    """Raise token rejection when the renewed token is also refused."""

    vault = _ScriptedVault(read_responses=[httpx.Response(403), httpx.Response(403)])
    adapter = _build_adapter(vault)

    with pytest.raises(StoreTokenRejectedError):
        await adapter.store_read_bundle()

    assert vault.login_calls == 2


async def test_adapters_vault_fetch_rejects_bundle_missing_required_keys() -> None:
    """Refuse a bundle that lacks configured required keys."""

    partial_bundle = {key: value for key, value in _FULL_BUNDLE.items() if not key.startswith("PROCESSOR_C")}
    vault = _ScriptedVault(read_responses=[_read_response(partial_bundle, 3)])
    adapter = _build_adapter(vault, required_keys=("PROCESSOR_C_TOKEN",))

    with pytest.raises(StoreBundleInvalidError, match="PROCESSOR_C_TOKEN"):
        await adapter.store_read_bundle()


async def test_adapters_vault_fetch_accepts_partial_bundle_without_required_keys() -> None:
    """Accept a structurally valid partial bundle when no keys are required."""

    partial_bundle = {key: value for key, value in _FULL_BUNDLE.items() if not key.startswith("PROCESSOR_C")}
    vault = _ScriptedVault(read_responses=[_read_response(partial_bundle, 3)])
    adapter = _build_adapter(vault)

    bundle = await adapter.store_read_bundle()

    assert set(bundle.bundle_keys()) == set(partial_bundle)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, json={"errors": []}),
        httpx.Response(200, json={"data": {"data": {}, "metadata": {"version": 2}}}),
        httpx.Response(200, json={"data": {"data": {"K": "v"}, "metadata": {}}}),
        httpx.Response(200, json={"data": {"data": {"K": 1}, "metadata": {"version": 2}}}),
        httpx.Response(200, content=b"not-json"),
    ],
)
async def test_adapters_vault_fetch_rejects_invalid_bundles(response: httpx.Response) -> None:
    """Map missing, empty, unversioned, and malformed bundles to StoreBundleInvalidError."""

    vault = _ScriptedVault(read_responses=[response])
    adapter = _build_adapter(vault)

    with pytest.raises(StoreBundleInvalidError):
        await adapter.store_read_bundle()


async def test_adapters_vault_fetch_exhausted_transient_failures_raise_fetch_error() -> None:
    """Wrap exhausted transient read failures into FetchError."""

    vault = _ScriptedVault(read_responses=[httpx.Response(500), httpx.Response(503)])
    adapter = _build_adapter(vault)

    with pytest.raises(FetchError, match="after 2 attempts") as error_info:
        await adapter.store_read_bundle()

    assert error_info.value.status_code == 503


async def test_adapters_vault_transport_errors_are_retried() -> None:
    """Treat connection failures as transient during login."""

    attempts: list[int] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return _login_response("token-after-reconnect")

    adapter = VaultCredentialStoreAdapter(
        identity=MachineIdentity(public_id="role-1234567890", private_secret="secret-id-value"),
        audit_recorder=InMemoryAuditLog(instance_id="test-instance"),
        retry_backoff_base_seconds=0,
        transport=httpx.MockTransport(_handler),
    )

    token = await adapter.store_authenticate()

    assert token.client_token == "token-after-reconnect"
    assert len(attempts) == 2


async def test_adapters_vault_audit_records_carry_metadata_only() -> None:
    """Audit login and read outcomes without secret ids, tokens, or credential values.

    Returns:
        None: Assertions validate audit content.

    Raises:
        AssertionError: Raised when a secret value leaks into an audit record.
    """

    vault = _ScriptedVault(read_responses=[_read_response(_FULL_BUNDLE, 5)])
    audit_log = InMemoryAuditLog(instance_id="test-instance")
    adapter = _build_adapter(vault, audit_log=audit_log)

    await adapter.store_read_bundle()

    entries = audit_log.audit_recent_entries()
    assert [entry["event"] for entry in entries] == ["AUTH_SUCCESS", "SECRET_FETCH"]
    assert entries[0]["path"] == "auth/approle/login"
    assert entries[0]["role_id"] == "role-123..."
    assert entries[1]["kv_version"] == 5
    assert entries[1]["credential_count"] == 6
    serialized_entries = json.dumps(entries, default=str)
    for secret_value in [*_FULL_BUNDLE.values(), "secret-id-value", "token-1"]:
        assert secret_value not in serialized_entries


def test_adapters_vault_source_label_and_config_validation() -> None:
    """Expose KV v2 data path label and reject invalid retry config."""

    identity = MachineIdentity(public_id="role", private_secret="secret")
    audit_log = InMemoryAuditLog(instance_id="test-instance")

    adapter = VaultCredentialStoreAdapter(
        identity=identity,
        audit_recorder=audit_log,
        secret_path="/flexpay/processors/",
    )

    assert adapter.store_source_label() == "secret/data/flexpay/processors"
    with pytest.raises(ValueError, match="auth_retry_attempts"):
        VaultCredentialStoreAdapter(identity=identity, audit_recorder=audit_log, auth_retry_attempts=0)
    with pytest.raises(ValueError, match="jitter_max_multiplier"):
        VaultCredentialStoreAdapter(
            identity=identity,
            audit_recorder=audit_log,
            jitter_min_multiplier=2.0,
            jitter_max_multiplier=1.0,
        )
