"""Tests for domain model invariants: identity masking, token expiry, instance lifecycle."""

from datetime import datetime, timedelta, timezone

import pytest

from keyfleet.domain import (
    AccessToken,
    InstanceRecord,
    InstanceState,
    MachineIdentity,
    domain_build_stage_event,
)

_NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def test_domain_identity_hides_secret_and_masks_public_id() -> None:
    """Keep the secret half out of repr and mask the public id for audit use."""

    identity = MachineIdentity(public_id="7c3b1a2e-role", private_secret="top-secret")

    assert "top-secret" not in repr(identity)
    assert identity.identity_masked_public_id() == "7c3b1a2e..."
    assert MachineIdentity(public_id="short", private_secret="x").identity_masked_public_id() == "short"


def test_domain_access_token_expiry_applies_skew() -> None:
    """Expire tokens slightly before the lease ends and never for unbounded leases."""

    token = AccessToken(client_token="hvs.token", lease_duration_seconds=60, issued_at=_NOW)

    assert token.token_is_expired(_NOW + timedelta(seconds=50)) is False
    assert token.token_is_expired(_NOW + timedelta(seconds=56)) is True
    assert "hvs.token" not in repr(token)
    unbounded_token = AccessToken(client_token="root", lease_duration_seconds=0, issued_at=_NOW)
    assert unbounded_token.token_is_expired(_NOW + timedelta(days=365)) is False


def test_domain_instance_record_allows_only_forward_transitions() -> None:
    """Walk the instance lifecycle forward and reject going back.

    Returns:
        None: Assertions validate transition rules.

    Raises:
        AssertionError: Raised when an illegal transition is accepted.
    """

    record = InstanceRecord(instance_id="abc", created_at=_NOW)
    assert record.state is InstanceState.STARTING

    record.record_transition(InstanceState.READY)
    record.record_transition(InstanceState.RETIRING)
    with pytest.raises(ValueError, match="retiring -> ready"):
        record.record_transition(InstanceState.READY)
    record.record_transition(InstanceState.STOPPED)
    with pytest.raises(ValueError, match="illegal instance transition"):
        record.record_transition(InstanceState.STARTING)

    unverified = InstanceRecord(instance_id="def", created_at=_NOW)
    unverified.record_transition(InstanceState.STOPPED)
    with pytest.raises(ValueError):
        InstanceRecord(instance_id="ghi", created_at=_NOW).record_transition(InstanceState.RETIRING)


def test_domain_stage_event_shape() -> None:
    event = domain_build_stage_event(stage="drain", status="completed", details={"step": 1}, clock=lambda: _NOW)

    assert event == {"stage": "drain", "status": "completed", "at_utc": _NOW.isoformat(), "details": {"step": 1}}
