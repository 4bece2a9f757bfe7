"""Domain models used across application layer boundaries."""

from .models import (
    DEFAULT_CONSUMER_GROUPS,
    AccessToken,
    AuditEvent,
    ConsumerGroup,
    CredentialBundle,
    InstanceRecord,
    InstanceState,
    MachineIdentity,
    ReadinessStatus,
)
from .timeline import domain_build_stage_event, domain_utc_now

__all__ = [
    "AccessToken",
    "AuditEvent",
    "ConsumerGroup",
    "CredentialBundle",
    "DEFAULT_CONSUMER_GROUPS",
    "InstanceRecord",
    "InstanceState",
    "MachineIdentity",
    "ReadinessStatus",
    "domain_build_stage_event",
    "domain_utc_now",
]
