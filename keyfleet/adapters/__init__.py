"""Adapter layer package for secret store integration boundaries."""

from .interfaces import AuditRecorderPort, CredentialStorePort
from .store_errors import (
	AuthError,
	FetchError,
	StoreAdapterError,
	StoreAuthRejectedError,
	StoreBundleInvalidError,
	StoreTokenRejectedError,
	StoreTransientError,
)
from .vault_store import VaultCredentialStoreAdapter

__all__ = [
	"AuditRecorderPort",
	"AuthError",
	"CredentialStorePort",
	"FetchError",
	"StoreAdapterError",
	"StoreAuthRejectedError",
	"StoreBundleInvalidError",
	"StoreTokenRejectedError",
	"StoreTransientError",
	"VaultCredentialStoreAdapter",
]
