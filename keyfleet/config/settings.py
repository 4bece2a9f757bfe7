"""Typed runtime settings with dotenv support and startup validation."""

import socket

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettingsLoadError(RuntimeError):
    """Raised when runtime settings cannot be loaded or validated."""


class AppSettings(BaseSettings):
    """Service settings for the credential lifecycle and HTTP surface.

    Environment variable names map directly to field names in uppercase.
    Example: `vault_role_id` reads from `VAULT_ROLE_ID`.

    Attributes:
        environment_name: Runtime environment label.
        application_host: Host interface for web server binding.
        application_port: Web server port.
        instance_id: Identity recorded as actor in audit records.
        log_level: Root log level name.
        vault_addr: Base URL of the secret store.
        vault_role_id: AppRole public identifier.
        vault_secret_id: AppRole private secret.
        vault_approle_mount: Mount path of the AppRole auth method.
        vault_kv_mount: Mount path of the KV v2 secrets engine.
        vault_secret_path: Bundle path inside the KV mount.
        store_required_keys: Keys every fetched bundle must contain to be cached.
        store_request_timeout_seconds: Per-request HTTP timeout.
        store_auth_retry_attempts: Attempts for transient authentication failures.
        store_fetch_retry_attempts: Attempts for transient read failures.
        store_backoff_base_seconds: Base retry delay for exponential backoff.
        store_backoff_max_seconds: Maximum retry delay cap.
        store_jitter_min_multiplier: Minimum retry jitter multiplier.
        store_jitter_max_multiplier: Maximum retry jitter multiplier.
        refresh_interval_seconds: Rotation poll interval.
        startup_retry_attempts: Attempts for the first credential load.
        startup_backoff_base_seconds: Base delay between startup load attempts.
        health_degraded_serves_traffic: Whether `/health` answers 200 when degraded.
        audit_max_entries: Capacity of the in-memory audit ring buffer.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment_name: str = Field(default="development")
    application_host: str = Field(default="0.0.0.0")
    application_port: int = Field(default=3000, ge=1, le=65535)
    instance_id: str = Field(default_factory=socket.gethostname, min_length=1)
    log_level: str = Field(default="INFO")
    vault_addr: str = Field(default="http://vault:8200", min_length=1)
    vault_role_id: str = Field(min_length=1)
    vault_secret_id: str = Field(min_length=1, repr=False)
    vault_approle_mount: str = Field(default="approle", min_length=1)
    vault_kv_mount: str = Field(default="secret", min_length=1)
    vault_secret_path: str = Field(default="flexpay/processors", min_length=1)
    store_required_keys: list[str] = Field(default_factory=list)
    store_request_timeout_seconds: float = Field(default=10.0, gt=0)
    store_auth_retry_attempts: int = Field(default=5, ge=1)
    store_fetch_retry_attempts: int = Field(default=3, ge=1)
    store_backoff_base_seconds: float = Field(default=1.0, ge=0)
    store_backoff_max_seconds: float = Field(default=30.0, gt=0)
    store_jitter_min_multiplier: float = Field(default=1.0, gt=0)
    store_jitter_max_multiplier: float = Field(default=1.0, gt=0)
    refresh_interval_seconds: float = Field(default=60.0, gt=0)
    startup_retry_attempts: int = Field(default=5, ge=1)
    startup_backoff_base_seconds: float = Field(default=2.0, ge=0)
    health_degraded_serves_traffic: bool = Field(default=False)
    audit_max_entries: int = Field(default=1000, ge=1)

    @field_validator("vault_role_id", "vault_secret_id", "vault_addr", "instance_id")
    @classmethod
    def _validate_non_empty_string(cls, value: str) -> str:
        stripped_value = value.strip()
        if not stripped_value:
            raise ValueError("value must not be blank")
        return stripped_value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized_value = value.strip().upper()
        if normalized_value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return normalized_value

    @field_validator("store_backoff_max_seconds")
    @classmethod
    def _validate_backoff_cap_bounds(cls, value: float, info) -> float:
        backoff_base_seconds = float(info.data.get("store_backoff_base_seconds", 1.0))
        if value < backoff_base_seconds:
            raise ValueError("store_backoff_max_seconds must be greater than or equal to store_backoff_base_seconds")
        return value

    @field_validator("store_jitter_max_multiplier")
    @classmethod
    def _validate_jitter_bounds(cls, value: float, info) -> float:
        jitter_min_multiplier = float(info.data.get("store_jitter_min_multiplier", 1.0))
        if value < jitter_min_multiplier:
            raise ValueError(
                "store_jitter_max_multiplier must be greater than or equal to store_jitter_min_multiplier"
            )
        return value


class DeploySettings(BaseSettings):
    """Settings model used by the rolling deployment command.

    This model validates only deployment inputs so the `deploy` command can
    run on an operator host that holds no secret-store identity.

    Attributes:
        deploy_compose_file: Compose file describing the service.
        deploy_service_name: Compose service to roll.
        deploy_image_name: Image repository name used for tagging.
        deploy_replicas: Fixed replica count.
        deploy_health_timeout_seconds: Verify-phase budget per new instance.
        deploy_health_interval_seconds: Delay between probe attempts.
        deploy_probe_timeout_seconds: Timeout of one probe HTTP call.
        deploy_stop_grace_seconds: Graceful stop period for retired instances.
        deploy_step_pause_seconds: Pause between replacement steps.
        deploy_service_port: Container port exposing `/health`.
        deploy_log_file: Audit log file path.
        log_level: Root log level name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    deploy_compose_file: str = Field(default="docker-compose.yml", min_length=1)
    deploy_service_name: str = Field(default="payment-service", min_length=1)
    deploy_image_name: str = Field(default="flexpay-payment-service", min_length=1)
    deploy_replicas: int = Field(default=3, ge=1)
    deploy_health_timeout_seconds: float = Field(default=60.0, gt=0)
    deploy_health_interval_seconds: float = Field(default=3.0, gt=0)
    deploy_probe_timeout_seconds: float = Field(default=2.0, gt=0)
    deploy_stop_grace_seconds: int = Field(default=30, ge=0)
    deploy_step_pause_seconds: float = Field(default=5.0, ge=0)
    deploy_service_port: int = Field(default=3000, ge=1, le=65535)
    deploy_log_file: str = Field(default="deploy.log")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized_value = value.strip().upper()
        if normalized_value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return normalized_value

    @field_validator("deploy_probe_timeout_seconds")
    @classmethod
    def _validate_probe_timeout_bounds(cls, value: float, info) -> float:
        health_timeout_seconds = float(info.data.get("deploy_health_timeout_seconds", 60.0))
        if value > health_timeout_seconds:
            raise ValueError("deploy_probe_timeout_seconds must not exceed deploy_health_timeout_seconds")
        return value


def config_load_settings() -> AppSettings:
    """Load and validate service settings from environment and dotenv.

    Returns:
        AppSettings: Validated runtime settings object.

    Raises:
        SettingsLoadError: Raised when required settings are missing or invalid.
    """

    try:
        return AppSettings()
    except ValidationError as error:
        raise SettingsLoadError(
            f"Startup configuration validation failed. Update .env or environment variables. Details: {error}"
        ) from error


def config_load_deploy_settings() -> DeploySettings:
    """Load and validate only the deployment settings.

    Returns:
        DeploySettings: Validated deployment settings object.

    Raises:
        SettingsLoadError: Raised when deployment settings are invalid.
    """

    try:
        return DeploySettings()
    except ValidationError as error:
        raise SettingsLoadError(
            f"Deployment configuration validation failed. Update .env or environment variables. Details: {error}"
        ) from error
