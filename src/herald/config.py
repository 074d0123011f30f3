from __future__ import annotations

import socket
from enum import Enum
from typing import Any

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from herald.errors import ConfigurationError

DEFAULT_STATUS_DIR = "/tmp/leader_status"  # nosec B108 - shared emptyDir in the pod


class ElectionBackend(str, Enum):
    """Lease backend used by the election coordinator."""

    KUBERNETES = "kubernetes"
    REDIS = "redis"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HERALD_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Status markers
    status_dir: str = Field(default=DEFAULT_STATUS_DIR, validation_alias="STATUS_DIR")
    refresh_interval: float = Field(default=1.5, gt=0, validation_alias="REFRESH_INTERVAL")

    # Health server
    health_host: str = Field(
        default="0.0.0.0",  # nosec B104 - intentional for container deployments
        validation_alias="HEALTH_HOST",
    )
    health_port: int = Field(default=8080, validation_alias="HEALTH_PORT")

    # Election
    lease_name: str = Field(min_length=1, validation_alias="LEASE_NAME")
    namespace: str = Field(min_length=1, validation_alias="NAMESPACE")
    identity: str = Field(
        default_factory=socket.gethostname,
        min_length=1,
        validation_alias="HERALD_IDENTITY",
    )
    election_backend: ElectionBackend = Field(
        default=ElectionBackend.KUBERNETES, validation_alias="ELECTION_BACKEND"
    )
    lease_duration: float = Field(default=15.0, gt=0, validation_alias="LEASE_DURATION")
    renew_deadline: float = Field(default=10.0, gt=0, validation_alias="RENEW_DEADLINE")
    retry_period: float = Field(default=2.0, gt=0, validation_alias="RETRY_PERIOD")

    # Kubernetes
    kubeconfig: str | None = Field(default=None, validation_alias="KUBECONFIG")

    # Redis (election_backend="redis")
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Pod role labeling
    label_pod_role: bool = Field(default=False, validation_alias="LABEL_POD_ROLE")
    pod_name: str | None = Field(default=None, validation_alias="POD_NAME")

    # Observability
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")
    enable_metrics: bool = Field(default=True, validation_alias="ENABLE_METRICS")

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if self.label_pod_role and not self.pod_name:
            raise ValueError("POD_NAME must be set when LABEL_POD_ROLE is enabled")
        if self.renew_deadline >= self.lease_duration:
            raise ValueError("RENEW_DEADLINE must be shorter than LEASE_DURATION")
        if self.retry_period >= self.renew_deadline:
            raise ValueError("RETRY_PERIOD must be shorter than RENEW_DEADLINE")
        # Markers must be refreshed at least once between two lease renewals
        if self.refresh_interval >= self.retry_period:
            raise ValueError("REFRESH_INTERVAL must be shorter than RETRY_PERIOD")
        return self


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment, applying explicit overrides.

    Overrides set to None are ignored so unset CLI options fall back to
    the environment.

    Raises:
        ConfigurationError: If a required option is missing or invalid
    """
    explicit: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        field = Settings.model_fields.get(key)
        alias = field.validation_alias if field is not None else None
        explicit[alias if isinstance(alias, str) else key] = value
    try:
        return Settings(**explicit)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "settings"
            problems.append(f"{location}: {error['msg']}")
        raise ConfigurationError("invalid configuration: " + "; ".join(problems)) from e
