"""Deployment engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with MQDEPLOY_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="MQDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: Environment = Environment.DEV
    debug: bool = False

    # State store
    database_url: str = "sqlite+aiosqlite:///.mqdeploy/state.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Configuration tree
    config_root: Path = Path("configs")
    config_extensions: list[str] = [".mqsc"]

    # Cluster
    namespace: str = "ibm-mq-ns"
    kube_context: str | None = None
    qmgr_name: str = "secureapphelm"
    qmgr_pod_selector: str | None = None
    mq_image: str = "icr.io/ibm-messaging/mq:latest"
    mq_server: str = "DEV.ADMIN.SVRCONN/TCP/secureapphelm-ibm-mq(1414)"

    # Execution unit
    poll_interval: float = 5.0
    job_timeout_seconds: int = 600
    max_consecutive_poll_errors: int = 5
    unit_backoff_limit: int = 2
    unit_ttl_seconds: int = 300
    readiness_timeout_seconds: int = 300
    readiness_interval_seconds: int = 5
    verify_command: str = "DISPLAY QLOCAL(*)"

    # Retry for transient cluster API errors
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_max_delay: float = 30.0

    # Retention
    retention_count: int = 5
    audit_retention: int = 0  # 0 = keep every record

    # Lease TTL
    lease_ttl_seconds: int = 1800

    # Telemetry
    structured_logging: bool = False

    @field_validator("config_extensions", mode="after")
    @classmethod
    def normalise_extensions(cls, v: list[str]) -> list[str]:
        normalised = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalised.append(ext if ext.startswith(".") else f".{ext}")
        if not normalised:
            raise ValueError("config_extensions must name at least one file extension")
        return normalised

    @field_validator("retention_count", mode="after")
    @classmethod
    def retention_at_least_one(cls, v: int) -> int:
        # The snapshot of the attempt that just succeeded must survive pruning.
        if v < 1:
            raise ValueError("retention_count must be >= 1")
        return v

    def environment_dir(self, environment: Environment | str) -> Path:
        return self.config_root / Environment(environment).value


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
