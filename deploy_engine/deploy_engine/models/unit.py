"""Execution unit models shared by the orchestrator and executor backends."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from deploy_engine.config import Environment


class UnitStatus(str, Enum):
    """Status of an execution unit as reported by the cluster."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitStatus.SUCCEEDED, UnitStatus.FAILED)


class ExecutionUnit(BaseModel):
    """Ephemeral job description submitted to the cluster for one attempt."""

    unit_name: str = Field(..., min_length=1, max_length=63)
    attempt_id: str = Field(..., min_length=1)
    environment: Environment
    fingerprint: str = Field(..., min_length=1)
    snapshot_ref: str = Field(
        ...,
        min_length=1,
        description="Name of the stored snapshot artifact mounted into the unit.",
    )
    namespace: str = Field(..., min_length=1)
    qmgr_name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    script: str = Field(
        ...,
        min_length=1,
        description="Shell script: readiness wait, apply loop, verification command.",
    )
    mount_path: str = Field(default="/etc/mqsc")
    env_vars: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    backoff_limit: int = Field(
        default=2,
        ge=0,
        description="Retries the cluster performs for in-unit failures.",
    )
    ttl_seconds_after_finished: int = Field(
        default=300,
        ge=0,
        description="Grace period after which the cluster removes the finished unit.",
    )


class StoredArtifact(BaseModel):
    """A cluster-side object listed for retention purposes."""

    artifact_id: str = Field(..., min_length=1)
    environment: Environment
    created_at: datetime
