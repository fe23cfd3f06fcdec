"""Audit record model for completed deployments."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from deploy_engine.config import Environment


class Outcome(str, Enum):
    SUCCESS = "success"


class DeploymentRecord(BaseModel):
    """Append-only audit entry for one successful deployment attempt.

    ``record_id`` starts with the UTC recording timestamp so that keys sort
    in recency order.  ``entry_hash`` chains each record to its predecessor
    for tamper evidence.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    record_id: str = Field(..., min_length=1)
    environment: Environment
    fingerprint: str = Field(..., min_length=1)
    source_revision: str = Field(..., min_length=1)
    actor: str = Field(..., min_length=1)
    attempt_id: str = Field(..., min_length=1)
    unit_id: str | None = Field(default=None)
    outcome: Outcome = Field(default=Outcome.SUCCESS)
    manifest: dict[str, str] = Field(
        default_factory=dict,
        description="File name to SHA-256 digest for every deployed script.",
    )
    recorded_at: datetime
    previous_hash: str | None = Field(default=None)
    entry_hash: str = Field(..., min_length=64, max_length=64)
