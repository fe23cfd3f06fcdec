"""Domain models for the deployment engine."""

from deploy_engine.models.attempt import (
    TERMINAL_STATUSES,
    AttemptStatus,
    DeploymentAttempt,
    FailureReason,
)
from deploy_engine.models.record import DeploymentRecord, Outcome
from deploy_engine.models.snapshot import ConfigFile, ConfigSnapshot
from deploy_engine.models.unit import ExecutionUnit, StoredArtifact, UnitStatus

__all__ = [
    "TERMINAL_STATUSES",
    "AttemptStatus",
    "ConfigFile",
    "ConfigSnapshot",
    "DeploymentAttempt",
    "DeploymentRecord",
    "ExecutionUnit",
    "FailureReason",
    "Outcome",
    "StoredArtifact",
    "UnitStatus",
]
