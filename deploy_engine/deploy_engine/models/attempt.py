"""Deployment attempt models and their lifecycle state machine.

An attempt is created once the snapshot has been validated and ends in
exactly one terminal status.  Removal of the cluster-side execution unit
after completion is handled by the cluster and is not an attempt status.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from deploy_engine.config import Environment
from deploy_engine.errors import InvalidTransitionError


class AttemptStatus(str, Enum):
    """Lifecycle state of a deployment attempt."""

    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class FailureReason(str, Enum):
    """Why an attempt ended in ``FAILED``."""

    SUBMISSION = "SUBMISSION"
    TIMEOUT = "TIMEOUT"
    UNIT_FAILED = "UNIT_FAILED"
    POLL_ERROR = "POLL_ERROR"


TERMINAL_STATUSES: frozenset[AttemptStatus] = frozenset(
    {AttemptStatus.SUCCEEDED, AttemptStatus.FAILED, AttemptStatus.SKIPPED}
)

_ALLOWED_TRANSITIONS: dict[AttemptStatus, frozenset[AttemptStatus]] = {
    AttemptStatus.CREATED: frozenset({AttemptStatus.SUBMITTED, AttemptStatus.SKIPPED, AttemptStatus.FAILED}),
    AttemptStatus.SUBMITTED: frozenset({AttemptStatus.RUNNING, AttemptStatus.SUCCEEDED, AttemptStatus.FAILED}),
    AttemptStatus.RUNNING: frozenset({AttemptStatus.SUCCEEDED, AttemptStatus.FAILED}),
    AttemptStatus.SUCCEEDED: frozenset(),
    AttemptStatus.FAILED: frozenset(),
    AttemptStatus.SKIPPED: frozenset(),
}


class DeploymentAttempt(BaseModel):
    """One end-to-end run of the orchestration logic for one environment."""

    attempt_id: str = Field(
        ...,
        min_length=1,
        description="Sortable identifier from the identity generator.",
    )
    environment: Environment
    fingerprint: str = Field(
        ...,
        min_length=1,
        description="Fingerprint of the snapshot this attempt deploys.",
    )
    run_ordinal: int = Field(
        default=0,
        ge=0,
        description="Caller-supplied run number used to disambiguate attempt ids.",
    )
    status: AttemptStatus = Field(default=AttemptStatus.CREATED)
    failure_reason: FailureReason | None = Field(default=None)
    error_message: str | None = Field(default=None)
    unit_id: str | None = Field(
        default=None,
        description="Identifier returned by the job-execution collaborator on submit.",
    )
    snapshot_ref: str | None = Field(
        default=None,
        description="Identifier of the stored snapshot artifact mounted by the unit.",
    )
    logs: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: AttemptStatus) -> None:
        """Move to *new_status*, enforcing the lifecycle state machine."""
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Attempt {self.attempt_id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        if new_status in TERMINAL_STATUSES:
            self.finished_at = datetime.now(UTC)

    def fail(self, reason: FailureReason, message: str) -> None:
        self.transition(AttemptStatus.FAILED)
        self.failure_reason = reason
        self.error_message = message
