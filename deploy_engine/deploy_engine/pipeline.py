"""End-to-end deployment run for one environment.

Stages, in order: hash the configuration, consult the idempotency guard,
create the attempt, claim the environment lease, orchestrate the execution
unit, verify, prune superseded artifacts, record the audit entry, prune old
audit records, release the lease.  Everything before orchestration is free
of external side effects.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from deploy_engine.audit import AuditRecorder
from deploy_engine.config import Environment, Settings
from deploy_engine.diff import ManifestDiff, diff_manifests
from deploy_engine.errors import (
    AuditWriteError,
    DeploymentTimeoutError,
    LeaseHeldError,
    SubmissionError,
    UnitFailedError,
)
from deploy_engine.executor.base import ClusterBackend
from deploy_engine.guard import GuardAction, IdempotencyGuard
from deploy_engine.identity import generate_attempt_id
from deploy_engine.models.attempt import AttemptStatus, DeploymentAttempt, FailureReason
from deploy_engine.models.record import DeploymentRecord
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.orchestrator import JobOrchestrator
from deploy_engine.retention import RetentionManager, RetentionReport
from deploy_engine.snapshot.hasher import compute_snapshot
from deploy_engine.state.database import get_session
from deploy_engine.state.repository import DeploymentRecordRepository, LeaseRepository
from deploy_engine.verifier import VerificationResult, Verifier

logger = logging.getLogger(__name__)


class DeploymentRequest(BaseModel):
    """Invocation parameters for one run."""

    environment: Environment = Environment.DEV
    run_ordinal: int = Field(default=0, ge=0)
    source_revision: str = Field(default="unknown", min_length=1)
    actor: str = Field(default="unknown", min_length=1)
    dry_run: bool = False


class RunAction(str, Enum):
    DEPLOYED = "deployed"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


class DeploymentOutcome(BaseModel):
    """What a run did.  Failed runs raise instead of returning."""

    action: RunAction
    environment: Environment
    fingerprint: str
    snapshot_warnings: list[str] = Field(default_factory=list)
    diff: ManifestDiff
    would_skip: bool = False
    attempt: DeploymentAttempt | None = None
    last_record: DeploymentRecord | None = None
    record: DeploymentRecord | None = None
    verification: VerificationResult | None = None
    retention: RetentionReport | None = None
    pruned_records: list[str] = Field(default_factory=list)


_FAILURE_ERRORS = {
    FailureReason.SUBMISSION: SubmissionError,
    FailureReason.TIMEOUT: DeploymentTimeoutError,
    FailureReason.UNIT_FAILED: UnitFailedError,
    FailureReason.POLL_ERROR: UnitFailedError,
}


class DeploymentPipeline:
    """Run the deploy-if-changed control loop.

    Parameters
    ----------
    engine:
        State store engine.  Each state-store step opens its own short
        session so that nothing is held open while the unit runs.
    settings:
        Loaded :class:`Settings`.
    backend:
        Cluster collaborator.  Created from *settings* on first use, so dry
        runs and skipped runs never contact the cluster.
    clock / sleep:
        Passed to the :class:`JobOrchestrator`.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        settings: Settings,
        backend: ClusterBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._backend = backend
        self._clock = clock
        self._sleep = sleep

    @property
    def backend(self) -> ClusterBackend:
        if self._backend is None:
            from deploy_engine.executor.kubernetes_executor import KubernetesJobExecutor

            self._backend = KubernetesJobExecutor.from_settings(self._settings)
        return self._backend

    async def run(self, request: DeploymentRequest) -> DeploymentOutcome:
        env = request.environment
        snapshot = compute_snapshot(
            self._settings.config_root,
            env,
            extensions=self._settings.config_extensions,
        )

        async with get_session(self._engine) as session:
            decision = await IdempotencyGuard(DeploymentRecordRepository(session)).check(env, snapshot.fingerprint)

        previous_manifest = decision.last_record.manifest if decision.last_record else None
        diff = diff_manifests(previous_manifest, snapshot.manifest)
        outcome = DeploymentOutcome(
            action=RunAction.DRY_RUN,
            environment=env,
            fingerprint=snapshot.fingerprint,
            snapshot_warnings=list(snapshot.warnings),
            diff=diff,
            would_skip=decision.action == GuardAction.SKIP,
            last_record=decision.last_record,
        )

        if request.dry_run:
            logger.info(
                "Dry run for %s: fingerprint %s, %s",
                env.value,
                snapshot.short_fingerprint,
                "unchanged" if outcome.would_skip else "deployment needed",
            )
            return outcome

        attempt = DeploymentAttempt(
            attempt_id=generate_attempt_id(env, request.run_ordinal),
            environment=env,
            fingerprint=snapshot.fingerprint,
            run_ordinal=request.run_ordinal,
        )
        outcome.attempt = attempt

        if decision.action == GuardAction.SKIP:
            attempt.transition(AttemptStatus.SKIPPED)
            outcome.action = RunAction.SKIPPED
            return outcome

        await self._acquire_lease(attempt)
        try:
            await self._deploy(request, attempt, snapshot, outcome)
        finally:
            await self._release_lease(attempt)

        outcome.action = RunAction.DEPLOYED
        return outcome

    async def _deploy(
        self,
        request: DeploymentRequest,
        attempt: DeploymentAttempt,
        snapshot: ConfigSnapshot,
        outcome: DeploymentOutcome,
    ) -> None:
        settings = self._settings
        backend = self.backend

        orchestrator = JobOrchestrator(backend, backend, settings, clock=self._clock, sleep=self._sleep)
        orchestrator.execute(attempt, snapshot)

        if attempt.status != AttemptStatus.SUCCEEDED:
            assert attempt.failure_reason is not None  # noqa: S101
            error_cls = _FAILURE_ERRORS[attempt.failure_reason]
            raise error_cls(
                attempt.error_message or f"Attempt {attempt.attempt_id} failed",
                attempt_id=attempt.attempt_id,
                logs=attempt.logs,
            )

        outcome.verification = Verifier(backend, settings.verify_command).verify(attempt)

        retention = RetentionManager(
            backend,
            backend,
            keep=settings.retention_count,
            audit_retention=settings.audit_retention,
        )
        protect = [ref for ref in (attempt.snapshot_ref, attempt.unit_id) if ref]
        outcome.retention = retention.prune_artifacts(attempt.environment, protect=protect)

        try:
            async with get_session(self._engine) as session:
                outcome.record = await AuditRecorder(session).record(
                    attempt,
                    snapshot,
                    source_revision=request.source_revision,
                    actor=request.actor,
                )
        except AuditWriteError:
            raise
        except Exception as exc:
            # The commit happens when the session closes.
            logger.error(
                "Audit commit failed for attempt %s: %s",
                attempt.attempt_id,
                exc,
                extra={"attempt_id": attempt.attempt_id, "environment": attempt.environment.value},
            )
            raise AuditWriteError(
                f"Deployment {attempt.attempt_id} succeeded but could not be recorded: {exc}",
                attempt_id=attempt.attempt_id,
                logs=attempt.logs,
            ) from exc

        async with get_session(self._engine) as session:
            outcome.pruned_records = await retention.prune_records(
                DeploymentRecordRepository(session),
                attempt.environment,
            )

    async def _acquire_lease(self, attempt: DeploymentAttempt) -> None:
        async with get_session(self._engine) as session:
            leases = LeaseRepository(session)
            acquired = await leases.acquire(
                attempt.environment.value,
                owner=attempt.attempt_id,
                ttl_seconds=self._settings.lease_ttl_seconds,
            )
            holder = None if acquired else await leases.get(attempt.environment.value)

        if not acquired:
            owner = holder.owner if holder is not None else "unknown"
            raise LeaseHeldError(
                f"Environment {attempt.environment.value} is being deployed by {owner}",
                attempt_id=attempt.attempt_id,
            )

    async def _release_lease(self, attempt: DeploymentAttempt) -> None:
        try:
            async with get_session(self._engine) as session:
                await LeaseRepository(session).release(attempt.environment.value, attempt.attempt_id)
        except Exception:
            logger.exception(
                "Could not release lease on %s; it expires after %ds",
                attempt.environment.value,
                self._settings.lease_ttl_seconds,
            )
