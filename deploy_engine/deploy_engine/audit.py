"""Append-only audit trail of successful deployments."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.errors import AuditWriteError
from deploy_engine.models.attempt import AttemptStatus, DeploymentAttempt
from deploy_engine.models.record import DeploymentRecord
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.state.repository import DeploymentRecordRepository

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Write exactly one :class:`DeploymentRecord` per succeeded attempt.

    The configuration has already been applied when the recorder runs, so a
    write failure is reported as :class:`AuditWriteError` and nothing is
    rolled back.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._repo = DeploymentRecordRepository(session)

    async def record(
        self,
        attempt: DeploymentAttempt,
        snapshot: ConfigSnapshot,
        source_revision: str,
        actor: str,
        recorded_at: datetime | None = None,
    ) -> DeploymentRecord:
        if attempt.status != AttemptStatus.SUCCEEDED:
            raise ValueError(
                f"Only SUCCEEDED attempts are recorded; {attempt.attempt_id} is {attempt.status.value}"
            )
        if snapshot.fingerprint != attempt.fingerprint:
            raise ValueError(f"Snapshot {snapshot.short_fingerprint} does not belong to attempt {attempt.attempt_id}")

        try:
            record = await self._repo.append(
                environment=attempt.environment.value,
                fingerprint=attempt.fingerprint,
                source_revision=source_revision,
                actor=actor,
                attempt_id=attempt.attempt_id,
                unit_id=attempt.unit_id,
                manifest=snapshot.manifest,
                recorded_at=recorded_at or attempt.finished_at,
            )
        except Exception as exc:
            logger.error(
                "Audit write failed for attempt %s: %s",
                attempt.attempt_id,
                exc,
                extra={"attempt_id": attempt.attempt_id, "environment": attempt.environment.value},
            )
            raise AuditWriteError(
                f"Deployment {attempt.attempt_id} succeeded but could not be recorded: {exc}",
                attempt_id=attempt.attempt_id,
                logs=attempt.logs,
            ) from exc
        return record

    async def verify_chain(self, environment: str) -> tuple[bool, int]:
        """Recompute the hash chain for *environment*."""
        return await self._repo.verify_chain(environment)
