"""Drive one deployment attempt from submission to a terminal status.

The orchestrator stores the snapshot artifact, submits exactly one execution
unit, and polls it against a fixed deadline.  Unit-level retries are the
cluster's business (the unit's backoff limit); the orchestrator never
resubmits.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from deploy_engine.config import Settings
from deploy_engine.executor.base import JobExecutor, SnapshotStore
from deploy_engine.executor.unit_template import build_execution_unit
from deploy_engine.models.attempt import AttemptStatus, DeploymentAttempt, FailureReason
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.models.unit import UnitStatus

logger = logging.getLogger(__name__)

_MAX_POLL_BACKOFF = 120.0
_LOG_EXCERPT_CHARS = 2000


class JobOrchestrator:
    """Submit and poll the execution unit for a :class:`DeploymentAttempt`.

    Parameters
    ----------
    executor:
        Job-execution collaborator.
    snapshots:
        Store for the snapshot artifact the unit mounts.  Usually the same
        object as *executor*.
    settings:
        Supplies ``poll_interval``, ``job_timeout_seconds``,
        ``max_consecutive_poll_errors`` and the unit template values.
    clock / sleep:
        Monotonic clock and sleep function; replaced in tests.
    """

    def __init__(
        self,
        executor: JobExecutor,
        snapshots: SnapshotStore,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._executor = executor
        self._snapshots = snapshots
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    def execute(self, attempt: DeploymentAttempt, snapshot: ConfigSnapshot) -> DeploymentAttempt:
        """Run *attempt* to a terminal status and return it.

        Failures are recorded on the attempt (``status``, ``failure_reason``,
        ``error_message``, ``logs``) rather than raised.
        """
        if attempt.status != AttemptStatus.CREATED:
            raise ValueError(f"Attempt {attempt.attempt_id} is {attempt.status.value}; only CREATED attempts run")

        extra = {"attempt_id": attempt.attempt_id, "environment": attempt.environment.value}

        try:
            artifact = self._snapshots.put_snapshot(snapshot, attempt.attempt_id)
            attempt.snapshot_ref = artifact.artifact_id
            unit = build_execution_unit(attempt, artifact.artifact_id, self._settings)
            attempt.unit_id = self._executor.submit(unit)
        except Exception as exc:
            logger.error("Submission failed for attempt %s: %s", attempt.attempt_id, exc, extra=extra)
            attempt.fail(FailureReason.SUBMISSION, f"Submission failed: {exc}")
            return attempt

        attempt.transition(AttemptStatus.SUBMITTED)
        logger.info("Attempt %s submitted as unit %s", attempt.attempt_id, attempt.unit_id, extra=extra)

        self._poll_until_terminal(attempt)

        if attempt.status == AttemptStatus.FAILED:
            attempt.logs = self._fetch_logs(attempt.unit_id)
        return attempt

    def _poll_until_terminal(self, attempt: DeploymentAttempt) -> None:
        unit_id = attempt.unit_id
        assert unit_id is not None  # noqa: S101
        timeout = self._settings.job_timeout_seconds
        max_errors = self._settings.max_consecutive_poll_errors
        deadline = self._clock() + timeout
        consecutive_errors = 0
        extra = {"attempt_id": attempt.attempt_id, "environment": attempt.environment.value}

        while True:
            if self._clock() >= deadline:
                logger.error("Unit %s exceeded timeout of %ds", unit_id, timeout, extra=extra)
                attempt.fail(
                    FailureReason.TIMEOUT,
                    f"Unit {unit_id} did not finish within {timeout}s",
                )
                return

            try:
                status = self._executor.status(unit_id)
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                if consecutive_errors >= max_errors:
                    logger.error(
                        "Giving up on unit %s after %d consecutive poll errors",
                        unit_id,
                        consecutive_errors,
                        extra=extra,
                    )
                    attempt.fail(
                        FailureReason.POLL_ERROR,
                        f"Could not read status of unit {unit_id}: {exc}",
                    )
                    return
                backoff = min(self._settings.poll_interval * (2**consecutive_errors), _MAX_POLL_BACKOFF)
                logger.warning(
                    "Poll error for unit %s (attempt %d/%d), retrying in %.1fs",
                    unit_id,
                    consecutive_errors,
                    max_errors,
                    backoff,
                    extra=extra,
                )
                self._sleep(backoff)
                continue

            if self._clock() >= deadline:
                # A read that returns after the deadline does not count.
                continue

            if status == UnitStatus.RUNNING and attempt.status == AttemptStatus.SUBMITTED:
                attempt.transition(AttemptStatus.RUNNING)
            elif status == UnitStatus.SUCCEEDED:
                attempt.transition(AttemptStatus.SUCCEEDED)
                logger.info("Unit %s succeeded", unit_id, extra=extra)
                return
            elif status == UnitStatus.FAILED:
                attempt.fail(FailureReason.UNIT_FAILED, f"Unit {unit_id} failed")
                logger.error("Unit %s failed", unit_id, extra=extra)
                return

            self._sleep(self._settings.poll_interval)

    def _fetch_logs(self, unit_id: str | None) -> str | None:
        if unit_id is None:
            return None
        try:
            text = self._executor.logs(unit_id)
        except Exception:
            logger.warning("Logs for unit %s could not be retrieved", unit_id)
            return None
        if text and len(text) > _LOG_EXCERPT_CHARS:
            return text[-_LOG_EXCERPT_CHARS:]
        return text or None
