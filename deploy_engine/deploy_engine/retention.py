"""Retention of superseded cluster artifacts and old audit records.

Cleanup is best effort: each failed delete is logged as a
:class:`CleanupError` and the run continues.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Sequence
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel, Field

from deploy_engine.config import Environment
from deploy_engine.errors import CleanupError
from deploy_engine.executor.base import JobExecutor, SnapshotStore
from deploy_engine.models.unit import StoredArtifact
from deploy_engine.state.repository import DeploymentRecordRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def select_expired(
    items: Iterable[T],
    keep: int,
    key: Callable[[T], tuple[datetime, str]] | None = None,
) -> list[T]:
    """Return every item except the newest *keep*, oldest first.

    Items are ordered by ``(created_at, artifact_id)`` unless *key* is given,
    so equal timestamps still sort deterministically.
    """
    if keep < 0:
        raise ValueError("keep must be >= 0")
    sort_key = key or (lambda item: (item.created_at, item.artifact_id))  # type: ignore[attr-defined]
    ordered = sorted(items, key=sort_key)
    if keep == 0:
        return ordered
    return ordered[:-keep]


class RetentionReport(BaseModel):
    environment: Environment
    deleted_snapshots: list[str] = Field(default_factory=list)
    deleted_units: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class RetentionManager:
    """Keep the newest *keep* snapshot artifacts and units per environment.

    ``audit_retention`` bounds the number of audit records kept per
    environment; ``0`` keeps every record.
    """

    def __init__(
        self,
        snapshots: SnapshotStore,
        executor: JobExecutor,
        keep: int = 5,
        audit_retention: int = 0,
    ) -> None:
        if keep < 1:
            raise ValueError("keep must be >= 1")
        self._snapshots = snapshots
        self._executor = executor
        self._keep = keep
        self._audit_retention = audit_retention

    def prune_artifacts(
        self,
        environment: Environment | str,
        protect: Collection[str] = (),
    ) -> RetentionReport:
        """Delete expired snapshot artifacts and units for *environment*.

        Identifiers in *protect* (the current attempt's artifacts) are never
        deleted and take up places among the newest *keep*, even if clock
        skew makes them look old.
        """
        env = Environment(environment)
        report = RetentionReport(environment=env)

        snapshots = self._list_or_report(self._snapshots.list_snapshots, env, "snapshots", report)
        for artifact in self._expired(snapshots, protect):
            if self._delete(self._snapshots.delete_snapshot, artifact, report):
                report.deleted_snapshots.append(artifact.artifact_id)

        units = self._list_or_report(self._executor.list_units, env, "units", report)
        for artifact in self._expired(units, protect):
            if self._delete(self._executor.delete, artifact, report):
                report.deleted_units.append(artifact.artifact_id)

        logger.info(
            "Retention for %s: deleted %d snapshots, %d units (%d errors)",
            env.value,
            len(report.deleted_snapshots),
            len(report.deleted_units),
            len(report.errors),
        )
        return report

    async def prune_records(
        self,
        records: DeploymentRecordRepository,
        environment: Environment | str,
    ) -> list[str]:
        """Delete audit records beyond ``audit_retention``, oldest first."""
        env = Environment(environment)
        if self._audit_retention <= 0:
            return []

        all_records = await records.list_recent(env.value, limit=None)
        expired = all_records[self._audit_retention :]
        deleted: list[str] = []
        for record in reversed(expired):
            if await records.delete(record.record_id):
                deleted.append(record.record_id)
        if deleted:
            logger.info("Pruned %d audit records for %s", len(deleted), env.value)
        return deleted

    def _expired(self, artifacts: Sequence[StoredArtifact], protect: Collection[str]) -> list[StoredArtifact]:
        # Protected artifacts count toward the kept set whatever their timestamps.
        kept = [a for a in artifacts if a.artifact_id in protect]
        candidates = [a for a in artifacts if a.artifact_id not in protect]
        return select_expired(candidates, max(self._keep - len(kept), 0))

    @staticmethod
    def _list_or_report(
        lister: Callable[[Environment], list[StoredArtifact]],
        env: Environment,
        kind: str,
        report: RetentionReport,
    ) -> list[StoredArtifact]:
        try:
            return lister(env)
        except Exception as exc:
            error = CleanupError(f"Could not list {kind} for {env.value}: {exc}")
            logger.warning("%s", error)
            report.errors.append(str(error))
            return []

    @staticmethod
    def _delete(
        deleter: Callable[[str], None],
        artifact: StoredArtifact,
        report: RetentionReport,
    ) -> bool:
        try:
            deleter(artifact.artifact_id)
        except Exception as exc:
            error = CleanupError(f"Could not delete {artifact.artifact_id}: {exc}")
            logger.warning("%s", error)
            report.errors.append(str(error))
            return False
        return True
