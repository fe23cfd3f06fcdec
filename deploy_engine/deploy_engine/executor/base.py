"""Abstract interfaces for the cluster-side collaborators.

The orchestrator, verifier, and retention manager depend only on these
protocols, so that the Kubernetes backend can be replaced by an in-memory
fake with controllable latency in tests.
"""

from __future__ import annotations

from typing import Protocol

from deploy_engine.config import Environment
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.models.unit import ExecutionUnit, StoredArtifact, UnitStatus


class JobExecutor(Protocol):
    """Structural interface for the job-execution collaborator.

    Implementations are **not** required to subclass this protocol; they only
    need to expose methods with matching signatures (duck typing).
    """

    def submit(self, unit: ExecutionUnit) -> str:
        """Hand *unit* to the cluster and return its identifier.

        Raises on quota errors, malformed descriptions, or API failures.
        """
        ...

    def status(self, unit_id: str) -> UnitStatus:
        """Return the current status of a submitted unit."""
        ...

    def logs(self, unit_id: str) -> str:
        """Retrieve the unit's output.

        Returns
        -------
        str
            Raw log text.  May be empty if the unit produced none or its
            pods have already been removed.
        """
        ...

    def delete(self, unit_id: str) -> None:
        """Remove the unit.  Deleting a unit that no longer exists is not an error."""
        ...

    def list_units(self, environment: Environment) -> list[StoredArtifact]:
        """List the units created for *environment* that still exist."""
        ...


class SnapshotStore(Protocol):
    """Storage for snapshot artifacts mounted by execution units."""

    def put_snapshot(self, snapshot: ConfigSnapshot, attempt_id: str) -> StoredArtifact:
        """Persist *snapshot* for *attempt_id* and return the stored artifact."""
        ...

    def list_snapshots(self, environment: Environment) -> list[StoredArtifact]:
        """List stored snapshot artifacts for *environment*."""
        ...

    def delete_snapshot(self, artifact_id: str) -> None:
        """Delete one stored snapshot artifact."""
        ...


class LiveQuery(Protocol):
    """Read-only access to the live queue manager."""

    def query(self, command: str) -> str:
        """Run a single read-only command and return its output."""
        ...


class ClusterBackend(JobExecutor, SnapshotStore, LiveQuery, Protocol):
    """A single object providing every cluster-side collaborator."""
