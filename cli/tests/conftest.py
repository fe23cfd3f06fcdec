"""Shared fixtures for the mqdeploy CLI tests.

Every command runs against a file-backed SQLite state store and a
configuration tree under ``tmp_path``.  The cluster is replaced by
:class:`StubBackend` through ``deploy_cli.app._make_pipeline`` so that no
test ever contacts Kubernetes.
"""

from __future__ import annotations

import io
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from deploy_engine.models.unit import ExecutionUnit, StoredArtifact, UnitStatus
from deploy_engine.pipeline import DeploymentPipeline
from rich.console import Console


class StubBackend:
    """Cluster backend whose units finish on the first status read."""

    def __init__(self) -> None:
        self.terminal_status = UnitStatus.SUCCEEDED
        self.unit_logs = "AMQ8006I: IBM MQ queue created."
        self.submitted: list[ExecutionUnit] = []
        self._artifacts: list[StoredArtifact] = []
        self._tick = datetime(2026, 1, 1, tzinfo=UTC)

    def _store(self, artifact_id: str, environment) -> StoredArtifact:
        self._tick += timedelta(seconds=1)
        artifact = StoredArtifact(artifact_id=artifact_id, environment=environment, created_at=self._tick)
        self._artifacts.append(artifact)
        return artifact

    def put_snapshot(self, snapshot, attempt_id):
        return self._store(f"mqsc-snapshot-{attempt_id}", snapshot.environment)

    def list_snapshots(self, environment):
        return [a for a in self._artifacts if a.artifact_id.startswith("mqsc-snapshot-")]

    def delete_snapshot(self, artifact_id):
        self._artifacts = [a for a in self._artifacts if a.artifact_id != artifact_id]

    def submit(self, unit):
        self.submitted.append(unit)
        return self._store(unit.unit_name, unit.environment).artifact_id

    def status(self, unit_id):
        return self.terminal_status

    def logs(self, unit_id):
        return self.unit_logs

    def delete(self, unit_id):
        self.delete_snapshot(unit_id)

    def list_units(self, environment):
        return [a for a in self._artifacts if not a.artifact_id.startswith("mqsc-snapshot-")]

    def query(self, command):
        return "AMQ8409I: Display Queue details.\n   QUEUE(ORDERS.IN)"


@pytest.fixture
def backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def config_root(tmp_path: Path) -> Path:
    root = tmp_path / "configs"
    (root / "dev").mkdir(parents=True)
    (root / "dev" / "orders.mqsc").write_text("DEFINE QLOCAL(ORDERS.IN) REPLACE\n")
    return root


@pytest.fixture
def cli_env(monkeypatch, tmp_path: Path, config_root: Path, backend: StubBackend) -> StubBackend:
    """Point the CLI at temporary state and the stub backend.

    Rich output is redirected to a buffer and logging setup is disabled so
    that stdout carries only the ``--json`` payload.
    """
    monkeypatch.setenv("MQDEPLOY_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    monkeypatch.setenv("MQDEPLOY_CONFIG_ROOT", str(config_root))
    monkeypatch.setenv("MQDEPLOY_POLL_INTERVAL", "0")
    for name in ("GITHUB_SHA", "GITHUB_ACTOR", "GITHUB_RUN_NUMBER"):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setattr("deploy_cli.app.console", Console(file=io.StringIO(), width=120))
    monkeypatch.setattr("deploy_cli.app.configure_logging", lambda **_: None)
    monkeypatch.setattr(
        "deploy_cli.app._make_pipeline",
        lambda engine, settings: DeploymentPipeline(engine, settings, backend=backend, sleep=lambda _: None),
    )
    return backend
