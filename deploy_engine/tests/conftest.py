"""Shared fixtures for the deployment engine tests.

``FakeCluster`` implements every cluster-side protocol in memory.  Each
submitted unit reports ``RUNNING`` for ``polls_until_terminal`` status reads
and then ``terminal_status``; ``None`` keeps it running forever.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from deploy_engine.config import Environment, Settings, load_settings
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.models.unit import ExecutionUnit, StoredArtifact, UnitStatus
from deploy_engine.state.tables import Base
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by the fake ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster:
    def __init__(self) -> None:
        self.polls_until_terminal = 2
        self.terminal_status: UnitStatus | None = UnitStatus.SUCCEEDED
        self.submit_error: Exception | None = None
        self.status_errors: list[Exception] = []
        self.query_error: Exception | None = None
        self.query_output = "AMQ8409I: Display Queue details.\n   QUEUE(ORDERS.IN)"
        self.unit_logs = "Applying orders.mqsc..."

        self.submitted: list[ExecutionUnit] = []
        self.snapshots: dict[str, StoredArtifact] = {}
        self.snapshot_contents: dict[str, ConfigSnapshot] = {}
        self.units: dict[str, StoredArtifact] = {}
        self.deleted_units: list[str] = []
        self.deleted_snapshots: list[str] = []
        self.queries: list[str] = []
        self._polls: dict[str, int] = {}
        # Strictly increasing creation times, one second apart.
        self._tick = datetime(2026, 1, 1, tzinfo=UTC)

    def _next_time(self) -> datetime:
        self._tick += timedelta(seconds=1)
        return self._tick

    # SnapshotStore

    def put_snapshot(self, snapshot: ConfigSnapshot, attempt_id: str) -> StoredArtifact:
        artifact = StoredArtifact(
            artifact_id=f"mqsc-snapshot-{attempt_id}",
            environment=snapshot.environment,
            created_at=self._next_time(),
        )
        self.snapshots[artifact.artifact_id] = artifact
        self.snapshot_contents[artifact.artifact_id] = snapshot
        return artifact

    def list_snapshots(self, environment: Environment) -> list[StoredArtifact]:
        return [a for a in self.snapshots.values() if a.environment == environment]

    def delete_snapshot(self, artifact_id: str) -> None:
        self.snapshots.pop(artifact_id, None)
        self.deleted_snapshots.append(artifact_id)

    # JobExecutor

    def submit(self, unit: ExecutionUnit) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(unit)
        self.units[unit.unit_name] = StoredArtifact(
            artifact_id=unit.unit_name,
            environment=unit.environment,
            created_at=self._next_time(),
        )
        self._polls[unit.unit_name] = 0
        return unit.unit_name

    def status(self, unit_id: str) -> UnitStatus:
        if self.status_errors:
            raise self.status_errors.pop(0)
        self._polls[unit_id] += 1
        if self.terminal_status is None or self._polls[unit_id] <= self.polls_until_terminal:
            return UnitStatus.RUNNING
        return self.terminal_status

    def logs(self, unit_id: str) -> str:
        return self.unit_logs

    def delete(self, unit_id: str) -> None:
        self.units.pop(unit_id, None)
        self.deleted_units.append(unit_id)

    def list_units(self, environment: Environment) -> list[StoredArtifact]:
        return [a for a in self.units.values() if a.environment == environment]

    # LiveQuery

    def query(self, command: str) -> str:
        self.queries.append(command)
        if self.query_error is not None:
            raise self.query_error
        return self.query_output


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_root(tmp_path: Path) -> Path:
    """A configuration tree with two dev scripts and one prod script."""
    root = tmp_path / "configs"
    dev = root / "dev"
    dev.mkdir(parents=True)
    (dev / "orders.mqsc").write_text("DEFINE QLOCAL(ORDERS.IN) REPLACE\n")
    (dev / "billing.mqsc").write_text(
        "* billing queues\nDEFINE QLOCAL(BILLING.IN) +\n  MAXDEPTH(5000) REPLACE\n"
    )
    prod = root / "prod"
    prod.mkdir()
    (prod / "orders.mqsc").write_text("DEFINE QLOCAL(ORDERS.IN) MAXDEPTH(50000) REPLACE\n")
    return root


@pytest.fixture
def settings(config_root: Path, tmp_path: Path) -> Settings:
    return load_settings(
        config_root=config_root,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        poll_interval=1.0,
        job_timeout_seconds=30,
        max_consecutive_poll_errors=3,
        retention_count=2,
    )


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()
