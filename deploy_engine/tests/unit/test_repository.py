"""Unit tests for the deployment record and lease repositories.

These tests use an in-memory SQLite database via aiosqlite so they can
run without a PostgreSQL instance.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from deploy_engine.config import Environment
from deploy_engine.models.record import Outcome
from deploy_engine.state.database import state_store_exists
from deploy_engine.state.repository import DeploymentRecordRepository, LeaseRepository
from deploy_engine.state.tables import DeploymentRecordTable
from sqlalchemy import update

_T0 = datetime(2026, 5, 1, 12, 0, 0, tzinfo=UTC)


async def _append(repo, attempt_id, fingerprint="f" * 64, environment="dev", recorded_at=None):
    return await repo.append(
        environment=environment,
        fingerprint=fingerprint,
        source_revision="abc1234",
        actor="ci-bot",
        attempt_id=attempt_id,
        unit_id=f"mqsc-apply-{attempt_id}",
        manifest={"orders.mqsc": "1" * 64},
        recorded_at=recorded_at or _T0,
    )


# ---------------------------------------------------------------------------
# DeploymentRecordRepository
# ---------------------------------------------------------------------------


class TestDeploymentRecordWrites:
    @pytest.mark.asyncio
    async def test_append_returns_chained_record(self, async_session):
        repo = DeploymentRecordRepository(async_session)

        first = await _append(repo, "dev-20260501-120000-000001")
        second = await _append(repo, "dev-20260501-120100-000002", recorded_at=_T0 + timedelta(minutes=1))

        assert first.previous_hash is None
        assert second.previous_hash == first.entry_hash
        assert first.outcome == Outcome.SUCCESS
        assert first.environment == Environment.DEV
        assert first.record_id.startswith("20260501T120000")

    @pytest.mark.asyncio
    async def test_chains_are_per_environment(self, async_session):
        repo = DeploymentRecordRepository(async_session)

        await _append(repo, "dev-20260501-120000-000001")
        prod = await _append(repo, "prod-20260501-120000-000001", environment="prod")

        assert prod.previous_hash is None

    @pytest.mark.asyncio
    async def test_round_trip_preserves_fields(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        written = await _append(repo, "dev-20260501-120000-000001")

        [read] = await repo.list_recent("dev")
        assert read == written

    @pytest.mark.asyncio
    async def test_delete(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        record = await _append(repo, "dev-20260501-120000-000001")

        assert await repo.delete(record.record_id) is True
        assert await repo.delete(record.record_id) is False
        assert await repo.count("dev") == 0


class TestDeploymentRecordRecency:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        for minute in range(3):
            await _append(
                repo,
                f"dev-20260501-12{minute:02d}00-00000{minute}",
                recorded_at=_T0 + timedelta(minutes=minute),
            )

        records = await repo.list_recent("dev")
        assert [r.attempt_id[-1] for r in records] == ["2", "1", "0"]

    @pytest.mark.asyncio
    async def test_out_of_order_writes(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        # The later deployment is written first.
        await _append(repo, "dev-late", fingerprint="b" * 64, recorded_at=_T0 + timedelta(hours=1))
        await _append(repo, "dev-early", fingerprint="a" * 64, recorded_at=_T0)

        latest = await repo.latest_successful("dev")
        assert latest is not None
        assert latest.fingerprint == "b" * 64
        assert [r.attempt_id for r in await repo.list_recent("dev")] == ["dev-late", "dev-early"]

    @pytest.mark.asyncio
    async def test_limit(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        for i in range(5):
            await _append(repo, f"dev-{i}", recorded_at=_T0 + timedelta(seconds=i))

        assert len(await repo.list_recent("dev", limit=2)) == 2
        assert len(await repo.list_recent("dev", limit=None)) == 5

    @pytest.mark.asyncio
    async def test_latest_successful_none(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        assert await repo.latest_successful("prod") is None


class TestDeploymentRecordChain:
    @pytest.mark.asyncio
    async def test_valid_chain(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        for i in range(3):
            await _append(repo, f"dev-{i}", recorded_at=_T0 + timedelta(seconds=i))

        assert await repo.verify_chain("dev") == (True, 3)

    @pytest.mark.asyncio
    async def test_empty_chain(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        assert await repo.verify_chain("dev") == (True, 0)

    @pytest.mark.asyncio
    async def test_tampered_record_detected(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        for i in range(3):
            await _append(repo, f"dev-{i}", recorded_at=_T0 + timedelta(seconds=i))

        await async_session.execute(
            update(DeploymentRecordTable)
            .where(DeploymentRecordTable.attempt_id == "dev-1")
            .values(actor="mallory")
        )

        valid, checked = await repo.verify_chain("dev")
        assert valid is False
        assert checked == 1

    @pytest.mark.asyncio
    async def test_pruned_head_still_verifies(self, async_session):
        repo = DeploymentRecordRepository(async_session)
        records = [await _append(repo, f"dev-{i}", recorded_at=_T0 + timedelta(seconds=i)) for i in range(3)]

        await repo.delete(records[0].record_id)

        assert await repo.verify_chain("dev") == (True, 2)


# ---------------------------------------------------------------------------
# LeaseRepository
# ---------------------------------------------------------------------------


class TestLeaseRepository:
    @pytest.mark.asyncio
    async def test_acquire_and_contend(self, async_session):
        leases = LeaseRepository(async_session)

        assert await leases.acquire("dev", "attempt-a") is True
        assert await leases.acquire("dev", "attempt-b") is False

        held = await leases.get("dev")
        assert held is not None
        assert held.owner == "attempt-a"

    @pytest.mark.asyncio
    async def test_environments_independent(self, async_session):
        leases = LeaseRepository(async_session)

        assert await leases.acquire("dev", "attempt-a") is True
        assert await leases.acquire("prod", "attempt-b") is True

    @pytest.mark.asyncio
    async def test_release_only_by_owner(self, async_session):
        leases = LeaseRepository(async_session)
        await leases.acquire("dev", "attempt-a")

        assert await leases.release("dev", "attempt-b") is False
        assert await leases.release("dev", "attempt-a") is True
        assert await leases.get("dev") is None

    @pytest.mark.asyncio
    async def test_expired_lease_reaped(self, async_session):
        leases = LeaseRepository(async_session)
        await leases.acquire("dev", "crashed-attempt", ttl_seconds=-1)

        assert await leases.get("dev") is None
        assert await leases.acquire("dev", "attempt-b") is True

    @pytest.mark.asyncio
    async def test_force_release(self, async_session):
        leases = LeaseRepository(async_session)
        await leases.acquire("dev", "attempt-a")

        assert await leases.force_release("dev", "operator", "runner crashed") is True
        assert await leases.force_release("dev", "operator", "again") is False
        assert await leases.acquire("dev", "attempt-b") is True


# ---------------------------------------------------------------------------
# State store presence
# ---------------------------------------------------------------------------


class TestStateStoreExists:
    def test_missing_sqlite_file(self, tmp_path):
        assert state_store_exists(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}") is False
        assert not (tmp_path / "state.db").exists()

    def test_existing_sqlite_file(self, tmp_path):
        (tmp_path / "state.db").touch()
        assert state_store_exists(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}") is True

    def test_in_memory_and_server_urls(self):
        assert state_store_exists("sqlite+aiosqlite://") is True
        assert state_store_exists("postgresql+asyncpg://mq:secret@db/mqdeploy") is True
