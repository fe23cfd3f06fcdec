"""Repository classes providing access to the deployment state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.models.record import DeploymentRecord, Outcome
from deploy_engine.state.tables import DeploymentLeaseTable, DeploymentRecordTable

logger = logging.getLogger(__name__)


async def _dialect_insert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Returns the execution result; ``rowcount`` is zero when the row already
    existed.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# DeploymentRecordRepository
# ---------------------------------------------------------------------------


def _record_key(recorded_at: datetime, attempt_id: str) -> str:
    return f"{recorded_at.astimezone(UTC):%Y%m%dT%H%M%S%fZ}-{attempt_id}"


def _to_record(row: DeploymentRecordTable) -> DeploymentRecord:
    return DeploymentRecord(
        record_id=row.record_id,
        environment=row.environment,
        fingerprint=row.fingerprint,
        source_revision=row.source_revision,
        actor=row.actor,
        attempt_id=row.attempt_id,
        unit_id=row.unit_id,
        outcome=row.outcome,
        manifest=dict(row.manifest_json or {}),
        recorded_at=row.recorded_at,
        previous_hash=row.previous_hash,
        entry_hash=row.entry_hash,
    )


class DeploymentRecordRepository:
    """Append-only deployment audit store with per-environment hash chaining.

    Each record is linked to the previously *inserted* record of the same
    environment via ``previous_hash``.  ``entry_hash`` is a SHA-256 digest of
    the record's content fields and that previous hash, so modifying any
    stored record breaks the chain for every later record.

    Recency (``list_recent``) is defined by ``recorded_at``, never by
    insertion order or attempt submission time.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def compute_hash(
        *,
        environment: str,
        fingerprint: str,
        source_revision: str,
        actor: str,
        attempt_id: str,
        unit_id: str | None,
        outcome: str,
        manifest: dict[str, str],
        previous_hash: str | None,
        recorded_at: datetime,
    ) -> str:
        """Compute SHA-256 over the record's content fields joined by ``|``."""
        parts = [
            environment,
            fingerprint,
            source_revision,
            actor,
            attempt_id,
            unit_id or "",
            outcome,
            json.dumps(manifest, sort_keys=True),
            previous_hash or "",
            recorded_at.astimezone(UTC).isoformat(),
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    async def get_latest_hash(self, environment: str) -> str | None:
        """Return the entry_hash of the most recently inserted record."""
        stmt = (
            select(DeploymentRecordTable.entry_hash)
            .where(DeploymentRecordTable.environment == environment)
            .order_by(DeploymentRecordTable.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def append(
        self,
        *,
        environment: str,
        fingerprint: str,
        source_revision: str,
        actor: str,
        attempt_id: str,
        unit_id: str | None = None,
        manifest: dict[str, str] | None = None,
        recorded_at: datetime | None = None,
    ) -> DeploymentRecord:
        """Build a chained record for a successful attempt and store it."""
        now = (recorded_at or datetime.now(UTC)).astimezone(UTC)
        manifest = dict(manifest or {})
        previous_hash = await self.get_latest_hash(environment)
        entry_hash = self.compute_hash(
            environment=environment,
            fingerprint=fingerprint,
            source_revision=source_revision,
            actor=actor,
            attempt_id=attempt_id,
            unit_id=unit_id,
            outcome=Outcome.SUCCESS.value,
            manifest=manifest,
            previous_hash=previous_hash,
            recorded_at=now,
        )
        record = DeploymentRecord(
            record_id=_record_key(now, attempt_id),
            environment=environment,
            fingerprint=fingerprint,
            source_revision=source_revision,
            actor=actor,
            attempt_id=attempt_id,
            unit_id=unit_id,
            outcome=Outcome.SUCCESS,
            manifest=manifest,
            recorded_at=now,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )
        await self.put(record)
        return record

    async def put(self, record: DeploymentRecord) -> None:
        """Insert a fully formed record.  Existing records are never updated."""
        row = DeploymentRecordTable(
            record_id=record.record_id,
            environment=record.environment.value,
            fingerprint=record.fingerprint,
            source_revision=record.source_revision,
            actor=record.actor,
            attempt_id=record.attempt_id,
            unit_id=record.unit_id,
            outcome=record.outcome.value,
            manifest_json=dict(record.manifest),
            previous_hash=record.previous_hash,
            entry_hash=record.entry_hash,
            recorded_at=record.recorded_at,
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Recorded deployment env=%s attempt=%s fingerprint=%s actor=%s",
            record.environment.value,
            record.attempt_id,
            record.fingerprint[:12],
            record.actor,
        )

    async def list_recent(self, environment: str, limit: int | None = 20) -> list[DeploymentRecord]:
        """Return records for *environment*, most recent ``recorded_at`` first."""
        stmt = (
            select(DeploymentRecordTable)
            .where(DeploymentRecordTable.environment == environment)
            .order_by(DeploymentRecordTable.recorded_at.desc(), DeploymentRecordTable.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def latest_successful(self, environment: str) -> DeploymentRecord | None:
        """Return the most recent successful record for *environment*."""
        stmt = (
            select(DeploymentRecordTable)
            .where(
                DeploymentRecordTable.environment == environment,
                DeploymentRecordTable.outcome == Outcome.SUCCESS.value,
            )
            .order_by(DeploymentRecordTable.recorded_at.desc(), DeploymentRecordTable.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def count(self, environment: str) -> int:
        stmt = select(func.count()).select_from(DeploymentRecordTable).where(DeploymentRecordTable.environment == environment)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def delete(self, record_id: str) -> bool:
        """Delete one record.  Only the retention manager calls this."""
        stmt = delete(DeploymentRecordTable).where(DeploymentRecordTable.record_id == record_id)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def verify_chain(self, environment: str) -> tuple[bool, int]:
        """Verify the hash chain for *environment* in insertion order.

        The first surviving record may point at a pruned predecessor, so its
        ``previous_hash`` is not checked; its own hash still is.

        Returns
        -------
        tuple[bool, int]
            ``(is_valid, records_checked)``.
        """
        stmt = (
            select(DeploymentRecordTable)
            .where(DeploymentRecordTable.environment == environment)
            .order_by(DeploymentRecordTable.id.asc())
        )
        result = await self._session.execute(stmt)
        rows = list(result.scalars().all())

        checked = 0
        previous_hash: str | None = None
        for index, row in enumerate(rows):
            if index > 0 and row.previous_hash != previous_hash:
                logger.warning(
                    "Audit chain break at record %s: expected previous_hash=%s, got=%s",
                    row.record_id,
                    previous_hash,
                    row.previous_hash,
                )
                return (False, checked)

            expected = self.compute_hash(
                environment=row.environment,
                fingerprint=row.fingerprint,
                source_revision=row.source_revision,
                actor=row.actor,
                attempt_id=row.attempt_id,
                unit_id=row.unit_id,
                outcome=row.outcome,
                manifest=dict(row.manifest_json or {}),
                previous_hash=row.previous_hash,
                recorded_at=row.recorded_at,
            )
            if row.entry_hash != expected:
                logger.warning(
                    "Audit hash mismatch at record %s: stored=%s, computed=%s",
                    row.record_id,
                    row.entry_hash,
                    expected,
                )
                return (False, checked)

            previous_hash = row.entry_hash
            checked += 1

        return (True, checked)


# ---------------------------------------------------------------------------
# LeaseRepository
# ---------------------------------------------------------------------------


class LeaseRepository:
    """Per-environment deployment lease.

    Leases are row-based with an expiry.  ``acquire`` performs an atomic
    check-and-insert: if a non-expired lease exists the acquisition fails;
    expired leases are reaped transparently.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def acquire(self, environment: str, owner: str, ttl_seconds: int = 1800) -> bool:
        """Attempt to claim *environment* for *owner*.

        Returns ``True`` if the lease was acquired, ``False`` if another
        non-expired lease exists.
        """
        now = datetime.now(UTC)

        # 1. Delete an expired lease for this environment.
        expire_stmt = delete(DeploymentLeaseTable).where(
            DeploymentLeaseTable.environment == environment,
            DeploymentLeaseTable.expires_at < now,
        )
        await self._session.execute(expire_stmt)

        # 2. Insert atomically.  ON CONFLICT DO NOTHING avoids the race
        #    between a SELECT check and the INSERT.
        result = await _dialect_insert_nothing(
            self._session,
            DeploymentLeaseTable,
            values={
                "environment": environment,
                "owner": owner,
                "acquired_at": now,
                "expires_at": now + timedelta(seconds=ttl_seconds),
            },
            index_elements=["environment"],
        )
        await self._session.flush()
        acquired = (result.rowcount or 0) > 0  # type: ignore[attr-defined]
        if acquired:
            logger.info("Lease on %s acquired by %s (ttl %ds)", environment, owner, ttl_seconds)
        return acquired

    async def get(self, environment: str) -> DeploymentLeaseTable | None:
        """Return the current non-expired lease for *environment*, if any."""
        stmt = select(DeploymentLeaseTable).where(
            DeploymentLeaseTable.environment == environment,
            DeploymentLeaseTable.expires_at >= datetime.now(UTC),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def release(self, environment: str, owner: str) -> bool:
        """Release the lease if *owner* still holds it."""
        stmt = delete(DeploymentLeaseTable).where(
            DeploymentLeaseTable.environment == environment,
            DeploymentLeaseTable.owner == owner,
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        released = (result.rowcount or 0) > 0  # type: ignore[attr-defined]
        if released:
            logger.info("Lease on %s released by %s", environment, owner)
        return released

    async def force_release(self, environment: str, released_by: str, reason: str) -> bool:
        """Remove whatever lease exists on *environment*.  Returns True if one was removed."""
        stmt = select(DeploymentLeaseTable).where(DeploymentLeaseTable.environment == environment)
        result = await self._session.execute(stmt)
        lease = result.scalar_one_or_none()
        if lease is None:
            return False

        logger.warning(
            "Lease on %s force-released by %s (owner was %s): %s",
            environment,
            released_by,
            lease.owner,
            reason,
        )
        await self._session.execute(
            delete(DeploymentLeaseTable).where(DeploymentLeaseTable.environment == environment)
        )
        await self._session.flush()
        return True
