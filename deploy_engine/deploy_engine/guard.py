"""Idempotency guard: skip deployments whose fingerprint is already live."""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple

from deploy_engine.config import Environment
from deploy_engine.models.record import DeploymentRecord, Outcome
from deploy_engine.state.repository import DeploymentRecordRepository

logger = logging.getLogger(__name__)

# Enough history to find the newest success even if the audit store one day
# carries non-success entries ahead of it.
_LOOKBACK = 50


class GuardAction(str, Enum):
    SKIP = "SKIP"
    PROCEED = "PROCEED"


class GuardDecision(NamedTuple):
    action: GuardAction
    last_record: DeploymentRecord | None

    @property
    def should_skip(self) -> bool:
        return self.action == GuardAction.SKIP


class IdempotencyGuard:
    """Compare a candidate fingerprint with the last successful deployment.

    The check is advisory.  Two concurrent runs can both observe PROCEED;
    the deployment lease is what serialises them.
    """

    def __init__(self, records: DeploymentRecordRepository) -> None:
        self._records = records

    async def check(self, environment: Environment | str, fingerprint: str) -> GuardDecision:
        env = Environment(environment)
        recent = await self._records.list_recent(env.value, limit=_LOOKBACK)
        last_success = next((r for r in recent if r.outcome == Outcome.SUCCESS), None)

        if last_success is not None and last_success.fingerprint == fingerprint:
            logger.info(
                "Fingerprint %s already deployed to %s by attempt %s; skipping",
                fingerprint[:12],
                env.value,
                last_success.attempt_id,
            )
            return GuardDecision(GuardAction.SKIP, last_success)

        return GuardDecision(GuardAction.PROCEED, last_success)
