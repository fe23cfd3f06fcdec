"""Post-deployment verification against the live queue manager."""

from __future__ import annotations

import logging
import warnings

from pydantic import BaseModel, Field

from deploy_engine.errors import VerificationWarning
from deploy_engine.executor.base import LiveQuery
from deploy_engine.models.attempt import AttemptStatus, DeploymentAttempt

logger = logging.getLogger(__name__)


class VerificationResult(BaseModel):
    ok: bool
    command: str
    output: str = Field(default="")
    error: str | None = Field(default=None)


class Verifier:
    """Run one read-only listing after a successful attempt.

    The result is informational.  A failed query never changes the
    attempt's status.
    """

    def __init__(self, live: LiveQuery, command: str = "DISPLAY QLOCAL(*)") -> None:
        self._live = live
        self._command = command

    def verify(self, attempt: DeploymentAttempt) -> VerificationResult:
        if attempt.status != AttemptStatus.SUCCEEDED:
            raise ValueError(f"Attempt {attempt.attempt_id} is {attempt.status.value}; verification runs after SUCCEEDED")

        try:
            output = self._live.query(self._command)
        except Exception as exc:
            message = f"Verification query {self._command!r} failed for attempt {attempt.attempt_id}: {exc}"
            logger.warning("%s", message, extra={"attempt_id": attempt.attempt_id})
            warnings.warn(message, VerificationWarning, stacklevel=2)
            return VerificationResult(ok=False, command=self._command, error=str(exc))

        logger.info("Verification query %r returned %d bytes", self._command, len(output))
        return VerificationResult(ok=True, command=self._command, output=output)
