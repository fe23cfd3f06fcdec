"""Error taxonomy for deployment runs.

Fatal errors derive from :class:`DeployError` and abort the run with a
non-zero exit code.  Non-fatal conditions are warnings (for script lint
findings) or exceptions that are caught, logged, and never re-raised by the
stage that produced them (verification and cleanup).
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for errors that fail a deployment run.

    ``attempt_id`` and ``logs`` are populated whenever the failure happened
    after an attempt was created, so that the CLI can always show them.
    """

    def __init__(
        self,
        message: str,
        *,
        attempt_id: str | None = None,
        logs: str | None = None,
    ) -> None:
        super().__init__(message)
        self.attempt_id = attempt_id
        self.logs = logs


class ConfigMissingError(DeployError):
    """The environment's configuration directory is unusable."""


class EmptyConfigError(ConfigMissingError):
    """The configuration directory is absent or holds no recognised files."""


class LeaseHeldError(DeployError):
    """Another attempt already holds the deployment lease for the environment."""


class SubmissionError(DeployError):
    """The execution unit could not be handed to the cluster."""


class DeploymentTimeoutError(DeployError, TimeoutError):
    """The execution unit did not reach a terminal state before the deadline."""


class UnitFailedError(DeployError):
    """The execution unit reached its failed terminal state."""


class AuditWriteError(DeployError):
    """The deployment record could not be persisted.

    The configuration has already been applied when this is raised; nothing
    is rolled back.
    """


class VerificationWarning(UserWarning):
    """The post-deployment status query failed.  Logged, never fatal."""


class CleanupError(Exception):
    """A superseded artifact could not be deleted.  Logged, never fatal."""


class ConfigSyntaxWarning(SyntaxWarning):
    """A configuration script failed a structural sanity check."""


class InvalidTransitionError(RuntimeError):
    """A deployment attempt was moved to a status it cannot reach."""
