"""Unit tests for deploy_engine.executor.unit_template."""

from __future__ import annotations

from deploy_engine.config import Environment, load_settings
from deploy_engine.executor.unit_template import (
    APPLY_SCRIPT,
    LABEL_ENVIRONMENT,
    LABEL_MANAGED_BY,
    build_execution_unit,
    environment_selector,
    snapshot_name_for,
    unit_name_for,
)
from deploy_engine.models.attempt import DeploymentAttempt

_ATTEMPT_ID = "prod-20260314-092653-000042"


def _attempt() -> DeploymentAttempt:
    return DeploymentAttempt(
        attempt_id=_ATTEMPT_ID,
        environment=Environment.PROD,
        fingerprint="c" * 64,
        run_ordinal=42,
    )


class TestNames:
    def test_unit_and_snapshot_names(self):
        assert unit_name_for(_ATTEMPT_ID) == f"mqsc-apply-{_ATTEMPT_ID}"
        assert snapshot_name_for(_ATTEMPT_ID) == f"mqsc-snapshot-{_ATTEMPT_ID}"

    def test_environment_selector(self):
        assert environment_selector("dev") == (
            "app.kubernetes.io/managed-by=mqdeploy,mqdeploy.io/environment=dev"
        )


class TestBuildExecutionUnit:
    def test_unit_fields(self):
        settings = load_settings(unit_backoff_limit=4, unit_ttl_seconds=120, namespace="mq")
        unit = build_execution_unit(_attempt(), "mqsc-snapshot-x", settings)

        assert unit.unit_name == unit_name_for(_ATTEMPT_ID)
        assert unit.snapshot_ref == "mqsc-snapshot-x"
        assert unit.namespace == "mq"
        assert unit.backoff_limit == 4
        assert unit.ttl_seconds_after_finished == 120
        assert unit.script == APPLY_SCRIPT

    def test_environment_variables(self):
        settings = load_settings(config_extensions=[".mqsc", ".in"], verify_command="DISPLAY QMGR")
        unit = build_execution_unit(_attempt(), "snap", settings)

        assert unit.env_vars["QMGR_NAME"] == "secureapphelm"
        assert unit.env_vars["MQSC_DIR"] == unit.mount_path
        assert unit.env_vars["MQSC_EXTENSIONS"] == ".mqsc .in"
        assert unit.env_vars["VERIFY_COMMAND"] == "DISPLAY QMGR"
        assert unit.env_vars["DEPLOY_ATTEMPT_ID"] == _ATTEMPT_ID
        assert unit.env_vars["DEPLOY_FINGERPRINT"] == "c" * 64

    def test_labels(self):
        unit = build_execution_unit(_attempt(), "snap", load_settings())
        assert unit.labels[LABEL_MANAGED_BY] == "mqdeploy"
        assert unit.labels[LABEL_ENVIRONMENT] == "prod"
        assert all(len(value) <= 63 for value in unit.labels.values())


class TestApplyScript:
    def test_waits_for_queue_manager_before_applying(self):
        assert APPLY_SCRIPT.index("PING QMGR") < APPLY_SCRIPT.index('< "${mqsc_file}"')

    def test_runs_verification_last(self):
        assert APPLY_SCRIPT.rstrip().endswith('echo "${VERIFY_COMMAND}" | runmqsc -c "${QMGR_NAME}"')

    def test_fails_fast(self):
        assert APPLY_SCRIPT.startswith("set -euo pipefail")
