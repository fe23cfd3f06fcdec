"""Execution unit template for applying MQSC scripts inside the cluster.

The unit runs a single container from the MQ client image.  Its script
waits until the queue manager answers, applies every mounted script in
file-name order with ``runmqsc``, then prints the verification listing.
A non-zero ``runmqsc`` exit fails the container, which lets the cluster's
own backoff budget retry the unit.
"""

from __future__ import annotations

from deploy_engine.config import Settings
from deploy_engine.models.attempt import DeploymentAttempt
from deploy_engine.models.unit import ExecutionUnit

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
MANAGED_BY = "mqdeploy"
LABEL_ENVIRONMENT = "mqdeploy.io/environment"
LABEL_ATTEMPT = "mqdeploy.io/attempt"
LABEL_FINGERPRINT = "mqdeploy.io/fingerprint"

MOUNT_PATH = "/etc/mqsc"

# Plain string, not a format template: every ${...} is expanded by bash
# from the container environment.
APPLY_SCRIPT = """\
set -euo pipefail
export LC_ALL=C

echo "Waiting for queue manager ${QMGR_NAME}..."
deadline=$(( $(date +%s) + READY_TIMEOUT ))
until echo 'PING QMGR' | runmqsc -c "${QMGR_NAME}" > /dev/null 2>&1; do
  if [ "$(date +%s)" -ge "${deadline}" ]; then
    echo "Queue manager ${QMGR_NAME} not ready after ${READY_TIMEOUT}s" >&2
    exit 1
  fi
  sleep "${READY_INTERVAL}"
done

shopt -s nullglob nocaseglob
files=()
for ext in ${MQSC_EXTENSIONS}; do
  files+=("${MQSC_DIR}"/*"${ext}")
done
mapfile -t ordered < <(printf '%s\\n' "${files[@]}" | sort)

for mqsc_file in "${ordered[@]}"; do
  echo "Applying $(basename "${mqsc_file}")..."
  runmqsc -c "${QMGR_NAME}" < "${mqsc_file}"
done

echo "Current state:"
echo "${VERIFY_COMMAND}" | runmqsc -c "${QMGR_NAME}"
"""


def unit_name_for(attempt_id: str) -> str:
    return f"mqsc-apply-{attempt_id}"


def snapshot_name_for(attempt_id: str) -> str:
    return f"mqsc-snapshot-{attempt_id}"


def unit_labels(attempt: DeploymentAttempt) -> dict[str, str]:
    """Labels shared by the unit and its snapshot artifact."""
    return {
        LABEL_MANAGED_BY: MANAGED_BY,
        LABEL_ENVIRONMENT: attempt.environment.value,
        LABEL_ATTEMPT: attempt.attempt_id,
        LABEL_FINGERPRINT: attempt.fingerprint[:12],
    }


def environment_selector(environment: str) -> str:
    """Label selector matching every object this tool created for *environment*."""
    return f"{LABEL_MANAGED_BY}={MANAGED_BY},{LABEL_ENVIRONMENT}={environment}"


def build_execution_unit(
    attempt: DeploymentAttempt,
    snapshot_ref: str,
    settings: Settings,
) -> ExecutionUnit:
    """Return the :class:`ExecutionUnit` that applies *snapshot_ref* for *attempt*.

    Parameters
    ----------
    attempt:
        The attempt being submitted; provides the unit name and labels.
    snapshot_ref:
        Name of the stored snapshot artifact to mount.
    settings:
        Cluster, queue manager, and unit lifecycle settings.
    """
    env_vars = {
        "QMGR_NAME": settings.qmgr_name,
        "MQSERVER": settings.mq_server,
        "MQSC_DIR": MOUNT_PATH,
        "MQSC_EXTENSIONS": " ".join(settings.config_extensions),
        "READY_TIMEOUT": str(settings.readiness_timeout_seconds),
        "READY_INTERVAL": str(settings.readiness_interval_seconds),
        "VERIFY_COMMAND": settings.verify_command,
        "DEPLOY_ENVIRONMENT": attempt.environment.value,
        "DEPLOY_ATTEMPT_ID": attempt.attempt_id,
        "DEPLOY_FINGERPRINT": attempt.fingerprint,
    }
    return ExecutionUnit(
        unit_name=unit_name_for(attempt.attempt_id),
        attempt_id=attempt.attempt_id,
        environment=attempt.environment,
        fingerprint=attempt.fingerprint,
        snapshot_ref=snapshot_ref,
        namespace=settings.namespace,
        qmgr_name=settings.qmgr_name,
        image=settings.mq_image,
        script=APPLY_SCRIPT,
        mount_path=MOUNT_PATH,
        env_vars=env_vars,
        labels=unit_labels(attempt),
        backoff_limit=settings.unit_backoff_limit,
        ttl_seconds_after_finished=settings.unit_ttl_seconds,
    )
