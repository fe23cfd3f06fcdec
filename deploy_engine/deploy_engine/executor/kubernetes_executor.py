"""Kubernetes backend for execution units, snapshot storage, and live queries.

Snapshots are stored as ConfigMaps, execution units are ``batch/v1`` Jobs
that mount them, and verification queries are run with ``exec`` inside the
queue manager pod.  Every object created here carries the
``app.kubernetes.io/managed-by=mqdeploy`` and environment labels so that
retention can list it again.
"""

from __future__ import annotations

import base64
import logging
import shlex
from datetime import UTC, datetime

from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.stream import stream

from deploy_engine.config import Environment, Settings
from deploy_engine.executor.retry import RetryConfig, retry_with_backoff
from deploy_engine.executor.unit_template import (
    LABEL_ATTEMPT,
    LABEL_ENVIRONMENT,
    LABEL_FINGERPRINT,
    LABEL_MANAGED_BY,
    MANAGED_BY,
    environment_selector,
    snapshot_name_for,
)
from deploy_engine.models.snapshot import ConfigSnapshot
from deploy_engine.models.unit import ExecutionUnit, StoredArtifact, UnitStatus

logger = logging.getLogger(__name__)

# ConfigMaps are capped at 1 MiB by the API server; leave room for metadata.
_MAX_SNAPSHOT_BYTES = 1_000_000
_CONTAINER_NAME = "mqsc-apply"
_VOLUME_NAME = "mqsc"


def load_cluster_config(context: str | None = None) -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    try:
        k8s_config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        k8s_config.load_kube_config(context=context)
        logger.info("Loaded kubeconfig (context=%s)", context or "current")


def _map_job_status(job_status: client.V1JobStatus | None) -> UnitStatus:
    """Translate a Job's status block to :class:`UnitStatus`.

    ``Complete`` / ``Failed`` conditions are final.  Failed pods without a
    ``Failed`` condition mean the Job is still inside its backoff budget.
    """
    if job_status is None:
        return UnitStatus.PENDING
    for condition in job_status.conditions or []:
        if condition.status != "True":
            continue
        if condition.type == "Complete":
            return UnitStatus.SUCCEEDED
        if condition.type == "Failed":
            return UnitStatus.FAILED
    if job_status.succeeded:
        return UnitStatus.SUCCEEDED
    if job_status.active or job_status.failed:
        return UnitStatus.RUNNING
    return UnitStatus.PENDING


def _created_at(metadata: client.V1ObjectMeta) -> datetime:
    created = metadata.creation_timestamp
    if created is None:
        return datetime.now(UTC)
    if created.tzinfo is None:
        return created.replace(tzinfo=UTC)
    return created


class KubernetesJobExecutor:
    """Run execution units as Kubernetes Jobs.

    Implements the :class:`JobExecutor`, :class:`SnapshotStore`, and
    :class:`LiveQuery` protocols.

    Parameters
    ----------
    namespace:
        Namespace holding the queue manager, the Jobs, and the ConfigMaps.
    qmgr_name:
        Queue manager name passed to ``runmqsc`` for live queries.
    qmgr_pod_selector:
        Label selector locating the queue manager pod.  When omitted the
        first running pod in the namespace is used.
    batch_api / core_api:
        Pre-built API clients; created from the loaded configuration when
        omitted.
    retry_config:
        Backoff for transient API errors on read calls.
    """

    def __init__(
        self,
        namespace: str,
        qmgr_name: str,
        qmgr_pod_selector: str | None = None,
        batch_api: client.BatchV1Api | None = None,
        core_api: client.CoreV1Api | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._namespace = namespace
        self._qmgr_name = qmgr_name
        self._qmgr_pod_selector = qmgr_pod_selector
        self._batch = batch_api or client.BatchV1Api()
        self._core = core_api or client.CoreV1Api()
        self._retry_config = retry_config or RetryConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> KubernetesJobExecutor:
        load_cluster_config(settings.kube_context)
        return cls(
            namespace=settings.namespace,
            qmgr_name=settings.qmgr_name,
            qmgr_pod_selector=settings.qmgr_pod_selector,
            retry_config=RetryConfig(
                max_retries=settings.max_retries,
                base_delay=settings.retry_backoff_base,
                max_delay=settings.retry_max_delay,
            ),
        )

    # -- SnapshotStore -------------------------------------------------------

    def put_snapshot(self, snapshot: ConfigSnapshot, attempt_id: str) -> StoredArtifact:
        """Store *snapshot* as a ConfigMap named after *attempt_id*.

        UTF-8 scripts go into ``data``; anything else into ``binary_data``
        so the mounted bytes are exactly the fingerprinted bytes.
        """
        total = sum(len(f.content) for f in snapshot.files)
        if total > _MAX_SNAPSHOT_BYTES:
            raise ValueError(f"Snapshot is {total} bytes; ConfigMaps hold at most {_MAX_SNAPSHOT_BYTES}")

        data: dict[str, str] = {}
        binary_data: dict[str, str] = {}
        for config_file in snapshot.files:
            try:
                data[config_file.name] = config_file.content.decode("utf-8")
            except UnicodeDecodeError:
                binary_data[config_file.name] = base64.b64encode(config_file.content).decode("ascii")

        name = snapshot_name_for(attempt_id)
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=self._namespace,
                labels={
                    LABEL_MANAGED_BY: MANAGED_BY,
                    LABEL_ENVIRONMENT: snapshot.environment.value,
                    LABEL_ATTEMPT: attempt_id,
                    LABEL_FINGERPRINT: snapshot.short_fingerprint,
                },
                annotations={LABEL_FINGERPRINT: snapshot.fingerprint},
            ),
            data=data or None,
            binary_data=binary_data or None,
            immutable=True,
        )
        created = self._core.create_namespaced_config_map(namespace=self._namespace, body=body)
        logger.info("Stored snapshot %s (%d files) as ConfigMap %s", snapshot.short_fingerprint, len(snapshot.files), name)
        return StoredArtifact(
            artifact_id=name,
            environment=snapshot.environment,
            created_at=_created_at(created.metadata) if created is not None and created.metadata else datetime.now(UTC),
        )

    def list_snapshots(self, environment: Environment) -> list[StoredArtifact]:
        env = Environment(environment)

        def _do_list() -> list[StoredArtifact]:
            result = self._core.list_namespaced_config_map(
                namespace=self._namespace,
                label_selector=environment_selector(env.value),
            )
            return [
                StoredArtifact(artifact_id=item.metadata.name, environment=env, created_at=_created_at(item.metadata))
                for item in result.items
            ]

        return retry_with_backoff(_do_list, self._retry_config, retryable_exceptions=(ApiException,))

    def delete_snapshot(self, artifact_id: str) -> None:
        try:
            self._core.delete_namespaced_config_map(name=artifact_id, namespace=self._namespace)
        except ApiException as exc:
            if exc.status != 404:
                raise
        logger.info("Deleted snapshot ConfigMap %s", artifact_id)

    # -- JobExecutor ---------------------------------------------------------

    def submit(self, unit: ExecutionUnit) -> str:
        """Create the Job for *unit* and return its name."""
        job = self.build_job(unit)
        self._batch.create_namespaced_job(namespace=unit.namespace, body=job)
        logger.info(
            "Submitted unit %s (env=%s, snapshot=%s, backoff_limit=%d)",
            unit.unit_name,
            unit.environment.value,
            unit.snapshot_ref,
            unit.backoff_limit,
        )
        return unit.unit_name

    def status(self, unit_id: str) -> UnitStatus:
        """Read the Job status once.  Poll errors are handled by the caller."""
        job = self._batch.read_namespaced_job_status(name=unit_id, namespace=self._namespace)
        return _map_job_status(job.status)

    def logs(self, unit_id: str) -> str:
        """Concatenate the logs of every pod the Job created, oldest first."""
        try:
            pods = self._core.list_namespaced_pod(
                namespace=self._namespace,
                label_selector=f"job-name={unit_id}",
            )
        except ApiException:
            logger.warning("Could not list pods for unit %s", unit_id)
            return ""

        chunks: list[str] = []
        for pod in sorted(pods.items, key=lambda p: _created_at(p.metadata)):
            try:
                text = self._core.read_namespaced_pod_log(
                    name=pod.metadata.name,
                    namespace=self._namespace,
                    container=_CONTAINER_NAME,
                )
            except ApiException:
                logger.warning("Could not read logs for pod %s", pod.metadata.name)
                continue
            chunks.append(f"--- pod {pod.metadata.name} ---\n{text or ''}")
        return "\n".join(chunks)

    def delete(self, unit_id: str) -> None:
        try:
            self._batch.delete_namespaced_job(
                name=unit_id,
                namespace=self._namespace,
                propagation_policy="Background",
            )
        except ApiException as exc:
            if exc.status != 404:
                raise
        logger.info("Deleted unit %s", unit_id)

    def list_units(self, environment: Environment) -> list[StoredArtifact]:
        env = Environment(environment)

        def _do_list() -> list[StoredArtifact]:
            result = self._batch.list_namespaced_job(
                namespace=self._namespace,
                label_selector=environment_selector(env.value),
            )
            return [
                StoredArtifact(artifact_id=item.metadata.name, environment=env, created_at=_created_at(item.metadata))
                for item in result.items
            ]

        return retry_with_backoff(_do_list, self._retry_config, retryable_exceptions=(ApiException,))

    # -- LiveQuery -----------------------------------------------------------

    def query(self, command: str) -> str:
        """Pipe *command* into ``runmqsc`` inside the queue manager pod."""
        pod_name = self._find_qmgr_pod()
        shell = f"echo {shlex.quote(command)} | runmqsc {shlex.quote(self._qmgr_name)}"
        output = stream(
            self._core.connect_get_namespaced_pod_exec,
            pod_name,
            self._namespace,
            command=["bash", "-c", shell],
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
        )
        return str(output)

    # -- Internal helpers ----------------------------------------------------

    def _find_qmgr_pod(self) -> str:
        kwargs: dict[str, str] = {"namespace": self._namespace}
        if self._qmgr_pod_selector:
            kwargs["label_selector"] = self._qmgr_pod_selector
        pods = self._core.list_namespaced_pod(**kwargs)
        running = [p for p in pods.items if p.status is not None and p.status.phase == "Running"]
        if not running:
            raise RuntimeError(f"No running queue manager pod in namespace {self._namespace}")
        return str(running[0].metadata.name)

    @staticmethod
    def build_job(unit: ExecutionUnit) -> client.V1Job:
        """Render *unit* as a ``batch/v1`` Job manifest."""
        container = client.V1Container(
            name=_CONTAINER_NAME,
            image=unit.image,
            command=["/bin/bash", "-c", unit.script],
            env=[client.V1EnvVar(name=key, value=value) for key, value in sorted(unit.env_vars.items())],
            volume_mounts=[client.V1VolumeMount(name=_VOLUME_NAME, mount_path=unit.mount_path, read_only=True)],
        )
        pod_spec = client.V1PodSpec(
            restart_policy="Never",
            containers=[container],
            volumes=[
                client.V1Volume(
                    name=_VOLUME_NAME,
                    config_map=client.V1ConfigMapVolumeSource(name=unit.snapshot_ref),
                )
            ],
        )
        return client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=client.V1ObjectMeta(
                name=unit.unit_name,
                namespace=unit.namespace,
                labels=dict(unit.labels),
            ),
            spec=client.V1JobSpec(
                backoff_limit=unit.backoff_limit,
                ttl_seconds_after_finished=unit.ttl_seconds_after_finished,
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=dict(unit.labels)),
                    spec=pod_spec,
                ),
            ),
        )
