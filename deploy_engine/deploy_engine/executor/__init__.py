"""Cluster-side collaborators: protocols, the Kubernetes backend, and retry helpers."""

from deploy_engine.executor.base import ClusterBackend, JobExecutor, LiveQuery, SnapshotStore
from deploy_engine.executor.retry import RetryConfig, retry_with_backoff
from deploy_engine.executor.unit_template import build_execution_unit

__all__ = [
    "ClusterBackend",
    "JobExecutor",
    "LiveQuery",
    "RetryConfig",
    "SnapshotStore",
    "build_execution_unit",
    "retry_with_backoff",
]
