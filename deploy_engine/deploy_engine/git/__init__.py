"""Source revision lookup."""

from deploy_engine.git.git_client import GitClientError, get_current_sha, resolve_source_revision

__all__ = ["GitClientError", "get_current_sha", "resolve_source_revision"]
