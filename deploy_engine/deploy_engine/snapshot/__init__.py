"""Configuration snapshot fingerprinting."""

from __future__ import annotations

from deploy_engine.snapshot.hasher import (
    compute_fingerprint,
    compute_snapshot,
    digest_bytes,
    lint_script,
)

__all__ = [
    "compute_fingerprint",
    "compute_snapshot",
    "digest_bytes",
    "lint_script",
]
