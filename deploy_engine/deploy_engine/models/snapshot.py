"""Snapshot models for capturing point-in-time configuration state.

A snapshot records the exact content of every configuration script for one
environment.  ``created_at`` is stored for retention ordering and human
inspection but is **not** part of the fingerprint.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from deploy_engine.config import Environment


class ConfigFile(BaseModel):
    """A single configuration script within a snapshot."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        min_length=1,
        description="File name relative to the environment directory, e.g. 'orders.mqsc'.",
    )
    content: bytes = Field(
        ...,
        description="Raw file content, exactly as read from disk.",
    )
    digest: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 hex digest of the content.",
    )


class ConfigSnapshot(BaseModel):
    """Ordered, immutable capture of an environment's configuration scripts.

    ``files`` is sorted by name so that iteration order never depends on
    filesystem enumeration order.
    """

    model_config = ConfigDict(frozen=True)

    environment: Environment
    files: tuple[ConfigFile, ...] = Field(
        ...,
        min_length=1,
        description="Configuration scripts sorted by file name.",
    )
    fingerprint: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 over the sorted (name, digest) pairs.",
    )
    warnings: tuple[str, ...] = Field(
        default=(),
        description="Structural lint findings.  Informational only.",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when this snapshot was computed (not fingerprinted).",
    )

    @property
    def short_fingerprint(self) -> str:
        return self.fingerprint[:12]

    @property
    def manifest(self) -> dict[str, str]:
        """Return ``{file name: digest}`` for every file in the snapshot."""
        return {f.name: f.digest for f in self.files}
