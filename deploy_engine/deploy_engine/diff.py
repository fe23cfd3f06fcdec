"""Manifest comparison between the last deployed snapshot and the current one."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ManifestDiff(BaseModel):
    """File-level differences between two ``{name: digest}`` manifests."""

    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


def diff_manifests(previous: dict[str, str] | None, current: dict[str, str]) -> ManifestDiff:
    """Compare *previous* against *current*; a missing baseline means every file is new."""
    baseline = previous or {}
    return ManifestDiff(
        added=sorted(set(current) - set(baseline)),
        modified=sorted(name for name in current if name in baseline and baseline[name] != current[name]),
        removed=sorted(set(baseline) - set(current)),
    )
