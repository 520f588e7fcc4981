"""Data models for nightly-inspector."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive registry or cache timestamps are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Registry data ─────────────────────────────────────────────────────────

class Tag(BaseModel):
    """One registry tag entry."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    last_pushed: datetime = Field(alias="tag_last_pushed")
    digest: str = ""

    @field_validator("last_pushed")
    @classmethod
    def pushed_in_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


# ── Nightly builds ────────────────────────────────────────────────────────

class Nightly(BaseModel):
    """A nightly build correlated with the commit it was built from."""

    sha: str
    tag: Tag
    estimated_last_pushed: datetime
    sha_timestamp: Optional[datetime] = None

    @field_validator("estimated_last_pushed", "sha_timestamp")
    @classmethod
    def times_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _assume_utc(value)

    @property
    def effective_timestamp(self) -> datetime:
        """Commit time when known, registry push time otherwise."""
        if self.sha_timestamp is not None:
            return self.sha_timestamp
        return self.estimated_last_pushed

    @property
    def is_weekend_build(self) -> bool:
        # Saturday=5, Sunday=6 (UTC push time)
        return self.estimated_last_pushed.weekday() >= 5


# ── Git data ──────────────────────────────────────────────────────────────

class CommitSummary(BaseModel):
    """One commit in a diff range."""

    sha: str
    subject: str
    insertions: Optional[int] = None
    deletions: Optional[int] = None
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None

    @property
    def has_stats(self) -> bool:
        return self.insertions is not None and self.deletions is not None


class FileStat(BaseModel):
    """Per-file change size between two commits."""

    path: str
    insertions: int = 0
    deletions: int = 0
    binary: bool = False

    @property
    def changed(self) -> int:
        return self.insertions + self.deletions


# ── Dependency manifest diff ──────────────────────────────────────────────

class VersionStatus(str, Enum):
    """How a component changed between two manifests."""

    same = "same"
    updated = "updated"
    added = "added"
    removed = "removed"


class ComponentVersionDiff(BaseModel):
    """Version delta for a single dependency."""

    name: str
    base_version: Optional[str] = None
    comparison_version: Optional[str] = None
    status: VersionStatus

    @property
    def display(self) -> str:
        if self.status == VersionStatus.updated:
            return f"{self.name}: {self.base_version} → {self.comparison_version}"
        if self.status == VersionStatus.added:
            return f"{self.name}: (new) {self.comparison_version}"
        if self.status == VersionStatus.removed:
            return f"{self.name}: {self.base_version} (removed)"
        return f"{self.name}: {self.base_version}"


# ── Diff report ───────────────────────────────────────────────────────────

class DiffReport(BaseModel):
    """Everything that changed between two builds."""

    older_sha: str
    newer_sha: str
    older_label: str = ""
    newer_label: str = ""
    commits: list[CommitSummary] = Field(default_factory=list)
    files: list[FileStat] = Field(default_factory=list)
    binary_files: int = 0
    components: list[ComponentVersionDiff] = Field(default_factory=list)
    manifest_error: Optional[str] = None

    @property
    def commit_count(self) -> int:
        return len(self.commits)

    @property
    def total_insertions(self) -> int:
        return sum(f.insertions for f in self.files)

    @property
    def total_deletions(self) -> int:
        return sum(f.deletions for f in self.files)

    @property
    def changed_components(self) -> list[ComponentVersionDiff]:
        return [c for c in self.components if c.status != VersionStatus.same]
