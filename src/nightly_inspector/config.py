"""Runtime configuration for nightly-inspector."""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


# ── Tag naming convention ─────────────────────────────────────────────────

class TagNaming(BaseModel):
    """How nightly build tags are named in the registry.

    A tag such as ``nightly-full-main-a1b2c3d4-jmx`` carries its build
    commit at a fixed ``-``-separated token position.
    """

    prefix: str = "nightly-full-main-"
    role_suffixes: tuple[str, ...] = ("-jmx",)
    sha_token_index: int = 3
    sha_length: int = 8


# ── Repository refresh debounce ───────────────────────────────────────────

class FreshnessPolicy(BaseModel):
    """When to refresh the local remote-tracking branch."""

    cooldown: timedelta = timedelta(minutes=5)
    force: bool = False
    skip: bool = False

    def should_refresh(self, marker_path: Path, now: Optional[datetime] = None) -> bool:
        """Decide from the marker file whether a fetch is due."""
        if self.skip:
            return False
        if self.force:
            return True
        now = now or datetime.now(timezone.utc)
        try:
            last = int(marker_path.read_text().strip())
        except (OSError, ValueError):
            # Missing or unreadable marker
            return True
        last_fetch = datetime.fromtimestamp(last, tz=timezone.utc)
        elapsed = now - last_fetch
        if elapsed < timedelta(0):
            # Clock went backwards
            return True
        return elapsed > self.cooldown


# ── Settings ──────────────────────────────────────────────────────────────

def _default_repo_path() -> Path:
    return Path.home() / "go" / "src" / "github.com" / "DataDog" / "datadog-agent"


def _default_cache_file() -> Path:
    # A 'stable' temp dir location shared across runs
    return Path(tempfile.gettempdir()) / "agent_nightlies.json"


class Settings(BaseModel):
    """All knobs for one invocation."""

    registry_url: str = "https://hub.docker.com/v2/repositories/datadog/agent-dev/tags"
    registry_pages: int = 1
    page_size: int = 100
    naming: TagNaming = Field(default_factory=TagNaming)

    repo_path: Path = Field(default_factory=_default_repo_path)
    remote: str = "origin"
    branch: str = "main"
    github_slug: str = "DataDog/datadog-agent"

    manifest_path: str = "release.json"
    cache_file: Path = Field(default_factory=_default_cache_file)
    spill_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    large_diff_threshold: int = 2000
    max_listed_commits: int = 25

    @property
    def branch_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    @property
    def github_url(self) -> str:
        return f"https://github.com/{self.github_slug}"

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Build settings from ``NIGHTLY_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        mapping = {
            "NIGHTLY_REGISTRY_URL": "registry_url",
            "NIGHTLY_REGISTRY_PAGES": "registry_pages",
            "NIGHTLY_REPO_PATH": "repo_path",
            "NIGHTLY_REMOTE": "remote",
            "NIGHTLY_BRANCH": "branch",
            "NIGHTLY_GITHUB_SLUG": "github_slug",
            "NIGHTLY_MANIFEST_PATH": "manifest_path",
            "NIGHTLY_CACHE_FILE": "cache_file",
            "NIGHTLY_SPILL_DIR": "spill_dir",
            "NIGHTLY_LARGE_DIFF_THRESHOLD": "large_diff_threshold",
        }
        for var, field in mapping.items():
            raw = env.get(var)
            if raw:
                values[field] = raw
        if "repo_path" in values:
            values["repo_path"] = Path(str(values["repo_path"])).expanduser()

        naming: dict[str, object] = {}
        if env.get("NIGHTLY_TAG_PREFIX"):
            naming["prefix"] = env["NIGHTLY_TAG_PREFIX"]
        if env.get("NIGHTLY_TAG_SUFFIXES"):
            naming["role_suffixes"] = tuple(
                s.strip() for s in env["NIGHTLY_TAG_SUFFIXES"].split(",") if s.strip()
            )
        if naming:
            values["naming"] = TagNaming(**naming)
        return cls(**values)
