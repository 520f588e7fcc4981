"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import git
import pytest

from nightly_inspector.models import Nightly, Tag

ACTOR = git.Actor("Nightly Tester", "tester@example.com")
T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)  # a Monday


class CommitGraph:
    """Builds literal commit graphs in a throwaway repository."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.repo = git.Repo.init(str(path))
        self.commits: dict[str, git.Commit] = {}

    def commit(
        self,
        name: str,
        parents: tuple[str, ...] = (),
        when: Optional[datetime] = None,
        files: Optional[dict[str, object]] = None,
        message: Optional[str] = None,
    ) -> git.Commit:
        for rel, content in (files or {}).items():
            target = self.path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(str(content))
            self.repo.index.add([rel])
        when = when or T0 + timedelta(hours=len(self.commits))
        stamp = f"{int(when.timestamp())} +0000"
        c = self.repo.index.commit(
            message or name,
            parent_commits=[self.commits[p] for p in parents],
            head=False,
            author=ACTOR,
            committer=ACTOR,
            author_date=stamp,
            commit_date=stamp,
        )
        self.commits[name] = c
        return c

    def sha(self, name: str, length: int = 8) -> str:
        return self.commits[name].hexsha[:length]

    def set_ref(self, ref: str, name: str) -> None:
        self.repo.git.update_ref(ref, self.commits[name].hexsha)


@pytest.fixture
def commit_graph(tmp_path):
    return CommitGraph(tmp_path / "repo")


def make_tag(sha: str, pushed: datetime, role: str = "jmx", digest: str = "sha256:abc") -> Tag:
    return Tag(name=f"nightly-full-main-{sha}-{role}", last_pushed=pushed, digest=digest)


def make_nightly(
    sha: str,
    pushed: datetime,
    sha_timestamp: Optional[datetime] = None,
) -> Nightly:
    return Nightly(
        sha=sha,
        tag=make_tag(sha, pushed),
        estimated_last_pushed=pushed,
        sha_timestamp=sha_timestamp,
    )
