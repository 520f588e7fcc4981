"""Local git checkout access: commit lookup, ancestry, diffs and refresh."""

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import git  # GitPython

from nightly_inspector.config import FreshnessPolicy
from nightly_inspector.exceptions import (
    CommitNotFoundError,
    ManifestError,
    RepositoryError,
)
from nightly_inspector.models import CommitSummary, FileStat

logger = logging.getLogger(__name__)

FETCH_MARKER = "FETCH_TIMESTAMP"

_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")


def stale_checkout_hint(repo_path: Path) -> str:
    return f"Your checkout at {repo_path} may be stale. Consider running 'git -C {repo_path} fetch --all --tags'"


class RepositoryGraph(Protocol):
    """Read-only queries the locator and diff reporter need."""

    def resolve(self, ref: str) -> str: ...

    def timestamp(self, ref: str) -> datetime: ...

    def is_ancestor(self, candidate: str, tip: str) -> bool: ...

    def log_range(self, older: str, newer: str) -> list[CommitSummary]: ...

    def commit_stat(self, sha: str) -> tuple[int, int]: ...

    def diff_stat(self, older: str, newer: str) -> list[FileStat]: ...

    def raw_diff(self, older: str, newer: str) -> str: ...

    def read_file_at(self, commit: str, path: str) -> bytes: ...


class GitRepository:
    """RepositoryGraph backed by a GitPython ``Repo``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        try:
            self._repo = git.Repo(str(self.path))
        except (git.exc.NoSuchPathError, git.exc.InvalidGitRepositoryError) as e:
            raise RepositoryError(
                f"No git repository found at {self.path}. "
                "Clone it there or point NIGHTLY_REPO_PATH at your checkout."
            ) from e

    # ── Object lookup ─────────────────────────────────────────────────────

    def _commit(self, ref: str) -> git.Commit:
        try:
            return self._repo.commit(ref)
        except (git.exc.ODBError, ValueError) as e:
            raise CommitNotFoundError(
                ref,
                f"'{ref}' does not name a commit in {self.path}",
                stale=True,
                hint=stale_checkout_hint(self.path),
            ) from e

    def resolve(self, ref: str) -> str:
        return self._commit(ref).hexsha

    def timestamp(self, ref: str) -> datetime:
        """Committer time of ``ref`` in UTC."""
        return datetime.fromtimestamp(self._commit(ref).committed_date, tz=timezone.utc)

    def is_ancestor(self, candidate: str, tip: str) -> bool:
        """Walk parents of ``tip`` newest-first until ``candidate`` shows up.

        The walk is streamed from ``git rev-list`` and stops at the first
        match, so nothing beyond the visited prefix is held in memory.
        """
        target = self._commit(candidate).hexsha
        start = self._commit(tip)
        started = time.monotonic()
        walk = self._repo.iter_commits(start, date_order=True)
        visited = 0
        try:
            for commit in walk:
                visited += 1
                if commit.hexsha == target:
                    logger.debug(
                        "Found %s from %s after %d commits (%.2fs)",
                        candidate, tip, visited, time.monotonic() - started,
                    )
                    return True
        except git.exc.GitCommandError as e:
            raise RepositoryError(f"git rev-list failed: {e.stderr.strip()}") from e
        finally:
            walk.close()
        logger.debug(
            "%s not reachable from %s (%d commits, %.2fs)",
            candidate, tip, visited, time.monotonic() - started,
        )
        return False

    # ── Range queries ─────────────────────────────────────────────────────

    def _run(self, command: str, *args: str) -> str:
        logger.debug("Running git %s %s", command, " ".join(args))
        try:
            return getattr(self._repo.git, command)(*args)
        except git.exc.GitCommandError as e:
            raise RepositoryError(f"git {command} failed: {str(e.stderr).strip()}") from e

    def log_range(self, older: str, newer: str) -> list[CommitSummary]:
        """Non-merge commits in ``older..newer``, newest first."""
        output = self._run("log", "--no-merges", "--format=%h%x09%s", f"{older}..{newer}")
        commits: list[CommitSummary] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            sha, _, subject = line.partition("\t")
            commits.append(CommitSummary(sha=sha.strip(), subject=subject.strip()))
        return commits

    def commit_stat(self, sha: str) -> tuple[int, int]:
        """Insertions and deletions of a single commit."""
        output = self._run("show", "--shortstat", "--format=", sha)
        for line in output.splitlines():
            ins = _INSERTIONS_RE.search(line)
            dels = _DELETIONS_RE.search(line)
            if ins or dels:
                return (
                    int(ins.group(1)) if ins else 0,
                    int(dels.group(1)) if dels else 0,
                )
        return (0, 0)

    def diff_stat(self, older: str, newer: str) -> list[FileStat]:
        output = self._run("diff", "--numstat", older, newer)
        return parse_numstat(output)

    def raw_diff(self, older: str, newer: str) -> str:
        return self._run("diff", older, newer)

    def read_file_at(self, commit: str, path: str) -> bytes:
        """Content of ``path`` as of ``commit``."""
        tree = self._commit(commit).tree
        try:
            blob = tree / path
        except KeyError as e:
            raise ManifestError(f"{path} does not exist at {commit}") from e
        if blob.type != "blob":
            raise ManifestError(f"{path} is not a file at {commit}")
        return blob.data_stream.read()


def parse_numstat(output: str) -> list[FileStat]:
    """Parse ``git diff --numstat`` lines (``-`` counts mark binary files)."""
    stats: list[FileStat] = []
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        added, deleted, path = parts
        if added == "-" and deleted == "-":
            stats.append(FileStat(path=path, binary=True))
            continue
        try:
            stats.append(FileStat(path=path, insertions=int(added), deletions=int(deleted)))
        except ValueError:
            logger.debug("Unparseable numstat line: %r", line)
    return stats


# ── Branch-aware commit resolution ────────────────────────────────────────

class CommitResolver:
    """Resolves commits that must live on the tracked remote branch."""

    def __init__(self, graph: RepositoryGraph, branch_ref: str, repo_path: Optional[Path] = None) -> None:
        self.graph = graph
        self.branch_ref = branch_ref
        self.repo_path = repo_path
        self._tip: Optional[str] = None

    @property
    def branch_name(self) -> str:
        return self.branch_ref.removeprefix("refs/remotes/")

    def _hint(self) -> Optional[str]:
        return stale_checkout_hint(self.repo_path) if self.repo_path else None

    def branch_tip(self) -> str:
        if self._tip is None:
            try:
                self._tip = self.graph.resolve(self.branch_ref)
            except CommitNotFoundError as e:
                raise RepositoryError(
                    f"Reference {self.branch_ref} is missing. "
                    f"Fetch the default branch first ({self._hint() or 'git fetch'})."
                ) from e
        return self._tip

    def timestamp(self, sha: str) -> datetime:
        """Commit time of ``sha``, which must be reachable from the branch tip."""
        tip = self.branch_tip()
        try:
            self.graph.resolve(sha)
        except CommitNotFoundError as e:
            logger.warning(
                "Could not find the target commit %s on '%s'. %s",
                sha, self.branch_name, e.hint or self._hint() or "",
            )
            raise
        if not self.graph.is_ancestor(sha, tip):
            raise CommitNotFoundError(sha, f"commit '{sha}' not found on '{self.branch_name}'")
        return self.graph.timestamp(sha)

    def is_ancestor(self, candidate: str, tip: str) -> bool:
        return self.graph.is_ancestor(candidate, tip)


# ── Refreshing the remote-tracking branch ─────────────────────────────────

def refresh_repository(
    repo_path: Path,
    policy: FreshnessPolicy,
    remote: str = "origin",
    branch: str = "main",
    now: Optional[datetime] = None,
) -> bool:
    """Fetch the default branch if the debounce policy allows it.

    Best effort: failures are logged and reported as ``False``.
    """
    if policy.skip:
        logger.debug("Skipping fetch due to no-fetch flag")
        return False
    try:
        repo = git.Repo(str(repo_path))
    except (git.exc.NoSuchPathError, git.exc.InvalidGitRepositoryError) as e:
        logger.warning("Cannot refresh %s: not a git repository (%s)", repo_path, e)
        return False

    marker = Path(repo.git_dir) / FETCH_MARKER
    if not policy.should_refresh(marker, now):
        logger.debug("Skipping fetch as it was recently performed")
        return False

    refspec = f"refs/heads/{branch}:refs/remotes/{remote}/{branch}"
    started = time.monotonic()
    logger.debug("Running git fetch --quiet --no-tags %s %s", remote, refspec)
    try:
        repo.git.fetch("--quiet", "--no-tags", remote, refspec, env={"GIT_TERMINAL_PROMPT": "0"})
    except git.exc.GitCommandError as e:
        logger.warning("Git fetch failed: %s", str(e.stderr).strip())
        return False
    logger.debug("Fetch completed in %.2fs", time.monotonic() - started)

    stamp = now or datetime.now(timezone.utc)
    try:
        marker.write_text(str(int(stamp.timestamp())))
    except OSError as e:
        logger.warning("Failed to update fetch timestamp: %s", e)
    return True
