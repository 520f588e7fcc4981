"""What changed between two nightly builds."""

import json
import logging
import os
import re
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from nightly_inspector.config import Settings
from nightly_inspector.correlator import sort_newest_first
from nightly_inspector.exceptions import (
    ManifestError,
    NightlyError,
    NotEnoughNightliesError,
)
from nightly_inspector.models import (
    CommitSummary,
    ComponentVersionDiff,
    DiffReport,
    Nightly,
    VersionStatus,
)
from nightly_inspector.repo import RepositoryGraph

logger = logging.getLogger(__name__)

_PR_RE = re.compile(r"\(#(\d+)\)")

FULL_DIFF_FILENAME = "nightly_diff_full.patch"
REPORT_FILENAME = "nightly_diff_report.txt"


# ── Picking builds ────────────────────────────────────────────────────────

def select_latest_two(
    nightlies: list[Nightly], include_weekends: bool = False
) -> tuple[Nightly, Nightly]:
    """Return ``(older, newer)`` for the two most recent nightlies."""
    filtered = [n for n in nightlies if include_weekends or not n.is_weekend_build]
    ordered = sort_newest_first(filtered)
    if len(ordered) < 2:
        raise NotEnoughNightliesError(
            "Need at least two nightlies to compute a diff (after filtering)"
        )
    return ordered[1], ordered[0]


# ── Dependency manifest ───────────────────────────────────────────────────

def parse_manifest(content: bytes) -> dict[str, str]:
    """Read a name→version mapping from a JSON manifest.

    A nested ``dependencies`` object is preferred; otherwise top-level
    string values are used. Anything that isn't a scalar is ignored.
    """
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(f"manifest is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError("manifest is not a JSON object")

    section = data.get("dependencies")
    if not isinstance(section, dict):
        section = data

    versions: dict[str, str] = {}
    for name, value in section.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, (str, int, float)):
            versions[name] = str(value)
    return versions


def compute_component_diff(
    base: dict[str, str], comparison: dict[str, str]
) -> list[ComponentVersionDiff]:
    """Full outer join of two manifests, sorted by component name."""
    diffs: list[ComponentVersionDiff] = []
    for name in sorted(set(base) | set(comparison)):
        old = base.get(name)
        new = comparison.get(name)
        if old is None:
            status = VersionStatus.added
        elif new is None:
            status = VersionStatus.removed
        elif old == new:
            status = VersionStatus.same
        else:
            status = VersionStatus.updated
        diffs.append(
            ComponentVersionDiff(
                name=name, base_version=old, comparison_version=new, status=status
            )
        )
    return diffs


def extract_pr_number(subject: str) -> Optional[int]:
    """Pull request number from a squash-merge subject like ``Fix x (#123)``."""
    matches = _PR_RE.findall(subject)
    if not matches:
        return None
    return int(matches[-1])


# ── Report assembly ───────────────────────────────────────────────────────

class DiffReporter:
    """Builds a DiffReport from repository queries, one git call at a time."""

    def __init__(self, graph: RepositoryGraph, settings: Settings) -> None:
        self.graph = graph
        self.settings = settings

    def report(
        self,
        older_sha: str,
        newer_sha: str,
        older_label: str = "",
        newer_label: str = "",
    ) -> DiffReport:
        report = DiffReport(
            older_sha=older_sha,
            newer_sha=newer_sha,
            older_label=older_label or older_sha,
            newer_label=newer_label or newer_sha,
        )

        report.commits = [self._enrich(c) for c in self.graph.log_range(older_sha, newer_sha)]

        for stat in self.graph.diff_stat(older_sha, newer_sha):
            if stat.binary:
                report.binary_files += 1
            else:
                report.files.append(stat)

        try:
            base = parse_manifest(self.graph.read_file_at(older_sha, self.settings.manifest_path))
            comparison = parse_manifest(self.graph.read_file_at(newer_sha, self.settings.manifest_path))
            report.components = compute_component_diff(base, comparison)
        except NightlyError as e:
            logger.info("Dependency manifest diff unavailable: %s", e)
            report.manifest_error = str(e)
        return report

    def _enrich(self, commit: CommitSummary) -> CommitSummary:
        pr = extract_pr_number(commit.subject)
        if pr is not None:
            commit.pr_number = pr
            commit.pr_url = f"{self.settings.github_url}/pull/{pr}"
        try:
            commit.insertions, commit.deletions = self.graph.commit_stat(commit.sha)
        except NightlyError as e:
            logger.debug("No stats for %s: %s", commit.sha, e)
        return commit

    def write_spill_files(self, report: DiffReport, rendered: str) -> Optional[tuple[Path, Path]]:
        """Save the raw diff and rendered report when the diff is large."""
        changed = report.total_insertions + report.total_deletions
        if changed <= self.settings.large_diff_threshold:
            return None
        directory = self.settings.spill_dir
        full_path = directory / FULL_DIFF_FILENAME
        report_path = directory / REPORT_FILENAME
        try:
            raw = self.graph.raw_diff(report.older_sha, report.newer_sha)
            directory.mkdir(parents=True, exist_ok=True)
            full_path.write_text(raw)
            report_path.write_text(rendered)
        except (NightlyError, OSError) as e:
            logger.warning("Could not save full diff: %s", e)
            return None
        logger.info("Large diff (%d lines) saved to %s", changed, full_path)
        return full_path, report_path


def open_in_pager(path: Path) -> None:
    """Show a file in ``$PAGER`` (``less -R`` by default)."""
    command = shlex.split(os.environ.get("PAGER") or "less -R")
    try:
        subprocess.run([*command, str(path)], check=False)
    except OSError as e:
        logger.warning("Could not start pager %s: %s", command[0], e)


# ── Rendering ─────────────────────────────────────────────────────────────

def render_report(report: DiffReport, max_commits: int = 25) -> str:
    """Render a DiffReport as a boxed text block."""
    lines: list[str] = [
        f"┌─ Diff between {report.newer_label} and {report.older_label}",
        f"│ {report.commit_count} commits:",
    ]
    for c in report.commits[:max_commits]:
        line = f"{c.sha} {c.subject}"
        if c.has_stats:
            line += f" (+{c.insertions}, -{c.deletions})"
        if c.pr_url:
            line += f" {c.pr_url}"
        lines.append(f"│   {line}")
    if report.commit_count > max_commits:
        lines.append(f"│   … ({report.commit_count - max_commits} more)")

    lines.append("│")
    lines.append("│ File summary:")
    if report.files:
        width = max(len(f.path) for f in report.files)
        for f in report.files:
            lines.append(f"│   {f.path.ljust(width)} | +{f.insertions} -{f.deletions}")
    lines.append(
        f"│   {len(report.files)} files changed, "
        f"{report.total_insertions} insertions(+), {report.total_deletions} deletions(-)"
    )
    if report.binary_files:
        lines.append(f"│   ({report.binary_files} binary files changed)")

    lines.append("│")
    lines.append("│ Dependency changes:")
    if report.manifest_error:
        lines.append(f"│   unavailable: {report.manifest_error}")
    elif not report.changed_components:
        lines.append("│   (none)")
    else:
        for comp in report.changed_components:
            lines.append(f"│   {comp.status.value:<8} {comp.display}")

    lines.append("└─────────────────────────────────────")
    return "\n".join(lines)
