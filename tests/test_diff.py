"""Tests for the diff reporter."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from conftest import T0, make_nightly

from nightly_inspector.config import Settings
from nightly_inspector.diff import (
    FULL_DIFF_FILENAME,
    REPORT_FILENAME,
    DiffReporter,
    compute_component_diff,
    extract_pr_number,
    open_in_pager,
    parse_manifest,
    render_report,
    select_latest_two,
)
from nightly_inspector.exceptions import ManifestError, NotEnoughNightliesError, RepositoryError
from nightly_inspector.models import CommitSummary, DiffReport, FileStat, VersionStatus
from nightly_inspector.repo import GitRepository


def _statuses(diffs):
    return {d.name: d.status for d in diffs}


class TestComponentDiff:
    def test_classification(self):
        diffs = compute_component_diff({"a": "1.0", "b": "2.0"}, {"a": "1.0", "c": "3.0"})
        assert _statuses(diffs) == {
            "a": VersionStatus.same,
            "b": VersionStatus.removed,
            "c": VersionStatus.added,
        }

    def test_updated(self):
        diffs = compute_component_diff({"ruby": "3.1"}, {"ruby": "3.2"})
        assert diffs[0].status == VersionStatus.updated
        assert diffs[0].base_version == "3.1"
        assert diffs[0].comparison_version == "3.2"

    def test_sorted_by_name(self):
        diffs = compute_component_diff({"z": "1", "m": "1"}, {"a": "1"})
        assert [d.name for d in diffs] == ["a", "m", "z"]


class TestParseManifest:
    def test_flat_mapping(self):
        assert parse_manifest(b'{"a": "1.0", "b": "2.0"}') == {"a": "1.0", "b": "2.0"}

    def test_dependencies_section(self):
        content = json.dumps(
            {
                "base_branch": "main",
                "current_milestone": "7.64.0",
                "dependencies": {"OMNIBUS_RUBY_VERSION": "abc123", "JMXFETCH_VERSION": "0.49.6"},
            }
        ).encode()
        assert parse_manifest(content) == {"OMNIBUS_RUBY_VERSION": "abc123", "JMXFETCH_VERSION": "0.49.6"}

    def test_ignores_non_scalar_fields(self):
        content = b'{"a": "1", "meta": {"x": 1}, "list": [1], "flag": true, "n": 7}'
        assert parse_manifest(content) == {"a": "1", "n": "7"}

    def test_invalid_json(self):
        with pytest.raises(ManifestError):
            parse_manifest(b"not json")

    def test_not_an_object(self):
        with pytest.raises(ManifestError):
            parse_manifest(b"[1, 2]")


class TestExtractPrNumber:
    def test_squash_subject(self):
        assert extract_pr_number("[ASCII-123] Fix the thing (#34567)") == 34567

    def test_last_reference_wins(self):
        assert extract_pr_number("Revert \"Add x (#1)\" (#2)") == 2

    def test_no_reference(self):
        assert extract_pr_number("Bump version to 7.64") is None
        assert extract_pr_number("Fix #12 in parser") is None


class TestSelectLatestTwo:
    def test_picks_two_newest(self):
        nightlies = [
            make_nightly("aaaaaaaa", T0),
            make_nightly("cccccccc", T0 + timedelta(days=2)),
            make_nightly("bbbbbbbb", T0 + timedelta(days=1)),
        ]
        older, newer = select_latest_two(nightlies)
        assert (older.sha, newer.sha) == ("bbbbbbbb", "cccccccc")

    def test_weekend_builds_skipped_by_default(self):
        friday = datetime(2025, 3, 7, 2, 0, tzinfo=timezone.utc)
        saturday = friday + timedelta(days=1)
        thursday = friday - timedelta(days=1)
        nightlies = [
            make_nightly("aaaaaaaa", thursday),
            make_nightly("bbbbbbbb", friday),
            make_nightly("cccccccc", saturday),
        ]
        older, newer = select_latest_two(nightlies)
        assert (older.sha, newer.sha) == ("aaaaaaaa", "bbbbbbbb")
        older, newer = select_latest_two(nightlies, include_weekends=True)
        assert (older.sha, newer.sha) == ("bbbbbbbb", "cccccccc")

    def test_not_enough(self):
        with pytest.raises(NotEnoughNightliesError):
            select_latest_two([make_nightly("aaaaaaaa", T0)])


def _settings(tmp_path, **overrides):
    return Settings(repo_path=tmp_path, spill_dir=tmp_path / "spill", **overrides)


class TestDiffReporterWithMockGraph:
    def _graph(self):
        graph = MagicMock()
        graph.log_range.return_value = [
            CommitSummary(sha="c3", subject="Add check (#101)"),
            CommitSummary(sha="c2", subject="Refactor"),
            CommitSummary(sha="c1", subject="Fix (#99)"),
        ]
        graph.diff_stat.return_value = [
            FileStat(path="a.go", insertions=10, deletions=2),
            FileStat(path="logo.png", binary=True),
        ]
        manifests = {
            "old": b'{"dependencies": {"a": "1.0", "b": "2.0"}}',
            "new": b'{"dependencies": {"a": "1.0", "c": "3.0"}}',
        }
        graph.read_file_at.side_effect = lambda commit, path: manifests[commit]
        graph.commit_stat.return_value = (5, 1)
        return graph

    def test_report_sections(self, tmp_path):
        graph = self._graph()
        report = DiffReporter(graph, _settings(tmp_path)).report("old", "new")

        assert report.commit_count == 3
        assert report.commits[0].pr_url == "https://github.com/DataDog/datadog-agent/pull/101"
        assert report.commits[1].pr_url is None
        assert [f.path for f in report.files] == ["a.go"]
        assert report.binary_files == 1
        assert _statuses(report.components) == {
            "a": VersionStatus.same,
            "b": VersionStatus.removed,
            "c": VersionStatus.added,
        }
        graph.read_file_at.assert_any_call("old", "release.json")

    def test_stats_failure_keeps_commit(self, tmp_path):
        graph = self._graph()
        graph.commit_stat.side_effect = [(1, 1), RepositoryError("boom"), (2, 0)]
        report = DiffReporter(graph, _settings(tmp_path)).report("old", "new")

        assert report.commit_count == 3
        assert not report.commits[1].has_stats
        assert report.commits[2].insertions == 2

    def test_manifest_failure_degrades_one_section(self, tmp_path):
        graph = self._graph()
        graph.read_file_at.side_effect = ManifestError("release.json does not exist at old")
        report = DiffReporter(graph, _settings(tmp_path)).report("old", "new")

        assert report.components == []
        assert "release.json" in report.manifest_error
        assert report.commit_count == 3
        assert "unavailable: release.json" in render_report(report)

    def test_small_diff_is_not_spilled(self, tmp_path):
        graph = self._graph()
        reporter = DiffReporter(graph, _settings(tmp_path))
        report = reporter.report("old", "new")
        assert reporter.write_spill_files(report, "rendered") is None
        graph.raw_diff.assert_not_called()

    def test_large_diff_is_spilled(self, tmp_path):
        graph = self._graph()
        graph.raw_diff.return_value = "diff --git a/a.go b/a.go\n"
        reporter = DiffReporter(graph, _settings(tmp_path, large_diff_threshold=5))
        report = reporter.report("old", "new")

        full_path, report_path = reporter.write_spill_files(report, "rendered")

        assert full_path == tmp_path / "spill" / FULL_DIFF_FILENAME
        assert report_path == tmp_path / "spill" / REPORT_FILENAME
        assert full_path.read_text().startswith("diff --git")
        assert report_path.read_text() == "rendered"


class TestRenderReport:
    def test_suppresses_same_components_and_truncates(self):
        report = DiffReport(
            older_sha="old",
            newer_sha="new",
            older_label="nightly-full-main-aaaaaaaa-jmx",
            newer_label="nightly-full-main-bbbbbbbb-jmx",
            commits=[CommitSummary(sha=f"c{i}", subject=f"change {i}", insertions=i, deletions=0) for i in range(30)],
            files=[FileStat(path="a.go", insertions=3, deletions=1)],
            binary_files=2,
        )
        report.components = compute_component_diff({"a": "1", "b": "1"}, {"a": "1", "b": "2"})
        text = render_report(report, max_commits=25)

        assert "Diff between nightly-full-main-bbbbbbbb-jmx and nightly-full-main-aaaaaaaa-jmx" in text
        assert "30 commits:" in text
        assert "c24 change 24 (+24, -0)" in text
        assert "c25 change 25" not in text
        assert "… (5 more)" in text
        assert "(2 binary files changed)" in text
        assert "b: 1 → 2" in text
        assert "a: 1" not in text

    def test_empty_report(self):
        text = render_report(DiffReport(older_sha="a", newer_sha="b"))
        assert "0 commits:" in text
        assert "(none)" in text


class TestOpenInPager:
    def test_uses_pager_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PAGER", "more -s")
        with patch("nightly_inspector.diff.subprocess.run") as run:
            open_in_pager(tmp_path / "report.txt")
        run.assert_called_once_with(["more", "-s", str(tmp_path / "report.txt")], check=False)

    def test_missing_pager_is_logged(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setenv("PAGER", "definitely-not-a-pager")
        with patch("nightly_inspector.diff.subprocess.run", side_effect=FileNotFoundError()):
            open_in_pager(tmp_path / "report.txt")
        assert "Could not start pager" in caplog.text


@pytest.fixture
def release_history(commit_graph):
    """base ─ a ─┬─ merge ─ c, with b branched from base and merged."""
    g = commit_graph
    g.commit(
        "base",
        when=T0,
        files={"release.json": json.dumps({"dependencies": {"a": "1.0", "b": "2.0"}}), "main.go": "package main\n"},
    )
    g.commit("a", ("base",), files={"main.go": "package main\n\nfunc main() {}\n"}, message="Add main (#11)")
    g.commit("b", ("base",), files={"logo.png": b"\x89PNG\x00\x01\x02"}, message="Add logo")
    g.commit("merge", ("a", "b"), message="Merge branch 'b'")
    g.commit(
        "c",
        ("merge",),
        files={"release.json": json.dumps({"dependencies": {"a": "1.1", "c": "3.0"}})},
        message="Bump deps (#12)",
    )
    return g


class TestDiffReporterWithRepository:
    def test_end_to_end(self, release_history, tmp_path):
        g = release_history
        repo = GitRepository(g.path)
        report = DiffReporter(repo, _settings(tmp_path)).report(g.sha("base"), g.sha("c"))

        subjects = [c.subject for c in report.commits]
        assert len(subjects) == 3
        assert "Merge branch 'b'" not in subjects
        assert set(subjects) == {"Add main (#11)", "Add logo", "Bump deps (#12)"}
        assert all(c.has_stats for c in report.commits)
        bump = next(c for c in report.commits if c.pr_number == 12)
        assert bump.pr_url.endswith("/pull/12")

        assert report.binary_files == 1
        paths = {f.path: f for f in report.files}
        assert paths["main.go"].insertions == 2
        assert _statuses(report.changed_components) == {
            "a": VersionStatus.updated,
            "b": VersionStatus.removed,
            "c": VersionStatus.added,
        }

    def test_commit_stat(self, release_history):
        g = release_history
        repo = GitRepository(g.path)
        assert repo.commit_stat(g.sha("a")) == (2, 0)
