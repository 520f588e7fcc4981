"""CLI entry point for nightly-inspector."""

import argparse
import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from nightly_inspector import __version__
from nightly_inspector.config import FreshnessPolicy, Settings
from nightly_inspector.correlator import find_by_sha, query_range
from nightly_inspector.diff import (
    DiffReporter,
    open_in_pager,
    render_report,
    select_latest_two,
)
from nightly_inspector.exceptions import (
    CommitNotFoundError,
    NightlyError,
    NoNightlyFoundError,
    NotEnoughNightliesError,
)
from nightly_inspector.locator import first_nightly_containing
from nightly_inspector.models import Nightly
from nightly_inspector.tracker import NightlyTracker


def parse_datetime(value: str) -> datetime:
    """ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DDTHH:MM:SS") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nightly-inspector",
        description="Lists recent nightly images and relates them to the commits they were built from.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    query = parser.add_argument_group("queries")
    query.add_argument("--target-sha", help="Show the nightly built from this commit")
    query.add_argument("--first-containing", metavar="SHA", help="Find the first nightly that contains this commit")
    query.add_argument("-f", "--from-date", type=parse_datetime, help="Start of the listing window (inclusive)")
    query.add_argument("-t", "--to-date", type=parse_datetime, help="End of the listing window (inclusive)")
    query.add_argument("-p", "--print-digest", action="store_true", help="Print the image digest for each nightly")

    diff = parser.add_argument_group("diffs")
    diff.add_argument("--diff", action="store_true", help="Diff the two most recent nightlies")
    diff.add_argument("--diff-shas", nargs=2, metavar=("OLDER", "NEWER"), help="Diff two build commits")
    diff.add_argument("-i", "--interactive", action="store_true", help="Pick the nightlies to diff interactively")
    diff.add_argument("--include-weekends", action="store_true", help="Consider weekend builds when picking nightlies")
    diff.add_argument("--pager", action="store_true", help="Open large diff reports in $PAGER")

    fetch = parser.add_argument_group("refresh")
    fetch.add_argument("--no-fetch", action="store_true", help="Do not refresh the local checkout")
    fetch.add_argument("--force-fetch", action="store_true", help="Refresh the local checkout even if done recently")
    fetch.add_argument("--pages", type=int, help="Number of registry pages to fetch")

    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    return parser


def configure_logging(verbose: int) -> None:
    level = os.environ.get("NIGHTLY_LOG_LEVEL")
    if not level:
        level = {0: "WARNING", 1: "INFO"}.get(verbose, "DEBUG")
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ── Output ────────────────────────────────────────────────────────────────

def nightly_table(nightlies: list[Nightly], settings: Settings, print_digest: bool = False) -> Table:
    table = Table(title="Nightlies", show_lines=False)
    table.add_column("Tag", style="green")
    table.add_column("Commit time (UTC)", style="cyan")
    table.add_column("Pushed (UTC)")
    if print_digest:
        table.add_column("Image digest")
    table.add_column("GitHub URL")
    for n in nightlies:
        commit_time = f"{n.sha_timestamp:%Y-%m-%d %H:%M}" if n.sha_timestamp else "unknown"
        row = [n.tag.name, commit_time, f"{n.estimated_last_pushed:%Y-%m-%d %H:%M}"]
        if print_digest:
            row.append(n.tag.digest)
        row.append(f"{settings.github_url}/tree/{n.sha}")
        table.add_row(*row)
    return table


# ── Commands ──────────────────────────────────────────────────────────────

def _label(nightlies: list[Nightly], sha: str) -> str:
    for n in find_by_sha(nightlies, sha):
        return n.tag.name
    return sha


def show_diff(
    args: argparse.Namespace,
    tracker: NightlyTracker,
    nightlies: list[Nightly],
    console: Console,
) -> int:
    settings = tracker.settings
    if args.interactive:
        from nightly_inspector.picker import NightlyPickerApp

        choices = [n for n in nightlies if args.include_weekends or not n.is_weekend_build]
        if len(choices) < 2:
            raise NotEnoughNightliesError(
                "Need at least two nightlies to compute a diff (after filtering)"
            )
        pair = NightlyPickerApp(choices, skip_weekends=not args.include_weekends).run()
        if pair is None:
            return 0
        older, newer = pair
    elif args.diff_shas:
        older, newer = args.diff_shas
    else:
        older_n, newer_n = select_latest_two(nightlies, include_weekends=args.include_weekends)
        older, newer = older_n.sha, newer_n.sha

    reporter = DiffReporter(tracker.repository, settings)
    report = reporter.report(older, newer, _label(nightlies, older), _label(nightlies, newer))
    rendered = render_report(report, max_commits=settings.max_listed_commits)
    console.print(rendered, markup=False, highlight=False)

    spilled = reporter.write_spill_files(report, rendered)
    if spilled:
        full_path, report_path = spilled
        console.print(f"Full diff saved to {full_path}, report to {report_path}", markup=False)
        if args.pager:
            open_in_pager(report_path)
    return 0


def run(args: argparse.Namespace, settings: Settings, policy: FreshnessPolicy, console: Console) -> int:
    tracker = NightlyTracker(settings, policy)
    nightlies = asyncio.run(tracker.load())

    if args.first_containing:
        found = first_nightly_containing(nightlies, args.first_containing, tracker.resolver())
        console.print(f"First nightly containing {args.first_containing}:", markup=False)
        console.print(nightly_table([found], settings, args.print_digest))
        return 0

    if args.diff or args.diff_shas or args.interactive:
        return show_diff(args, tracker, nightlies, console)

    if args.target_sha:
        selected = find_by_sha(nightlies, args.target_sha)
        if not selected:
            raise NoNightlyFoundError(f"No nightly was built from {args.target_sha}")
    elif args.from_date:
        selected = query_range(nightlies, args.from_date, args.to_date)
    else:
        # Default: the last 7 days
        selected = query_range(nightlies, datetime.now(timezone.utc) - timedelta(days=7))

    console.print(nightly_table(selected, settings, args.print_digest))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, load nightlies and run the requested query."""
    from dotenv import load_dotenv

    load_dotenv()  # Load .env file (e.g. NIGHTLY_REPO_PATH)

    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    settings = Settings.from_env()
    if args.pages:
        settings.registry_pages = args.pages
    policy = FreshnessPolicy(force=args.force_fetch, skip=args.no_fetch)
    console = Console()

    try:
        return run(args, settings, policy, console)
    except (NoNightlyFoundError, NotEnoughNightliesError) as e:
        console.print(f"No result: {e}", markup=False)
        return 1
    except CommitNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if e.hint:
            console.print(e.hint, markup=False)
        return 1 if not e.stale else 2
    except NightlyError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
