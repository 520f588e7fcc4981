"""Turn registry tags into Nightly records."""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from nightly_inspector.config import TagNaming
from nightly_inspector.exceptions import CommitNotFoundError
from nightly_inspector.fetcher import parse_build_sha
from nightly_inspector.models import Nightly, Tag

logger = logging.getLogger(__name__)

TimestampResolver = Callable[[str], datetime]


def merge_nightlies(
    fresh_tags: Iterable[Tag],
    persisted: list[Nightly],
    resolve_timestamp: Optional[TimestampResolver],
    naming: TagNaming,
) -> list[Nightly]:
    """Append a Nightly for every unseen build commit in ``fresh_tags``.

    ``persisted`` is extended in place and returned. Existing entries are
    never removed or reordered, so merging the same tags twice is a no-op.
    """
    known = {n.sha for n in persisted}
    added = 0
    for tag in fresh_tags:
        sha = parse_build_sha(tag.name, naming)
        if sha is None or sha in known:
            continue
        known.add(sha)

        sha_timestamp: Optional[datetime] = None
        if resolve_timestamp is not None:
            try:
                sha_timestamp = resolve_timestamp(sha)
            except CommitNotFoundError as e:
                logger.warning("Could not resolve commit time for nightly %s: %s", sha, e)

        persisted.append(
            Nightly(
                sha=sha,
                tag=tag,
                estimated_last_pushed=tag.last_pushed,
                sha_timestamp=sha_timestamp,
            )
        )
        added += 1
    if added:
        logger.info("Discovered %d new nightlies", added)
    return persisted


# ── Ordering & queries ────────────────────────────────────────────────────

def sort_newest_first(nightlies: Iterable[Nightly]) -> list[Nightly]:
    return sorted(nightlies, key=lambda n: n.effective_timestamp, reverse=True)


def sort_oldest_first(nightlies: Iterable[Nightly]) -> list[Nightly]:
    return sorted(nightlies, key=lambda n: n.effective_timestamp)


def query_range(
    nightlies: Iterable[Nightly],
    from_date: datetime,
    to_date: Optional[datetime] = None,
) -> list[Nightly]:
    """Nightlies inside ``[from_date, to_date]``, newest first."""
    selected = [
        n
        for n in nightlies
        if n.effective_timestamp >= from_date
        and (to_date is None or n.effective_timestamp <= to_date)
    ]
    return sort_newest_first(selected)


def find_by_sha(nightlies: Iterable[Nightly], sha: str) -> list[Nightly]:
    """Nightlies whose build commit matches ``sha`` (either may be abbreviated)."""
    sha = sha.strip().lower()
    if not sha:
        return []
    return [n for n in nightlies if n.sha.startswith(sha) or sha.startswith(n.sha)]
