"""Find the first nightly that contains a commit."""

import logging

from nightly_inspector.correlator import sort_oldest_first
from nightly_inspector.exceptions import CommitNotFoundError, NoNightlyFoundError
from nightly_inspector.models import Nightly
from nightly_inspector.repo import CommitResolver

logger = logging.getLogger(__name__)


def first_nightly_containing(
    nightlies: list[Nightly],
    change_sha: str,
    resolver: CommitResolver,
) -> Nightly:
    """Return the earliest nightly whose build commit descends from ``change_sha``.

    Candidates are nightlies built no earlier than the change, checked
    oldest first; the first ancestry match wins. Later nightlies are not
    re-checked, so a revert landing after the match is not detected.
    """
    change_time = resolver.timestamp(change_sha)
    logger.debug("Target commit %s has timestamp %s", change_sha, change_time)

    candidates = sort_oldest_first(
        n for n in nightlies if n.effective_timestamp >= change_time
    )
    logger.debug(
        "Filtered to %d candidate nightlies built after the target commit",
        len(candidates),
    )

    for nightly in candidates:
        logger.debug(
            "Checking nightly-%s (%s) for %s",
            nightly.sha, nightly.effective_timestamp.isoformat(), change_sha,
        )
        try:
            contains = resolver.is_ancestor(change_sha, nightly.sha)
        except CommitNotFoundError as e:
            logger.warning("Error finding nightly sha %s: %s. %s", nightly.sha, e, e.hint or "")
            continue
        if contains:
            logger.debug("Found target commit in nightly %s", nightly.sha)
            return nightly

    raise NoNightlyFoundError(f"No nightly found containing commit: {change_sha}")
