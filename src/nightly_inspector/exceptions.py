"""Error types for nightly-inspector."""

from typing import Optional


class NightlyError(Exception):
    """Base class for all nightly-inspector errors."""


class RegistryError(NightlyError):
    """The registry could not be reached or returned an error."""


class RepositoryError(NightlyError):
    """The local git checkout is missing or unusable."""


class CommitNotFoundError(NightlyError):
    """A commit could not be resolved or is not on the tracked branch.

    ``stale`` is True when the identifier does not resolve at all, which
    usually means the local clone has not been fetched recently.
    """

    def __init__(self, sha: str, message: str, stale: bool = False, hint: Optional[str] = None) -> None:
        self.sha = sha
        self.stale = stale
        self.hint = hint
        super().__init__(message)


class NoNightlyFoundError(NightlyError):
    """No nightly contains the requested change."""


class NotEnoughNightliesError(NightlyError):
    """Fewer than two nightlies are available to compare."""


class ManifestError(NightlyError):
    """The dependency manifest could not be read or parsed."""
