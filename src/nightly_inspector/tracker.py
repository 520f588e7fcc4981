"""Orchestrates loading, correlating and caching nightlies.

The registry fetch, the cache read and the repository refresh do not
depend on each other and run concurrently; everything after the join is
sequential.
"""

import asyncio
import logging
import threading
from typing import Optional

import httpx

from nightly_inspector.cache import NightlyCache
from nightly_inspector.config import FreshnessPolicy, Settings
from nightly_inspector.correlator import TimestampResolver, merge_nightlies
from nightly_inspector.exceptions import RegistryError, RepositoryError
from nightly_inspector.fetcher import RegistryFetcher, filter_nightly_tags
from nightly_inspector.models import Nightly, Tag
from nightly_inspector.repo import CommitResolver, GitRepository, refresh_repository

logger = logging.getLogger(__name__)


class NightlyTracker:
    """Keeps the persisted nightly set in sync with the registry."""

    def __init__(
        self,
        settings: Settings,
        policy: Optional[FreshnessPolicy] = None,
        fetcher: Optional[RegistryFetcher] = None,
        cache: Optional[NightlyCache] = None,
    ) -> None:
        self.settings = settings
        self.policy = policy or FreshnessPolicy()
        self._fetcher = fetcher or RegistryFetcher(
            settings.registry_url,
            name_filter=settings.naming.prefix,
            page_size=settings.page_size,
        )
        self._cache = cache or NightlyCache(settings.cache_file)
        self._repository: Optional[GitRepository] = None
        self._resolver: Optional[CommitResolver] = None
        self.save_thread: Optional[threading.Thread] = None

    # ── Repository access ─────────────────────────────────────────────────

    @property
    def repository(self) -> GitRepository:
        if self._repository is None:
            self._repository = GitRepository(self.settings.repo_path)
        return self._repository

    def resolver(self) -> CommitResolver:
        """Branch-aware resolver; raises RepositoryError without a checkout."""
        if self._resolver is None:
            self._resolver = CommitResolver(
                self.repository,
                self.settings.branch_ref,
                repo_path=self.settings.repo_path,
            )
        return self._resolver

    # ── Loading ───────────────────────────────────────────────────────────

    async def _fetch_tags(self) -> list[Tag]:
        try:
            tags = await self._fetcher.fetch_tags(self.settings.registry_pages)
        except httpx.HTTPStatusError as e:
            raise RegistryError(
                f"Registry returned {e.response.status_code} for {e.request.url}. "
                "Retry later or check NIGHTLY_REGISTRY_URL."
            ) from e
        except httpx.HTTPError as e:
            raise RegistryError(
                f"Could not reach the registry ({e}). Check your network connection."
            ) from e
        finally:
            await self._fetcher.close()
        return filter_nightly_tags(tags, self.settings.naming)

    async def _refresh(self) -> bool:
        return await asyncio.to_thread(
            refresh_repository,
            self.settings.repo_path,
            self.policy,
            self.settings.remote,
            self.settings.branch,
        )

    async def load(self) -> list[Nightly]:
        """Fetch, merge with the cache and save in the background."""
        fresh, persisted, refreshed = await asyncio.gather(
            self._fetch_tags(),
            asyncio.to_thread(self._cache.load),
            self._refresh(),
            return_exceptions=True,
        )
        if isinstance(refreshed, BaseException):
            logger.warning("Repository refresh failed: %s", refreshed)
        if isinstance(persisted, BaseException):
            logger.warning("Cache unavailable, starting fresh: %s", persisted)
            persisted = []
        if isinstance(fresh, BaseException):
            if not isinstance(fresh, RegistryError):
                raise fresh
            logger.error("%s Using cached nightlies only.", fresh)
            fresh = []

        resolve: Optional[TimestampResolver]
        try:
            resolve = self.resolver().timestamp
        except RepositoryError as e:
            logger.warning("Commit times unavailable: %s", e)
            resolve = None

        nightlies = self._merge(fresh, persisted, resolve)
        self.save_thread = self._cache.save_in_background(nightlies)
        return nightlies

    def _merge(
        self,
        fresh: list[Tag],
        persisted: list[Nightly],
        resolve: Optional[TimestampResolver],
    ) -> list[Nightly]:
        try:
            return merge_nightlies(fresh, persisted, resolve, self.settings.naming)
        except RepositoryError as e:
            # The branch ref is checked lazily on the first lookup
            logger.warning("Commit times unavailable: %s", e)
            return merge_nightlies(fresh, persisted, None, self.settings.naming)
