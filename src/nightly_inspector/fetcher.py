"""Registry tag fetching via the repository tags listing API."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from nightly_inspector.config import TagNaming
from nightly_inspector.exceptions import RegistryError
from nightly_inspector.models import Tag

logger = logging.getLogger(__name__)


def parse_build_sha(name: str, naming: TagNaming) -> Optional[str]:
    """Extract the build commit from a nightly tag name.

    Returns None for tags that do not follow the nightly naming
    convention or whose commit token has the wrong shape.
    """
    if not name.startswith(naming.prefix):
        return None
    if not any(name.endswith(suffix) for suffix in naming.role_suffixes):
        return None
    tokens = name.split("-")
    if len(tokens) <= naming.sha_token_index:
        return None
    sha = tokens[naming.sha_token_index]
    if len(sha) != naming.sha_length or not sha.isalnum():
        return None
    return sha


def filter_nightly_tags(tags: list[Tag], naming: TagNaming) -> list[Tag]:
    """Keep only tags that carry a build commit."""
    kept = [t for t in tags if parse_build_sha(t.name, naming) is not None]
    if len(kept) != len(tags):
        logger.debug("Discarded %d non-nightly tags", len(tags) - len(kept))
    return kept


class RegistryFetcher:
    """Fetches tag metadata from a registry's paginated listing endpoint."""

    def __init__(
        self,
        url: str,
        name_filter: str = "",
        page_size: int = 100,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.name_filter = name_filter
        self.page_size = page_size
        self._client = client

    # ── HTTP plumbing ─────────────────────────────────────────────────────

    async def _client_instance(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Paginated helper ──────────────────────────────────────────────────

    async def _paginate(self, max_pages: int) -> list[dict]:
        """Follow the ``next`` cursor for at most ``max_pages`` pages."""
        client = await self._client_instance()
        params: Optional[dict[str, str]] = {"page_size": str(self.page_size)}
        if self.name_filter:
            params["name"] = self.name_filter  # type: ignore[index]

        url: Optional[str] = self.url
        results: list[dict] = []
        pages = 0
        while url and pages < max_pages:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            try:
                data = resp.json()
            except ValueError as e:
                raise RegistryError(
                    f"Registry returned a non-JSON page from {url}. "
                    "It may be under maintenance; retry later or check NIGHTLY_REGISTRY_URL."
                ) from e
            if not isinstance(data, dict):
                raise RegistryError(
                    f"Registry returned an unexpected page from {url} "
                    f"(a JSON {type(data).__name__}, not an object). Check NIGHTLY_REGISTRY_URL."
                )
            pages += 1
            page_results = data.get("results") or []
            if isinstance(page_results, list):
                results.extend(r for r in page_results if isinstance(r, dict))
            # The cursor URL already carries the query string
            next_url = data.get("next")
            url = next_url if isinstance(next_url, str) else None
            params = None
        logger.debug("Fetched %d raw tags over %d pages", len(results), pages)
        return results

    # ── Tags ──────────────────────────────────────────────────────────────

    async def fetch_tags(self, max_pages: int = 1) -> list[Tag]:
        """Fetch and decode tags, dropping records that fail validation."""
        raw = await self._paginate(max_pages)
        tags: list[Tag] = []
        for item in raw:
            try:
                tags.append(Tag.model_validate(item))
            except ValidationError as e:
                logger.warning("Error parsing tag %r: %s", item.get("name"), e)
        return tags
