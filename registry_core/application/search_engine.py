import asyncio
import logging
from typing import List, Optional, Set

from registry_core.config import DEFAULT_SEARCH_FALLBACK_THRESHOLD, DEFAULT_SEARCH_LIMIT
from registry_core.domain.models import ModuleSummary, SearchResult
from registry_core.infrastructure.module_store import ModuleStore
from registry_core.infrastructure.side_indexes import KeywordIndex
from registry_core.infrastructure.tag_resolver import TagResolver

logger = logging.getLogger(__name__)


class SearchEngine:
    """
    Name and keyword search over packages that have a 'latest' tag.

    Name search runs a cheap prefix scan first and only falls back to a
    substring scan when the prefix scan found fewer than
    `fallback_threshold` packages.
    """

    def __init__(
            self,
            tag_resolver: TagResolver,
            module_store: ModuleStore,
            keyword_index: KeywordIndex,
            default_limit: int = DEFAULT_SEARCH_LIMIT,
            fallback_threshold: int = DEFAULT_SEARCH_FALLBACK_THRESHOLD,
    ):
        self.tag_resolver = tag_resolver
        self.module_store = module_store
        self.keyword_index = keyword_index
        self.default_limit = default_limit
        self.fallback_threshold = fallback_threshold

    async def search(self, query: str, limit: Optional[int] = None) -> SearchResult:
        """
        Searches package names and keywords.

        Args:
            query (str): Search word. One leading '%' is ignored.
            limit (int): Cap for each channel; defaults to the engine's default_limit.

        Returns:
            SearchResult: keyword_matches (exact keyword, newest first) and
            search_matches (name matches, ordered by name).
        """
        limit = limit or self.default_limit
        if query.startswith('%'):
            query = query[1:]

        keyword_matches, search_matches = await asyncio.gather(
            self._search_keywords(query, limit),
            self._search_names(query, limit),
        )
        logger.debug(
            f"Search '{query}': {len(search_matches)} name matches, {len(keyword_matches)} keyword matches."
        )
        return SearchResult(keyword_matches=keyword_matches, search_matches=search_matches)

    async def _search_names(self, query: str, limit: int) -> List[ModuleSummary]:
        prefix_ids = await self.tag_resolver.search_latest_module_ids(f"{query}%", limit)
        ids: Set[int] = set(prefix_ids)

        if len(prefix_ids) < self.fallback_threshold:
            ids.update(await self.tag_resolver.search_latest_module_ids(f"%{query}%", limit))

        return await self.module_store.list_summaries_by_ids(ids)

    async def _search_keywords(self, query: str, limit: int) -> List[ModuleSummary]:
        rows = await self.keyword_index.find_by_keyword(query, limit)
        return [ModuleSummary(name=row.name, description=row.description) for row in rows]
