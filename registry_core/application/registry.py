from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.application.listing_service import ModuleListingService
from registry_core.application.maintainer_authority import MaintainerAuthority
from registry_core.application.search_engine import SearchEngine
from registry_core.config import RegistrySettings
from registry_core.infrastructure.database import maintainer_table, npm_maintainer_table
from registry_core.infrastructure.dependency_index import DependencyIndex
from registry_core.infrastructure.maintainers import MaintainerStore, UserDirectory
from registry_core.infrastructure.module_store import ModuleStore
from registry_core.infrastructure.side_indexes import KeywordIndex, StarRegistry
from registry_core.infrastructure.tag_resolver import TagResolver


class RegistryCore:
    """
    Wires every component of the registry core to one engine.
    Components receive their collaborators through their constructors.
    """

    def __init__(self, engine: AsyncEngine, settings: RegistrySettings):
        self.engine = engine
        self.settings = settings

        self.keyword_index = KeywordIndex(engine)
        self.star_registry = StarRegistry(engine)
        self.dependency_index = DependencyIndex(engine)
        self.module_store = ModuleStore(engine, keyword_index=self.keyword_index)
        self.tag_resolver = TagResolver(engine, module_store=self.module_store)

        self.maintainer_store = MaintainerStore(engine, maintainer_table)
        self.npm_maintainer_store = MaintainerStore(engine, npm_maintainer_table)
        self.user_directory = UserDirectory(engine)

        self.maintainer_authority = MaintainerAuthority(
            maintainer_store=self.maintainer_store,
            module_store=self.module_store,
            user_directory=self.user_directory,
        )
        self.search_engine = SearchEngine(
            tag_resolver=self.tag_resolver,
            module_store=self.module_store,
            keyword_index=self.keyword_index,
            default_limit=settings.search_limit,
            fallback_threshold=settings.search_fallback_threshold,
        )
        self.listing_service = ModuleListingService(
            module_store=self.module_store,
            tag_resolver=self.tag_resolver,
            npm_maintainer_store=self.npm_maintainer_store,
        )

    async def close(self) -> None:
        await self.engine.dispose()
