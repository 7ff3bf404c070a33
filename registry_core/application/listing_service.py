from datetime import datetime, timezone
from typing import List, Union

from registry_core.domain.models import ModuleSummary, ModuleVersion
from registry_core.infrastructure.maintainers import MaintainerStore
from registry_core.infrastructure.module_store import ModuleStore
from registry_core.infrastructure.tag_resolver import TagResolver


def is_scoped(name: str) -> bool:
    """Scoped packages (@scope/name) are private and never listed publicly."""
    return name.startswith('@')


class ModuleListingService:
    """
    Package-name enumerations for feeds and user profiles.
    """

    def __init__(
            self,
            module_store: ModuleStore,
            tag_resolver: TagResolver,
            npm_maintainer_store: MaintainerStore,
    ):
        self.module_store = module_store
        self.tag_resolver = tag_resolver
        self.npm_maintainer_store = npm_maintainer_store

    async def list_all_public_module_names(self) -> List[str]:
        names = await self.tag_resolver.list_all_names()
        return [name for name in names if not is_scoped(name)]

    async def list_public_module_names_by_user(self, username: str) -> List[str]:
        """
        Names the user published, followed by names the user maintains
        upstream that are not already in the list.
        """
        names = [
            name for name in await self.module_store.list_names_by_author(username)
            if not is_scoped(name)
        ]
        seen = set(names)
        for name in await self.npm_maintainer_store.list_names_by_user(username):
            if name not in seen and not is_scoped(name):
                seen.add(name)
                names.append(name)
        return names

    async def list_public_modules_by_user(self, username: str) -> List[ModuleSummary]:
        names = await self.list_public_module_names_by_user(username)
        if not names:
            return []
        module_ids = await self.tag_resolver.list_latest_module_ids(names)
        return await self.module_store.list_summaries_by_ids(module_ids)

    async def list_public_module_names_since(self, start: Union[datetime, int, float]) -> List[str]:
        """
        Names whose tags changed after `start`.

        Args:
            start: A datetime, or a timestamp in epoch milliseconds.
        """
        if not isinstance(start, datetime):
            start = datetime.fromtimestamp(float(start) / 1000, tz=timezone.utc)
        names = await self.tag_resolver.list_names_modified_since(start)
        return [name for name in names if not is_scoped(name)]

    async def list_private_modules_by_scope(self, scope: str) -> List[ModuleVersion]:
        """Latest versions of every package whose name starts with `scope`, e.g. '@team/'."""
        module_ids = await self.tag_resolver.list_latest_module_ids_by_prefix(scope)
        return await self.module_store.list_by_ids(module_ids)
