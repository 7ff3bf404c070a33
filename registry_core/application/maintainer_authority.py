import asyncio
import logging
from typing import Iterable, List, Optional

from registry_core.domain.models import AuthorizationResult, MaintainerInfo, MaintainerUpdate, ModuleVersion
from registry_core.infrastructure.maintainers import MaintainerStore, UserDirectory
from registry_core.infrastructure.module_store import ModuleStore

logger = logging.getLogger(__name__)

# Set on manifests published to this registry. Versions without it were
# synced from the upstream source registry.
LOCAL_PUBLISH_FLAG = '_publish_on_cnpm'


class MaintainerAuthority:
    """
    Decides who may publish or update a package.

    The effective maintainer list is the explicit list from the maintainer
    store, or, when that is empty, the maintainers embedded in the manifest of
    the package's latest version.
    """

    def __init__(
            self,
            maintainer_store: MaintainerStore,
            module_store: ModuleStore,
            user_directory: UserDirectory,
    ):
        self.maintainer_store = maintainer_store
        self.module_store = module_store
        self.user_directory = user_directory

    @staticmethod
    def _effective_maintainers(explicit: List[str], latest: Optional[ModuleVersion]) -> List[str]:
        if explicit:
            return explicit
        package = latest.package if latest else None
        embedded = (package or {}).get('maintainers')
        if not isinstance(embedded, list):
            return []
        return [m['name'] for m in embedded if isinstance(m, dict) and m.get('name')]

    @staticmethod
    def _is_upstream_synced(latest: Optional[ModuleVersion]) -> bool:
        if latest is None:
            return False
        # An undecodable manifest cannot prove a local publish.
        return not (latest.package or {}).get(LOCAL_PUBLISH_FLAG)

    async def compute_effective_maintainers(self, name: str) -> List[str]:
        explicit = await self.maintainer_store.get(name)
        if explicit:
            return explicit
        latest = await self.module_store.get_latest(name)
        return self._effective_maintainers(explicit, latest)

    async def authorize(self, name: str, username: str) -> AuthorizationResult:
        """
        Checks whether `username` may mutate package `name`.

        Rules, first match wins:
          1. The latest version was synced from upstream: denied for everyone.
          2. Nobody maintains the package: granted to any user.
          3. Otherwise: granted to members of the effective maintainer list.

        Returns:
            AuthorizationResult: The decision plus the effective maintainer list.
        """
        explicit, latest = await asyncio.gather(
            self.maintainer_store.get(name),
            self.module_store.get_latest(name),
        )
        maintainers = self._effective_maintainers(explicit, latest)

        if self._is_upstream_synced(latest):
            is_maintainer = False
        elif not maintainers:
            is_maintainer = True
        else:
            is_maintainer = username in maintainers

        if not is_maintainer:
            logger.info(f"User '{username}' is not allowed to modify {name}.")
        return AuthorizationResult(is_maintainer=is_maintainer, maintainers=maintainers)

    async def is_maintainer(self, name: str, username: str) -> bool:
        result = await self.authorize(name, username)
        return result.is_maintainer

    async def list_maintainer_names(self, name: str) -> List[str]:
        return await self.maintainer_store.get(name)

    async def list_maintainers(self, name: str) -> List[MaintainerInfo]:
        names = await self.maintainer_store.get(name)
        if not names:
            return []
        return await self.user_directory.list_by_names(names)

    # Every mutation also bumps the package's last-modified time so that
    # change-feed consumers see it.

    async def set_maintainers(self, name: str, usernames: Iterable[str]) -> MaintainerUpdate:
        change, _ = await asyncio.gather(
            self.maintainer_store.update(name, usernames),
            self.module_store.touch_last_modified(name),
        )
        logger.info(f"Maintainers of {name} set: +{change.added} -{change.removed}")
        return change

    async def add_maintainers(self, name: str, usernames: Iterable[str]) -> MaintainerUpdate:
        change, _ = await asyncio.gather(
            self.maintainer_store.add_multi(name, usernames),
            self.module_store.touch_last_modified(name),
        )
        logger.info(f"Maintainers added to {name}: {change.added}")
        return change

    async def remove_all_maintainers(self, name: str) -> int:
        removed, _ = await asyncio.gather(
            self.maintainer_store.remove_all(name),
            self.module_store.touch_last_modified(name),
        )
        logger.info(f"Removed {removed} maintainers from {name}.")
        return removed
