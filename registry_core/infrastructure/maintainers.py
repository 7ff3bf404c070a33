from typing import Dict, Iterable, List

from sqlalchemy import Table, select, delete
from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.domain.models import MaintainerInfo, MaintainerUpdate
from registry_core.infrastructure.database import dialect_insert, user_table, utcnow


class MaintainerStore:
    """
    Per-package maintainer username lists.

    The same class serves the locally granted list (module_maintainer) and
    the list copied from the upstream registry (npm_module_maintainer).
    """

    def __init__(self, engine: AsyncEngine, table: Table):
        self.engine = engine
        self.table = table

    async def get(self, name: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(self.table.c.user).where(self.table.c.name == name).order_by(self.table.c.id)
            )
            return list(result.scalars().all())

    async def get_by_names(self, names: Iterable[str]) -> Dict[str, List[str]]:
        names = list(names)
        maintainers: Dict[str, List[str]] = {name: [] for name in names}
        if not names:
            return maintainers
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(self.table.c.name, self.table.c.user)
                .where(self.table.c.name.in_(names))
                .order_by(self.table.c.id)
            )
            for name, user in result.all():
                maintainers[name].append(user)
        return maintainers

    async def list_names_by_user(self, user: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(self.table.c.name).where(self.table.c.user == user).order_by(self.table.c.id)
            )
            return list(result.scalars().all())

    async def add_multi(self, name: str, users: Iterable[str]) -> MaintainerUpdate:
        """Adds `users` to the list of `name`; users already on it are left alone."""
        users = _unique(users)
        async with self.engine.begin() as conn:
            existing = set(await self._get_in(conn, name))
            added = [user for user in users if user not in existing]
            await self._insert_in(conn, name, added)
        return MaintainerUpdate(added=added)

    async def update(self, name: str, users: Iterable[str]) -> MaintainerUpdate:
        """Makes the list of `name` exactly `users`."""
        users = _unique(users)
        async with self.engine.begin() as conn:
            existing = await self._get_in(conn, name)
            added = [user for user in users if user not in existing]
            removed = [user for user in existing if user not in users]
            if removed:
                await conn.execute(
                    delete(self.table).where(self.table.c.name == name, self.table.c.user.in_(removed))
                )
            await self._insert_in(conn, name, added)
        return MaintainerUpdate(added=added, removed=removed)

    async def remove_all(self, name: str) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(self.table).where(self.table.c.name == name))
            return result.rowcount

    async def _get_in(self, conn, name: str) -> List[str]:
        result = await conn.execute(select(self.table.c.user).where(self.table.c.name == name))
        return list(result.scalars().all())

    async def _insert_in(self, conn, name: str, users: List[str]) -> None:
        if not users:
            return
        now = utcnow()
        stmt = dialect_insert(self.engine, self.table).values(
            [{'gmt_create': now, 'user': user, 'name': name} for user in users]
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=['user', 'name']))


class UserDirectory:
    """Resolves usernames to display records for maintainer listings."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def list_by_names(self, names: Iterable[str]) -> List[MaintainerInfo]:
        names = list(names)
        if not names:
            return []
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(user_table.c.name, user_table.c.email).where(user_table.c.name.in_(names))
            )
            found = {name: email for name, email in result.all()}
        # Keep the caller's order; unknown users are dropped.
        return [MaintainerInfo(name=name, email=found[name]) for name in names if name in found]

    async def save(self, name: str, email: str) -> None:
        now = utcnow()
        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, user_table).values(
                gmt_create=now, gmt_modified=now, name=name, email=email,
            )
            await conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=['name'],
                    set_={'email': stmt.excluded.email, 'gmt_modified': stmt.excluded.gmt_modified},
                )
            )


def _unique(users: Iterable[str]) -> List[str]:
    seen = []
    for user in users:
        if user not in seen:
            seen.append(user)
    return seen
