import asyncio
from typing import Iterable, List

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.domain.models import ModuleKeyword, ModuleStar
from registry_core.infrastructure.acl import ModuleRowTranslator
from registry_core.infrastructure.database import (
    dialect_insert, keyword_table, star_table, utcnow,
)


class KeywordIndex:
    """
    (keyword, package name, description) triples backing exact-keyword search.
    Populated as a side effect of publishing a version.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def upsert(self, name: str, keyword: str, description: str) -> ModuleKeyword:
        """
        Inserts the (keyword, name) pair or refreshes its description.

        Args:
            name (str): Package name.
            keyword (str): Exact keyword as declared in the manifest.
            description (str): Package description to show in keyword results.

        Returns:
            ModuleKeyword: The stored row.
        """
        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, keyword_table).values(
                gmt_create=utcnow(),
                keyword=keyword,
                name=name,
                description=description,
            )
            # The description is always overwritten, even if unchanged.
            upsert_stmt = stmt.on_conflict_do_update(
                index_elements=['keyword', 'name'],
                set_={'description': stmt.excluded.description},
            )
            await conn.execute(upsert_stmt)

            result = await conn.execute(
                select(keyword_table).where(
                    keyword_table.c.keyword == keyword,
                    keyword_table.c.name == name,
                )
            )
            row = result.one()
        return ModuleRowTranslator.to_keyword(row._mapping)

    async def add_keywords(self, name: str, description: str, keywords: Iterable[str]) -> List[ModuleKeyword]:
        tasks = [self.upsert(name, keyword, description) for keyword in keywords]
        return list(await asyncio.gather(*tasks))

    async def find_by_keyword(self, keyword: str, limit: int = 100) -> List[ModuleKeyword]:
        """Rows whose keyword equals `keyword` exactly, newest first."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(keyword_table)
                .where(keyword_table.c.keyword == keyword)
                .order_by(keyword_table.c.id.desc())
                .limit(limit)
            )
            rows = result.all()
        return [ModuleRowTranslator.to_keyword(row._mapping) for row in rows]


class StarRegistry:
    """(package name, username) star relations with plain set semantics."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def add(self, name: str, user: str) -> ModuleStar:
        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, star_table).values(
                gmt_create=utcnow(), user=user, name=name,
            )
            await conn.execute(stmt.on_conflict_do_nothing(index_elements=['user', 'name']))

            result = await conn.execute(
                select(star_table).where(star_table.c.name == name, star_table.c.user == user)
            )
            row = result.one()
        return ModuleRowTranslator.to_star(row._mapping)

    async def remove(self, name: str, user: str) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                delete(star_table).where(star_table.c.name == name, star_table.c.user == user)
            )
            return result.rowcount

    async def list_stargazers(self, name: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(star_table.c.user).where(star_table.c.name == name).order_by(star_table.c.id)
            )
            return list(result.scalars().all())

    async def list_starred_names(self, user: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(star_table.c.name).where(star_table.c.user == user).order_by(star_table.c.id)
            )
            return list(result.scalars().all())
