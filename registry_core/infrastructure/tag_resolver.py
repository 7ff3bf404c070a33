import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, delete, func, text
from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.domain.exceptions import ConstraintViolationException
from registry_core.domain.models import ModuleVersion, Tag, TagAssignment
from registry_core.infrastructure.acl import ModuleRowTranslator
from registry_core.infrastructure.database import dialect_insert, tag_table, utcnow
from registry_core.infrastructure.module_store import ModuleStore

logger = logging.getLogger(__name__)

LATEST_TAG = 'latest'

ALL_TAGGED_NAMES_SQL = text("SELECT DISTINCT name FROM tag ORDER BY name")


class TagResolver:
    """
    Mutable (package name, dist-tag) -> version pointers.
    A tag can only point at a version that already exists in the module store.
    """

    def __init__(self, engine: AsyncEngine, module_store: ModuleStore):
        self.engine = engine
        self.module_store = module_store

    async def resolve(self, name: str, tag: str) -> Optional[Tag]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(tag_table).where(tag_table.c.name == name, tag_table.c.tag == tag)
            )
            row = result.first()
        if row is None:
            return None
        return ModuleRowTranslator.to_tag(row._mapping)

    async def resolve_module(self, name: str, tag: str) -> Optional[ModuleVersion]:
        row = await self.resolve(name, tag)
        if row is None:
            return None
        return await self.module_store.get(row.name, row.version)

    async def assign(self, name: str, tag: str, version: str) -> TagAssignment:
        """
        Points `tag` of package `name` at `version`.

        Raises:
            ConstraintViolationException: If (name, version) has not been published.
        """
        mod = await self.module_store.get(name, version)
        if mod is None:
            raise ConstraintViolationException('module', f"{name}@{version}")

        now = utcnow()
        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, tag_table).values(
                gmt_create=now,
                gmt_modified=now,
                name=name,
                tag=tag,
                version=version,
                module_id=mod.id,
            )
            upsert_stmt = stmt.on_conflict_do_update(
                index_elements=['name', 'tag'],
                set_={
                    'module_id': stmt.excluded.module_id,
                    'version': stmt.excluded.version,
                    'gmt_modified': stmt.excluded.gmt_modified,
                },
            )
            await conn.execute(upsert_stmt)

            result = await conn.execute(
                select(tag_table.c.id).where(tag_table.c.name == name, tag_table.c.tag == tag)
            )
            tag_id = result.scalar_one()

        logger.info(f"Tagged {name}@{version} as '{tag}'.")
        return TagAssignment(id=tag_id, module_id=mod.id, gmt_modified=now)

    async def list_tags(self, name: str) -> List[Tag]:
        async with self.engine.connect() as conn:
            result = await conn.execute(select(tag_table).where(tag_table.c.name == name))
            rows = result.all()
        return [ModuleRowTranslator.to_tag(row._mapping) for row in rows]

    async def remove_by_name(self, name: str) -> int:
        return await self._delete(tag_table.c.name == name)

    async def remove_by_ids(self, tag_ids: Iterable[int]) -> int:
        tag_ids = list(tag_ids)
        if not tag_ids:
            return 0
        return await self._delete(tag_table.c.id.in_(tag_ids))

    async def remove_by_names(self, name: str, tags: Iterable[str]) -> int:
        tags = list(tags)
        if not tags:
            return 0
        return await self._delete(tag_table.c.name == name, tag_table.c.tag.in_(tags))

    # 'latest' scans used by search and listings

    async def search_latest_module_ids(self, pattern: str, limit: int) -> List[int]:
        """Module ids of 'latest' tags whose name matches the LIKE `pattern`, case-insensitively."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(tag_table.c.module_id)
                .where(
                    func.lower(tag_table.c.name).like(func.lower(pattern)),
                    tag_table.c.tag == LATEST_TAG,
                )
                .order_by(tag_table.c.name)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_latest_module_ids(self, names: Iterable[str]) -> List[int]:
        names = list(names)
        if not names:
            return []
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(tag_table.c.module_id).where(
                    tag_table.c.name.in_(names),
                    tag_table.c.tag == LATEST_TAG,
                )
            )
            return list(result.scalars().all())

    async def list_latest_module_ids_by_prefix(self, prefix: str) -> List[int]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(tag_table.c.module_id).where(
                    tag_table.c.name.startswith(prefix, autoescape=True),
                    tag_table.c.tag == LATEST_TAG,
                )
            )
            return list(result.scalars().all())

    async def list_all_names(self) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(ALL_TAGGED_NAMES_SQL)
            return list(result.scalars().all())

    async def list_names_modified_since(self, start: datetime) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(tag_table.c.name).distinct().where(tag_table.c.gmt_modified > start)
            )
            return list(result.scalars().all())

    async def _delete(self, *criteria) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(tag_table).where(*criteria))
            return result.rowcount
