import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, update, delete, text, DateTime
from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.domain.exceptions import ManifestDecodeException
from registry_core.domain.models import ModuleInput, ModuleSummary, ModuleVersion, SaveResult
from registry_core.infrastructure.acl import ModuleRowTranslator, encode_manifest, normalize_keywords
from registry_core.infrastructure.database import dialect_insert, module_table, tag_table, utcnow
from registry_core.infrastructure.side_indexes import KeywordIndex

logger = logging.getLogger(__name__)

LAST_MODIFIED_SQL = text(
    "SELECT gmt_modified FROM module WHERE name = :name ORDER BY gmt_modified DESC LIMIT 1"
).columns(gmt_modified=DateTime(timezone=True))

NAMES_BY_AUTHOR_SQL = text("SELECT DISTINCT name FROM module WHERE author = :author")

# Listing projection, no manifest.
SUMMARY_COLUMNS = (module_table.c.name, module_table.c.description)


class ModuleStore:
    """
    Persists one record per (package name, version).
    Manifests are stored serialized and decoded on every read.
    """

    def __init__(self, engine: AsyncEngine, keyword_index: KeywordIndex):
        self.engine = engine
        self.keyword_index = keyword_index

    # read

    async def get(self, name: str, version: str) -> Optional[ModuleVersion]:
        return await self._find_one(
            select(module_table).where(module_table.c.name == name, module_table.c.version == version)
        )

    async def get_by_id(self, module_id: int) -> Optional[ModuleVersion]:
        return await self._find_one(select(module_table).where(module_table.c.id == module_id))

    async def get_latest(self, name: str) -> Optional[ModuleVersion]:
        """
        Returns the version the 'latest' dist-tag points at. Packages without
        a 'latest' tag fall back to their most recently modified version.
        """
        tagged = await self._find_one(
            select(module_table)
            .join(tag_table, tag_table.c.module_id == module_table.c.id)
            .where(tag_table.c.name == name, tag_table.c.tag == 'latest')
        )
        if tagged is not None:
            return tagged
        return await self._find_one(
            select(module_table)
            .where(module_table.c.name == name)
            .order_by(module_table.c.gmt_modified.desc(), module_table.c.id.desc())
            .limit(1)
        )

    async def list_by_name(self, name: str) -> List[ModuleVersion]:
        """All versions of `name`, most recently created first."""
        return await self._find_all(
            select(module_table).where(module_table.c.name == name).order_by(module_table.c.id.desc())
        )

    async def list_by_ids(self, module_ids: Iterable[int]) -> List[ModuleVersion]:
        module_ids = list(module_ids)
        if not module_ids:
            return []
        return await self._find_all(
            select(module_table).where(module_table.c.id.in_(module_ids)).order_by(module_table.c.name)
        )

    async def list_summaries_by_ids(self, module_ids: Iterable[int]) -> List[ModuleSummary]:
        module_ids = list(module_ids)
        if not module_ids:
            return []
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(*SUMMARY_COLUMNS)
                .where(module_table.c.id.in_(module_ids))
                .order_by(module_table.c.name)
            )
            rows = result.all()
        return [ModuleRowTranslator.to_summary(row._mapping) for row in rows]

    async def list_names_by_author(self, author: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(NAMES_BY_AUTHOR_SQL, {'author': author})
            return list(result.scalars().all())

    async def get_last_modified(self, name: str) -> Optional[datetime]:
        async with self.engine.connect() as conn:
            result = await conn.execute(LAST_MODIFIED_SQL, {'name': name})
            return result.scalar_one_or_none()

    # write

    async def save(self, mod: ModuleInput) -> SaveResult:
        """
        Inserts or updates the record for (mod.name, mod.version).

        Keywords found in the manifest are forwarded to the keyword index
        after the version row is written. Indexing is a secondary write: a
        failure there is logged and does not fail the save.

        Args:
            mod (ModuleInput): The version to store.

        Returns:
            SaveResult: Row id and new modification time.
        """
        package = mod.package
        description = mod.description
        if description is None:
            description = package.get('description') or ''
        dist = package.get('dist')
        if not isinstance(dist, dict):
            dist = {}
        now = utcnow()

        values = {
            'gmt_modified': now,
            'publish_time': mod.publish_time or now,
            # First publisher only; the full list lives in the maintainer store.
            'author': mod.author,
            'package': encode_manifest(package),
            'dist_tarball': dist.get('tarball'),
            'dist_shasum': dist.get('shasum'),
            'dist_size': dist.get('size'),
            'description': description,
        }

        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, module_table).values(
                name=mod.name, version=mod.version, gmt_create=now, **values
            )
            # gmt_create keeps the first publish time.
            upsert_stmt = stmt.on_conflict_do_update(
                index_elements=['name', 'version'],
                set_={key: stmt.excluded[key] for key in values},
            )
            await conn.execute(upsert_stmt)

            result = await conn.execute(
                select(module_table.c.id).where(
                    module_table.c.name == mod.name,
                    module_table.c.version == mod.version,
                )
            )
            module_id = result.scalar_one()

        saved = SaveResult(id=module_id, gmt_modified=now)

        words = normalize_keywords(package.get('keywords'))
        if words:
            try:
                await self.keyword_index.add_keywords(mod.name, description, words)
            except Exception:
                logger.exception(
                    f"Failed to index keywords {words} for {mod.name}@{mod.version}; "
                    f"the version itself was saved."
                )
        return saved

    async def update_package(self, module_id: int, package: Dict[str, Any]) -> Optional[SaveResult]:
        return await self._update_columns(module_id, {'package': encode_manifest(package)})

    async def update_package_fields(self, module_id: int, fields: Mapping[str, Any]) -> Optional[SaveResult]:
        """Shallow-merges `fields` into the stored manifest. Returns None if the id does not exist."""
        mod = await self.get_by_id(module_id)
        if mod is None:
            return None
        package = dict(mod.package or {})
        package.update(fields)
        return await self.update_package(module_id, package)

    async def update_readme(self, module_id: int, readme: str) -> Optional[SaveResult]:
        return await self.update_package_fields(module_id, {'readme': readme})

    async def update_description(self, module_id: int, description: str) -> Optional[SaveResult]:
        mod = await self.get_by_id(module_id)
        if mod is None:
            return None
        package = dict(mod.package or {})
        package['description'] = description
        # Column and manifest change in the same statement.
        return await self._update_columns(module_id, {
            'description': description,
            'package': encode_manifest(package),
        })

    async def touch_last_modified(self, name: str) -> Optional[SaveResult]:
        """
        Bumps gmt_modified of the most recently modified version of `name`
        so change-feed readers pick the package up again.
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(
                select(module_table.c.id)
                .where(module_table.c.name == name)
                .order_by(module_table.c.gmt_modified.desc(), module_table.c.id.desc())
                .limit(1)
            )
            module_id = result.scalar_one_or_none()
            if module_id is None:
                return None
            now = utcnow()
            await conn.execute(
                update(module_table).where(module_table.c.id == module_id).values(gmt_modified=now)
            )
        return SaveResult(id=module_id, gmt_modified=now)

    async def remove_by_name(self, name: str) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(module_table).where(module_table.c.name == name))
            return result.rowcount

    async def remove_by_name_and_versions(self, name: str, versions: Iterable[str]) -> int:
        versions = list(versions)
        if not versions:
            return 0
        async with self.engine.begin() as conn:
            result = await conn.execute(
                delete(module_table).where(
                    module_table.c.name == name,
                    module_table.c.version.in_(versions),
                )
            )
            return result.rowcount

    # helpers

    async def _update_columns(self, module_id: int, values: Dict[str, Any]) -> Optional[SaveResult]:
        now = utcnow()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(module_table)
                .where(module_table.c.id == module_id)
                .values(gmt_modified=now, **values)
            )
            updated = result.rowcount
        if updated == 0:
            return None
        return SaveResult(id=module_id, gmt_modified=now)

    async def _find_one(self, stmt) -> Optional[ModuleVersion]:
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        if row is None:
            return None
        return self._to_module(row._mapping)

    async def _find_all(self, stmt) -> List[ModuleVersion]:
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._to_module(row._mapping) for row in rows]

    @staticmethod
    def _to_module(row: Mapping[str, Any]) -> ModuleVersion:
        try:
            return ModuleRowTranslator.to_module(row)
        except ManifestDecodeException as e:
            # A bad manifest must not break listings; hand back the row without it.
            logger.warning(
                f"Failed to decode package of {row['name']}@{row['version']} (id: {row['id']}): {e}"
            )
            return ModuleRowTranslator.to_module_without_manifest(row)
