import asyncio
import logging
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from registry_core.domain.models import DependencyEdge
from registry_core.infrastructure.acl import ModuleRowTranslator
from registry_core.infrastructure.database import dependency_table, dialect_insert, utcnow

logger = logging.getLogger(__name__)


class DependencyIndex:
    """
    Directed "name depends on dependency" edges, independent of versions.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def add(self, name: str, dependency: str) -> DependencyEdge:
        """Adds the edge if it is missing. An existing edge is returned as-is."""
        criteria = (dependency_table.c.name == name, dependency_table.c.dependency == dependency)

        async with self.engine.connect() as conn:
            row = (await conn.execute(select(dependency_table).where(*criteria))).first()
        if row is not None:
            return ModuleRowTranslator.to_dependency(row._mapping)

        async with self.engine.begin() as conn:
            stmt = dialect_insert(self.engine, dependency_table).values(
                gmt_create=utcnow(), name=name, dependency=dependency,
            )
            # A concurrent insert of the same edge counts as success.
            await conn.execute(stmt.on_conflict_do_nothing(index_elements=['name', 'dependency']))
            row = (await conn.execute(select(dependency_table).where(*criteria))).one()
        return ModuleRowTranslator.to_dependency(row._mapping)

    async def add_batch(self, name: str, dependencies: Iterable[str]) -> List[DependencyEdge]:
        """
        Adds one edge per dependency concurrently.

        Every insert runs to completion; edges that were written stay written
        even if another one fails. The first failure is re-raised afterwards.
        """
        dependencies = list(dependencies)
        results = await asyncio.gather(
            *(self.add(name, dependency) for dependency in dependencies),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            logger.error(
                f"Failed to add {len(errors)}/{len(dependencies)} dependency edges for {name}: {errors[0]}"
            )
            raise errors[0]
        return list(results)

    async def list_dependencies(self, name: str) -> List[str]:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(dependency_table.c.dependency).where(dependency_table.c.name == name)
            )
            return list(result.scalars().all())

    async def list_dependents(self, dependency: str) -> List[str]:
        """Names of packages that depend on `dependency`."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(dependency_table.c.name).where(dependency_table.c.dependency == dependency)
            )
            return list(result.scalars().all())
