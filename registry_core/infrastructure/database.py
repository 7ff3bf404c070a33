from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy import (
    Table, Column, String, Integer, Text, DateTime, MetaData, Index, UniqueConstraint,
)

from registry_core.domain.exceptions import UnsupportedDialectException

# SQLAlchemy core Table definitions
metadata = MetaData()

module_table = Table(
    'module', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('gmt_modified', DateTime(timezone=True), nullable=False),
    Column('author', String(100)),
    Column('name', String(214), nullable=False),
    Column('version', String(100), nullable=False),
    Column('description', Text),
    Column('package', Text),
    Column('dist_shasum', String(100)),
    Column('dist_tarball', String(2048)),
    Column('dist_size', Integer),
    Column('publish_time', DateTime(timezone=True)),
    UniqueConstraint('name', 'version', name='uk_module_name_version'),
    Index('idx_module_gmt_modified', 'gmt_modified'),
    Index('idx_module_author', 'author'),
)

tag_table = Table(
    'tag', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('gmt_modified', DateTime(timezone=True), nullable=False),
    Column('name', String(214), nullable=False),
    Column('tag', String(30), nullable=False),
    Column('version', String(100), nullable=False),
    Column('module_id', Integer, nullable=False),
    UniqueConstraint('name', 'tag', name='uk_tag_name_tag'),
    Index('idx_tag_gmt_modified', 'gmt_modified'),
)

dependency_table = Table(
    'module_deps', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('name', String(214), nullable=False),
    Column('dependency', String(214), nullable=False),
    UniqueConstraint('name', 'dependency', name='uk_module_deps_name_dependency'),
    # Reverse lookups ("who depends on X") scan by dependency.
    Index('idx_module_deps_dependency', 'dependency'),
)

keyword_table = Table(
    'module_keyword', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('keyword', String(100), nullable=False),
    Column('name', String(214), nullable=False),
    Column('description', Text),
    UniqueConstraint('keyword', 'name', name='uk_module_keyword_keyword_name'),
    Index('idx_module_keyword_name', 'name'),
)

star_table = Table(
    'module_star', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('user', String(100), nullable=False),
    Column('name', String(214), nullable=False),
    UniqueConstraint('user', 'name', name='uk_module_star_user_name'),
    Index('idx_module_star_name', 'name'),
)

def _maintainer_table(table_name: str) -> Table:
    return Table(
        table_name, metadata,
        Column('id', Integer, primary_key=True, autoincrement=True),
        Column('gmt_create', DateTime(timezone=True), nullable=False),
        Column('user', String(100), nullable=False),
        Column('name', String(214), nullable=False),
        UniqueConstraint('user', 'name', name=f'uk_{table_name}_user_name'),
        Index(f'idx_{table_name}_name', 'name'),
    )

# Maintainers granted locally vs. maintainers copied from the upstream registry.
maintainer_table = _maintainer_table('module_maintainer')
npm_maintainer_table = _maintainer_table('npm_module_maintainer')

user_table = Table(
    'user', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('gmt_create', DateTime(timezone=True), nullable=False),
    Column('gmt_modified', DateTime(timezone=True), nullable=False),
    Column('name', String(100), nullable=False, unique=True),
    Column('email', String(400)),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(db_url, echo=echo)


async def init_schema(engine: AsyncEngine) -> None:
    """Creates any missing tables and indexes."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def dialect_insert(engine: AsyncEngine, table: Table):
    """
    Returns an INSERT for the engine's dialect that supports ON CONFLICT.

    Only PostgreSQL (production) and SQLite (tests, local development) expose
    on_conflict_do_update / on_conflict_do_nothing with the same signature.
    """
    name = engine.dialect.name
    if name == 'postgresql':
        return postgresql.insert(table)
    if name == 'sqlite':
        return sqlite.insert(table)
    raise UnsupportedDialectException(name)
