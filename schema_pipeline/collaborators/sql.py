"""
SQLAlchemy-backed schema-version repository and backup data source.

Every statement is built with SQLAlchemy Core so identifiers are quoted
and values are bound as parameters.
"""

import logging
from datetime import UTC, datetime
from typing import List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    column,
    func,
    inspect,
    insert,
    literal,
    or_,
    select,
    table,
    text,
    update,
)
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from schema_pipeline.collaborators.base import BackupDataSource, SchemaVersionRepository
from schema_pipeline.collaborators.infrastructure import InfrastructureClient
from schema_pipeline.core.exceptions import RepositoryError
from schema_pipeline.models.reports import ContentInventory, TableStatistics
from schema_pipeline.models.rollback import RollbackRecord

logger = logging.getLogger(__name__)

SOFT_DELETE_COLUMN = "is_deleted"

metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    metadata,
    Column("domain", String(64), primary_key=True),
    Column("version", Integer, nullable=False, default=0),
    Column("dirty", Boolean, nullable=False, default=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

rollback_history = Table(
    "rollback_history",
    metadata,
    Column("rollback_id", String(64), primary_key=True),
    Column("domain", String(64), nullable=False, index=True),
    Column("from_version", Integer, nullable=False),
    Column("to_version", Integer, nullable=False),
    Column("executed_at", DateTime(timezone=True), nullable=False),
    Column("executed_by", String(255), nullable=False),
    Column("reason", Text, nullable=False),
    Column("success", Boolean, nullable=False),
)


class SqlSchemaVersionRepository(SchemaVersionRepository):
    """Schema-version markers and rollback history stored in SQL tables."""
    
    def __init__(self, client: InfrastructureClient, create_tables: bool = True):
        self.client = client
        self.create_tables = create_tables
        self._schema_ready = False
    
    async def ensure_schema(self):
        """Create the bookkeeping tables if they do not exist."""
        if self._schema_ready or not self.create_tables:
            return
        try:
            await self.client.run(metadata.create_all, self.client.engine)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to create schema bookkeeping tables: {str(e)}") from e
        self._schema_ready = True
    
    async def current_version(self, domain: str) -> int:
        await self.ensure_schema()
        
        def _query():
            with self.client.engine.connect() as conn:
                return conn.execute(
                    select(schema_migrations.c.version).where(schema_migrations.c.domain == domain)
                ).scalar_one_or_none()
        
        try:
            version = await self.client.run(_query)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to read current version of domain {domain}: {str(e)}") from e
        return version or 0
    
    async def set_version(self, domain: str, version: int, dirty: bool = False) -> None:
        await self.ensure_schema()
        values = {"version": version, "dirty": dirty, "updated_at": datetime.now(UTC)}
        
        def _write():
            with self.client.engine.begin() as conn:
                updated = conn.execute(
                    update(schema_migrations)
                    .where(schema_migrations.c.domain == domain)
                    .values(**values)
                )
                if updated.rowcount == 0:
                    conn.execute(insert(schema_migrations).values(domain=domain, **values))
        
        try:
            await self.client.run(_write)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to set version of domain {domain}: {str(e)}") from e
    
    async def is_dirty(self, domain: str) -> bool:
        await self.ensure_schema()
        
        def _query():
            with self.client.engine.connect() as conn:
                return conn.execute(
                    select(schema_migrations.c.dirty).where(schema_migrations.c.domain == domain)
                ).scalar_one_or_none()
        
        try:
            return bool(await self.client.run(_query))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to read dirty flag of domain {domain}: {str(e)}") from e
    
    async def record_rollback(self, record: RollbackRecord) -> None:
        await self.ensure_schema()
        
        def _write():
            with self.client.engine.begin() as conn:
                conn.execute(insert(rollback_history).values(**record.model_dump()))
        
        try:
            await self.client.run(_write)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to record rollback {record.rollback_id}: {str(e)}") from e
    
    async def rollback_history(self, domain: str, limit: int = 20) -> List[RollbackRecord]:
        await self.ensure_schema()
        
        def _query():
            with self.client.engine.connect() as conn:
                rows = conn.execute(
                    select(rollback_history)
                    .where(rollback_history.c.domain == domain)
                    .order_by(rollback_history.c.executed_at.desc())
                    .limit(limit)
                ).mappings().all()
                return [RollbackRecord(**row) for row in rows]
        
        try:
            return await self.client.run(_query)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to query rollback history: {str(e)}") from e


class SqlBackupDataSource(BackupDataSource):
    """Row counts and sizes read from the live database for backup accounting."""
    
    def __init__(
        self,
        client: InfrastructureClient,
        content_table: str = "content",
        content_size_column: str = "file_size"
    ):
        self.client = client
        self.content_table = content_table
        self.content_size_column = content_size_column
    
    async def database_size(self) -> int:
        dialect = self.client.dialect_name
        
        def _query() -> int:
            with self.client.engine.connect() as conn:
                if dialect == "postgresql":
                    return conn.execute(text("SELECT pg_database_size(current_database())")).scalar_one()
                if dialect == "sqlite":
                    page_count = conn.exec_driver_sql("PRAGMA page_count").scalar_one()
                    page_size = conn.exec_driver_sql("PRAGMA page_size").scalar_one()
                    return page_count * page_size
                return 0
        
        try:
            return int(await self.client.run(_query))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to measure database size: {str(e)}") from e
    
    async def table_statistics(self, table_name: str) -> TableStatistics:
        dialect = self.client.dialect_name
        
        def _query() -> TableStatistics:
            columns = {c["name"] for c in inspect(self.client.engine).get_columns(table_name)}
            filtered = SOFT_DELETE_COLUMN in columns
            target = table(table_name, column(SOFT_DELETE_COLUMN)) if filtered else table(table_name)
            
            count_query = select(func.count()).select_from(target)
            if filtered:
                deleted = target.c[SOFT_DELETE_COLUMN]
                count_query = count_query.where(or_(deleted.is_(False), deleted.is_(None)))
            
            with self.client.engine.connect() as conn:
                row_count = conn.execute(count_query).scalar_one()
                byte_size = 0
                if dialect == "postgresql":
                    byte_size = conn.execute(
                        text("SELECT pg_total_relation_size(CAST(:name AS regclass))"),
                        {"name": table_name}
                    ).scalar_one()
            
            return TableStatistics(
                table=table_name,
                row_count=row_count,
                byte_size=byte_size or 0,
                soft_delete_filtered=filtered,
            )
        
        try:
            return await self.client.run(_query)
        except NoSuchTableError as e:
            raise RepositoryError(f"Table {table_name} does not exist") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to read statistics for table {table_name}: {str(e)}") from e
    
    async def content_inventory(self) -> ContentInventory:
        def _query() -> ContentInventory:
            columns = {c["name"] for c in inspect(self.client.engine).get_columns(self.content_table)}
            tracked = [column(name) for name in (SOFT_DELETE_COLUMN, self.content_size_column) if name in columns]
            target = table(self.content_table, *tracked)
            
            if self.content_size_column in columns:
                size_expr = func.coalesce(func.sum(target.c[self.content_size_column]), 0)
            else:
                size_expr = literal(0)
            
            query = select(func.count(), size_expr).select_from(target)
            if SOFT_DELETE_COLUMN in columns:
                deleted = target.c[SOFT_DELETE_COLUMN]
                query = query.where(or_(deleted.is_(False), deleted.is_(None)))
            
            with self.client.engine.connect() as conn:
                count, total = conn.execute(query).one()
            return ContentInventory(reference_count=count, total_bytes=int(total or 0))
        
        try:
            return await self.client.run(_query)
        except NoSuchTableError as e:
            raise RepositoryError(f"Content table {self.content_table} does not exist") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to read content inventory: {str(e)}") from e
