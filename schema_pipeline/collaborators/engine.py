"""
File-based migration engine.

Each domain keeps its migrations in ``<migrations_path>/<domain>/`` as
``<version>_<name>.up.sql`` and ``<version>_<name>.down.sql`` pairs. The
engine applies them one version at a time and keeps the domain's version
marker in the schema-version repository. A step that fails part-way
leaves the domain marked dirty until an operator intervenes.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from schema_pipeline.collaborators.base import DomainMigrator, MigrationEngine, SchemaVersionRepository
from schema_pipeline.collaborators.infrastructure import InfrastructureClient
from schema_pipeline.core.exceptions import MigrationEngineError, SchemaPipelineError
from schema_pipeline.models.reports import DomainMigrationOutcome, DomainStatus
from schema_pipeline.models.rollback import DestructiveOperation, DestructiveOperationKind
from schema_pipeline.models.strategy import Environment

logger = logging.getLogger(__name__)

MIGRATION_FILE_PATTERN = re.compile(r"^(?P<version>\d+)_(?P<name>[\w\-]+)\.(?P<direction>up|down)\.sql$")

_IDENT = r'[`"\[]?([\w.]+)[`"\]]?'
DROP_TABLE_PATTERN = re.compile(rf"\bDROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?{_IDENT}", re.IGNORECASE)
ALTER_TABLE_PATTERN = re.compile(rf"\bALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?{_IDENT}", re.IGNORECASE)
DROP_COLUMN_PATTERN = re.compile(rf"\bDROP\s+(COLUMN\s+)?(?:IF\s+EXISTS\s+)?{_IDENT}", re.IGNORECASE)
MODIFY_COLUMN_PATTERN = re.compile(
    rf"\b(?:ALTER\s+(?:COLUMN\s+)?{_IDENT}\s+(?:SET\s+DATA\s+)?TYPE|MODIFY\s+(?:COLUMN\s+)?{_IDENT})",
    re.IGNORECASE
)
# Words after a bare DROP inside ALTER TABLE that name something other than a column
_NON_COLUMN_DROPS = {
    "constraint", "index", "key", "primary", "foreign", "check",
    "default", "not", "expression", "identity", "partition",
}


@dataclass
class MigrationFile:
    """One versioned migration with its up and optional down script."""
    version: int
    name: str
    up_path: Optional[Path] = None
    down_path: Optional[Path] = None


def split_statements(sql: str) -> List[str]:
    """Split a migration script into statements, dropping ``--`` comments."""
    lines = []
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--"):
            continue
        lines.append(line)
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]


def find_destructive_operations(sql: str, version: int) -> List[DestructiveOperation]:
    """Detect table drops, column drops and column type changes in a script."""
    operations: List[DestructiveOperation] = []
    for statement in split_statements(sql):
        for match in DROP_TABLE_PATTERN.finditer(statement):
            operations.append(DestructiveOperation(
                kind=DestructiveOperationKind.DROP_TABLE,
                object_name=match.group(1),
                version=version,
            ))
        
        alter = ALTER_TABLE_PATTERN.search(statement)
        if not alter:
            continue
        table_name = alter.group(1)
        body = statement[alter.end():]
        
        for match in DROP_COLUMN_PATTERN.finditer(body):
            explicit, column_name = match.group(1), match.group(2)
            if not explicit and column_name.lower() in _NON_COLUMN_DROPS:
                continue
            operations.append(DestructiveOperation(
                kind=DestructiveOperationKind.DROP_COLUMN,
                object_name=f"{table_name}.{column_name}",
                version=version,
            ))
        for match in MODIFY_COLUMN_PATTERN.finditer(body):
            column_name = match.group(1) or match.group(2)
            operations.append(DestructiveOperation(
                kind=DestructiveOperationKind.MODIFY_COLUMN,
                object_name=f"{table_name}.{column_name}",
                version=version,
            ))
    return operations


class FileMigrationEngine(DomainMigrator, MigrationEngine):
    """Applies versioned SQL files per domain and tracks versions."""
    
    def __init__(
        self,
        client: InfrastructureClient,
        repository: SchemaVersionRepository,
        migrations_path: str
    ):
        self.client = client
        self.repository = repository
        self.migrations_path = Path(migrations_path)
    
    def load_migrations(self, domain: str) -> Dict[int, MigrationFile]:
        """Index the migration files of a domain by version."""
        domain_path = self.migrations_path / domain
        if not domain_path.is_dir():
            raise MigrationEngineError(f"Migration directory not found for domain {domain}: {domain_path}")
        
        migrations: Dict[int, MigrationFile] = {}
        for path in sorted(domain_path.iterdir()):
            match = MIGRATION_FILE_PATTERN.match(path.name)
            if not match:
                continue
            version = int(match.group("version"))
            migration = migrations.setdefault(version, MigrationFile(version=version, name=match.group("name")))
            if match.group("direction") == "up":
                migration.up_path = path
            else:
                migration.down_path = path
        
        for version, migration in migrations.items():
            if migration.up_path is None:
                raise MigrationEngineError(f"Migration {version} of domain {domain} has no up script")
        
        return migrations
    
    def latest_version(self, domain: str) -> int:
        return max(self.load_migrations(domain), default=0)
    
    async def pending_migrations(self, domain: str, environment: Environment) -> int:
        current = await self.repository.current_version(domain)
        return sum(1 for version in self.load_migrations(domain) if version > current)
    
    async def domain_status(self, domain: str) -> DomainStatus:
        migrations = self.load_migrations(domain)
        current = await self.repository.current_version(domain)
        return DomainStatus(
            domain=domain,
            current_version=current,
            latest_version=max(migrations, default=0),
            pending_migrations=sum(1 for version in migrations if version > current),
            dirty=await self.repository.is_dirty(domain),
        )
    
    async def execute_domain_migrations(
        self,
        domain: str,
        environment: Environment
    ) -> DomainMigrationOutcome:
        try:
            current = await self.repository.current_version(domain)
            target = self.latest_version(domain)
            await self.migrate_to(domain, target)
        except (SchemaPipelineError, SQLAlchemyError, OSError) as e:
            logger.error(f"Migration of domain {domain} in {environment.value} failed: {e}")
            return DomainMigrationOutcome(domain=domain, success=False, error=str(e))
        
        return DomainMigrationOutcome(domain=domain, success=True, from_version=current, to_version=target)
    
    async def migrate_to(self, domain: str, version: int) -> None:
        if await self.repository.is_dirty(domain):
            raise MigrationEngineError(f"Domain {domain} is dirty; manual intervention is required")
        
        migrations = self.load_migrations(domain)
        if version != 0 and version not in migrations:
            raise MigrationEngineError(f"Domain {domain} has no migration version {version}")
        
        current = await self.repository.current_version(domain)
        versions = sorted(migrations)
        
        if version > current:
            for step in [v for v in versions if current < v <= version]:
                await self._apply(domain, migrations[step].up_path, step)
                await self.repository.set_version(domain, step)
                logger.info(f"Applied {domain} migration {step} ({migrations[step].name})")
        elif version < current:
            steps = [v for v in reversed(versions) if version < v <= current]
            for step in steps:
                down_path = migrations[step].down_path
                if down_path is None:
                    raise MigrationEngineError(f"Migration {step} of domain {domain} has no down script")
                await self._apply(domain, down_path, step)
                previous = max((v for v in versions if v < step), default=0)
                await self.repository.set_version(domain, previous)
                logger.info(f"Reverted {domain} migration {step} ({migrations[step].name})")
    
    async def destructive_operations(
        self,
        domain: str,
        from_version: int,
        to_version: int
    ) -> List[DestructiveOperation]:
        migrations = self.load_migrations(domain)
        operations: List[DestructiveOperation] = []
        for version in sorted(migrations, reverse=True):
            if not to_version < version <= from_version:
                continue
            down_path = migrations[version].down_path
            if down_path is None:
                continue
            operations.extend(find_destructive_operations(down_path.read_text(), version))
        return operations
    
    async def _apply(self, domain: str, script: Path, version: int):
        statements = split_statements(script.read_text())
        
        def _execute():
            with self.client.engine.begin() as conn:
                for statement in statements:
                    conn.exec_driver_sql(statement)
        
        try:
            await self.client.run(_execute)
        except SQLAlchemyError as e:
            await self.repository.set_version(domain, version, dirty=True)
            raise MigrationEngineError(
                f"Failed to apply {script.name} for domain {domain}: {str(e)}"
            ) from e
