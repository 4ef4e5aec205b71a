"""
Abstract interfaces for the external collaborators of the pipeline.

The orchestration core depends only on these classes. Live implementations
live alongside this module; tests substitute fakes implementing the same
interfaces.
"""

from abc import ABC, abstractmethod
from typing import List

from schema_pipeline.models.approval import ApprovalRequest, ApprovalResponse
from schema_pipeline.models.reports import (
    BusinessContinuityReport,
    ComplianceReport,
    ContentInventory,
    DomainMigrationOutcome,
    DomainStatus,
    EnvironmentReport,
    SecurityReport,
    TableStatistics,
)
from schema_pipeline.models.rollback import DestructiveOperation, RollbackRecord
from schema_pipeline.models.strategy import Environment


class DomainMigrator(ABC):
    """Per-domain forward migration engine."""
    
    @abstractmethod
    async def pending_migrations(self, domain: str, environment: Environment) -> int:
        """Return the number of migrations not yet applied to ``domain``."""
        pass
    
    @abstractmethod
    async def execute_domain_migrations(
        self,
        domain: str,
        environment: Environment
    ) -> DomainMigrationOutcome:
        """Apply every pending migration of ``domain``.
        
        Failures are reported through the outcome; raising is also treated
        as a failed attempt by the orchestrator.
        """
        pass
    
    @abstractmethod
    async def domain_status(self, domain: str) -> DomainStatus:
        """Return version bookkeeping for ``domain``."""
        pass


class MigrationEngine(ABC):
    """Moves a domain to an arbitrary version, used by rollbacks."""
    
    @abstractmethod
    async def migrate_to(self, domain: str, version: int) -> None:
        """Apply up or down migrations until ``domain`` is at ``version``."""
        pass
    
    @abstractmethod
    async def destructive_operations(
        self,
        domain: str,
        from_version: int,
        to_version: int
    ) -> List[DestructiveOperation]:
        """List destructive operations implied by moving down the given range."""
        pass


class SchemaVersionRepository(ABC):
    """Typed access to schema-version markers and rollback history."""
    
    @abstractmethod
    async def current_version(self, domain: str) -> int:
        pass
    
    @abstractmethod
    async def set_version(self, domain: str, version: int, dirty: bool = False) -> None:
        pass
    
    @abstractmethod
    async def is_dirty(self, domain: str) -> bool:
        pass
    
    @abstractmethod
    async def record_rollback(self, record: RollbackRecord) -> None:
        pass
    
    @abstractmethod
    async def rollback_history(self, domain: str, limit: int = 20) -> List[RollbackRecord]:
        pass


class EnvironmentValidator(ABC):
    """Pre/post migration environment health checks."""
    
    @abstractmethod
    async def validate_environment(self, environment: Environment) -> EnvironmentReport:
        pass


class SecurityValidator(ABC):
    """Security posture checks."""
    
    @abstractmethod
    async def validate_security(self, environment: Environment, phase: str) -> SecurityReport:
        pass


class ComplianceManager(ABC):
    """Compliance posture checks."""
    
    @abstractmethod
    async def validate_compliance(self, environment: Environment) -> ComplianceReport:
        pass


class ApprovalWorkflow(ABC):
    """Human approval of migrations, rollbacks and backups."""
    
    @abstractmethod
    async def request_approval(self, request: ApprovalRequest) -> ApprovalResponse:
        """Block until the request is approved or rejected."""
        pass


class BusinessContinuityAssessor(ABC):
    """Assesses business impact after a migration."""
    
    @abstractmethod
    async def assess(self, environment: Environment) -> BusinessContinuityReport:
        pass


class BackupDataSource(ABC):
    """Metadata queries used for backup accounting."""
    
    @abstractmethod
    async def database_size(self) -> int:
        pass
    
    @abstractmethod
    async def table_statistics(self, table: str) -> TableStatistics:
        pass
    
    @abstractmethod
    async def content_inventory(self) -> ContentInventory:
        pass


class StorageBackend(ABC):
    """Backup storage. Returns opaque location references."""
    
    @abstractmethod
    async def allocate(self, backup_id: str, artifact: str) -> str:
        """Reserve a location for an artifact of a backup and return its URI."""
        pass
    
    @abstractmethod
    async def write_manifest(self, backup_id: str, manifest: dict) -> str:
        """Persist a backup manifest and return its URI."""
        pass
    
    @abstractmethod
    async def create_recovery_point(self, environment: Environment, reference: str) -> str:
        """Register a point-in-time recovery reference and return its URI."""
        pass
    
    @abstractmethod
    async def purge_expired(self, retention_days: int) -> List[str]:
        """Delete backups older than the retention period and return their ids."""
        pass
