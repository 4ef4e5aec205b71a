"""
External collaborator interfaces and their live implementations.
"""

from schema_pipeline.collaborators.base import (
    ApprovalWorkflow,
    BackupDataSource,
    BusinessContinuityAssessor,
    ComplianceManager,
    DomainMigrator,
    EnvironmentValidator,
    MigrationEngine,
    SchemaVersionRepository,
    SecurityValidator,
    StorageBackend,
)

__all__ = [
    "ApprovalWorkflow",
    "BackupDataSource",
    "BusinessContinuityAssessor",
    "ComplianceManager",
    "DomainMigrator",
    "EnvironmentValidator",
    "MigrationEngine",
    "SchemaVersionRepository",
    "SecurityValidator",
    "StorageBackend",
]
