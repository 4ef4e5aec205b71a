"""
Data models for the Schema Pipeline.

This module contains Pydantic models for configuration, strategies,
results, rollback plans and the audit trail.
"""

from schema_pipeline.models.approval import (
    ApprovalRequest,
    ApprovalResponse,
    ApprovalSubject,
    RollbackPlanSummary,
)
from schema_pipeline.models.audit import (
    AuditEntry,
    AuditEventType,
    AuditResult,
    GateOutcome,
)
from schema_pipeline.models.config import (
    GateThresholds,
    PipelineConfig,
    RiskThresholds,
    TimeoutConfig,
)
from schema_pipeline.models.reports import (
    BusinessContinuityReport,
    ComplianceReport,
    EnvironmentReport,
    SecurityReport,
)
from schema_pipeline.models.results import (
    BackupResult,
    DomainBackupResult,
    MigrationResult,
    RollbackResult,
)
from schema_pipeline.models.rollback import (
    ApprovalStatus,
    DataLossWarning,
    DestructiveOperation,
    DestructiveOperationKind,
    RiskLevel,
    RollbackDependency,
    RollbackPlan,
    RollbackRecord,
)
from schema_pipeline.models.strategy import Environment, MaintenanceWindow, MigrationStrategy

__all__ = [
    "ApprovalRequest",
    "ApprovalResponse",
    "ApprovalSubject",
    "RollbackPlanSummary",
    "AuditEntry",
    "AuditEventType",
    "AuditResult",
    "GateOutcome",
    "GateThresholds",
    "PipelineConfig",
    "RiskThresholds",
    "TimeoutConfig",
    "BusinessContinuityReport",
    "ComplianceReport",
    "EnvironmentReport",
    "SecurityReport",
    "BackupResult",
    "DomainBackupResult",
    "MigrationResult",
    "RollbackResult",
    "ApprovalStatus",
    "DataLossWarning",
    "DestructiveOperation",
    "DestructiveOperationKind",
    "RiskLevel",
    "RollbackDependency",
    "RollbackPlan",
    "RollbackRecord",
    "Environment",
    "MaintenanceWindow",
    "MigrationStrategy",
]
