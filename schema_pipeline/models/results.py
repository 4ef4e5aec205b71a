"""
Result accumulators for migration, rollback and backup runs.

A result is created at pipeline entry, mutated only by the run that owns
it, and stamped with its duration at exit.
"""

from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schema_pipeline.core.exceptions import PreconditionError
from schema_pipeline.models.audit import AuditEntry
from schema_pipeline.models.reports import (
    ComplianceReport,
    EnvironmentReport,
    SecurityReport,
)
from schema_pipeline.models.rollback import DataLossWarning
from schema_pipeline.models.strategy import Environment


class DomainBackupResult(BaseModel):
    """Backup accounting for a single domain."""
    domain: str
    success: bool = False
    location: Optional[str] = None
    table_count: int = 0
    record_count: int = 0
    byte_size: int = 0
    integrity_hash: Optional[str] = None
    validations_passed: bool = False
    error: Optional[str] = None


class BackupResult(BaseModel):
    """Aggregate outcome of a backup run."""
    backup_id: str
    environment: Environment
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    location: Optional[str] = None
    database_location: Optional[str] = None
    database_size_bytes: int = 0
    domains: List[DomainBackupResult] = Field(default_factory=list)
    content_references: int = 0
    content_bytes: int = 0
    content_location: Optional[str] = None
    config_artifacts: List[str] = Field(default_factory=list)
    point_in_time_reference: Optional[str] = None
    approved_by: Optional[str] = None
    
    @property
    def total_bytes(self) -> int:
        """Bytes accounted across database, domain tables and content."""
        return self.database_size_bytes + self.content_bytes + sum(d.byte_size for d in self.domains)
    
    @property
    def all_valid(self) -> bool:
        """Check if every domain passed integrity validation."""
        return all(d.validations_passed for d in self.domains)


class _RunResult(BaseModel):
    correlation_id: str
    environment: Environment
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None
    completed_domains: List[str] = Field(default_factory=list)
    failed_domains: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    audit_trail: List[AuditEntry] = Field(default_factory=list)
    execution_duration: timedelta = Field(default=timedelta(0))
    
    @property
    def success(self) -> bool:
        return not self.failed_domains
    
    def mark_completed(self, domain: str):
        """Record a domain as completed."""
        if domain in self.failed_domains:
            raise PreconditionError(f"Domain {domain} is already marked as failed")
        if domain not in self.completed_domains:
            self.completed_domains.append(domain)
    
    def mark_failed(self, domain: str, error: str):
        """Record a domain as failed along with its error text."""
        if domain in self.completed_domains:
            raise PreconditionError(f"Domain {domain} is already marked as completed")
        if domain not in self.failed_domains:
            self.failed_domains.append(domain)
        self.errors.append(error)
    
    def close(self, audit_trail: List[AuditEntry]):
        """Stamp the end time, duration and this run's audit entries."""
        self.finished_at = datetime.now(UTC)
        self.execution_duration = self.finished_at - self.started_at
        self.audit_trail = list(audit_trail)


class MigrationResult(_RunResult):
    """Outcome of one migration pipeline run."""
    skipped_domains: List[str] = Field(default_factory=list)
    backup_id: Optional[str] = None
    backup_location: Optional[str] = None
    recovery_point: Optional[str] = None
    validation_results: Dict[str, EnvironmentReport] = Field(default_factory=dict)
    security_results: Dict[str, SecurityReport] = Field(default_factory=dict)
    compliance_results: Dict[str, ComplianceReport] = Field(default_factory=dict)
    pending_migrations: Dict[str, int] = Field(default_factory=dict)
    approval_status: str = ""
    business_impact_score: Optional[float] = None
    aborted_gate: Optional[str] = None


class RollbackResult(_RunResult):
    """Outcome of executing one rollback plan."""
    plan_id: str
    snapshots: Dict[str, int] = Field(default_factory=dict)
    snapshots_discarded: bool = False
    data_loss_warnings: List[DataLossWarning] = Field(default_factory=list)
    recovery_steps: List[str] = Field(default_factory=list)
    validation_results: Dict[str, EnvironmentReport] = Field(default_factory=dict)
    aborted_gate: Optional[str] = None
    
    @property
    def success(self) -> bool:
        return not self.failed_domains and self.aborted_gate is None
