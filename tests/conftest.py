"""
Pytest configuration and fixtures for the Schema Pipeline tests.

This module provides in-memory implementations of every external
collaborator interface plus configuration fixtures shared by the
orchestrator, backup and rollback tests.
"""

from datetime import UTC, datetime
from typing import Dict, List, Optional

import pytest

from schema_pipeline.audit.recorder import AuditTrailRecorder
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
from schema_pipeline.core.exceptions import MigrationEngineError, RepositoryError
from schema_pipeline.models.approval import ApprovalRequest, ApprovalResponse
from schema_pipeline.models.config import PipelineConfig
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


# Inside the production maintenance window (02:00-06:00 UTC)
IN_WINDOW = datetime(2024, 3, 12, 3, 0, tzinfo=UTC)
OUT_OF_WINDOW = datetime(2024, 3, 12, 14, 30, tzinfo=UTC)


class FakeDomainMigrator(DomainMigrator):
    """Domain migrator with scripted pending counts and failures."""

    def __init__(self, pending: Optional[Dict[str, int]] = None, failures: Optional[Dict[str, int]] = None):
        self.pending = dict(pending or {})
        # Number of attempts that fail before the domain succeeds
        self.failures = dict(failures or {})
        self.attempts: List[str] = []
        self.pending_calls: List[str] = []

    async def pending_migrations(self, domain: str, environment: Environment) -> int:
        self.pending_calls.append(domain)
        return self.pending.get(domain, 0)

    async def execute_domain_migrations(self, domain: str, environment: Environment) -> DomainMigrationOutcome:
        self.attempts.append(domain)
        if self.failures.get(domain, 0) > 0:
            self.failures[domain] -= 1
            return DomainMigrationOutcome(domain=domain, success=False, error=f"{domain} migration exploded")
        self.pending[domain] = 0
        return DomainMigrationOutcome(domain=domain, success=True)

    async def domain_status(self, domain: str) -> DomainStatus:
        return DomainStatus(
            domain=domain,
            current_version=1,
            latest_version=1 + self.pending.get(domain, 0),
            pending_migrations=self.pending.get(domain, 0),
        )


class FakeEnvironmentValidator(EnvironmentValidator):
    """Environment validator returning a fixed report."""

    def __init__(self, overall_healthy: bool = True, dependencies: Optional[Dict[str, bool]] = None,
                 issues: Optional[List[str]] = None):
        self.overall_healthy = overall_healthy
        self.dependencies = dependencies if dependencies is not None else {
            "database": True, "cache": True, "storage": True, "secrets": True,
        }
        self.issues = issues or []
        self.calls = 0

    async def validate_environment(self, environment: Environment) -> EnvironmentReport:
        self.calls += 1
        return EnvironmentReport(
            environment=environment,
            overall_healthy=self.overall_healthy,
            dependencies=dict(self.dependencies),
            issues=list(self.issues),
        )


class FakeSecurityValidator(SecurityValidator):
    def __init__(self, score: float = 100.0, passed: bool = True):
        self.score = score
        self.passed = passed
        self.phases: List[str] = []

    async def validate_security(self, environment: Environment, phase: str) -> SecurityReport:
        self.phases.append(phase)
        issues = [] if self.passed else ["TLS disabled"]
        return SecurityReport(passed=self.passed, score=self.score, issues=issues)


class FakeComplianceManager(ComplianceManager):
    def __init__(self, score: float = 100.0, passed: bool = True):
        self.score = score
        self.passed = passed
        self.calls = 0

    async def validate_compliance(self, environment: Environment) -> ComplianceReport:
        self.calls += 1
        return ComplianceReport(passed=self.passed, score=self.score)


class FakeApprovalWorkflow(ApprovalWorkflow):
    """Approval workflow that answers every request the same way."""

    def __init__(self, approve: bool = True, approver: str = "alice", reason: Optional[str] = None,
                 echo_token: bool = True):
        self.approve = approve
        self.approver = approver
        self.reason = reason
        self.echo_token = echo_token
        self.requests: List[ApprovalRequest] = []

    async def request_approval(self, request: ApprovalRequest) -> ApprovalResponse:
        self.requests.append(request)
        return ApprovalResponse(
            approved=self.approve,
            approver=self.approver,
            rejection_reason=None if self.approve else (self.reason or "not today"),
            confirmation_token=request.confirmation_token if self.echo_token else None,
        )


class FakeContinuityAssessor(BusinessContinuityAssessor):
    def __init__(self, impact_score: float = 1.0):
        self.impact_score = impact_score

    async def assess(self, environment: Environment) -> BusinessContinuityReport:
        return BusinessContinuityReport(impact_score=self.impact_score)


class InMemorySchemaVersionRepository(SchemaVersionRepository):
    """Schema-version repository backed by dictionaries."""

    def __init__(self, versions: Optional[Dict[str, int]] = None, unreadable: Optional[List[str]] = None):
        self.versions = dict(versions or {})
        self.dirty: Dict[str, bool] = {}
        self.unreadable = set(unreadable or [])
        self.history: List[RollbackRecord] = []

    async def current_version(self, domain: str) -> int:
        if domain in self.unreadable:
            raise RepositoryError(f"Failed to read current version of domain {domain}: connection reset")
        return self.versions.get(domain, 0)

    async def set_version(self, domain: str, version: int, dirty: bool = False) -> None:
        self.versions[domain] = version
        self.dirty[domain] = dirty

    async def is_dirty(self, domain: str) -> bool:
        return self.dirty.get(domain, False)

    async def record_rollback(self, record: RollbackRecord) -> None:
        self.history.append(record)

    async def rollback_history(self, domain: str, limit: int = 20) -> List[RollbackRecord]:
        records = [r for r in self.history if r.domain == domain]
        return list(reversed(records))[:limit]


class FakeMigrationEngine(MigrationEngine):
    """Migration engine that moves version markers in the repository."""

    def __init__(self, repository: InMemorySchemaVersionRepository,
                 fail_domains: Optional[List[str]] = None,
                 destructive: Optional[Dict[str, List[DestructiveOperation]]] = None):
        self.repository = repository
        self.fail_domains = set(fail_domains or [])
        self.destructive = destructive or {}
        self.calls: List[tuple] = []

    async def migrate_to(self, domain: str, version: int) -> None:
        self.calls.append((domain, version))
        if domain in self.fail_domains:
            raise MigrationEngineError(f"Domain {domain} has no down script")
        await self.repository.set_version(domain, version)

    async def destructive_operations(self, domain: str, from_version: int,
                                     to_version: int) -> List[DestructiveOperation]:
        return [op for op in self.destructive.get(domain, []) if to_version < op.version <= from_version]


class FakeBackupDataSource(BackupDataSource):
    def __init__(self, rows: Optional[Dict[str, int]] = None, default_rows: int = 10,
                 broken_tables: Optional[List[str]] = None):
        self.rows = rows or {}
        self.default_rows = default_rows
        self.broken_tables = set(broken_tables or [])
        self.queried: List[str] = []

    async def database_size(self) -> int:
        return 4096

    async def table_statistics(self, table: str) -> TableStatistics:
        self.queried.append(table)
        if table in self.broken_tables:
            raise RepositoryError(f"Table not found: {table}")
        return TableStatistics(table=table, row_count=self.rows.get(table, self.default_rows), byte_size=100)

    async def content_inventory(self) -> ContentInventory:
        return ContentInventory(reference_count=3, total_bytes=2048)


class InMemoryStorageBackend(StorageBackend):
    def __init__(self):
        self.allocated: List[str] = []
        self.manifests: Dict[str, dict] = {}
        self.recovery_points: List[str] = []
        self.purged_with: List[int] = []

    async def allocate(self, backup_id: str, artifact: str) -> str:
        self.allocated.append(f"{backup_id}/{artifact}")
        return f"memory://{backup_id}/{artifact}"

    async def write_manifest(self, backup_id: str, manifest: dict) -> str:
        self.manifests[backup_id] = manifest
        return f"memory://{backup_id}/manifest.json"

    async def create_recovery_point(self, environment: Environment, reference: str) -> str:
        self.recovery_points.append(reference)
        return f"memory://recovery_points/{reference}"

    async def purge_expired(self, retention_days: int) -> List[str]:
        self.purged_with.append(retention_days)
        return []


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Default domains with retry delays removed for fast tests."""
    return PipelineConfig(
        strategy_overrides={
            Environment.DEVELOPMENT: {"retry_delay": 0},
            Environment.STAGING: {"retry_delay": 0},
            Environment.PRODUCTION: {"retry_delay": 0},
        },
        approvers={Environment.PRODUCTION: ["alice"]},
    )


@pytest.fixture
def audit_recorder() -> AuditTrailRecorder:
    return AuditTrailRecorder()


@pytest.fixture
def repository() -> InMemorySchemaVersionRepository:
    return InMemorySchemaVersionRepository({"content": 8, "services": 6})


@pytest.fixture
def approval_workflow() -> FakeApprovalWorkflow:
    return FakeApprovalWorkflow()


@pytest.fixture
def storage() -> InMemoryStorageBackend:
    return InMemoryStorageBackend()


@pytest.fixture
def data_source() -> FakeBackupDataSource:
    return FakeBackupDataSource()
