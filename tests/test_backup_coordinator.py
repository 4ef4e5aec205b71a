"""
Unit tests for the backup coordinator.

Tests backup policies, table-level accounting, integrity validation and
manual backup approval.
"""

import pytest

from schema_pipeline.backup.coordinator import (
    BACKUP_CONFIRMATION_TOKEN,
    BackupCoordinator,
    BackupPolicy,
    integrity_hash,
)
from schema_pipeline.core.exceptions import BackupApprovalError, BackupFailure
from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.gating.strategy import MigrationStrategyProvider
from schema_pipeline.models.audit import AuditEventType, AuditResult
from schema_pipeline.models.results import DomainBackupResult

from conftest import FakeApprovalWorkflow, FakeBackupDataSource


class TestBackupPolicy:
    """Test cases for BackupPolicy."""

    def test_production_policy(self, pipeline_config):
        strategy = MigrationStrategyProvider(pipeline_config).get_strategy("production")
        policy = BackupPolicy.for_strategy(strategy, 45)
        assert policy.content is True
        assert policy.manual_approval is True
        assert policy.point_in_time_reference is True
        assert policy.retention_days == 45

    def test_staging_policy(self, pipeline_config):
        strategy = MigrationStrategyProvider(pipeline_config).get_strategy("staging")
        policy = BackupPolicy.for_strategy(strategy, 30)
        assert policy.content is False
        assert policy.manual_approval is False
        assert policy.full_database and policy.table_level and policy.integrity_validation


class TestBackupCoordinator:
    """Test cases for BackupCoordinator."""

    @pytest.fixture
    def coordinator(self, pipeline_config, data_source, storage, audit_recorder):
        return BackupCoordinator(pipeline_config, data_source, storage, audit_recorder)

    @pytest.fixture
    def staging(self, pipeline_config):
        return MigrationStrategyProvider(pipeline_config).get_strategy("staging")

    @pytest.mark.asyncio
    async def test_staging_backup_accounts_every_domain(self, coordinator, staging, data_source, storage):
        result = await coordinator.create_backup(staging)

        assert result.backup_id.startswith("backup-staging-")
        assert [d.domain for d in result.domains] == ["content", "services"]
        content = result.domains[0]
        assert content.table_count == 4
        assert content.record_count == 40
        assert content.byte_size == 400
        assert content.validations_passed is True
        assert content.integrity_hash.startswith("sha256-")
        assert result.database_size_bytes == 4096
        assert result.config_artifacts == [
            "dapr-config.yaml", "middleware-config.yaml", "components-config.yaml"
        ]
        assert result.content_references == 0
        assert result.location == f"memory://{result.backup_id}/manifest.json"
        assert result.backup_id in storage.manifests
        assert storage.purged_with == [30]

    @pytest.mark.asyncio
    async def test_backup_records_audit_entry(self, coordinator, staging, audit_recorder):
        result = await coordinator.create_backup(staging, correlation_id="run-1")

        entry = audit_recorder.entries[-1]
        assert entry.event == AuditEventType.BACKUP_CREATED
        assert entry.correlation_id == "run-1"
        assert entry.details.backup_id == result.backup_id
        assert entry.details.domain_count == 2

    @pytest.mark.asyncio
    async def test_empty_domain_fails_integrity_validation(self, pipeline_config, storage, audit_recorder, staging):
        rows = {table: 0 for table in pipeline_config.domain_tables["services"]}
        coordinator = BackupCoordinator(pipeline_config, FakeBackupDataSource(rows=rows), storage, audit_recorder)

        result = await coordinator.create_backup(staging)

        services = result.domains[1]
        assert services.success is True
        assert services.record_count == 0
        assert services.validations_passed is False
        assert result.all_valid is False

    def test_validate_integrity_requires_success_and_records(self, coordinator):
        domains = [
            DomainBackupResult(domain="content", success=True, record_count=0),
            DomainBackupResult(domain="services", success=False, record_count=12),
            DomainBackupResult(domain="identity", success=True, record_count=3),
        ]
        coordinator.validate_integrity(domains)
        assert [d.validations_passed for d in domains] == [False, False, True]

    def test_integrity_hash_is_deterministic(self):
        first = DomainBackupResult(domain="content", location="memory://a", record_count=5, byte_size=10)
        second = DomainBackupResult(domain="content", location="memory://a", record_count=5, byte_size=10)
        assert integrity_hash(first) == integrity_hash(second)
        assert integrity_hash(first) != integrity_hash(first.model_copy(update={"record_count": 6}))

    @pytest.mark.asyncio
    async def test_first_failed_domain_aborts_backup(self, pipeline_config, storage, audit_recorder, staging):
        data_source = FakeBackupDataSource(broken_tables=["content_virus_scan"])
        coordinator = BackupCoordinator(pipeline_config, data_source, storage, audit_recorder)

        with pytest.raises(BackupFailure, match="domain content"):
            await coordinator.create_backup(staging)

        assert "services" not in data_source.queried
        assert storage.manifests == {}
        assert audit_recorder.entries[-1].event == AuditEventType.BACKUP_FAILED
        assert audit_recorder.entries[-1].result == AuditResult.FAILURE

    @pytest.mark.asyncio
    async def test_production_backup_requires_confirmation_token(
        self, pipeline_config, data_source, storage, audit_recorder
    ):
        workflow = FakeApprovalWorkflow(approver="alice")
        gate = ApprovalGate(workflow, audit_recorder, pipeline_config.timeouts)
        coordinator = BackupCoordinator(pipeline_config, data_source, storage, audit_recorder, gate)
        production = MigrationStrategyProvider(pipeline_config).get_strategy("production")

        result = await coordinator.create_backup(production)

        assert workflow.requests[0].confirmation_token == BACKUP_CONFIRMATION_TOKEN
        assert result.approved_by == "alice"
        assert result.content_references == 3
        assert result.content_bytes == 2048
        assert result.point_in_time_reference.startswith("pit-production-")

    @pytest.mark.asyncio
    async def test_wrong_token_fails_backup_approval(self, pipeline_config, data_source, storage, audit_recorder):
        gate = ApprovalGate(FakeApprovalWorkflow(echo_token=False), audit_recorder)
        coordinator = BackupCoordinator(pipeline_config, data_source, storage, audit_recorder, gate)
        production = MigrationStrategyProvider(pipeline_config).get_strategy("production")

        with pytest.raises(BackupApprovalError, match="required token"):
            await coordinator.create_backup(production)
        assert data_source.queried == []

    @pytest.mark.asyncio
    async def test_rejected_backup_approval(self, pipeline_config, data_source, storage, audit_recorder):
        gate = ApprovalGate(FakeApprovalWorkflow(approve=False, reason="no"), audit_recorder)
        coordinator = BackupCoordinator(pipeline_config, data_source, storage, audit_recorder, gate)
        production = MigrationStrategyProvider(pipeline_config).get_strategy("production")

        with pytest.raises(BackupApprovalError, match="rejected"):
            await coordinator.create_backup(production)

    @pytest.mark.asyncio
    async def test_recovery_point_reference(self, coordinator, storage, staging):
        reference = await coordinator.create_recovery_point(staging.environment)
        assert reference.startswith("pit-staging-")
        assert storage.recovery_points == [reference]
