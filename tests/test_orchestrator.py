"""
Unit tests for the MigrationOrchestrator.

Covers gate ordering, approval handling, retries, fail-fast domain loops
and the audit trail of development, staging and production runs.
"""

import asyncio
from datetime import timedelta

import pytest

from schema_pipeline.backup.coordinator import BackupCoordinator
from schema_pipeline.core.exceptions import (
    ApprovalError,
    ComplianceGateError,
    MaintenanceWindowError,
    OperationTimeoutError,
    SecurityGateError,
    ValidationGateError,
)
from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.models.audit import AuditEventType, AuditResult, GateOutcome
from schema_pipeline.models.config import TimeoutConfig
from schema_pipeline.models.strategy import Environment
from schema_pipeline.orchestrator.orchestrator import (
    NO_MIGRATIONS_APPROVAL_STATUS,
    MigrationOrchestrator,
    PipelinePhase,
)

from conftest import (
    IN_WINDOW,
    OUT_OF_WINDOW,
    FakeApprovalWorkflow,
    FakeComplianceManager,
    FakeContinuityAssessor,
    FakeDomainMigrator,
    FakeEnvironmentValidator,
    FakeSecurityValidator,
)


class SlowEnvironmentValidator(FakeEnvironmentValidator):
    async def validate_environment(self, environment):
        await asyncio.sleep(1)
        return await super().validate_environment(environment)


@pytest.fixture
def migrator():
    return FakeDomainMigrator(pending={"content": 2, "services": 1})


@pytest.fixture
def environment_validator():
    return FakeEnvironmentValidator()


@pytest.fixture
def security_validator():
    return FakeSecurityValidator()


@pytest.fixture
def compliance_manager():
    return FakeComplianceManager()


@pytest.fixture
def build_orchestrator(pipeline_config, migrator, environment_validator, security_validator,
                       compliance_manager, approval_workflow, data_source, storage, audit_recorder):
    """Factory that wires an orchestrator around the shared fakes."""

    def build(domain_migrator=None, workflow=None, **overrides):
        gate = ApprovalGate(workflow or approval_workflow, audit_recorder, pipeline_config.timeouts)
        components = dict(
            environment_validator=environment_validator,
            security_validator=security_validator,
            compliance_manager=compliance_manager,
            approval_gate=gate,
            backup_coordinator=BackupCoordinator(pipeline_config, data_source, storage, audit_recorder, gate),
            continuity_assessor=FakeContinuityAssessor(),
            audit_recorder=audit_recorder,
        )
        components.update(overrides)
        return MigrationOrchestrator(pipeline_config, domain_migrator or migrator, **components)

    return build


def events(result):
    return [entry.event for entry in result.audit_trail]


class TestDevelopmentRuns:
    """Test cases for development-environment runs."""

    @pytest.mark.asyncio
    async def test_development_run_needs_no_approval(self, build_orchestrator, migrator, approval_workflow,
                                                     storage):
        orchestrator = build_orchestrator()

        result = await orchestrator.execute_migration("development")

        assert result.success is True
        assert result.completed_domains == ["content", "services"]
        assert result.failed_domains == []
        assert approval_workflow.requests == []
        assert storage.manifests == {}
        assert result.backup_id is None
        assert result.approval_status == ""
        assert orchestrator.phase == PipelinePhase.COMPLETED

    @pytest.mark.asyncio
    async def test_domains_migrate_in_declared_order(self, build_orchestrator, migrator):
        await build_orchestrator().execute_migration(Environment.DEVELOPMENT)
        assert migrator.attempts == ["content", "services"]

    @pytest.mark.asyncio
    async def test_retries_until_success(self, build_orchestrator):
        migrator = FakeDomainMigrator(pending={"content": 1, "services": 1}, failures={"content": 2})
        orchestrator = build_orchestrator(domain_migrator=migrator)

        result = await orchestrator.execute_migration("development")

        assert result.success is True
        assert migrator.attempts == ["content", "content", "content", "services"]
        assert result.warnings[:2] == [
            "Retrying content migration (attempt 2/3)",
            "Retrying content migration (attempt 3/3)",
        ]
        attempts = [e for e in result.audit_trail if e.target == "content" and e.details.kind == "domain_attempt"]
        assert [e.event for e in attempts] == [
            AuditEventType.DOMAIN_MIGRATION_FAILED,
            AuditEventType.DOMAIN_MIGRATION_FAILED,
            AuditEventType.DOMAIN_MIGRATION_SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_exhausted_retries_continue_with_next_domain(self, build_orchestrator):
        migrator = FakeDomainMigrator(pending={"content": 1, "services": 1}, failures={"content": 5})
        orchestrator = build_orchestrator(domain_migrator=migrator)

        result = await orchestrator.execute_migration("development")

        assert result.success is False
        assert result.failed_domains == ["content"]
        assert result.completed_domains == ["services"]
        assert migrator.attempts.count("content") == 3
        assert result.errors == [
            "Domain content migration failed after 3 attempt(s): content migration exploded"
        ]
        assert result.audit_trail[-1].event == AuditEventType.MIGRATION_COMPLETED
        assert result.audit_trail[-1].result == AuditResult.FAILURE

    @pytest.mark.asyncio
    async def test_retry_delay_is_awaited_between_attempts(self, build_orchestrator, pipeline_config,
                                                          monkeypatch):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", record_sleep)
        pipeline_config.strategy_overrides = {Environment.DEVELOPMENT: {"retry_delay": 7}}
        migrator = FakeDomainMigrator(pending={"content": 1, "services": 1}, failures={"content": 2})

        result = await build_orchestrator(domain_migrator=migrator).execute_migration("development")

        assert result.success is True
        assert delays == [7.0, 7.0]

    @pytest.mark.asyncio
    async def test_slow_validator_times_out_as_gate_failure(self, build_orchestrator, pipeline_config, migrator):
        pipeline_config.timeouts = TimeoutConfig(call_timeout=timedelta(milliseconds=10))
        orchestrator = build_orchestrator(environment_validator=SlowEnvironmentValidator())

        with pytest.raises(ValidationGateError, match="timed out") as exc_info:
            await orchestrator.execute_migration("development")

        assert isinstance(exc_info.value.__cause__, OperationTimeoutError)
        assert migrator.pending_calls == []
        result = exc_info.value.result
        assert result.aborted_gate == "pre_validation"
        assert result.audit_trail[-1].event == AuditEventType.MIGRATION_ABORTED
        assert result.audit_trail[-1].result == AuditResult.FAILURE

    @pytest.mark.asyncio
    async def test_nothing_pending_is_idempotent(self, build_orchestrator):
        migrator = FakeDomainMigrator()
        orchestrator = build_orchestrator(domain_migrator=migrator)

        result = await orchestrator.execute_migration("development")

        assert result.success is True
        assert result.completed_domains == []
        assert result.failed_domains == []
        assert result.skipped_domains == ["content", "services"]
        assert migrator.attempts == []
        assert events(result).count(AuditEventType.DOMAIN_MIGRATION_SKIPPED) == 2

    @pytest.mark.asyncio
    async def test_non_critical_dependency_is_a_warning(self, build_orchestrator):
        validator = FakeEnvironmentValidator(dependencies={"database": True, "cache": False})
        orchestrator = build_orchestrator(environment_validator=validator)

        result = await orchestrator.execute_migration("development")

        assert result.success is True
        assert "Dependency cache is not fully healthy - some features may be impacted" in result.warnings

    @pytest.mark.asyncio
    async def test_critical_dependency_fails_pre_validation(self, build_orchestrator, migrator):
        validator = FakeEnvironmentValidator(dependencies={"database": False})
        orchestrator = build_orchestrator(environment_validator=validator)

        with pytest.raises(ValidationGateError) as exc_info:
            await orchestrator.execute_migration("development")

        assert exc_info.value.failed_checks == ["database"]
        assert migrator.pending_calls == []
        result = exc_info.value.result
        assert result.aborted_gate == "pre_validation"
        assert result.audit_trail[-1].event == AuditEventType.MIGRATION_ABORTED
        assert orchestrator.phase == PipelinePhase.FAILED

    @pytest.mark.asyncio
    async def test_post_validation_failure_is_a_warning(self, build_orchestrator, environment_validator):
        orchestrator = build_orchestrator()

        def break_environment(correlation_id, data):
            if data["phase"] == PipelinePhase.DOMAINS_MIGRATING.value:
                environment_validator.overall_healthy = False
                environment_validator.issues = ["api latency high"]

        orchestrator.add_progress_callback(break_environment)
        result = await orchestrator.execute_migration("development")

        assert result.success is True
        assert any(w.startswith("Post-migration validation failed") for w in result.warnings)
        assert any("api latency high" in w for w in result.warnings)
        gate_warnings = [e for e in result.audit_trail if e.event == AuditEventType.GATE_WARNING]
        assert gate_warnings[-1].details.gate == "post_validation"

    @pytest.mark.asyncio
    async def test_progress_callbacks_receive_phases(self, build_orchestrator):
        orchestrator = build_orchestrator()
        phases = []

        def callback(correlation_id, data):
            phases.append(data["phase"])

        orchestrator.add_progress_callback(callback)
        await orchestrator.execute_migration("development")
        orchestrator.remove_progress_callback(callback)
        await orchestrator.execute_migration("development")

        assert phases[0] == PipelinePhase.INITIALIZED.value
        assert PipelinePhase.PLANNED.value in phases
        assert phases[-1] == PipelinePhase.COMPLETED.value
        assert phases.count(PipelinePhase.INITIALIZED.value) == 1


class TestStagingRuns:
    """Test cases for approval and backup in staging."""

    @pytest.mark.asyncio
    async def test_staging_requests_approval_and_backs_up(self, build_orchestrator, approval_workflow, storage):
        result = await build_orchestrator().execute_migration("staging", requested_by="bob")

        assert result.success is True
        request = approval_workflow.requests[0]
        assert request.risk_level == "MEDIUM"
        assert request.requested_by == "bob"
        assert request.pending_migrations == {"content": 2, "services": 1}
        assert request.rollback_plan.domains == ["services", "content"]
        assert result.approval_status.startswith("Approved by alice at ")
        assert result.backup_id in storage.manifests
        assert result.backup_location == f"memory://{result.backup_id}/manifest.json"

    @pytest.mark.asyncio
    async def test_rejection_aborts_before_backup(self, build_orchestrator, migrator, storage):
        orchestrator = build_orchestrator(workflow=FakeApprovalWorkflow(approve=False, reason="freeze week"))

        with pytest.raises(ApprovalError, match="freeze week") as exc_info:
            await orchestrator.execute_migration("staging")

        result = exc_info.value.result
        assert result.approval_status == "Migration rejected: freeze week"
        assert result.aborted_gate == "approval"
        assert storage.manifests == {}
        assert migrator.attempts == []

    @pytest.mark.asyncio
    async def test_no_pending_migrations_skip_approval(self, build_orchestrator, approval_workflow):
        orchestrator = build_orchestrator(domain_migrator=FakeDomainMigrator())

        result = await orchestrator.execute_migration("staging")

        assert approval_workflow.requests == []
        assert result.approval_status == NO_MIGRATIONS_APPROVAL_STATUS
        assert result.success is True

    @pytest.mark.asyncio
    async def test_every_entry_shares_the_run_correlation_id(self, build_orchestrator, audit_recorder):
        result = await build_orchestrator().execute_migration("staging")

        assert {e.correlation_id for e in result.audit_trail} == {result.correlation_id}
        assert events(result)[0] == AuditEventType.MIGRATION_INITIATED
        assert events(result)[-1] == AuditEventType.MIGRATION_COMPLETED
        assert AuditEventType.BACKUP_CREATED in events(result)
        sequences = [e.sequence for e in result.audit_trail]
        assert sequences == sorted(sequences)


class TestProductionRuns:
    """Test cases for the production gate sequence."""

    @pytest.mark.asyncio
    async def test_outside_window_fails_before_any_collaborator(
        self, build_orchestrator, migrator, environment_validator, security_validator, approval_workflow
    ):
        orchestrator = build_orchestrator()

        with pytest.raises(MaintenanceWindowError) as exc_info:
            await orchestrator.execute_migration("production", now=OUT_OF_WINDOW)

        assert environment_validator.calls == 0
        assert security_validator.phases == []
        assert migrator.pending_calls == []
        assert approval_workflow.requests == []
        result = exc_info.value.result
        assert result.aborted_gate == "maintenance_window"
        assert result.errors == [exc_info.value.message]
        gate = result.audit_trail[-2]
        assert gate.event == AuditEventType.GATE_FAILED
        assert gate.details.outcome == GateOutcome.FAILED

    @pytest.mark.asyncio
    async def test_full_production_run(self, build_orchestrator, approval_workflow, security_validator, storage):
        result = await build_orchestrator().execute_migration("production", now=IN_WINDOW)

        assert result.success is True
        assert result.completed_domains == ["content", "services"]
        assert [r.subject.value for r in approval_workflow.requests] == ["migration", "backup"]
        assert approval_workflow.requests[0].risk_level == "CRITICAL"
        assert security_validator.phases == ["pre-migration", "post-migration"]
        assert result.recovery_point.startswith("pit-production-")
        assert result.business_impact_score == 1.0
        assert set(result.validation_results) == {"pre-migration", "post-migration"}
        assert "pre-migration" in result.compliance_results

    @pytest.mark.asyncio
    async def test_production_fails_fast(self, build_orchestrator):
        migrator = FakeDomainMigrator(pending={"content": 1, "services": 1}, failures={"content": 1})
        orchestrator = build_orchestrator(domain_migrator=migrator)

        result = await orchestrator.execute_migration("production", now=IN_WINDOW)

        assert result.success is False
        assert migrator.attempts == ["content"]
        assert result.failed_domains == ["content"]
        assert result.completed_domains == []
        assert "Aborted remaining domain migrations after content failed: services" in result.warnings
        failed_attempts = [e for e in result.audit_trail if e.event == AuditEventType.DOMAIN_MIGRATION_FAILED]
        assert len(failed_attempts) == 1
        assert failed_attempts[0].details.max_attempts == 1

    @pytest.mark.asyncio
    async def test_low_security_score_fails_gate(self, build_orchestrator, migrator):
        orchestrator = build_orchestrator(security_validator=FakeSecurityValidator(score=90.0))

        with pytest.raises(SecurityGateError, match="below the required minimum 95.0"):
            await orchestrator.execute_migration("production", now=IN_WINDOW)
        assert migrator.pending_calls == []

    @pytest.mark.asyncio
    async def test_security_score_at_minimum_passes(self, build_orchestrator):
        orchestrator = build_orchestrator(security_validator=FakeSecurityValidator(score=95.0))
        result = await orchestrator.execute_migration("production", now=IN_WINDOW)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_failed_compliance_aborts(self, build_orchestrator):
        orchestrator = build_orchestrator(compliance_manager=FakeComplianceManager(score=97.5))

        with pytest.raises(ComplianceGateError) as exc_info:
            await orchestrator.execute_migration("production", now=IN_WINDOW)
        assert exc_info.value.result.aborted_gate == "compliance"

    @pytest.mark.asyncio
    async def test_high_business_impact_is_a_warning(self, build_orchestrator):
        orchestrator = build_orchestrator(continuity_assessor=FakeContinuityAssessor(impact_score=7.5))

        result = await orchestrator.execute_migration("production", now=IN_WINDOW)

        assert result.success is True
        assert "High business impact score: 7.5 (threshold 5.0)" in result.warnings

    @pytest.mark.asyncio
    async def test_missing_security_validator_fails_gate(self, build_orchestrator):
        orchestrator = build_orchestrator(security_validator=None)

        with pytest.raises(SecurityGateError, match="no security validator"):
            await orchestrator.execute_migration("production", now=IN_WINDOW)


class TestOrchestratorQueries:
    """Test cases for status and validation helpers."""

    @pytest.mark.asyncio
    async def test_migration_status(self, build_orchestrator):
        statuses = await build_orchestrator().get_migration_status()
        assert [(s.domain, s.pending_migrations) for s in statuses] == [("content", 2), ("services", 1)]

    @pytest.mark.asyncio
    async def test_validate_environment(self, build_orchestrator, environment_validator):
        report = await build_orchestrator().validate_environment("staging")
        assert report.overall_healthy is True
        assert report.environment == Environment.STAGING
        assert environment_validator.calls == 1
