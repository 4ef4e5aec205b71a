"""
Tests for the command-line interface.

Commands run against a pipeline assembled from in-memory collaborators,
injected through the click context object.
"""

from functools import partial
from types import SimpleNamespace

import pytest
import yaml
from click.testing import CliRunner

from schema_pipeline import __version__
from schema_pipeline.audit.recorder import AuditTrailRecorder
from schema_pipeline.backup.coordinator import BackupCoordinator
from schema_pipeline.cli.config_persistence import load_config
from schema_pipeline.cli.main import main, parse_targets
from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.orchestrator.orchestrator import MigrationOrchestrator
from schema_pipeline.rollback.executor import RollbackExecutor
from schema_pipeline.rollback.planner import RollbackPlanner

from conftest import (
    FakeApprovalWorkflow,
    FakeBackupDataSource,
    FakeComplianceManager,
    FakeContinuityAssessor,
    FakeDomainMigrator,
    FakeEnvironmentValidator,
    FakeMigrationEngine,
    FakeSecurityValidator,
    InMemoryStorageBackend,
)


class FakePipeline:
    """Pipeline stand-in wiring in-memory collaborators from shared state."""

    def __init__(self, state, config, console=None):
        self.state = state
        self.config = config
        self.console = console
        self.audit_recorder = state.audit_recorder

    def approval_gate(self, environment):
        return ApprovalGate(self.state.workflow, self.audit_recorder, self.config.timeouts)

    def orchestrator(self, environment):
        gate = self.approval_gate(environment)
        return MigrationOrchestrator(
            self.config,
            self.state.migrator,
            environment_validator=self.state.validator,
            security_validator=FakeSecurityValidator(),
            compliance_manager=FakeComplianceManager(),
            approval_gate=gate,
            backup_coordinator=BackupCoordinator(
                self.config, FakeBackupDataSource(), InMemoryStorageBackend(), self.audit_recorder, gate
            ),
            continuity_assessor=FakeContinuityAssessor(),
            audit_recorder=self.audit_recorder,
            console=self.console,
        )

    def planner(self, environment):
        return RollbackPlanner(self.config, self.state.repository, environment, audit_recorder=self.audit_recorder)

    def executor(self):
        return RollbackExecutor(
            self.config, self.state.engine, self.state.repository,
            audit_recorder=self.audit_recorder, console=self.console,
            environment_validator=self.state.validator,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.state.closed += 1


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def state(repository):
    return SimpleNamespace(
        migrator=FakeDomainMigrator(pending={"content": 2, "services": 1}),
        validator=FakeEnvironmentValidator(),
        workflow=FakeApprovalWorkflow(),
        repository=repository,
        engine=FakeMigrationEngine(repository),
        audit_recorder=AuditTrailRecorder(),
        closed=0,
    )


@pytest.fixture
def invoke(runner, pipeline_config, state):
    """Invoke the CLI with the fake pipeline and the test configuration."""

    def _invoke(*args):
        obj = {'config': pipeline_config, 'pipeline_factory': partial(FakePipeline, state)}
        return runner.invoke(main, list(args), obj=obj)

    return _invoke


class TestMainGroup:
    """Test cases for the top-level command group."""

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])
        assert result.exit_code == 0
        assert f"Schema Pipeline version {__version__}" in result.output

    def test_no_command_prints_hint(self, invoke):
        result = invoke()
        assert result.exit_code == 0
        assert "Use --help" in result.output

    def test_config_file_is_loaded(self, runner, tmp_path):
        config_path = tmp_path / "pipeline.yaml"
        config_path.write_text(yaml.safe_dump({"backup_retention_days": 45}))
        out_path = tmp_path / "saved.toml"

        result = runner.invoke(main, ['--config', str(config_path), 'init-config', str(out_path)])

        assert result.exit_code == 0
        assert load_config(out_path).backup_retention_days == 45

    def test_invalid_config_file_fails(self, runner, tmp_path):
        config_path = tmp_path / "pipeline.yaml"
        config_path.write_text(yaml.safe_dump({"domains": []}))

        result = runner.invoke(main, ['--config', str(config_path), 'status', 'development'])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestMigrateCommand:
    """Test cases for the migrate command."""

    def test_development_migration(self, invoke, state):
        result = invoke('migrate', 'development', '--requested-by', 'bob')

        assert result.exit_code == 0
        assert "SUCCESS" in result.output
        assert state.migrator.attempts == ["content", "services"]
        assert state.closed == 1
        assert {e.actor for e in state.audit_recorder.entries} == {"bob"}

    def test_failed_domain_exits_non_zero(self, invoke, state):
        state.migrator.failures = {"services": 10}

        result = invoke('migrate', 'development')

        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_rejected_approval_aborts(self, invoke, state):
        state.workflow = FakeApprovalWorkflow(approve=False, reason="release freeze")

        result = invoke('migrate', 'staging')

        assert result.exit_code == 1
        assert "Migration aborted at approval" in result.output
        assert state.migrator.attempts == []

    def test_unknown_environment(self, invoke):
        result = invoke('migrate', 'qa')
        assert result.exit_code == 2


class TestRollbackCommands:
    """Test cases for plan-rollback and rollback."""

    def test_plan_rollback(self, invoke, state):
        result = invoke('plan-rollback', 'staging', '-t', 'content=5', '-t', 'services=5',
                        '--reason', 'bad release', '--requester', 'bob')

        assert result.exit_code == 0
        assert "Rollback Plan" in result.output
        assert "pending" in result.output
        assert state.engine.calls == []

    def test_plan_rollback_reports_blocked_dependencies(self, invoke):
        result = invoke('plan-rollback', 'staging', '-t', 'content=5', '-t', 'services=2', '--reason', 'drift')

        assert result.exit_code == 1
        assert "Required domain content target version (5)" in result.output

    def test_plan_rollback_rejects_forward_targets(self, invoke):
        result = invoke('plan-rollback', 'staging', '-t', 'content=9', '--reason', 'drift')

        assert result.exit_code == 1
        assert "Rollback validation failed for domain content" in result.output

    def test_rollback_executes_after_approval(self, invoke, state):
        result = invoke('rollback', 'staging', '-t', 'content=5', '-t', 'services=5',
                        '--reason', 'bad release', '--requester', 'bob')

        assert result.exit_code == 0
        assert "Rollback completed" in result.output
        assert state.workflow.requests[0].subject.value == "rollback"
        assert state.engine.calls == [("services", 5), ("content", 5)]
        assert state.repository.versions == {"content": 5, "services": 5}

    def test_denied_rollback_does_not_execute(self, invoke, state):
        state.workflow = FakeApprovalWorkflow(approve=False, reason="wait for morning")

        result = invoke('rollback', 'staging', '-t', 'content=5', '--reason', 'bad release')

        assert result.exit_code == 1
        assert "Rollback not approved" in result.output
        assert state.engine.calls == []

    def test_failed_rollback_prints_recovery_steps(self, invoke, state):
        state.engine.fail_domains = {"services"}

        result = invoke('rollback', 'staging', '-t', 'content=5', '-t', 'services=5', '--reason', 'bad release')

        assert result.exit_code == 1
        assert "Recovery steps" in result.output
        assert "Verify database connectivity" in result.output

    def test_unhealthy_database_aborts_rollback(self, invoke, state):
        state.validator = FakeEnvironmentValidator(overall_healthy=False, dependencies={"database": False})

        result = invoke('rollback', 'staging', '-t', 'content=5', '--reason', 'bad release')

        assert result.exit_code == 1
        assert "Rollback aborted at pre_validation" in result.output
        assert state.engine.calls == []

    def test_development_rollback_needs_no_approval(self, invoke, state):
        result = invoke('rollback', 'development', '-t', 'content=7', '--reason', 'local reset')

        assert result.exit_code == 0
        assert state.workflow.requests == []
        assert state.repository.versions["content"] == 7

    def test_malformed_target(self, invoke):
        result = invoke('plan-rollback', 'staging', '-t', 'content:5', '--reason', 'x')
        assert result.exit_code == 2
        assert "Expected domain=version" in result.output


class TestInspectionCommands:
    """Test cases for status, validate, history and init-config."""

    def test_status(self, invoke):
        result = invoke('status', 'staging')
        assert result.exit_code == 0
        assert "content" in result.output
        assert "services" in result.output

    def test_validate_healthy(self, invoke):
        result = invoke('validate', 'staging')
        assert result.exit_code == 0
        assert "Environment is healthy" in result.output

    def test_validate_unhealthy(self, invoke, state):
        state.validator = FakeEnvironmentValidator(overall_healthy=False, issues=["database: refused"])

        result = invoke('validate', 'production')

        assert result.exit_code == 1
        assert "database: refused" in result.output

    def test_history_after_rollback(self, invoke):
        invoke('rollback', 'development', '-t', 'content=7', '--reason', 'local reset')

        result = invoke('history', 'content')

        assert result.exit_code == 0
        assert "Rollback History" in result.output
        assert "No rollbacks recorded" not in result.output

    def test_history_unknown_domain(self, invoke):
        result = invoke('history', 'billing')
        assert result.exit_code == 1
        assert "Unknown domain: billing" in result.output

    def test_init_config(self, invoke, tmp_path):
        path = tmp_path / "pipeline.yaml"
        result = invoke('init-config', str(path))
        assert result.exit_code == 0
        assert load_config(path).approvers


def test_parse_targets():
    assert parse_targets(None, None, ("content=5", " services = 3")) == {"content": 5, "services": 3}
