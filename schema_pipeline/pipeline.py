"""
Composition root for the Schema Pipeline.

Builds the single InfrastructureClient and wires every live collaborator,
the orchestrator and the rollback components around it. The client is
closed when the pipeline is closed.
"""

import logging
from typing import Optional, Union

from rich.console import Console

from schema_pipeline.audit.recorder import AuditTrailRecorder
from schema_pipeline.backup.coordinator import BackupCoordinator
from schema_pipeline.collaborators.approval import ConsoleApprovalWorkflow
from schema_pipeline.collaborators.engine import FileMigrationEngine
from schema_pipeline.collaborators.health import (
    HealthBasedContinuityAssessor,
    HttpEnvironmentValidator,
    InfrastructureComplianceManager,
    InfrastructureSecurityValidator,
)
from schema_pipeline.collaborators.infrastructure import InfrastructureClient
from schema_pipeline.collaborators.sql import SqlBackupDataSource, SqlSchemaVersionRepository
from schema_pipeline.collaborators.storage import LocalStorageBackend
from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.gating.strategy import MigrationStrategyProvider
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.strategy import Environment
from schema_pipeline.orchestrator.orchestrator import MigrationOrchestrator
from schema_pipeline.rollback.executor import RollbackExecutor
from schema_pipeline.rollback.planner import RollbackPlanner
from schema_pipeline.utils.logging import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_APPROVER = "operator"


class Pipeline:
    """Wired set of collaborators sharing one infrastructure client."""

    def __init__(
        self,
        config: PipelineConfig,
        client: Optional[InfrastructureClient] = None,
        console: Optional[Console] = None
    ):
        self.config = config
        self.console = console or Console()
        self.client = client or InfrastructureClient.from_config(config)

        self.audit_logger = AuditLogger(config.audit_log_file) if config.audit_log_file else None
        self.audit_recorder = AuditTrailRecorder(self.audit_logger)
        self.strategy_provider = MigrationStrategyProvider(config)

        self.repository = SqlSchemaVersionRepository(self.client)
        self.engine = FileMigrationEngine(self.client, self.repository, config.migrations_path)
        self.environment_validator = HttpEnvironmentValidator(self.client, config.health_endpoints)
        self.security_validator = InfrastructureSecurityValidator(self.client, self.repository, config)
        self.compliance_manager = InfrastructureComplianceManager(self.repository, config)
        self.continuity_assessor = HealthBasedContinuityAssessor(self.environment_validator)
        self.storage = LocalStorageBackend(config.backup_root)
        self.data_source = SqlBackupDataSource(self.client)

    def approver_for(self, environment: Environment) -> str:
        approvers = self.config.approvers.get(environment) or []
        return approvers[0] if approvers else DEFAULT_APPROVER

    def approval_gate(self, environment: Union[str, Environment]) -> ApprovalGate:
        env = self.strategy_provider.resolve_environment(environment)
        workflow = ConsoleApprovalWorkflow(self.approver_for(env), self.console)
        return ApprovalGate(workflow, self.audit_recorder, self.config.timeouts)

    def orchestrator(self, environment: Union[str, Environment]) -> MigrationOrchestrator:
        gate = self.approval_gate(environment)
        backup = BackupCoordinator(self.config, self.data_source, self.storage, self.audit_recorder, gate)
        return MigrationOrchestrator(
            self.config,
            self.engine,
            environment_validator=self.environment_validator,
            security_validator=self.security_validator,
            compliance_manager=self.compliance_manager,
            approval_gate=gate,
            backup_coordinator=backup,
            continuity_assessor=self.continuity_assessor,
            audit_recorder=self.audit_recorder,
            strategy_provider=self.strategy_provider,
            console=self.console,
        )

    def planner(self, environment: Union[str, Environment]) -> RollbackPlanner:
        return RollbackPlanner(
            self.config,
            self.repository,
            environment,
            audit_recorder=self.audit_recorder,
            strategy_provider=self.strategy_provider,
        )

    def executor(self) -> RollbackExecutor:
        return RollbackExecutor(
            self.config,
            self.engine,
            self.repository,
            audit_recorder=self.audit_recorder,
            console=self.console,
            environment_validator=self.environment_validator,
            strategy_provider=self.strategy_provider,
        )

    async def aclose(self):
        await self.client.aclose()
        if self.audit_logger:
            self.audit_logger.close()

    async def __aenter__(self) -> "Pipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
