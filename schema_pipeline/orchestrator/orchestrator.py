"""
Main migration orchestrator.

This module provides the MigrationOrchestrator class that drives one
environment through maintenance-window, validation, security, compliance,
approval and backup gates, migrates every domain with bounded retries,
and finishes with post-migration and business-continuity checks.
"""

import asyncio
import logging
from datetime import datetime, timedelta, UTC
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schema_pipeline.audit.recorder import AuditTrailRecorder, BoundAuditTrail
from schema_pipeline.backup.coordinator import BackupCoordinator
from schema_pipeline.collaborators.base import (
    BusinessContinuityAssessor,
    ComplianceManager,
    DomainMigrator,
    EnvironmentValidator,
    SecurityValidator,
)
from schema_pipeline.core.exceptions import (
    ApprovalError,
    BackupFailure,
    ComplianceGateError,
    DomainExecutionFailure,
    GateFailure,
    MaintenanceWindowError,
    PostConditionFailure,
    SecurityGateError,
    ValidationGateError,
)
from schema_pipeline.core.execution import call_with_timeout
from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.gating.strategy import MigrationStrategyProvider
from schema_pipeline.models.approval import ApprovalRequest, ApprovalSubject, RollbackPlanSummary
from schema_pipeline.models.audit import (
    AuditEventType,
    AuditResult,
    DomainAttemptDetail,
    DomainSkipDetail,
    GateDetail,
    GateOutcome,
    RunCompletedDetail,
    RunStartedDetail,
)
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.reports import DomainStatus, EnvironmentReport
from schema_pipeline.models.results import MigrationResult
from schema_pipeline.models.strategy import Environment, MigrationStrategy

logger = logging.getLogger(__name__)

MIGRATION_MINUTES_PER_CHANGE = 10
ROLLBACK_MINUTES_PER_CHANGE = 5
NO_MIGRATIONS_APPROVAL_STATUS = "No migrations required - approvals skipped"


class PipelinePhase(str, Enum):
    """Migration pipeline states."""
    INITIALIZED = "initialized"
    MAINTENANCE_WINDOW_CHECKED = "maintenance_window_checked"
    PRE_VALIDATED = "pre_validated"
    SECURITY_VALIDATED = "security_validated"
    COMPLIANCE_VALIDATED = "compliance_validated"
    PLANNED = "planned"
    APPROVED = "approved"
    BACKED_UP = "backed_up"
    RECOVERY_POINT_CREATED = "recovery_point_created"
    DOMAINS_MIGRATING = "domains_migrating"
    POST_VALIDATED = "post_validated"
    BUSINESS_CONTINUITY_CHECKED = "business_continuity_checked"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationOrchestrator:
    """
    Drives the end-to-end migration pipeline for one environment.

    Runs are strictly sequential: gates run one after another, and domains
    are migrated one at a time in declared order. Gate failures raise before
    any domain is touched; domain failures are captured into the result.
    """

    ACTOR = "migration-orchestrator"

    def __init__(
        self,
        config: PipelineConfig,
        domain_migrator: DomainMigrator,
        environment_validator: Optional[EnvironmentValidator] = None,
        security_validator: Optional[SecurityValidator] = None,
        compliance_manager: Optional[ComplianceManager] = None,
        approval_gate: Optional[ApprovalGate] = None,
        backup_coordinator: Optional[BackupCoordinator] = None,
        continuity_assessor: Optional[BusinessContinuityAssessor] = None,
        audit_recorder: Optional[AuditTrailRecorder] = None,
        strategy_provider: Optional[MigrationStrategyProvider] = None,
        console: Optional[Console] = None
    ):
        """
        Initialize the migration orchestrator.

        Args:
            config: Pipeline configuration (domains, thresholds, timeouts)
            domain_migrator: Per-domain migration engine
            environment_validator: Pre/post health checks
            security_validator: Security gate collaborator
            compliance_manager: Compliance gate collaborator
            approval_gate: Maintenance window and approval handling
            backup_coordinator: Pre-migration backup accounting
            continuity_assessor: Post-migration business impact assessment
            audit_recorder: Shared audit trail
            strategy_provider: Strategy source (built from config if omitted)
            console: Rich console for formatted output
        """
        self.config = config
        self.domain_migrator = domain_migrator
        self.environment_validator = environment_validator
        self.security_validator = security_validator
        self.compliance_manager = compliance_manager
        self.audit_recorder = audit_recorder if audit_recorder is not None else AuditTrailRecorder()
        self.approval_gate = approval_gate or ApprovalGate(None, self.audit_recorder, config.timeouts)
        self.backup_coordinator = backup_coordinator
        self.continuity_assessor = continuity_assessor
        self.strategy_provider = strategy_provider or MigrationStrategyProvider(config)
        self.console = console or Console()

        self.phase = PipelinePhase.INITIALIZED
        self._progress_callbacks: List[Callable[[str, Dict[str, Any]], None]] = []

    @property
    def _call_timeout(self) -> timedelta:
        return self.config.timeouts.call_timeout

    def add_progress_callback(self, callback: Callable[[str, Dict[str, Any]], None]):
        """Add a progress callback function."""
        self._progress_callbacks.append(callback)

    def remove_progress_callback(self, callback: Callable[[str, Dict[str, Any]], None]):
        """Remove a progress callback function."""
        if callback in self._progress_callbacks:
            self._progress_callbacks.remove(callback)

    def _set_phase(self, phase: PipelinePhase, correlation_id: str, **data):
        self.phase = phase
        logger.debug(f"[{correlation_id}] phase -> {phase.value}")
        for callback in self._progress_callbacks:
            try:
                callback(correlation_id, {"phase": phase.value, **data})
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    async def execute_migration(
        self,
        environment: Union[str, Environment],
        requested_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> MigrationResult:
        """
        Run the migration pipeline for an environment.

        Args:
            environment: Environment name or enum value
            requested_by: Actor recorded on audit entries
            now: Time used for the maintenance-window check (defaults to now)

        Returns:
            The closed MigrationResult; ``success`` is False when any domain failed

        Raises:
            GateFailure: If a gate rejects the run. ``error.result`` holds the
                partially populated result.
        """
        strategy = self.strategy_provider.get_strategy(environment)
        correlation_id = self.audit_recorder.new_correlation_id()
        audit = self.audit_recorder.bind(correlation_id, requested_by or self.ACTOR)
        result = MigrationResult(correlation_id=correlation_id, environment=strategy.environment)

        audit.record(
            AuditEventType.MIGRATION_INITIATED,
            target=strategy.environment.value,
            result=AuditResult.SUCCESS,
            details=RunStartedDetail(
                environment=strategy.environment.value,
                domains=list(self.config.domains),
                max_retries=strategy.max_retries,
                require_approval=strategy.require_approval,
                fail_fast=strategy.fail_fast,
            ),
        )
        self._set_phase(PipelinePhase.INITIALIZED, correlation_id)
        logger.info(f"[{correlation_id}] Starting {strategy.environment.value} migration")

        try:
            self._check_maintenance_window(strategy, result, audit, now)
            await self._pre_validate(strategy, result, audit)
            await self._validate_security(strategy, result, audit)
            await self._validate_compliance(strategy, result, audit)
            await self._plan_migrations(strategy, result, audit)
            await self._request_approval(strategy, result, audit)
            await self._create_backup(strategy, result, audit)
            await self._create_recovery_point(strategy, result, audit)
            await self._migrate_domains(strategy, result, audit)
            await self._post_validate(strategy, result, audit)
            await self._check_business_continuity(strategy, result, audit)
        except GateFailure as e:
            result.errors.append(e.message)
            self._finish(result, audit, error=e)
            e.result = result
            raise

        self._finish(result, audit)
        return result

    def _gate_entry(
        self,
        audit: BoundAuditTrail,
        gate: str,
        outcome: GateOutcome,
        message: str = "",
        score: Optional[float] = None,
        issues: Optional[List[str]] = None
    ):
        event = {
            GateOutcome.PASSED: AuditEventType.GATE_PASSED,
            GateOutcome.FAILED: AuditEventType.GATE_FAILED,
            GateOutcome.WARNING: AuditEventType.GATE_WARNING,
        }[outcome]
        audit.record(
            event,
            target=gate,
            result=AuditResult.SUCCESS if outcome == GateOutcome.PASSED else AuditResult.FAILURE,
            details=GateDetail(gate=gate, outcome=outcome, message=message, score=score, issues=issues or []),
        )

    def _check_maintenance_window(
        self,
        strategy: MigrationStrategy,
        result: MigrationResult,
        audit: BoundAuditTrail,
        now: Optional[datetime]
    ):
        if strategy.maintenance_window is None:
            return

        try:
            warning = self.approval_gate.check_maintenance_window(strategy, now)
        except MaintenanceWindowError as e:
            self._gate_entry(audit, MaintenanceWindowError.gate, GateOutcome.FAILED, e.message)
            raise

        if warning:
            result.warnings.append(warning)
            self._gate_entry(audit, MaintenanceWindowError.gate, GateOutcome.WARNING, warning)
        else:
            self._gate_entry(audit, MaintenanceWindowError.gate, GateOutcome.PASSED)
        self._set_phase(PipelinePhase.MAINTENANCE_WINDOW_CHECKED, result.correlation_id)

    async def _pre_validate(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.validate_before:
            return

        gate = ValidationGateError.gate
        try:
            if self.environment_validator is None:
                raise ValidationGateError("Pre-migration validation is required but no environment validator is configured")
            try:
                report = await call_with_timeout(
                    self.environment_validator.validate_environment(strategy.environment),
                    self._call_timeout,
                    "Pre-migration environment validation"
                )
            except Exception as e:
                raise ValidationGateError(f"Failed to validate environment: {str(e)}") from e

            result.validation_results["pre-migration"] = report
            failed_checks = self._failed_dependency_checks(strategy, report, result)
            if failed_checks:
                raise ValidationGateError(
                    f"Environment is not healthy for migration: {', '.join(failed_checks)}",
                    failed_checks=failed_checks,
                )
        except ValidationGateError as e:
            self._gate_entry(audit, gate, GateOutcome.FAILED, e.message, issues=e.failed_checks)
            raise

        self._gate_entry(audit, gate, GateOutcome.PASSED, issues=report.issues)
        self._set_phase(PipelinePhase.PRE_VALIDATED, result.correlation_id)

    def _failed_dependency_checks(
        self,
        strategy: MigrationStrategy,
        report: EnvironmentReport,
        result: MigrationResult
    ) -> List[str]:
        failed = []
        if not report.overall_healthy:
            failed.append("environment")
        for dependency in report.unhealthy_dependencies():
            if dependency in strategy.critical_dependencies:
                failed.append(dependency)
            else:
                result.warnings.append(f"Dependency {dependency} is not fully healthy - some features may be impacted")
        return failed

    async def _validate_security(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.require_security_review:
            return

        minimum = self.config.gates.security_min_score
        score = None
        issues: List[str] = []
        try:
            if self.security_validator is None:
                raise SecurityGateError("Security review is required but no security validator is configured")
            try:
                report = await call_with_timeout(
                    self.security_validator.validate_security(strategy.environment, "pre-migration"),
                    self._call_timeout,
                    "Security validation"
                )
            except Exception as e:
                raise SecurityGateError(f"Failed to validate security: {str(e)}") from e

            result.security_results["pre-migration"] = report
            score, issues = report.score, report.issues
            if not report.passed:
                raise SecurityGateError(f"Security validation failed: {', '.join(report.issues) or 'checks did not pass'}")
            if report.score < minimum:
                raise SecurityGateError(
                    f"Security compliance score {report.score:.1f} is below the required minimum {minimum:.1f}"
                )
        except SecurityGateError as e:
            self._gate_entry(audit, SecurityGateError.gate, GateOutcome.FAILED, e.message, score=score, issues=issues)
            raise

        self._gate_entry(audit, SecurityGateError.gate, GateOutcome.PASSED, score=score, issues=issues)
        self._set_phase(PipelinePhase.SECURITY_VALIDATED, result.correlation_id)

    async def _validate_compliance(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.require_compliance:
            return

        minimum = self.config.gates.compliance_min_score
        score = None
        issues: List[str] = []
        try:
            if self.compliance_manager is None:
                raise ComplianceGateError("Compliance validation is required but no compliance manager is configured")
            try:
                report = await call_with_timeout(
                    self.compliance_manager.validate_compliance(strategy.environment),
                    self._call_timeout,
                    "Compliance validation"
                )
            except Exception as e:
                raise ComplianceGateError(f"Failed to validate compliance: {str(e)}") from e

            result.compliance_results["pre-migration"] = report
            score, issues = report.score, report.issues
            if not report.passed:
                raise ComplianceGateError(f"Compliance validation failed: {', '.join(report.issues) or 'checks did not pass'}")
            if report.score < minimum:
                raise ComplianceGateError(
                    f"Compliance score {report.score:.1f} is below the required minimum {minimum:.1f}"
                )
        except ComplianceGateError as e:
            self._gate_entry(audit, ComplianceGateError.gate, GateOutcome.FAILED, e.message, score=score, issues=issues)
            raise

        self._gate_entry(audit, ComplianceGateError.gate, GateOutcome.PASSED, score=score, issues=issues)
        self._set_phase(PipelinePhase.COMPLIANCE_VALIDATED, result.correlation_id)

    async def _plan_migrations(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        pending: Dict[str, int] = {}
        try:
            for domain in self.config.domains:
                pending[domain] = await call_with_timeout(
                    self.domain_migrator.pending_migrations(domain, strategy.environment),
                    self._call_timeout,
                    f"Migration planning for domain {domain}"
                )
        except Exception as e:
            error = ValidationGateError(f"Failed to create migration plan: {str(e)}", failed_checks=["planning"])
            self._gate_entry(audit, "planning", GateOutcome.FAILED, error.message)
            raise error from e

        result.pending_migrations = pending
        total = sum(pending.values())
        self._gate_entry(audit, "planning", GateOutcome.PASSED, f"{total} pending migration(s)")
        self._set_phase(PipelinePhase.PLANNED, result.correlation_id, pending=pending)

    async def _request_approval(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.require_approval:
            return

        gate = ApprovalError.gate
        total = sum(result.pending_migrations.values())
        if total == 0:
            result.approval_status = NO_MIGRATIONS_APPROVAL_STATUS
            self._gate_entry(audit, gate, GateOutcome.PASSED, NO_MIGRATIONS_APPROVAL_STATUS)
            self._set_phase(PipelinePhase.APPROVED, result.correlation_id)
            return

        domains = [d for d in self.config.domains if result.pending_migrations.get(d)]
        request = ApprovalRequest(
            subject=ApprovalSubject.MIGRATION,
            environment=strategy.environment,
            requested_by=audit.actor,
            summary=f"{total} pending migration(s) across {len(domains)} domain(s)",
            risk_level="CRITICAL" if strategy.environment == Environment.PRODUCTION else "MEDIUM",
            expected_duration=timedelta(minutes=MIGRATION_MINUTES_PER_CHANGE * total),
            pending_migrations=dict(result.pending_migrations),
            rollback_plan=RollbackPlanSummary(
                domains=list(reversed(domains)),
                estimated_duration=timedelta(minutes=ROLLBACK_MINUTES_PER_CHANGE * total),
                description="Roll back migrated domains in reverse dependency order",
            ),
            backup_required=strategy.backup_before_migrate,
        )

        try:
            response = await self.approval_gate.request_approval(request)
        except ApprovalError as e:
            result.approval_status = f"Approval failed: {e.message}"
            self._gate_entry(audit, gate, GateOutcome.FAILED, e.message)
            raise

        if not response.approved:
            reason = response.rejection_reason or "no reason given"
            result.approval_status = f"Migration rejected: {reason}"
            self._gate_entry(audit, gate, GateOutcome.FAILED, result.approval_status)
            raise ApprovalError(f"Migration not approved: {reason}")

        result.approval_status = (
            f"Approved by {response.approver or 'unknown'} at "
            f"{response.decided_at.isoformat(timespec='seconds')}"
        )
        self._gate_entry(audit, gate, GateOutcome.PASSED, result.approval_status)
        self._set_phase(PipelinePhase.APPROVED, result.correlation_id)

    async def _create_backup(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.backup_before_migrate:
            return

        if self.backup_coordinator is None:
            error = BackupFailure("Backup before migration is required but no backup coordinator is configured")
            self._gate_entry(audit, BackupFailure.gate, GateOutcome.FAILED, error.message)
            raise error

        # The coordinator records the gate's audit entry itself
        backup = await self.backup_coordinator.create_backup(strategy, result.correlation_id)

        result.backup_id = backup.backup_id
        result.backup_location = backup.location
        for domain_backup in backup.domains:
            if not domain_backup.validations_passed:
                result.warnings.append(
                    f"Backup integrity validation flagged domain {domain_backup.domain} "
                    f"({domain_backup.record_count} records)"
                )
        self._set_phase(PipelinePhase.BACKED_UP, result.correlation_id, backup_id=backup.backup_id)

    async def _create_recovery_point(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.create_recovery_point:
            return

        gate = "recovery_point"
        try:
            if self.backup_coordinator is None:
                raise PostConditionFailure(gate, "No backup coordinator is configured")
            result.recovery_point = await self.backup_coordinator.create_recovery_point(strategy.environment)
        except Exception as e:
            warning = f"Failed to create recovery point: {e}"
            logger.warning(warning)
            result.warnings.append(warning)
            self._gate_entry(audit, gate, GateOutcome.WARNING, warning)
            return

        self._gate_entry(audit, gate, GateOutcome.PASSED, result.recovery_point)
        self._set_phase(PipelinePhase.RECOVERY_POINT_CREATED, result.correlation_id)

    async def _migrate_domains(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        self._set_phase(PipelinePhase.DOMAINS_MIGRATING, result.correlation_id)

        for index, domain in enumerate(self.config.domains):
            if result.pending_migrations.get(domain, 0) == 0:
                result.skipped_domains.append(domain)
                audit.record(
                    AuditEventType.DOMAIN_MIGRATION_SKIPPED,
                    target=domain,
                    result=AuditResult.SUCCESS,
                    details=DomainSkipDetail(domain=domain, reason="No pending migrations"),
                )
                continue

            failure = await self._migrate_domain(domain, strategy, result, audit)
            if failure is None:
                result.mark_completed(domain)
                continue

            result.mark_failed(domain, failure.message)
            if strategy.fail_fast:
                remaining = [
                    d for d in self.config.domains[index + 1:]
                    if result.pending_migrations.get(d, 0) > 0
                ]
                if remaining:
                    result.warnings.append(
                        f"Aborted remaining domain migrations after {domain} failed: {', '.join(remaining)}"
                    )
                logger.error(f"[{result.correlation_id}] Aborting domain loop after {domain} failed")
                break

    async def _migrate_domain(
        self,
        domain: str,
        strategy: MigrationStrategy,
        result: MigrationResult,
        audit: BoundAuditTrail
    ) -> Optional[DomainExecutionFailure]:
        """Attempt one domain up to ``max_retries`` times. Returns the failure, if any."""
        last_error = ""
        for attempt in range(1, strategy.max_retries + 1):
            if attempt > 1:
                result.warnings.append(f"Retrying {domain} migration (attempt {attempt}/{strategy.max_retries})")
                await asyncio.sleep(strategy.retry_delay.total_seconds())

            try:
                outcome = await call_with_timeout(
                    self.domain_migrator.execute_domain_migrations(domain, strategy.environment),
                    self._call_timeout,
                    f"Migration of domain {domain}"
                )
                error = None if outcome.success else (outcome.error or "migration reported failure")
            except Exception as e:
                error = str(e)

            if error is None:
                audit.record(
                    AuditEventType.DOMAIN_MIGRATION_SUCCEEDED,
                    target=domain,
                    result=AuditResult.SUCCESS,
                    details=DomainAttemptDetail(domain=domain, attempt=attempt, max_attempts=strategy.max_retries),
                )
                logger.info(f"[{result.correlation_id}] Domain {domain} migrated on attempt {attempt}")
                return None

            last_error = error
            audit.record(
                AuditEventType.DOMAIN_MIGRATION_FAILED,
                target=domain,
                result=AuditResult.FAILURE,
                details=DomainAttemptDetail(
                    domain=domain, attempt=attempt, max_attempts=strategy.max_retries, error=error
                ),
            )
            logger.warning(f"[{result.correlation_id}] Domain {domain} attempt {attempt}/{strategy.max_retries} failed: {error}")

        return DomainExecutionFailure(
            domain,
            strategy.max_retries,
            f"Domain {domain} migration failed after {strategy.max_retries} attempt(s): {last_error}",
        )

    async def _post_validate(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.validate_after:
            return

        gate = "post_validation"
        try:
            if self.environment_validator is None:
                raise PostConditionFailure(gate, "No environment validator is configured")
            report = await call_with_timeout(
                self.environment_validator.validate_environment(strategy.environment),
                self._call_timeout,
                "Post-migration environment validation"
            )
            result.validation_results["post-migration"] = report
            if not report.overall_healthy:
                raise PostConditionFailure(
                    gate, f"Environment unhealthy after migration: {', '.join(report.issues) or 'unknown issues'}"
                )

            if strategy.require_security_review and self.security_validator is not None:
                security = await call_with_timeout(
                    self.security_validator.validate_security(strategy.environment, "post-migration"),
                    self._call_timeout,
                    "Post-migration security validation"
                )
                result.security_results["post-migration"] = security
                if not security.passed:
                    raise PostConditionFailure(
                        gate, f"Post-migration security validation failed: {', '.join(security.issues)}"
                    )
        except Exception as e:
            warning = f"Post-migration validation failed: {e}"
            logger.warning(warning)
            result.warnings.append(warning)
            self._gate_entry(audit, gate, GateOutcome.WARNING, warning)
            return

        self._gate_entry(audit, gate, GateOutcome.PASSED)
        self._set_phase(PipelinePhase.POST_VALIDATED, result.correlation_id)

    async def _check_business_continuity(self, strategy: MigrationStrategy, result: MigrationResult, audit: BoundAuditTrail):
        if not strategy.check_business_continuity:
            return

        gate = "business_continuity"
        threshold = self.config.gates.business_impact_warning_score
        try:
            if self.continuity_assessor is None:
                raise PostConditionFailure(gate, "No business continuity assessor is configured")
            report = await call_with_timeout(
                self.continuity_assessor.assess(strategy.environment),
                self._call_timeout,
                "Business continuity assessment"
            )
        except Exception as e:
            warning = f"Business continuity validation failed: {e}"
            result.warnings.append(warning)
            self._gate_entry(audit, gate, GateOutcome.WARNING, warning)
            return

        result.business_impact_score = report.impact_score
        if report.impact_score > threshold:
            warning = f"High business impact score: {report.impact_score:.1f} (threshold {threshold:.1f})"
            result.warnings.append(warning)
            self._gate_entry(audit, gate, GateOutcome.WARNING, warning, score=report.impact_score, issues=report.issues)
        else:
            self._gate_entry(audit, gate, GateOutcome.PASSED, score=report.impact_score, issues=report.issues)
        self._set_phase(PipelinePhase.BUSINESS_CONTINUITY_CHECKED, result.correlation_id)

    def _finish(self, result: MigrationResult, audit: BoundAuditTrail, error: Optional[GateFailure] = None):
        duration = datetime.now(UTC) - result.started_at
        succeeded = error is None and result.success
        audit.record(
            AuditEventType.MIGRATION_COMPLETED if error is None else AuditEventType.MIGRATION_ABORTED,
            target=result.environment.value,
            result=AuditResult.SUCCESS if succeeded else AuditResult.FAILURE,
            details=RunCompletedDetail(
                success=succeeded,
                completed_count=len(result.completed_domains),
                failed_count=len(result.failed_domains),
                completed_domains=list(result.completed_domains),
                failed_domains=list(result.failed_domains),
                duration_seconds=duration.total_seconds(),
                error=error.message if error else None,
            ),
        )
        result.aborted_gate = error.gate if error else None
        result.close(audit.entries())

        self._set_phase(PipelinePhase.COMPLETED if succeeded else PipelinePhase.FAILED, result.correlation_id)
        logger.info(
            f"[{result.correlation_id}] Migration {'succeeded' if succeeded else 'failed'}: "
            f"{len(result.completed_domains)} completed, {len(result.failed_domains)} failed"
        )

    async def validate_environment(self, environment: Union[str, Environment]) -> EnvironmentReport:
        """Run the environment validator on its own."""
        strategy = self.strategy_provider.get_strategy(environment)
        if self.environment_validator is None:
            raise ValidationGateError("No environment validator is configured")
        return await call_with_timeout(
            self.environment_validator.validate_environment(strategy.environment),
            self._call_timeout,
            "Environment validation"
        )

    async def get_migration_status(self) -> List[DomainStatus]:
        """Schema-version status of every declared domain."""
        statuses = []
        for domain in self.config.domains:
            statuses.append(await call_with_timeout(
                self.domain_migrator.domain_status(domain),
                self._call_timeout,
                f"Status of domain {domain}"
            ))
        return statuses

    def display_result(self, result: MigrationResult):
        """Display a migration result with Rich formatting."""
        if result.aborted_gate:
            status, style = f"ABORTED at {result.aborted_gate}", "red"
        elif result.success:
            status, style = "SUCCESS", "green"
        else:
            status, style = "FAILED", "red"

        self.console.print(Panel.fit(
            f"[bold {style}]{status}[/bold {style}]\n"
            f"Environment: [bold]{result.environment.value}[/bold]\n"
            f"Correlation: {result.correlation_id}\n"
            f"Duration: {result.execution_duration}\n"
            f"Approval: {result.approval_status or '-'}",
            title="Migration Result",
            border_style=style
        ))

        table = Table(title="Domains")
        table.add_column("Domain", style="cyan")
        table.add_column("Pending", justify="right")
        table.add_column("Status")
        for domain in self.config.domains:
            if domain in result.completed_domains:
                domain_status = "[green]completed[/green]"
            elif domain in result.failed_domains:
                domain_status = "[red]failed[/red]"
            elif domain in result.skipped_domains:
                domain_status = "[dim]up to date[/dim]"
            else:
                domain_status = "[yellow]not attempted[/yellow]"
            table.add_row(domain, str(result.pending_migrations.get(domain, "-")), domain_status)
        self.console.print(table)

        for warning in result.warnings:
            self.console.print(f"[yellow]⚠ {warning}[/yellow]")
        for error in result.errors:
            self.console.print(f"[red]✗ {error}[/red]")
