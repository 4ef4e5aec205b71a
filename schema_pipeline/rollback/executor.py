"""
Rollback execution.

Executes an approved rollback plan domain by domain, dependents first,
recording version snapshots, data-loss warnings and rollback history.
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Dict, List, Optional, Set

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schema_pipeline.audit.recorder import AuditTrailRecorder, BoundAuditTrail
from schema_pipeline.collaborators.base import EnvironmentValidator, MigrationEngine, SchemaVersionRepository
from schema_pipeline.core.exceptions import (
    ApprovalError,
    GateFailure,
    PreconditionError,
    RollbackExecutionFailure,
    RollbackPolicyError,
    ValidationGateError,
)
from schema_pipeline.core.execution import call_with_timeout
from schema_pipeline.gating.strategy import MigrationStrategyProvider
from schema_pipeline.models.audit import (
    AuditEventType,
    AuditResult,
    GateDetail,
    GateOutcome,
    RollbackDomainDetail,
    RollbackPlanDetail,
    RunCompletedDetail,
)
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.rollback import (
    DataLossWarning,
    DestructiveOperationKind,
    RiskLevel,
    RollbackPlan,
    RollbackRecord,
)
from schema_pipeline.models.results import RollbackResult
from schema_pipeline.models.strategy import Environment, MigrationStrategy
from schema_pipeline.rollback.planner import dependency_safe_order

logger = logging.getLogger(__name__)

DATA_LOSS_RISKS = {
    DestructiveOperationKind.DROP_COLUMN: (RiskLevel.HIGH, "data truncation"),
    DestructiveOperationKind.DROP_TABLE: (RiskLevel.CRITICAL, "complete entity loss"),
    DestructiveOperationKind.MODIFY_COLUMN: (RiskLevel.MODERATE, "conversion/truncation risk"),
}


def recovery_steps_for(failed_domains: List[str]) -> List[str]:
    """Ordered manual recovery steps after a partial rollback."""
    steps = [
        "Review rollback error logs",
        "Verify database connectivity",
        "Check migration file integrity",
    ]
    steps.extend(f"Manually review {domain} domain migration state" for domain in failed_domains)
    steps.append("Consider restoring from backup if necessary")
    return steps


class RollbackExecutor:
    """Executes rollback plans produced by the RollbackPlanner."""

    ACTOR = "rollback-executor"

    def __init__(
        self,
        config: PipelineConfig,
        engine: MigrationEngine,
        repository: SchemaVersionRepository,
        audit_recorder: Optional[AuditTrailRecorder] = None,
        console: Optional[Console] = None,
        environment_validator: Optional[EnvironmentValidator] = None,
        strategy_provider: Optional[MigrationStrategyProvider] = None
    ):
        self.config = config
        self.engine = engine
        self.repository = repository
        self.audit_recorder = audit_recorder if audit_recorder is not None else AuditTrailRecorder()
        self.console = console or Console()
        self.environment_validator = environment_validator
        self.strategy_provider = strategy_provider or MigrationStrategyProvider(config)

        self._executed_plans: Set[str] = set()
        # Pre-rollback version markers per plan, kept until the plan succeeds
        self._snapshots: Dict[str, Dict[str, int]] = {}

    @property
    def _call_timeout(self):
        return self.config.timeouts.call_timeout

    async def execute_rollback(
        self,
        plan: Optional[RollbackPlan],
        executed_by: Optional[str] = None
    ) -> RollbackResult:
        """
        Execute a rollback plan.

        Whether approval is required comes from the environment's strategy,
        never from the plan. Domain failures are captured in the result
        rather than raised. In every environment except development the loop
        stops at the first failed domain.

        Raises:
            PreconditionError: If there is no plan or it was already executed
            ApprovalError: If the environment requires approval that was not granted
            ValidationGateError: If the database is unhealthy before rollback
            RollbackPolicyError: If the rollback is deeper than the environment
                allows or would lose data where that is forbidden
        """
        if plan is None:
            raise PreconditionError("No rollback plan to execute")
        if plan.plan_id in self._executed_plans:
            raise PreconditionError(f"Rollback plan {plan.plan_id} has already been executed")

        strategy = self.strategy_provider.get_strategy(plan.environment)
        if strategy.require_approval and not plan.is_granted:
            raise ApprovalError(
                f"Rollback plan {plan.plan_id} requires approval (status: {plan.approval_status.value})",
                result=plan,
            )

        self._executed_plans.add(plan.plan_id)
        actor = executed_by or plan.requester or self.ACTOR
        correlation_id = self.audit_recorder.new_correlation_id()
        audit = self.audit_recorder.bind(correlation_id, actor)
        result = RollbackResult(correlation_id=correlation_id, environment=plan.environment, plan_id=plan.plan_id)

        audit.record(
            AuditEventType.ROLLBACK_INITIATED,
            target=plan.plan_id,
            result=AuditResult.SUCCESS,
            details=RollbackPlanDetail(
                plan_id=plan.plan_id,
                risk_level=plan.risk_level.value,
                target_versions=plan.target_versions,
                approval_status=plan.approval_status.value,
            ),
        )
        logger.info(f"[{correlation_id}] Executing rollback plan {plan.plan_id} in {plan.environment.value}")

        order = dependency_safe_order(self.config, list(plan.target_versions), reverse=True)
        try:
            await self._pre_validate(plan, strategy, result, audit)
            if await self._take_snapshots(plan, order, result, audit):
                self._check_depth(plan, strategy, result, audit)
                unassessed = await self._assess_data_loss(plan, order, result)
                self._check_data_loss(strategy, result, audit, unassessed)
                await self._rollback_domains(plan, order, result, audit, actor)
                await self._post_validate(plan, strategy, result, audit)
        except GateFailure as e:
            # Gates run before any domain is touched
            self._snapshots.pop(plan.plan_id, None)
            result.errors.append(e.message)
            self._finish(result, audit, error=e)
            e.result = result
            raise

        if result.success:
            self._snapshots.pop(plan.plan_id, None)
            result.snapshots_discarded = True
        else:
            result.recovery_steps = recovery_steps_for(result.failed_domains)

        self._finish(result, audit)
        return result

    def _gate_entry(
        self,
        audit: BoundAuditTrail,
        gate: str,
        outcome: GateOutcome,
        message: str = "",
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
            details=GateDetail(gate=gate, outcome=outcome, message=message, issues=issues or []),
        )

    async def _pre_validate(
        self,
        plan: RollbackPlan,
        strategy: MigrationStrategy,
        result: RollbackResult,
        audit: BoundAuditTrail
    ):
        if not strategy.validate_before_rollback:
            return

        gate = ValidationGateError.gate
        try:
            if self.environment_validator is None:
                raise ValidationGateError("Pre-rollback validation is required but no environment validator is configured")
            try:
                report = await call_with_timeout(
                    self.environment_validator.validate_environment(plan.environment),
                    self._call_timeout,
                    "Pre-rollback environment validation"
                )
            except Exception as e:
                raise ValidationGateError(f"Failed to validate environment: {str(e)}") from e

            result.validation_results["pre-rollback"] = report
            # Without a database entry the overall verdict stands in for it
            if not report.dependencies.get("database", report.overall_healthy):
                raise ValidationGateError(
                    "Database is not healthy: cannot proceed with rollback",
                    failed_checks=["database"],
                )
        except ValidationGateError as e:
            self._gate_entry(audit, gate, GateOutcome.FAILED, e.message, issues=e.failed_checks)
            raise

        if report.overall_healthy:
            self._gate_entry(audit, gate, GateOutcome.PASSED, issues=report.issues)
            return

        warning = "Environment is not fully healthy - rollback may have unexpected effects"
        logger.warning(warning)
        result.warnings.append(warning)
        self._gate_entry(audit, gate, GateOutcome.WARNING, warning, issues=report.issues)

    def _check_depth(
        self,
        plan: RollbackPlan,
        strategy: MigrationStrategy,
        result: RollbackResult,
        audit: BoundAuditTrail
    ):
        limit = strategy.max_rollback_depth
        if limit is None:
            return

        too_deep = [
            f"{domain} ({result.snapshots[domain] - to_version} versions)"
            for domain, to_version in sorted(plan.target_versions.items())
            if result.snapshots[domain] - to_version > limit
        ]
        if too_deep:
            error = RollbackPolicyError(
                f"Rollback depth exceeds the {plan.environment.value} limit of {limit}: {', '.join(too_deep)}"
            )
            self._gate_entry(audit, error.gate, GateOutcome.FAILED, error.message, issues=too_deep)
            raise error

    def _check_data_loss(
        self,
        strategy: MigrationStrategy,
        result: RollbackResult,
        audit: BoundAuditTrail,
        unassessed: List[str]
    ):
        if strategy.allow_data_loss:
            return

        issues = [w.message for w in result.data_loss_warnings]
        issues.extend(f"Data loss could not be assessed for {domain}" for domain in unassessed)
        if issues:
            error = RollbackPolicyError(
                f"Rollback would risk data loss, which is not allowed in {strategy.environment.value}"
            )
            self._gate_entry(audit, error.gate, GateOutcome.FAILED, error.message, issues=issues)
            raise error

    async def _post_validate(
        self,
        plan: RollbackPlan,
        strategy: MigrationStrategy,
        result: RollbackResult,
        audit: BoundAuditTrail
    ):
        if not strategy.validate_after_rollback:
            return

        gate = "post_validation"
        try:
            if self.environment_validator is None:
                raise PreconditionError("No environment validator is configured")
            report = await call_with_timeout(
                self.environment_validator.validate_environment(plan.environment),
                self._call_timeout,
                "Post-rollback environment validation"
            )
        except Exception as e:
            warning = f"Post-rollback validation failed: {e}"
            logger.warning(warning)
            result.warnings.append(warning)
            self._gate_entry(audit, gate, GateOutcome.WARNING, warning)
            return

        result.validation_results["post-rollback"] = report
        if report.overall_healthy:
            self._gate_entry(audit, gate, GateOutcome.PASSED, issues=report.issues)
            return

        warning = (
            f"Environment is not healthy after rollback: {', '.join(report.issues) or 'unknown issues'}"
        )
        logger.warning(warning)
        result.warnings.append(warning)
        self._gate_entry(audit, gate, GateOutcome.WARNING, warning, issues=report.issues)

    async def _take_snapshots(
        self,
        plan: RollbackPlan,
        order: List[str],
        result: RollbackResult,
        audit: BoundAuditTrail
    ) -> bool:
        snapshots: Dict[str, int] = {}
        for domain in order:
            try:
                snapshots[domain] = await call_with_timeout(
                    self.repository.current_version(domain),
                    self._call_timeout,
                    f"Snapshot of {domain} version"
                )
            except Exception as e:
                error = f"Failed to snapshot {domain} version before rollback: {str(e)}"
                result.mark_failed(domain, error)
                audit.record(
                    AuditEventType.ROLLBACK_STEP_FAILED,
                    target=domain,
                    result=AuditResult.FAILURE,
                    details=RollbackDomainDetail(
                        domain=domain, to_version=plan.target_versions[domain], error=error
                    ),
                )
                logger.error(error)
                return False

        self._snapshots[plan.plan_id] = snapshots
        result.snapshots = dict(snapshots)
        return True

    async def _assess_data_loss(self, plan: RollbackPlan, order: List[str], result: RollbackResult) -> List[str]:
        unassessed = []
        for domain in order:
            from_version = result.snapshots[domain]
            to_version = plan.target_versions[domain]
            if to_version >= from_version:
                continue

            try:
                operations = await call_with_timeout(
                    self.engine.destructive_operations(domain, from_version, to_version),
                    self._call_timeout,
                    f"Data loss assessment for {domain}"
                )
            except Exception as e:
                result.warnings.append(f"Data loss assessment unavailable for {domain}: {e}")
                unassessed.append(domain)
                continue

            for operation in operations:
                risk, description = DATA_LOSS_RISKS[operation.kind]
                message = (
                    f"Rolling back {domain} below version {operation.version} will "
                    f"{operation.kind.value.replace('_', ' ')} {operation.object_name}: {description}"
                )
                result.data_loss_warnings.append(DataLossWarning(
                    domain=domain,
                    operation=operation,
                    risk=risk,
                    message=message,
                ))
                result.warnings.append(message)
                logger.warning(message)
        return unassessed

    async def _rollback_domains(
        self,
        plan: RollbackPlan,
        order: List[str],
        result: RollbackResult,
        audit: BoundAuditTrail,
        actor: str
    ):
        for domain in order:
            from_version = result.snapshots[domain]
            to_version = plan.target_versions[domain]
            error = None
            try:
                await call_with_timeout(
                    self.engine.migrate_to(domain, to_version),
                    self._call_timeout,
                    f"Rollback of {domain}"
                )
            except Exception as e:
                error = f"Rollback of {domain} to version {to_version} failed: {str(e)}"

            await self._record_history(plan, domain, from_version, to_version, actor, error is None, result)

            if error is None:
                result.mark_completed(domain)
                audit.record(
                    AuditEventType.DOMAIN_ROLLBACK_COMPLETED,
                    target=domain,
                    result=AuditResult.SUCCESS,
                    details=RollbackDomainDetail(domain=domain, from_version=from_version, to_version=to_version),
                )
                logger.info(f"Rolled back {domain} from {from_version} to {to_version}")
                continue

            result.mark_failed(domain, error)
            audit.record(
                AuditEventType.ROLLBACK_STEP_FAILED,
                target=domain,
                result=AuditResult.FAILURE,
                details=RollbackDomainDetail(
                    domain=domain, from_version=from_version, to_version=to_version, error=error
                ),
            )
            logger.error(error)
            if plan.environment != Environment.DEVELOPMENT:
                break

    async def _record_history(
        self,
        plan: RollbackPlan,
        domain: str,
        from_version: int,
        to_version: int,
        actor: str,
        success: bool,
        result: RollbackResult
    ):
        record = RollbackRecord(
            rollback_id=f"{plan.plan_id}-{domain}-{uuid.uuid4().hex[:6]}",
            domain=domain,
            from_version=from_version,
            to_version=to_version,
            executed_at=datetime.now(UTC),
            executed_by=actor,
            reason=plan.reason,
            success=success,
        )
        try:
            await call_with_timeout(
                self.repository.record_rollback(record),
                self._call_timeout,
                f"Rollback history for {domain}"
            )
        except Exception as e:
            result.warnings.append(f"Failed to record rollback history for {domain}: {e}")

    def _finish(self, result: RollbackResult, audit: BoundAuditTrail, error: Optional[GateFailure] = None):
        result.aborted_gate = error.gate if error else None
        duration = datetime.now(UTC) - result.started_at
        audit.record(
            AuditEventType.ROLLBACK_COMPLETED if error is None else AuditEventType.ROLLBACK_ABORTED,
            target=result.plan_id,
            result=AuditResult.SUCCESS if result.success else AuditResult.FAILURE,
            details=RunCompletedDetail(
                success=result.success,
                completed_count=len(result.completed_domains),
                failed_count=len(result.failed_domains),
                completed_domains=list(result.completed_domains),
                failed_domains=list(result.failed_domains),
                duration_seconds=duration.total_seconds(),
                error="; ".join(result.errors) or None,
            ),
        )
        result.close(audit.entries())
        logger.info(
            f"[{result.correlation_id}] Rollback {'succeeded' if result.success else 'failed'}: "
            f"{len(result.completed_domains)} completed, {len(result.failed_domains)} failed"
        )

    def raise_for_failure(self, result: RollbackResult):
        """Raise a RollbackExecutionFailure carrying recovery steps if the rollback failed."""
        if not result.success:
            raise RollbackExecutionFailure(
                f"Rollback {result.plan_id} failed for: {', '.join(result.failed_domains)}",
                recovery_steps=result.recovery_steps,
            )

    async def get_rollback_history(self, domain: str, limit: int = 20) -> List[RollbackRecord]:
        """Most recent rollback records for a domain."""
        if domain not in self.config.domains:
            raise PreconditionError(f"Unknown domain: {domain}")
        return await call_with_timeout(
            self.repository.rollback_history(domain, limit),
            self._call_timeout,
            f"Rollback history lookup for {domain}"
        )

    def display_result(self, result: RollbackResult):
        """Display a rollback result with Rich formatting."""
        if result.aborted_gate:
            status, style = f"ABORTED at {result.aborted_gate}", "red"
        elif result.success:
            status, style = "SUCCESS", "green"
        else:
            status, style = "FAILED", "red"

        self.console.print(Panel.fit(
            f"[bold {style}]{status}[/bold {style}]\n"
            f"Plan: {result.plan_id}\n"
            f"Environment: [bold]{result.environment.value}[/bold]\n"
            f"Duration: {result.execution_duration}",
            title="Rollback Result",
            border_style=style
        ))

        if result.data_loss_warnings:
            table = Table(title="Data Loss Warnings")
            table.add_column("Domain", style="cyan")
            table.add_column("Risk")
            table.add_column("Operation")
            for warning in result.data_loss_warnings:
                table.add_row(
                    warning.domain,
                    warning.risk.value,
                    f"{warning.operation.kind.value} {warning.operation.object_name} (v{warning.operation.version})"
                )
            self.console.print(table)

        for error in result.errors:
            self.console.print(f"[red]✗ {error}[/red]")
        if result.recovery_steps:
            self.console.print("\n[bold]Recovery steps:[/bold]")
            for i, step in enumerate(result.recovery_steps, 1):
                self.console.print(f"  {i}. {step}")
