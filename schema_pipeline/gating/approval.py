"""
Approval gate: maintenance-window enforcement and human approval.

The approval wait is the one long blocking operation of a run and is
bounded by its own timeout, separate from per-call timeouts.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional

from schema_pipeline.audit.recorder import AuditTrailRecorder
from schema_pipeline.collaborators.base import ApprovalWorkflow
from schema_pipeline.core.exceptions import (
    ApprovalError,
    MaintenanceWindowError,
    OperationTimeoutError,
    PreconditionError,
)
from schema_pipeline.core.execution import call_with_timeout
from schema_pipeline.models.approval import ApprovalRequest, ApprovalResponse, ApprovalSubject
from schema_pipeline.models.audit import AuditEventType, AuditResult, RollbackPlanDetail
from schema_pipeline.models.config import TimeoutConfig
from schema_pipeline.models.rollback import ApprovalStatus, RollbackPlan
from schema_pipeline.models.strategy import MigrationStrategy

logger = logging.getLogger(__name__)


class ApprovalGate:
    """Maintenance-window check plus approval request/response handling."""
    
    ACTOR = "approval-gate"
    
    def __init__(
        self,
        workflow: Optional[ApprovalWorkflow],
        audit_recorder: AuditTrailRecorder,
        timeouts: Optional[TimeoutConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.workflow = workflow
        self.audit_recorder = audit_recorder
        self.timeouts = timeouts or TimeoutConfig()
        self.clock = clock or (lambda: datetime.now(UTC))
    
    def check_maintenance_window(
        self,
        strategy: MigrationStrategy,
        now: Optional[datetime] = None
    ) -> Optional[str]:
        """
        Validate the current time against the strategy's maintenance window.
        
        Returns:
            A warning when running outside the window under an allowed override,
            otherwise None
            
        Raises:
            MaintenanceWindowError: If outside the window and override is not allowed
        """
        window = strategy.maintenance_window
        if window is None:
            return None
        
        moment = now or self.clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        
        if window.contains(moment):
            return None
        
        description = (
            f"{window.start.strftime('%H:%M')}-{window.end.strftime('%H:%M')} {window.timezone}"
        )
        if window.allow_override:
            logger.warning(f"Executing outside maintenance window {description} under override")
            return f"Executing outside maintenance window ({description}) under override"
        
        raise MaintenanceWindowError(
            f"Current time {moment.isoformat(timespec='minutes')} is outside the "
            f"maintenance window ({description})",
            details={"window": description},
        )
    
    async def request_approval(
        self,
        request: ApprovalRequest,
        timeout: Optional[timedelta] = None
    ) -> ApprovalResponse:
        """
        Send a request to the approval workflow and wait for the decision.
        
        Raises:
            ApprovalError: If no workflow is configured, the wait times out,
                or the workflow itself fails
        """
        if self.workflow is None:
            raise ApprovalError(f"Approval required for {request.subject.value} but no approval workflow is configured")
        
        wait = timeout or self.timeouts.approval_timeout
        logger.info(f"Requesting {request.subject.value} approval for {request.environment.value} (timeout {wait})")
        
        try:
            return await call_with_timeout(
                self.workflow.request_approval(request),
                wait,
                f"{request.subject.value.capitalize()} approval"
            )
        except OperationTimeoutError as e:
            raise ApprovalError(f"Approval was not granted in time: {e.message}") from e
        except ApprovalError:
            raise
        except Exception as e:
            raise ApprovalError(f"Failed to request approval: {str(e)}") from e
    
    async def approve_rollback_plan(self, plan: RollbackPlan) -> RollbackPlan:
        """
        Obtain a decision for a pending rollback plan.
        
        The plan transitions to GRANTED, DENIED or EXPIRED exactly once.
        
        Raises:
            PreconditionError: If the plan is no longer pending
            ApprovalError: If the plan was denied, expired or could not be submitted
        """
        if plan.approval_status != ApprovalStatus.PENDING:
            raise PreconditionError(
                f"Rollback plan {plan.plan_id} is already {plan.approval_status.value}"
            )
        
        audit = self.audit_recorder.bind(self.audit_recorder.new_correlation_id(), self.ACTOR)
        request = ApprovalRequest(
            subject=ApprovalSubject.ROLLBACK,
            environment=plan.environment,
            requested_by=plan.requester,
            summary=f"Rollback {', '.join(f'{d}->{v}' for d, v in plan.target_versions.items())}: {plan.reason}",
            risk_level=plan.risk_level.value.upper(),
            expected_duration=plan.estimated_duration,
        )
        
        try:
            response = await self.request_approval(request)
        except ApprovalError as e:
            if isinstance(e.__cause__, OperationTimeoutError):
                plan.transition_approval(ApprovalStatus.EXPIRED)
            self._record_decision(audit, plan, error=e.message)
            raise
        
        if response.approved:
            plan.transition_approval(ApprovalStatus.GRANTED, response.approver)
            self._record_decision(audit, plan)
            return plan
        
        plan.transition_approval(ApprovalStatus.DENIED, response.approver)
        reason = response.rejection_reason or "no reason given"
        self._record_decision(audit, plan, error=reason)
        raise ApprovalError(f"Rollback plan {plan.plan_id} rejected: {reason}", result=plan)
    
    def _record_decision(self, audit, plan: RollbackPlan, error: Optional[str] = None):
        audit.record(
            AuditEventType.ROLLBACK_APPROVAL_DECIDED,
            target=plan.plan_id,
            result=AuditResult.SUCCESS if error is None else AuditResult.FAILURE,
            details=RollbackPlanDetail(
                plan_id=plan.plan_id,
                risk_level=plan.risk_level.value,
                target_versions=plan.target_versions,
                approval_status=plan.approval_status.value,
                error=error,
            ),
        )
