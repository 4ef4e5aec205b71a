"""
Rollback planning.

This module builds dependency-checked, risk-scored rollback plans and
computes the order in which domains are rolled back.
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Dict, List, Optional, Union

from schema_pipeline.audit.recorder import AuditTrailRecorder
from schema_pipeline.collaborators.base import SchemaVersionRepository
from schema_pipeline.core.exceptions import RollbackPlanningFailure
from schema_pipeline.core.execution import call_with_timeout
from schema_pipeline.gating.strategy import MigrationStrategyProvider
from schema_pipeline.models.audit import AuditEventType, AuditResult, RollbackPlanDetail
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.rollback import (
    ApprovalStatus,
    RiskLevel,
    RollbackDependency,
    RollbackPlan,
)
from schema_pipeline.models.strategy import Environment

logger = logging.getLogger(__name__)


def dependency_safe_order(config: PipelineConfig, domains: List[str], reverse: bool = True) -> List[str]:
    """
    Order domains so dependencies come before the domains that need them.

    The sort walks the full declared graph, so transitive dependencies are
    honoured even when intermediate domains are not in ``domains``. With
    ``reverse`` (the rollback direction) dependents come first.
    """
    visited = set()
    sorted_domains = []

    def visit(domain: str):
        if domain in visited:
            return
        visited.add(domain)
        for dependency in config.dependencies_of(domain):
            visit(dependency)
        sorted_domains.append(domain)

    for domain in config.domains:
        visit(domain)

    wanted = set(domains)
    ordered = [d for d in sorted_domains if d in wanted]
    return list(reversed(ordered)) if reverse else ordered


class RollbackPlanner:
    """Creates rollback plans for one environment."""

    ACTOR = "rollback-planner"

    def __init__(
        self,
        config: PipelineConfig,
        repository: SchemaVersionRepository,
        environment: Union[str, Environment],
        audit_recorder: Optional[AuditTrailRecorder] = None,
        strategy_provider: Optional[MigrationStrategyProvider] = None
    ):
        self.config = config
        self.repository = repository
        self.audit_recorder = audit_recorder if audit_recorder is not None else AuditTrailRecorder()
        self.strategy_provider = strategy_provider or MigrationStrategyProvider(config)
        self.strategy = self.strategy_provider.get_strategy(environment)
        self.environment = self.strategy.environment

    async def create_rollback_plan(
        self,
        target_versions: Dict[str, int],
        reason: str,
        requester: str
    ) -> RollbackPlan:
        """
        Create a dependency-checked rollback plan.

        Args:
            target_versions: Target schema version per domain
            reason: Free-text justification recorded on the plan
            requester: Who asked for the rollback

        Returns:
            The new plan. Development plans are granted immediately; others
            start pending.

        Raises:
            RollbackPlanningFailure: If the request is invalid, a dependency
                cannot proceed, or the risk is critical in production
        """
        audit = self.audit_recorder.bind(self.audit_recorder.new_correlation_id(), requester or self.ACTOR)

        try:
            if not self.strategy.allow_rollback:
                raise RollbackPlanningFailure(f"Rollback is disabled for the {self.environment.value} environment")
            self._validate_request(target_versions, reason)

            dependencies = self.build_dependencies(target_versions)
            blocked = [d for d in dependencies if not d.can_proceed]
            if blocked:
                raise RollbackPlanningFailure(
                    f"Rollback dependency check failed: {'; '.join(d.reason for d in blocked)}",
                    dependencies=blocked,
                )

            current_versions, domain_risks = await self.assess_risk(target_versions)
            risk_level = RiskLevel.highest(domain_risks.values())
            if risk_level == RiskLevel.CRITICAL and self.environment == Environment.PRODUCTION:
                critical = [d for d, r in domain_risks.items() if r == RiskLevel.CRITICAL]
                raise RollbackPlanningFailure(
                    f"Critical risk rollback is not allowed in production (domains: {', '.join(critical)})"
                )
        except RollbackPlanningFailure as e:
            logger.error(f"Rollback plan rejected: {e.message}")
            audit.record(
                AuditEventType.ROLLBACK_PLAN_REJECTED,
                target=self.environment.value,
                result=AuditResult.FAILURE,
                details=RollbackPlanDetail(target_versions=dict(target_versions or {}), error=e.message),
            )
            raise

        plan = RollbackPlan(
            plan_id=f"rollback-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}",
            environment=self.environment,
            requester=requester,
            target_versions=dict(target_versions),
            reason=reason,
            risk_level=risk_level,
            domain_risks=domain_risks,
            current_versions=current_versions,
            estimated_duration=self.config.rollback_base_duration * len(target_versions),
            dependencies=dependencies,
        )
        if self.environment == Environment.DEVELOPMENT:
            plan.transition_approval(ApprovalStatus.GRANTED, "auto-approved")

        audit.record(
            AuditEventType.ROLLBACK_PLAN_CREATED,
            target=plan.plan_id,
            result=AuditResult.SUCCESS,
            details=RollbackPlanDetail(
                plan_id=plan.plan_id,
                risk_level=plan.risk_level.value,
                target_versions=plan.target_versions,
                approval_status=plan.approval_status.value,
            ),
        )
        logger.info(
            f"Created rollback plan {plan.plan_id} ({plan.risk_level.value} risk, "
            f"{plan.approval_status.value})"
        )
        return plan

    def _validate_request(self, target_versions: Dict[str, int], reason: str):
        if not target_versions:
            raise RollbackPlanningFailure("At least one target version is required")

        unknown = [d for d in target_versions if d not in self.config.domains]
        if unknown:
            raise RollbackPlanningFailure(f"Unknown domain(s) in rollback request: {', '.join(unknown)}")

        negative = [d for d, v in target_versions.items() if v < 0]
        if negative:
            raise RollbackPlanningFailure(f"Target versions must not be negative: {', '.join(negative)}")

        if not reason or not reason.strip():
            raise RollbackPlanningFailure("A rollback reason is required")

    def build_dependencies(self, target_versions: Dict[str, int]) -> List[RollbackDependency]:
        """
        Emit one dependency edge per (requested domain, domain it depends on).

        An edge is blocked when the depended-upon domain would be left at a
        higher version than the domain that requires it.
        """
        dependencies = []
        for domain in self.config.domains:
            if domain not in target_versions:
                continue
            for required in self.config.dependencies_of(domain):
                can_proceed = True
                reason = f"Domain {domain} depends on {required}"
                if required in target_versions and target_versions[required] > target_versions[domain]:
                    can_proceed = False
                    reason = (
                        f"Required domain {required} target version ({target_versions[required]}) "
                        f"is higher than dependent domain {domain} target version ({target_versions[domain]})"
                    )
                dependencies.append(RollbackDependency(
                    domain=required,
                    required_by=domain,
                    reason=reason,
                    can_proceed=can_proceed,
                ))
        return dependencies

    async def assess_risk(self, target_versions: Dict[str, int]):
        """
        Score each domain's risk from its version distance.

        Returns:
            Tuple of (current versions that could be read, risk per domain)
        """
        current_versions: Dict[str, int] = {}
        domain_risks: Dict[str, RiskLevel] = {}
        for domain, target in target_versions.items():
            try:
                current = await call_with_timeout(
                    self.repository.current_version(domain),
                    self.config.timeouts.call_timeout,
                    f"Current version lookup for {domain}"
                )
            except Exception as e:
                logger.warning(f"Could not read current version of {domain}, treating as critical: {e}")
                domain_risks[domain] = RiskLevel.CRITICAL
                continue

            current_versions[domain] = current
            domain_risks[domain] = self.classify_risk(current - target)
        return current_versions, domain_risks

    def classify_risk(self, version_diff: int) -> RiskLevel:
        """Map a version distance onto a risk level."""
        thresholds = self.config.risk
        if version_diff > thresholds.critical_above:
            return RiskLevel.CRITICAL
        if version_diff > thresholds.high_above:
            return RiskLevel.HIGH
        if version_diff > thresholds.moderate_above:
            return RiskLevel.MODERATE
        return RiskLevel.LOW

    async def validate_rollback_safety(self, target_versions: Dict[str, int]):
        """
        Check that every target is below the domain's current version.

        Raises:
            RollbackPlanningFailure: On the first target that is not a rollback
        """
        unknown = [d for d in target_versions if d not in self.config.domains]
        if unknown:
            raise RollbackPlanningFailure(f"Unknown domain(s) in rollback request: {', '.join(unknown)}")

        for domain, target in target_versions.items():
            try:
                current = await call_with_timeout(
                    self.repository.current_version(domain),
                    self.config.timeouts.call_timeout,
                    f"Current version lookup for {domain}"
                )
            except Exception as e:
                raise RollbackPlanningFailure(
                    f"Failed to read current version for domain {domain}: {str(e)}"
                ) from e

            if target >= current:
                raise RollbackPlanningFailure(
                    f"Rollback validation failed for domain {domain}: target version {target} "
                    f"must be less than current version {current}"
                )

    def execution_order(self, domains: List[str]) -> List[str]:
        """Dependents first, then the domains they depend on."""
        return dependency_safe_order(self.config, domains, reverse=True)
