"""
Live environment, security, compliance and continuity checks.

Every check reads current infrastructure state through the shared
InfrastructureClient. Security and compliance scores are the percentage
of named checks that passed.
"""

import logging
from typing import Dict, List

from schema_pipeline.collaborators.base import (
    BusinessContinuityAssessor,
    ComplianceManager,
    EnvironmentValidator,
    SchemaVersionRepository,
    SecurityValidator,
)
from schema_pipeline.collaborators.infrastructure import InfrastructureClient
from schema_pipeline.core.exceptions import RepositoryError
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.reports import (
    BusinessContinuityReport,
    ComplianceReport,
    EnvironmentReport,
    SecurityReport,
)
from schema_pipeline.models.strategy import Environment

logger = logging.getLogger(__name__)

MIN_COMPLIANT_RETENTION_DAYS = 30


class HttpEnvironmentValidator(EnvironmentValidator):
    """Checks the database and every configured dependency endpoint."""
    
    def __init__(self, client: InfrastructureClient, endpoints: Dict[str, str]):
        self.client = client
        self.endpoints = endpoints
    
    async def validate_environment(self, environment: Environment) -> EnvironmentReport:
        dependencies: Dict[str, bool] = {}
        issues: List[str] = []
        
        healthy, error = await self.client.ping_database()
        dependencies["database"] = healthy
        if not healthy:
            issues.append(f"database: {error}")
        
        for name, url in sorted(self.endpoints.items()):
            healthy, error = await self.client.probe(url)
            dependencies[name] = healthy
            if not healthy:
                issues.append(f"{name}: {error}")
        
        logger.info(f"Environment {environment.value}: {len(issues)} issue(s) across {len(dependencies)} dependencies")
        return EnvironmentReport(
            environment=environment,
            overall_healthy=all(dependencies.values()),
            dependencies=dependencies,
            issues=issues,
        )


class InfrastructureSecurityValidator(SecurityValidator):
    """Scores transport security, reachability and schema cleanliness."""
    
    def __init__(
        self,
        client: InfrastructureClient,
        repository: SchemaVersionRepository,
        config: PipelineConfig
    ):
        self.client = client
        self.repository = repository
        self.config = config
    
    async def validate_security(self, environment: Environment, phase: str) -> SecurityReport:
        checks: Dict[str, bool] = {}
        issues: List[str] = []
        
        insecure = [name for name, url in self.config.health_endpoints.items() if not url.startswith("https://")]
        checks["endpoints_use_tls"] = not insecure
        if insecure:
            issues.append(f"Endpoints without TLS: {', '.join(sorted(insecure))}")
        
        reachable, error = await self.client.ping_database()
        checks["database_reachable"] = reachable
        if not reachable:
            issues.append(f"Database unreachable: {error}")
        
        unhealthy = []
        for name, url in sorted(self.config.health_endpoints.items()):
            healthy, _ = await self.client.probe(url)
            if not healthy:
                unhealthy.append(name)
        checks["dependencies_healthy"] = not unhealthy
        if unhealthy:
            issues.append(f"Unhealthy dependencies: {', '.join(unhealthy)}")
        
        dirty = []
        if reachable:
            for domain in self.config.domains:
                try:
                    if await self.repository.is_dirty(domain):
                        dirty.append(domain)
                except RepositoryError as e:
                    issues.append(str(e))
                    dirty.append(domain)
        checks["schema_versions_clean"] = reachable and not dirty
        if dirty:
            issues.append(f"Dirty schema versions: {', '.join(dirty)}")
        
        logger.info(f"Security checks ({phase}) for {environment.value}: {checks}")
        return SecurityReport.from_checks(checks, issues)


class InfrastructureComplianceManager(ComplianceManager):
    """Scores audit, retention, approval and version-bookkeeping controls."""
    
    def __init__(self, repository: SchemaVersionRepository, config: PipelineConfig):
        self.repository = repository
        self.config = config
    
    async def validate_compliance(self, environment: Environment) -> ComplianceReport:
        checks: Dict[str, bool] = {}
        issues: List[str] = []
        
        checks["audit_log_configured"] = bool(self.config.audit_log_file)
        if not checks["audit_log_configured"]:
            issues.append("No audit log file configured")
        
        checks["backup_retention_configured"] = self.config.backup_retention_days >= MIN_COMPLIANT_RETENTION_DAYS
        if not checks["backup_retention_configured"]:
            issues.append(
                f"Backup retention of {self.config.backup_retention_days} days is below "
                f"{MIN_COMPLIANT_RETENTION_DAYS}"
            )
        
        checks["approvers_configured"] = bool(self.config.approvers.get(environment))
        if not checks["approvers_configured"]:
            issues.append(f"No approvers configured for {environment.value}")
        
        unrecorded = []
        for domain in self.config.domains:
            try:
                await self.repository.current_version(domain)
            except RepositoryError as e:
                unrecorded.append(domain)
                issues.append(str(e))
        checks["schema_versions_recorded"] = not unrecorded
        
        return ComplianceReport.from_checks(checks, issues)


class HealthBasedContinuityAssessor(BusinessContinuityAssessor):
    """Impact score of 0-10 proportional to the share of unhealthy dependencies."""
    
    def __init__(self, validator: EnvironmentValidator):
        self.validator = validator
    
    async def assess(self, environment: Environment) -> BusinessContinuityReport:
        report = await self.validator.validate_environment(environment)
        if not report.dependencies:
            return BusinessContinuityReport(impact_score=0.0, issues=report.issues)
        
        unhealthy = report.unhealthy_dependencies()
        score = 10.0 * len(unhealthy) / len(report.dependencies)
        return BusinessContinuityReport(
            impact_score=score,
            issues=[f"{name} is unhealthy after migration" for name in unhealthy],
        )
