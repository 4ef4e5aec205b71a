"""
Report models returned by external collaborators.

These are the values crossing the boundary between the orchestration core
and the environment, security, compliance and continuity checks.
"""

from datetime import UTC, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schema_pipeline.models.strategy import Environment


class EnvironmentReport(BaseModel):
    """Health report for an environment and its dependencies."""
    environment: Environment
    overall_healthy: bool
    dependencies: Dict[str, bool] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    
    def unhealthy_dependencies(self) -> List[str]:
        """Names of dependencies reported as unhealthy, sorted."""
        return sorted(name for name, healthy in self.dependencies.items() if not healthy)


class ScoredCheckReport(BaseModel):
    """Pass/fail report with a numeric score in the range 0-100."""
    passed: bool
    score: float = Field(ge=0.0, le=100.0)
    checks: Dict[str, bool] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    
    @classmethod
    def from_checks(cls, checks: Dict[str, bool], issues: List[str]) -> "ScoredCheckReport":
        """Score a set of named checks as the percentage that passed."""
        if not checks:
            return cls(passed=False, score=0.0, checks={}, issues=issues or ["No checks were evaluated"])
        passed_count = sum(1 for ok in checks.values() if ok)
        score = passed_count / len(checks) * 100
        return cls(passed=passed_count == len(checks), score=score, checks=checks, issues=issues)


class SecurityReport(ScoredCheckReport):
    """Security validation result."""
    pass


class ComplianceReport(ScoredCheckReport):
    """Compliance validation result."""
    pass


class BusinessContinuityReport(BaseModel):
    """Business impact assessment after migration. Scores range 0-10."""
    impact_score: float = Field(ge=0.0, le=10.0)
    issues: List[str] = Field(default_factory=list)


class DomainMigrationOutcome(BaseModel):
    """Outcome of running one domain's pending migrations."""
    domain: str
    success: bool
    error: Optional[str] = None
    from_version: Optional[int] = None
    to_version: Optional[int] = None


class DomainStatus(BaseModel):
    """Schema-version state of a domain."""
    domain: str
    current_version: int
    latest_version: int
    pending_migrations: int
    dirty: bool = False
    
    @property
    def ready(self) -> bool:
        return not self.dirty


class TableStatistics(BaseModel):
    """Row count and on-disk size of one table."""
    table: str
    row_count: int = Field(ge=0)
    byte_size: int = Field(default=0, ge=0)
    soft_delete_filtered: bool = False


class ContentInventory(BaseModel):
    """Binary content references known to the content store."""
    reference_count: int = Field(default=0, ge=0)
    total_bytes: int = Field(default=0, ge=0)
