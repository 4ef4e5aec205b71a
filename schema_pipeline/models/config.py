"""
Configuration models for the Schema Pipeline.

This module defines Pydantic models for the domain graph, gate and risk
thresholds, timeouts and connection settings used by every component.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from schema_pipeline.models.strategy import Environment


DEFAULT_DOMAIN_TABLES: Dict[str, List[str]] = {
    "content": ["content", "content_access_log", "content_virus_scan", "content_storage_backend"],
    "services": ["services", "service_categories", "featured_categories"],
}

DEFAULT_CONFIG_ARTIFACTS: List[str] = [
    "dapr-config.yaml",
    "middleware-config.yaml",
    "components-config.yaml",
]


class GateThresholds(BaseModel):
    """Minimum scores enforced by the security and compliance gates."""
    security_min_score: float = Field(default=95.0, ge=0.0, le=100.0)
    compliance_min_score: float = Field(default=98.0, ge=0.0, le=100.0)
    business_impact_warning_score: float = Field(default=5.0, ge=0.0, le=10.0)


class RiskThresholds(BaseModel):
    """Version-difference buckets used to classify rollback risk."""
    critical_above: int = Field(default=10, ge=0)
    high_above: int = Field(default=5, ge=0)
    moderate_above: int = Field(default=2, ge=0)
    
    @model_validator(mode='after')
    def validate_ordering(self):
        if not self.moderate_above <= self.high_above <= self.critical_above:
            raise ValueError("Risk thresholds must satisfy moderate_above <= high_above <= critical_above")
        return self


class TimeoutConfig(BaseModel):
    """Timeouts for external calls and approval waits."""
    call_timeout: timedelta = Field(default=timedelta(minutes=5))
    approval_timeout: timedelta = Field(default=timedelta(minutes=30))
    backup_approval_timeout: timedelta = Field(default=timedelta(minutes=30))
    
    @field_validator('call_timeout', 'approval_timeout', 'backup_approval_timeout')
    @classmethod
    def validate_positive(cls, v):
        if v <= timedelta(0):
            raise ValueError("Timeouts must be positive")
        return v


class PipelineConfig(BaseModel):
    """Top-level configuration shared by all pipeline components."""
    
    model_config = ConfigDict(
        use_enum_values=False,
        validate_assignment=True,
        extra="forbid",
    )
    
    name: str = "schema-pipeline"
    domains: List[str] = Field(default_factory=lambda: ["content", "services"])
    dependencies: Dict[str, List[str]] = Field(
        default_factory=lambda: {"content": [], "services": ["content"]}
    )
    domain_tables: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_DOMAIN_TABLES.items()}
    )
    config_artifacts: List[str] = Field(default_factory=lambda: list(DEFAULT_CONFIG_ARTIFACTS))
    gates: GateThresholds = Field(default_factory=GateThresholds)
    risk: RiskThresholds = Field(default_factory=RiskThresholds)
    rollback_base_duration: timedelta = Field(default=timedelta(seconds=30))
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    database_url: Optional[str] = None
    migrations_path: str = "migrations"
    backup_root: str = "backups"
    backup_retention_days: int = Field(default=30, ge=1)
    audit_log_file: Optional[str] = None
    health_endpoints: Dict[str, str] = Field(default_factory=dict)
    approvers: Dict[Environment, List[str]] = Field(default_factory=dict)
    strategy_overrides: Dict[Environment, Dict[str, Any]] = Field(default_factory=dict)
    
    @field_validator('domains')
    @classmethod
    def validate_domains(cls, v):
        if not v:
            raise ValueError("At least one domain must be declared")
        if len(set(v)) != len(v):
            raise ValueError("Domain names must be unique")
        return v
    
    @model_validator(mode='after')
    def validate_dependency_graph(self):
        declared = set(self.domains)
        for domain, required in self.dependencies.items():
            if domain not in declared:
                raise ValueError(f"Dependency graph references undeclared domain: {domain}")
            for dependency in required:
                if dependency not in declared:
                    raise ValueError(f"Domain {domain} depends on undeclared domain: {dependency}")
                if dependency == domain:
                    raise ValueError(f"Domain {domain} cannot depend on itself")
        
        visited = set()
        in_progress = set()
        
        def visit(domain: str):
            if domain in in_progress:
                raise ValueError(f"Circular dependency detected involving domain: {domain}")
            if domain in visited:
                return
            in_progress.add(domain)
            for dependency in self.dependencies.get(domain, []):
                visit(dependency)
            in_progress.remove(domain)
            visited.add(domain)
        
        for domain in self.domains:
            visit(domain)
        
        return self
    
    def dependencies_of(self, domain: str) -> List[str]:
        """Domains that ``domain`` depends on."""
        return list(self.dependencies.get(domain, []))
    
    def dependents_of(self, domain: str) -> List[str]:
        """Domains that depend on ``domain``, in declared order."""
        return [d for d in self.domains if domain in self.dependencies.get(d, [])]
