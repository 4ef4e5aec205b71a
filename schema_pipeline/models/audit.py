"""
Audit trail models for the Schema Pipeline.

Each event kind carries its own typed detail record. Detail records are a
discriminated union keyed on ``kind`` so serialized trails load back into
the right class.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    """Audit event names."""
    MIGRATION_INITIATED = "MIGRATION_INITIATED"
    GATE_PASSED = "GATE_PASSED"
    GATE_FAILED = "GATE_FAILED"
    GATE_WARNING = "GATE_WARNING"
    DOMAIN_MIGRATION_SKIPPED = "DOMAIN_MIGRATION_SKIPPED"
    DOMAIN_MIGRATION_SUCCEEDED = "DOMAIN_MIGRATION_SUCCEEDED"
    DOMAIN_MIGRATION_FAILED = "DOMAIN_MIGRATION_FAILED"
    MIGRATION_COMPLETED = "MIGRATION_COMPLETED"
    MIGRATION_ABORTED = "MIGRATION_ABORTED"
    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_FAILED = "BACKUP_FAILED"
    ROLLBACK_PLAN_CREATED = "ROLLBACK_PLAN_CREATED"
    ROLLBACK_PLAN_REJECTED = "ROLLBACK_PLAN_REJECTED"
    ROLLBACK_APPROVAL_DECIDED = "ROLLBACK_APPROVAL_DECIDED"
    ROLLBACK_INITIATED = "ROLLBACK_INITIATED"
    DOMAIN_ROLLBACK_COMPLETED = "DOMAIN_ROLLBACK_COMPLETED"
    ROLLBACK_STEP_FAILED = "ROLLBACK_STEP_FAILED"
    ROLLBACK_COMPLETED = "ROLLBACK_COMPLETED"
    ROLLBACK_ABORTED = "ROLLBACK_ABORTED"


class AuditResult(str, Enum):
    """Outcome recorded on an audit entry."""
    SUCCESS = "success"
    FAILURE = "failure"


class GateOutcome(str, Enum):
    """How a gate concluded."""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class RunStartedDetail(BaseModel):
    kind: Literal["run_started"] = "run_started"
    environment: str
    domains: List[str] = Field(default_factory=list)
    max_retries: int
    require_approval: bool
    fail_fast: bool


class GateDetail(BaseModel):
    kind: Literal["gate"] = "gate"
    gate: str
    outcome: GateOutcome
    message: str = ""
    score: Optional[float] = None
    issues: List[str] = Field(default_factory=list)


class DomainAttemptDetail(BaseModel):
    kind: Literal["domain_attempt"] = "domain_attempt"
    domain: str
    attempt: int
    max_attempts: int
    error: Optional[str] = None


class DomainSkipDetail(BaseModel):
    kind: Literal["domain_skipped"] = "domain_skipped"
    domain: str
    reason: str


class RunCompletedDetail(BaseModel):
    kind: Literal["run_completed"] = "run_completed"
    success: bool
    completed_count: int
    failed_count: int
    completed_domains: List[str] = Field(default_factory=list)
    failed_domains: List[str] = Field(default_factory=list)
    duration_seconds: float
    error: Optional[str] = None


class BackupDetail(BaseModel):
    kind: Literal["backup"] = "backup"
    backup_id: Optional[str] = None
    location: Optional[str] = None
    domain_count: int = 0
    total_bytes: int = 0
    error: Optional[str] = None


class RollbackPlanDetail(BaseModel):
    kind: Literal["rollback_plan"] = "rollback_plan"
    plan_id: Optional[str] = None
    risk_level: Optional[str] = None
    target_versions: Dict[str, int] = Field(default_factory=dict)
    approval_status: Optional[str] = None
    error: Optional[str] = None


class RollbackDomainDetail(BaseModel):
    kind: Literal["rollback_domain"] = "rollback_domain"
    domain: str
    from_version: Optional[int] = None
    to_version: int
    error: Optional[str] = None


AuditDetail = Annotated[
    Union[
        RunStartedDetail,
        GateDetail,
        DomainAttemptDetail,
        DomainSkipDetail,
        RunCompletedDetail,
        BackupDetail,
        RollbackPlanDetail,
        RollbackDomainDetail,
    ],
    Field(discriminator="kind"),
]


class AuditEntry(BaseModel):
    """Single immutable audit trail entry."""
    
    model_config = ConfigDict(frozen=True)
    
    sequence: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event: AuditEventType
    actor: str
    target: str
    result: AuditResult
    details: AuditDetail
    correlation_id: str
