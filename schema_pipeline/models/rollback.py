"""
Rollback models for the Schema Pipeline.

This module defines the rollback plan, its dependency edges, risk levels
and the data-loss descriptors produced while rolling back.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field

from schema_pipeline.core.exceptions import PreconditionError
from schema_pipeline.models.strategy import Environment


class RiskLevel(str, Enum):
    """Rollback risk levels, ordered Low < Moderate < High < Critical."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"
    
    @property
    def rank(self) -> int:
        return _RISK_RANK[self]
    
    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank
    
    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank
    
    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank
    
    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank
    
    @classmethod
    def highest(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Return the most severe level, or LOW for an empty iterable."""
        return max(levels, default=cls.LOW)


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MODERATE: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ApprovalStatus(str, Enum):
    """Approval status of a rollback plan."""
    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"


class RollbackDependency(BaseModel):
    """Dependency edge between a domain and a domain that requires it."""
    domain: str
    required_by: str
    reason: str
    can_proceed: bool = True


class RollbackPlan(BaseModel):
    """
    Dependency-checked rollback plan.
    
    The plan is frozen at creation. Only the approval status changes, and it
    may leave PENDING exactly once through ``transition_approval``.
    """
    model_config = ConfigDict(frozen=True)
    
    plan_id: str
    environment: Environment
    requester: str
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    target_versions: Dict[str, int]
    reason: str
    risk_level: RiskLevel = RiskLevel.LOW
    domain_risks: Dict[str, RiskLevel] = Field(default_factory=dict)
    current_versions: Dict[str, int] = Field(default_factory=dict)
    estimated_duration: timedelta = Field(default=timedelta(0))
    dependencies: List[RollbackDependency] = Field(default_factory=list)
    
    _approval_status: ApprovalStatus = PrivateAttr(default=ApprovalStatus.PENDING)
    _approved_by: Optional[str] = PrivateAttr(default=None)
    _approval_decided_at: Optional[datetime] = PrivateAttr(default=None)
    
    @computed_field
    @property
    def approval_status(self) -> ApprovalStatus:
        return self._approval_status
    
    @computed_field
    @property
    def approved_by(self) -> Optional[str]:
        return self._approved_by
    
    @computed_field
    @property
    def approval_decided_at(self) -> Optional[datetime]:
        return self._approval_decided_at
    
    def transition_approval(self, status: ApprovalStatus, decided_by: Optional[str] = None):
        """Move the plan out of PENDING. Any second transition is rejected."""
        if self._approval_status != ApprovalStatus.PENDING:
            raise PreconditionError(
                f"Rollback plan {self.plan_id} is already {self._approval_status.value}"
            )
        if status == ApprovalStatus.PENDING:
            raise PreconditionError("Approval status can only transition away from pending")
        
        self._approval_status = status
        self._approved_by = decided_by
        self._approval_decided_at = datetime.now(UTC)
    
    @property
    def is_granted(self) -> bool:
        return self._approval_status == ApprovalStatus.GRANTED


class DestructiveOperationKind(str, Enum):
    """Destructive schema operations implied by a down migration."""
    DROP_COLUMN = "drop_column"
    DROP_TABLE = "drop_table"
    MODIFY_COLUMN = "modify_column"


class DestructiveOperation(BaseModel):
    """A destructive operation found in the version range being rolled back."""
    kind: DestructiveOperationKind
    object_name: str
    version: int


class DataLossWarning(BaseModel):
    """Explicit data-loss warning for a single destructive operation."""
    domain: str
    operation: DestructiveOperation
    risk: RiskLevel
    message: str


class RollbackRecord(BaseModel):
    """Persisted history row for one domain rollback."""
    rollback_id: str
    domain: str
    from_version: int
    to_version: int
    executed_at: datetime
    executed_by: str
    reason: str
    success: bool
