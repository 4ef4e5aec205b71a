"""Approval request/response models exchanged with the approval workflow."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schema_pipeline.models.strategy import Environment


class ApprovalSubject(str, Enum):
    """What an approval request asks permission for."""
    MIGRATION = "migration"
    ROLLBACK = "rollback"
    BACKUP = "backup"


class RollbackPlanSummary(BaseModel):
    """Rollback plan attached to a migration approval request."""
    domains: List[str] = Field(default_factory=list)
    estimated_duration: timedelta = Field(default=timedelta(0))
    description: str = ""


class ApprovalRequest(BaseModel):
    """Structured request sent to the approval workflow."""
    subject: ApprovalSubject
    environment: Environment
    requested_by: str
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    summary: str
    risk_level: str
    expected_duration: timedelta = Field(default=timedelta(0))
    pending_migrations: Dict[str, int] = Field(default_factory=dict)
    rollback_plan: Optional[RollbackPlanSummary] = None
    backup_required: bool = False
    confirmation_token: Optional[str] = None


class ApprovalResponse(BaseModel):
    """Decision returned by the approval workflow."""
    approved: bool
    approver: Optional[str] = None
    decided_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    rejection_reason: Optional[str] = None
    confirmation_token: Optional[str] = None
