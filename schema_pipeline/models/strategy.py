"""
Strategy models for the Schema Pipeline.

A MigrationStrategy is derived from the target environment at the start of
every run. It is immutable and never persisted.
"""

from datetime import datetime, time, timedelta
from enum import Enum
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Environment(str, Enum):
    """Deployment environments, in order of increasing caution."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class MaintenanceWindow(BaseModel):
    """Time-of-day range in which disruptive operations are permitted."""
    
    model_config = ConfigDict(frozen=True)
    
    start: time
    end: time
    timezone: str = "UTC"
    allow_override: bool = False
    notification_lead: timedelta = Field(default=timedelta(hours=48))
    
    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v
    
    @model_validator(mode='after')
    def validate_bounds(self):
        if self.start >= self.end:
            raise ValueError("Maintenance window start must be before its end")
        return self
    
    def window_for(self, moment: datetime) -> Tuple[datetime, datetime]:
        """Return the concrete window bounds on the calendar day of ``moment``."""
        zone = ZoneInfo(self.timezone)
        local = moment.astimezone(zone)
        day = local.date()
        return (
            datetime.combine(day, self.start, tzinfo=zone),
            datetime.combine(day, self.end, tzinfo=zone),
        )
    
    def contains(self, moment: datetime) -> bool:
        """Check whether ``moment`` (timezone aware) falls inside the window."""
        window_start, window_end = self.window_for(moment)
        return window_start <= moment <= window_end


class MigrationStrategy(BaseModel):
    """Environment-derived migration policy."""
    
    model_config = ConfigDict(frozen=True)
    
    environment: Environment
    validate_before: bool = True
    validate_after: bool = True
    require_approval: bool = False
    backup_before_migrate: bool = False
    allow_rollback: bool = True
    validate_before_rollback: bool = False
    validate_after_rollback: bool = False
    allow_data_loss: bool = True
    max_rollback_depth: Optional[int] = Field(default=None, ge=1)
    require_security_review: bool = False
    require_compliance: bool = False
    create_recovery_point: bool = False
    check_business_continuity: bool = False
    fail_fast: bool = False
    manual_backup_approval: bool = False
    max_retries: int = Field(default=3, ge=1)
    retry_delay: timedelta = Field(default=timedelta(seconds=5))
    maintenance_window: Optional[MaintenanceWindow] = None
    critical_dependencies: Tuple[str, ...] = ("database",)
    
    @field_validator('retry_delay')
    @classmethod
    def validate_retry_delay(cls, v):
        if v < timedelta(0):
            raise ValueError("Retry delay cannot be negative")
        return v
