"""
Schema Pipeline

Environment-aware orchestration of multi-domain schema migrations and
dependency-safe rollbacks, with approval gating, backup accounting and
an append-only audit trail.
"""

__version__ = "0.1.0"
__author__ = "Schema Pipeline Team"

from schema_pipeline.models.strategy import Environment, MaintenanceWindow, MigrationStrategy
from schema_pipeline.models.results import MigrationResult, RollbackResult
from schema_pipeline.models.rollback import ApprovalStatus, RiskLevel, RollbackPlan

__all__ = [
    "Environment",
    "MaintenanceWindow",
    "MigrationStrategy",
    "MigrationResult",
    "RollbackResult",
    "ApprovalStatus",
    "RiskLevel",
    "RollbackPlan",
]
