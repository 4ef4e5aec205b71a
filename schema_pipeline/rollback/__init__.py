"""
Rollback planning and execution for the Schema Pipeline.
"""

from schema_pipeline.rollback.executor import RollbackExecutor, recovery_steps_for
from schema_pipeline.rollback.planner import RollbackPlanner, dependency_safe_order

__all__ = [
    "RollbackPlanner",
    "RollbackExecutor",
    "dependency_safe_order",
    "recovery_steps_for",
]
