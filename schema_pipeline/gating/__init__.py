"""
Run gating: environment strategies, maintenance windows and approvals.
"""

from schema_pipeline.gating.approval import ApprovalGate
from schema_pipeline.gating.strategy import MigrationStrategyProvider

__all__ = ["ApprovalGate", "MigrationStrategyProvider"]
