"""
Core module for the Schema Pipeline.

This module contains the error taxonomy and execution helpers
used throughout the application.
"""

from schema_pipeline.core.exceptions import (
    SchemaPipelineError,
    ConfigurationError,
    PreconditionError,
    OperationTimeoutError,
    GateFailure,
    MaintenanceWindowError,
    ValidationGateError,
    SecurityGateError,
    ComplianceGateError,
    ApprovalError,
    BackupFailure,
    BackupApprovalError,
    DomainExecutionFailure,
    PostConditionFailure,
    RollbackPolicyError,
    RollbackPlanningFailure,
    RollbackExecutionFailure,
    RepositoryError,
    MigrationEngineError,
)
from schema_pipeline.core.execution import call_with_timeout

__all__ = [
    "SchemaPipelineError",
    "ConfigurationError",
    "PreconditionError",
    "OperationTimeoutError",
    "GateFailure",
    "MaintenanceWindowError",
    "ValidationGateError",
    "SecurityGateError",
    "ComplianceGateError",
    "ApprovalError",
    "BackupFailure",
    "BackupApprovalError",
    "DomainExecutionFailure",
    "PostConditionFailure",
    "RollbackPolicyError",
    "RollbackPlanningFailure",
    "RollbackExecutionFailure",
    "RepositoryError",
    "MigrationEngineError",
    "call_with_timeout",
]
