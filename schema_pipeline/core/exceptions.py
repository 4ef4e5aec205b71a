"""
Custom exceptions for the Schema Pipeline.

Gate and planning failures abort a run before any schema mutation and are
raised to the caller. Domain-level failures are captured into results
instead; these classes still describe them so the captured errors are typed.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional


class SchemaPipelineError(Exception):
    """Base exception class for Schema Pipeline errors."""
    
    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(SchemaPipelineError):
    """Raised when there's an error in configuration."""
    pass


class PreconditionError(SchemaPipelineError):
    """Raised when an operation is invoked in a state that does not allow it."""
    pass


class OperationTimeoutError(SchemaPipelineError):
    """Raised when an external call or approval wait exceeds its timeout."""
    
    def __init__(self, operation: str, timeout: timedelta, **kwargs):
        super().__init__(
            f"{operation} timed out after {timeout.total_seconds():g}s",
            **kwargs
        )
        self.operation = operation
        self.timeout = timeout


class GateFailure(SchemaPipelineError):
    """Raised when a pre-mutation gate rejects the run."""
    
    gate = "gate"
    
    def __init__(self, message: str, result: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        # Partially populated MigrationResult, attached by the orchestrator
        self.result = result


class MaintenanceWindowError(GateFailure):
    """Raised when execution is attempted outside the maintenance window."""
    gate = "maintenance_window"


class ValidationGateError(GateFailure):
    """Raised when environment validation fails."""
    
    gate = "pre_validation"
    
    def __init__(
        self,
        message: str,
        failed_checks: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.failed_checks = failed_checks or []


class SecurityGateError(GateFailure):
    """Raised when security validation fails or scores below the minimum."""
    gate = "security"


class ComplianceGateError(GateFailure):
    """Raised when compliance validation fails or scores below the minimum."""
    gate = "compliance"


class ApprovalError(GateFailure):
    """Raised when approval is denied or cannot be obtained."""
    gate = "approval"


class RollbackPolicyError(GateFailure):
    """Raised when a rollback exceeds the environment's depth or data-loss policy."""
    gate = "rollback_policy"


class BackupFailure(GateFailure):
    """Raised when a backup operation fails."""
    gate = "backup"


class BackupApprovalError(BackupFailure):
    """Raised when a manual backup confirmation is refused or times out."""
    pass


class DomainExecutionFailure(SchemaPipelineError):
    """A domain migration that exhausted its retries."""
    
    def __init__(self, domain: str, attempts: int, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.domain = domain
        self.attempts = attempts


class PostConditionFailure(SchemaPipelineError):
    """A post-migration check failed. Downgraded to a warning by the orchestrator."""
    
    def __init__(self, check: str, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.check = check


class RollbackPlanningFailure(SchemaPipelineError):
    """Raised when a rollback plan cannot be created."""
    
    def __init__(self, message: str, dependencies: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.dependencies = dependencies or []


class RollbackExecutionFailure(SchemaPipelineError):
    """A rollback that stopped part-way; carries the synthesized recovery steps."""
    
    def __init__(self, message: str, recovery_steps: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.recovery_steps = recovery_steps or []


class RepositoryError(SchemaPipelineError):
    """Raised when schema-version bookkeeping cannot be read or written."""
    pass


class MigrationEngineError(SchemaPipelineError):
    """Raised when migration files cannot be loaded or applied."""
    pass
