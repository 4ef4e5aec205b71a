"""
Environment-derived migration strategies.

Development is aggressive, staging is careful and approval-gated, and
production is conservative: manual approval, full backups, security and
compliance gating, a single attempt per domain and a maintenance window.
"""

import logging
from datetime import time, timedelta
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from schema_pipeline.core.exceptions import ConfigurationError
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.strategy import Environment, MaintenanceWindow, MigrationStrategy

logger = logging.getLogger(__name__)


def _base_policies() -> Dict[Environment, Dict[str, Any]]:
    return {
        Environment.DEVELOPMENT: {
            "validate_before": True,
            "validate_after": True,
            "require_approval": False,
            "backup_before_migrate": False,
            "max_retries": 3,
            "retry_delay": timedelta(seconds=5),
            "critical_dependencies": ("database",),
        },
        Environment.STAGING: {
            "validate_before": True,
            "validate_after": True,
            "require_approval": True,
            "backup_before_migrate": True,
            "max_retries": 3,
            "retry_delay": timedelta(seconds=30),
            "validate_before_rollback": True,
            "validate_after_rollback": True,
            "max_rollback_depth": 10,
            "critical_dependencies": ("database",),
        },
        Environment.PRODUCTION: {
            "validate_before": True,
            "validate_after": True,
            "require_approval": True,
            "backup_before_migrate": True,
            "require_security_review": True,
            "require_compliance": True,
            "create_recovery_point": True,
            "check_business_continuity": True,
            "fail_fast": True,
            "manual_backup_approval": True,
            "validate_before_rollback": True,
            "validate_after_rollback": True,
            "allow_data_loss": False,
            "max_rollback_depth": 3,
            "max_retries": 1,
            "retry_delay": timedelta(minutes=5),
            "maintenance_window": MaintenanceWindow(
                start=time(2, 0),
                end=time(6, 0),
                timezone="UTC",
                allow_override=False,
                notification_lead=timedelta(hours=48),
            ),
            "critical_dependencies": ("database", "cache", "storage", "secrets"),
        },
    }


class MigrationStrategyProvider:
    """Builds a fresh, immutable MigrationStrategy for an environment."""
    
    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
    
    @staticmethod
    def resolve_environment(environment: Union[str, Environment]) -> Environment:
        """Map an environment name to the Environment enum."""
        if isinstance(environment, Environment):
            return environment
        try:
            return Environment(str(environment).strip().lower())
        except ValueError:
            valid = ", ".join(e.value for e in Environment)
            raise ConfigurationError(
                f"Unsupported environment: {environment}. Expected one of: {valid}"
            )
    
    def get_strategy(self, environment: Union[str, Environment]) -> MigrationStrategy:
        """
        Produce the strategy for an environment.
        
        Configured overrides are applied on top of the built-in policy.
        Approval cannot be switched off outside development.
        
        Raises:
            ConfigurationError: If the environment is unknown or an override is invalid
        """
        env = self.resolve_environment(environment)
        settings = _base_policies()[env]
        overrides = self.config.strategy_overrides.get(env, {})
        
        if env != Environment.DEVELOPMENT and overrides.get("require_approval") is False:
            raise ConfigurationError(f"Approval cannot be disabled for the {env.value} environment")
        
        settings.update(overrides)
        try:
            strategy = MigrationStrategy(environment=env, **settings)
        except (PydanticValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid strategy override for {env.value}: {str(e)}") from e
        
        logger.debug(f"Strategy for {env.value}: {strategy.model_dump()}")
        return strategy
