"""
Backup coordinator.

Accounts for full-database, table-level, content and configuration
backups before a migration and marks each domain's backup with an
integrity hash. Byte transfer belongs to the storage collaborator; this
module only records sizes, counts and location references.
"""

import hashlib
import logging
import uuid
from datetime import UTC, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from schema_pipeline.audit.recorder import AuditTrailRecorder, BoundAuditTrail
from schema_pipeline.collaborators.base import BackupDataSource, StorageBackend
from schema_pipeline.core.exceptions import (
    ApprovalError,
    BackupApprovalError,
    BackupFailure,
)
from schema_pipeline.core.execution import call_with_timeout
from schema_pipeline.models.approval import ApprovalRequest, ApprovalSubject
from schema_pipeline.models.audit import AuditEventType, AuditResult, BackupDetail
from schema_pipeline.models.config import PipelineConfig
from schema_pipeline.models.results import BackupResult, DomainBackupResult
from schema_pipeline.models.strategy import Environment, MigrationStrategy
from schema_pipeline.gating.approval import ApprovalGate

logger = logging.getLogger(__name__)

BACKUP_CONFIRMATION_TOKEN = "APPROVE-BACKUP"


class BackupPolicy(BaseModel):
    """Which backup steps run for an environment."""
    
    model_config = ConfigDict(frozen=True)
    
    full_database: bool = True
    table_level: bool = True
    content: bool = False
    configuration: bool = True
    integrity_validation: bool = True
    point_in_time_reference: bool = False
    manual_approval: bool = False
    retention_days: int = 30
    
    @classmethod
    def for_strategy(cls, strategy: MigrationStrategy, retention_days: int) -> "BackupPolicy":
        production = strategy.environment == Environment.PRODUCTION
        return cls(
            content=production,
            point_in_time_reference=strategy.create_recovery_point,
            manual_approval=strategy.manual_backup_approval,
            retention_days=retention_days,
        )


def integrity_hash(domain_result: DomainBackupResult) -> str:
    """Integrity marker over a domain backup's identifying metadata."""
    payload = (
        f"{domain_result.domain}:{domain_result.location}:"
        f"{domain_result.record_count}:{domain_result.byte_size}"
    )
    return "sha256-" + hashlib.sha256(payload.encode()).hexdigest()


class BackupCoordinator:
    """Coordinates backup accounting for a migration run."""
    
    ACTOR = "backup-coordinator"
    
    def __init__(
        self,
        config: PipelineConfig,
        data_source: BackupDataSource,
        storage: StorageBackend,
        audit_recorder: AuditTrailRecorder,
        approval_gate: Optional[ApprovalGate] = None
    ):
        self.config = config
        self.data_source = data_source
        self.storage = storage
        self.audit_recorder = audit_recorder
        self.approval_gate = approval_gate
    
    @property
    def _call_timeout(self):
        return self.config.timeouts.call_timeout
    
    async def create_backup(
        self,
        strategy: MigrationStrategy,
        correlation_id: Optional[str] = None
    ) -> BackupResult:
        """
        Run every backup step the environment's policy enables.
        
        Args:
            strategy: Strategy of the run requesting the backup
            correlation_id: Correlation id of that run, for the audit trail
            
        Returns:
            Backup accounting with a manifest location
            
        Raises:
            BackupFailure: If any step fails; no partial result is returned
        """
        policy = BackupPolicy.for_strategy(strategy, self.config.backup_retention_days)
        env = strategy.environment
        audit = self.audit_recorder.bind(correlation_id or self.audit_recorder.new_correlation_id(), self.ACTOR)
        
        timestamp = datetime.now(UTC)
        backup_id = f"backup-{env.value}-{timestamp:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"
        result = BackupResult(backup_id=backup_id, environment=env, created_at=timestamp)
        
        logger.info(f"Creating backup {backup_id} for {env.value}")
        
        try:
            if policy.manual_approval:
                result.approved_by = await self.request_manual_approval(env, backup_id)
            if policy.full_database:
                await self.backup_full_database(result)
            if policy.table_level:
                result.domains = await self.backup_tables(backup_id)
            if policy.content:
                await self.backup_content(result)
            if policy.configuration:
                await self.backup_configuration(result)
            if policy.integrity_validation:
                self.validate_integrity(result.domains)
            if policy.point_in_time_reference:
                result.point_in_time_reference = f"pit-{env.value}-{timestamp:%Y%m%d%H%M%S}"
            
            result.location = await call_with_timeout(
                self.storage.write_manifest(backup_id, result.model_dump(mode="json")),
                self._call_timeout,
                "Backup manifest write"
            )
        except BackupFailure as e:
            self._record(audit, result, error=e.message)
            raise
        except Exception as e:
            self._record(audit, result, error=str(e))
            raise BackupFailure(f"Failed to create backup: {str(e)}") from e
        
        self._record(audit, result)
        await self._purge_expired(policy)
        return result
    
    async def request_manual_approval(self, environment: Environment, backup_id: str) -> Optional[str]:
        """
        Ask a human to confirm the backup with the confirmation token.
        
        Raises:
            BackupApprovalError: If confirmation is refused, wrong or times out
        """
        if self.approval_gate is None:
            raise BackupApprovalError("Manual backup approval is required but no approval gate is configured")
        
        request = ApprovalRequest(
            subject=ApprovalSubject.BACKUP,
            environment=environment,
            requested_by=self.ACTOR,
            summary=f"Confirm backup {backup_id} before migration",
            risk_level="HIGH",
            backup_required=True,
            confirmation_token=BACKUP_CONFIRMATION_TOKEN,
        )
        try:
            response = await self.approval_gate.request_approval(
                request,
                timeout=self.config.timeouts.backup_approval_timeout
            )
        except ApprovalError as e:
            raise BackupApprovalError(f"Backup approval failed: {e.message}") from e
        
        if not response.approved:
            raise BackupApprovalError(
                f"Backup approval rejected: {response.rejection_reason or 'no reason given'}"
            )
        if response.confirmation_token != BACKUP_CONFIRMATION_TOKEN:
            raise BackupApprovalError("Backup approval was not confirmed with the required token")
        
        return response.approver
    
    async def backup_full_database(self, result: BackupResult):
        """Record full-database size and its storage location."""
        result.database_size_bytes = await call_with_timeout(
            self.data_source.database_size(), self._call_timeout, "Database size query"
        )
        result.database_location = await call_with_timeout(
            self.storage.allocate(result.backup_id, "database.dump"), self._call_timeout, "Backup allocation"
        )
        logger.info(f"Full database backup accounted: {result.database_size_bytes} bytes")
    
    async def backup_tables(self, backup_id: str) -> List[DomainBackupResult]:
        """
        Table-level backup of every declared domain.
        
        Raises:
            BackupFailure: On the first domain that fails
        """
        results = []
        for domain in self.config.domains:
            domain_result = await self._backup_domain_tables(backup_id, domain)
            if not domain_result.success:
                raise BackupFailure(
                    f"Table-level backup failed for domain {domain}: {domain_result.error}",
                    details={"domain": domain},
                )
            results.append(domain_result)
        return results
    
    async def _backup_domain_tables(self, backup_id: str, domain: str) -> DomainBackupResult:
        domain_result = DomainBackupResult(domain=domain)
        try:
            for table_name in self.config.domain_tables.get(domain, []):
                stats = await call_with_timeout(
                    self.data_source.table_statistics(table_name),
                    self._call_timeout,
                    f"Statistics for table {table_name}"
                )
                domain_result.table_count += 1
                domain_result.record_count += stats.row_count
                domain_result.byte_size += stats.byte_size
            
            domain_result.location = await call_with_timeout(
                self.storage.allocate(backup_id, f"{domain}.tables"),
                self._call_timeout,
                "Backup allocation"
            )
            domain_result.success = True
        except Exception as e:
            logger.error(f"Table-level backup of domain {domain} failed: {e}")
            domain_result.error = str(e)
        
        return domain_result
    
    async def backup_content(self, result: BackupResult):
        """Account for binary content references."""
        inventory = await call_with_timeout(
            self.data_source.content_inventory(), self._call_timeout, "Content inventory"
        )
        result.content_references = inventory.reference_count
        result.content_bytes = inventory.total_bytes
        result.content_location = await call_with_timeout(
            self.storage.allocate(result.backup_id, "content.manifest"), self._call_timeout, "Backup allocation"
        )
    
    async def backup_configuration(self, result: BackupResult):
        """Account for configuration artifacts."""
        for artifact in self.config.config_artifacts:
            await call_with_timeout(
                self.storage.allocate(result.backup_id, f"config/{artifact}"),
                self._call_timeout,
                "Backup allocation"
            )
            result.config_artifacts.append(artifact)
    
    def validate_integrity(self, domains: List[DomainBackupResult]) -> List[DomainBackupResult]:
        """
        Assign integrity markers.
        
        A domain passes only if its backup succeeded and captured at least
        one record; an empty but successful backup is flagged invalid.
        """
        for domain_result in domains:
            domain_result.integrity_hash = integrity_hash(domain_result)
            domain_result.validations_passed = domain_result.success and domain_result.record_count > 0
            if not domain_result.validations_passed:
                logger.warning(
                    f"Backup integrity validation failed for domain {domain_result.domain} "
                    f"(success={domain_result.success}, records={domain_result.record_count})"
                )
        return domains
    
    async def create_recovery_point(self, environment: Environment) -> str:
        """Register a point-in-time recovery reference with storage."""
        reference = f"pit-{environment.value}-{datetime.now(UTC):%Y%m%d%H%M%S}"
        location = await call_with_timeout(
            self.storage.create_recovery_point(environment, reference),
            self._call_timeout,
            "Recovery point creation"
        )
        logger.info(f"Recovery point {reference} created at {location}")
        return reference
    
    async def _purge_expired(self, policy: BackupPolicy):
        try:
            await call_with_timeout(
                self.storage.purge_expired(policy.retention_days),
                self._call_timeout,
                "Backup retention purge"
            )
        except Exception as e:
            logger.warning(f"Failed to purge expired backups: {e}")
    
    def _record(self, audit: BoundAuditTrail, result: BackupResult, error: Optional[str] = None):
        audit.record(
            AuditEventType.BACKUP_CREATED if error is None else AuditEventType.BACKUP_FAILED,
            target=result.backup_id,
            result=AuditResult.SUCCESS if error is None else AuditResult.FAILURE,
            details=BackupDetail(
                backup_id=result.backup_id,
                location=result.location,
                domain_count=len(result.domains),
                total_bytes=result.total_bytes,
                error=error,
            ),
        )
