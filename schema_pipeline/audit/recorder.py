"""
Append-only audit trail shared by the orchestrator, backup coordinator
and rollback components.

Entries are numbered as they are appended and are never reordered or
removed. Each entry is also mirrored to the ``schema_pipeline.audit``
logger and, when configured, to a rotating JSON-lines audit file.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from schema_pipeline.models.audit import AuditDetail, AuditEntry, AuditEventType, AuditResult
from schema_pipeline.utils.logging import AuditLogger, LogCategory, LogEntry, get_logger


class AuditTrailRecorder:
    """Append-only sequence of AuditEntry records."""
    
    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self.audit_logger = audit_logger
        self._entries: List[AuditEntry] = []
        self._logger = get_logger("audit")
    
    @staticmethod
    def new_correlation_id() -> str:
        return str(uuid.uuid4())
    
    def record(
        self,
        event: AuditEventType,
        actor: str,
        target: str,
        result: AuditResult,
        details: AuditDetail,
        correlation_id: str
    ) -> AuditEntry:
        """Append an entry and return it."""
        entry = AuditEntry(
            sequence=len(self._entries) + 1,
            event=event,
            actor=actor,
            target=target,
            result=result,
            details=details,
            correlation_id=correlation_id,
        )
        self._entries.append(entry)
        
        level = logging.INFO if result == AuditResult.SUCCESS else logging.WARNING
        self._logger.log(
            level,
            f"{event.value} {target} ({result.value})",
            extra={
                'log_entry': LogEntry(
                    level=logging.getLevelName(level),
                    category=LogCategory.AUDIT,
                    logger=self._logger.name,
                    message=f"Audit event: {event.value}",
                    correlation_id=correlation_id,
                    metadata=entry.model_dump(mode="json"),
                )
            }
        )
        if self.audit_logger:
            self.audit_logger.log_entry(entry)
        
        return entry
    
    def bind(self, correlation_id: str, actor: str) -> "BoundAuditTrail":
        """Return a view that stamps every entry with the same run identity."""
        return BoundAuditTrail(self, correlation_id, actor)
    
    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        """Snapshot of all entries in append order."""
        return tuple(self._entries)
    
    def entries_for(self, correlation_id: str) -> List[AuditEntry]:
        """Entries belonging to a single run, in append order."""
        return [e for e in self._entries if e.correlation_id == correlation_id]
    
    def __len__(self) -> int:
        return len(self._entries)


class BoundAuditTrail:
    """Audit trail view bound to one run's correlation id and actor."""
    
    def __init__(self, recorder: AuditTrailRecorder, correlation_id: str, actor: str):
        self.recorder = recorder
        self.correlation_id = correlation_id
        self.actor = actor
    
    def record(
        self,
        event: AuditEventType,
        target: str,
        result: AuditResult,
        details: AuditDetail
    ) -> AuditEntry:
        return self.recorder.record(
            event=event,
            actor=self.actor,
            target=target,
            result=result,
            details=details,
            correlation_id=self.correlation_id,
        )
    
    def entries(self) -> List[AuditEntry]:
        return self.recorder.entries_for(self.correlation_id)
