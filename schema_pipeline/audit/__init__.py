"""Audit trail recording."""

from schema_pipeline.audit.recorder import AuditTrailRecorder, BoundAuditTrail

__all__ = ["AuditTrailRecorder", "BoundAuditTrail"]
