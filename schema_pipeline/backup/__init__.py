"""Backup accounting."""

from schema_pipeline.backup.coordinator import BackupCoordinator, BackupPolicy, integrity_hash

__all__ = ["BackupCoordinator", "BackupPolicy", "integrity_hash"]
