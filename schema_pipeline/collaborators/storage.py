"""
Local filesystem backup storage.

Backups are laid out as ``<root>/<backup_id>/`` with a ``manifest.json``
per backup; recovery points are JSON markers under
``<root>/recovery_points/``. Locations are returned as ``file://`` URIs.
"""

import asyncio
import json
import logging
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import List

from schema_pipeline.collaborators.base import StorageBackend
from schema_pipeline.core.exceptions import BackupFailure
from schema_pipeline.models.strategy import Environment

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
RECOVERY_POINT_DIR = "recovery_points"


class LocalStorageBackend(StorageBackend):
    """Stores backup manifests and recovery markers on local disk."""
    
    def __init__(self, root: str):
        self.root = Path(root).resolve()
    
    async def allocate(self, backup_id: str, artifact: str) -> str:
        path = self.root / backup_id / artifact
        
        def _allocate():
            path.parent.mkdir(parents=True, exist_ok=True)
        
        try:
            await asyncio.to_thread(_allocate)
        except OSError as e:
            raise BackupFailure(f"Failed to allocate storage for {artifact}: {str(e)}") from e
        return path.as_uri()
    
    async def write_manifest(self, backup_id: str, manifest: dict) -> str:
        path = self.root / backup_id / MANIFEST_NAME
        
        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(manifest, indent=2, default=str))
        
        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BackupFailure(f"Failed to write backup manifest {backup_id}: {str(e)}") from e
        
        logger.info(f"Backup manifest written to {path}")
        return path.as_uri()
    
    async def create_recovery_point(self, environment: Environment, reference: str) -> str:
        path = self.root / RECOVERY_POINT_DIR / f"{reference}.json"
        marker = {
            "reference": reference,
            "environment": environment.value,
            "created_at": datetime.now(UTC).isoformat(),
        }
        
        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(marker, indent=2))
        
        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BackupFailure(f"Failed to create recovery point {reference}: {str(e)}") from e
        return path.as_uri()
    
    async def purge_expired(self, retention_days: int) -> List[str]:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        
        def _purge() -> List[str]:
            if not self.root.exists():
                return []
            removed = []
            for backup_dir in self.root.iterdir():
                manifest = backup_dir / MANIFEST_NAME
                if not backup_dir.is_dir() or not manifest.exists():
                    continue
                modified = datetime.fromtimestamp(manifest.stat().st_mtime, tz=UTC)
                if modified < cutoff:
                    shutil.rmtree(backup_dir)
                    removed.append(backup_dir.name)
            return removed
        
        try:
            removed = await asyncio.to_thread(_purge)
        except OSError as e:
            raise BackupFailure(f"Failed to purge expired backups: {str(e)}") from e
        
        if removed:
            logger.info(f"Purged {len(removed)} expired backup(s): {', '.join(removed)}")
        return removed
