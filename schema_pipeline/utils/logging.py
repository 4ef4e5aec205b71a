"""
Logging setup for the Schema Pipeline.

This module provides console logging through Rich, structured JSON
logging, rotating log files and the audit log sink.
"""

import json
import logging
import logging.handlers
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from schema_pipeline.models.audit import AuditEntry


class LogCategory(str, Enum):
    """Categories for structured logging."""
    SYSTEM = "system"
    MIGRATION = "migration"
    ROLLBACK = "rollback"
    BACKUP = "backup"
    APPROVAL = "approval"
    AUDIT = "audit"
    CLI = "cli"


# Package prefix of the emitting logger to its structured-log category
_CATEGORY_BY_LOGGER = {
    "schema_pipeline.orchestrator": LogCategory.MIGRATION,
    "schema_pipeline.rollback": LogCategory.ROLLBACK,
    "schema_pipeline.backup": LogCategory.BACKUP,
    "schema_pipeline.gating": LogCategory.APPROVAL,
    "schema_pipeline.audit": LogCategory.AUDIT,
    "schema_pipeline.cli": LogCategory.CLI,
}


def category_for(logger_name: str) -> LogCategory:
    """Structured-log category for a logger name."""
    for prefix, category in _CATEGORY_BY_LOGGER.items():
        if logger_name == prefix or logger_name.startswith(prefix + "."):
            return category
    return LogCategory.SYSTEM


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'taskName', 'log_entry', 'message', 'category',
}


@dataclass
class LogEntry:
    """Structured log entry with metadata."""
    timestamp: datetime = field(default_factory=datetime.now)
    level: str = "INFO"
    category: LogCategory = LogCategory.SYSTEM
    logger: str = ""
    message: str = ""
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['category'] = self.category.value
        return data
    
    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredFormatter(logging.Formatter):
    """Formatter for structured JSON logging."""
    
    def format(self, record: logging.LogRecord) -> str:
        log_entry = getattr(record, 'log_entry', None)
        if isinstance(log_entry, LogEntry):
            return log_entry.to_json()
        
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelname,
            category=LogCategory(getattr(record, 'category', None) or category_for(record.name)),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=getattr(record, 'correlation_id', None),
            metadata={
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
            }
        )
        
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and key != 'correlation_id':
                log_entry.metadata[key] = value
        
        if record.exc_info:
            log_entry.metadata['exception'] = self.formatException(record.exc_info)
        
        return log_entry.to_json()


class AuditLogger:
    """Writes audit trail entries as JSON lines to a rotating file."""
    
    def __init__(self, log_file: str, max_bytes: int = 10 * 1024 * 1024, backup_count: int = 10):
        self.log_file = log_file
        self.logger = logging.getLogger("schema_pipeline.audit.file")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        self._handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(self._handler)
    
    def log_entry(self, entry: AuditEntry):
        """Append one audit entry to the audit file."""
        self.logger.info(entry.model_dump_json())
    
    def close(self):
        """Detach and close the file handler."""
        self.logger.removeHandler(self._handler)
        self._handler.close()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: bool = True,
    structured_logging: bool = False,
    log_rotation: bool = True,
    max_log_size: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
    console: Optional[Console] = None
) -> logging.Logger:
    """
    Set up logging for the Schema Pipeline.
    
    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        rich_console: Whether to use the Rich console handler
        structured_logging: Whether to emit structured JSON
        log_rotation: Whether to rotate the log file
        max_log_size: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
        console: Rich console to log to (a stderr console by default)
    
    Returns:
        The configured ``schema_pipeline`` logger
    """
    logger = logging.getLogger("schema_pipeline")
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    
    if rich_console and not structured_logging:
        console_handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        if structured_logging:
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
    
    logger.addHandler(console_handler)
    
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        if log_rotation:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_log_size,
                backupCount=backup_count
            )
        else:
            file_handler = logging.FileHandler(log_file)
        
        if structured_logging:
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
        
        logger.addHandler(file_handler)
    
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module."""
    return logging.getLogger(f"schema_pipeline.{name}")
