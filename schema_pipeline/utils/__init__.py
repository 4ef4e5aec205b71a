"""Utility helpers for the Schema Pipeline."""

from schema_pipeline.utils.logging import AuditLogger, StructuredFormatter, get_logger, setup_logging

__all__ = ["AuditLogger", "StructuredFormatter", "get_logger", "setup_logging"]
