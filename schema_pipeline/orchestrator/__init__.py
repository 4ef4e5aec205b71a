"""
Migration orchestration for the Schema Pipeline.

This module sequences the gates, the per-domain migration loop and the
post-migration checks of a single pipeline run.
"""

from schema_pipeline.orchestrator.orchestrator import MigrationOrchestrator, PipelinePhase

__all__ = [
    "MigrationOrchestrator",
    "PipelinePhase",
]
