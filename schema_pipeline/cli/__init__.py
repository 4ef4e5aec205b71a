"""
Command-line interface for the Schema Pipeline.
"""

from schema_pipeline.cli.main import main

__all__ = ["main"]
