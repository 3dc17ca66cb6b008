"""
Migration orchestrator module.

Launches the migration task and tracks it to a single outcome.
"""

from .orchestrator import MigrationOrchestrator

__all__ = [
    "MigrationOrchestrator",
]
