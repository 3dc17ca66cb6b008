"""
Utility functions and helpers for the Migration Runner.
"""

from migration_runner.utils.logging import (
    StructuredFormatter,
    get_logger,
    setup_logging,
)

__all__ = [
    "StructuredFormatter",
    "get_logger",
    "setup_logging",
]
