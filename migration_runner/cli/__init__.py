"""
Command-line interface for the Migration Runner.
"""

from migration_runner.cli.main import main

__all__ = ["main"]
