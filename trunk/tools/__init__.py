"""
CLI tools for Trunk.

- trunk-cli: derive, inspect and sync a device's event log

Invariants:
    - state and history work offline (no remote required)
    - Output on stdout is JSON with sorted keys
"""

from .cli import TrunkCLI, main, setup_logging

__all__ = ["TrunkCLI", "main", "setup_logging"]
