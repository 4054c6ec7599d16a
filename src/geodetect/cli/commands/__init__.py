"""
CLI command modules.
"""

from . import core_commands

__all__ = ["core_commands"]
