"""
CLI Commands Package
"""

from .history import cmd_history
from .policies import cmd_policies
from .run import cmd_run, cmd_status

__all__ = [
    "cmd_run",
    "cmd_status",
    "cmd_history",
    "cmd_policies",
]
