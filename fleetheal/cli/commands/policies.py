"""
Policy Commands
"""

from typing import Any

from rich.console import Console

from fleetheal.cli.render import render_policies
from fleetheal.healing.policy import POLICIES


def cmd_policies(args: Any) -> int:
    """List the healing policy presets"""
    name = getattr(args, "name", None)
    names = [name.lower()] if name else list(POLICIES)
    render_policies(Console(), [POLICIES[n]() for n in names])
    return 0
