"""
History Commands
"""

from typing import Any

from rich.console import Console

from fleetheal.cli.commands.run import load_cli_config
from fleetheal.cli.render import render_actions, render_rollbacks
from fleetheal.storage.state import JsonStateStore


def cmd_history(args: Any) -> int:
    """Show recent healing actions and rollbacks from the state store"""
    limit = getattr(args, "limit", 20)
    config = load_cli_config(args)
    store = JsonStateStore(config.storage.state_dir, history_limit=config.storage.history_limit)
    console = Console()

    actions = store.recent_actions(limit)
    rollbacks = store.recent_rollbacks(limit)

    if getattr(args, "node", None):
        actions = [a for a in actions if a.node.lower() == args.node.lower()]
        action_ids = {a.id for a in actions}
        rollbacks = [r for r in rollbacks if r.action_id in action_ids]

    if not actions and not rollbacks:
        console.print("No healing history")
        return 0

    render_actions(console, actions, rollbacks, title=f"Healing History (last {len(actions)})")
    render_rollbacks(console, rollbacks)
    return 0
