"""
Run / Status Commands
"""

import asyncio
from typing import Any

from rich.console import Console

from fleetheal.adapters.fixture import FixtureFleet
from fleetheal.cli.render import render_report
from fleetheal.collection.scope import InventoryScopeResolver
from fleetheal.core.config import FleetHealConfig, load_config
from fleetheal.core.logging import configure_logging
from fleetheal.core.types import ApprovalDecision, IssueCategory, ScopeSpec
from fleetheal.healing.policy import create_healing_policy
from fleetheal.reporting import JsonReportSink, RunReport
from fleetheal.runner import FleetHealthRunner, RunOptions
from fleetheal.storage.state import JsonStateStore


def load_cli_config(args: Any) -> FleetHealConfig:
    """Config file and environment, then command line overrides."""
    config = load_config(getattr(args, "config", None))

    if getattr(args, "state_dir", None):
        config.storage.state_dir = args.state_dir
    if getattr(args, "report", None):
        config.storage.report_path = args.report
    if getattr(args, "convergence_wait", None) is not None:
        config.healing.convergence_wait = args.convergence_wait
    if getattr(args, "concurrency", None) is not None:
        config.scan.concurrency_limit = args.concurrency

    log_format = "json" if getattr(args, "json_logs", False) else config.system.log_format
    level = "DEBUG" if getattr(args, "verbose", False) else config.system.log_level
    configure_logging(level=level, json_format=log_format == "json")
    return config


def scope_from_args(args: Any) -> ScopeSpec:
    if getattr(args, "nodes", None):
        return ScopeSpec.explicit(args.nodes.split(","))
    if getattr(args, "site", None):
        return ScopeSpec.for_site(args.site)
    return ScopeSpec()


def approval_from_args(args: Any) -> ApprovalDecision | None:
    token = getattr(args, "approve", None)
    if not token:
        return None
    categories = {IssueCategory[c.upper()] for c in getattr(args, "override", None) or []}
    return ApprovalDecision.operator(token, categories)


def build_runner(args: Any, config: FleetHealConfig) -> FleetHealthRunner:
    fleet = FixtureFleet.from_yaml(args.fixture)
    # An inventory in the config file replaces the sites listed in the fixture.
    resolver = InventoryScopeResolver(config.inventory) if config.inventory else fleet.resolver

    store = JsonStateStore(config.storage.state_dir, history_limit=config.storage.history_limit)
    sinks = [JsonReportSink(config.storage.report_path)] if config.storage.report_path else []
    return FleetHealthRunner(
        resolver,
        fleet.probe,
        fleet.actuator,
        store,
        config=config,
        sinks=sinks,
    )


async def execute_run(args: Any, auto_heal: bool | None = None) -> RunReport:
    """Run once; ``auto_heal=None`` keeps the configured setting."""
    config = load_cli_config(args)
    runner = build_runner(args, config)

    overrides: dict[str, Any] = {
        "auto_heal": config.healing.auto_heal if auto_heal is None else auto_heal,
        "force_full_scan": bool(getattr(args, "full", False)),
    }
    if getattr(args, "policy", None):
        overrides["policy"] = create_healing_policy(args.policy, **config.healing.policy_overrides)
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    if getattr(args, "max_actions", None) is not None:
        overrides["max_actions"] = args.max_actions
    approval = approval_from_args(args)
    if approval is not None:
        overrides["approval"] = approval

    options = RunOptions.from_config(config, **overrides)
    return await runner.run(scope_from_args(args), options)


def cmd_run(args: Any) -> int:
    """Scan, classify and (with --auto-heal) repair"""
    auto_heal = True if getattr(args, "auto_heal", False) else None
    report = asyncio.run(execute_run(args, auto_heal=auto_heal))
    render_report(Console(), report)
    return report.result_code


def cmd_status(args: Any) -> int:
    """Audit-only run: scan and classify, never repair"""
    report = asyncio.run(execute_run(args, auto_heal=False))
    render_report(Console(), report)
    return report.result_code
