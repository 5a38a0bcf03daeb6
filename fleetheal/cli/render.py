"""
Rich rendering for CLI output
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleetheal.core.types import HealingAction, HealthStatus, ResultCode, RollbackRecord, Severity
from fleetheal.healing.policy import HealingPolicy
from fleetheal.reporting import RunReport

STATUS_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNREACHABLE: "red",
    HealthStatus.UNKNOWN: "magenta",
}

SEVERITY_STYLES = {
    Severity.LOW: "dim",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
    Severity.CRITICAL: "bold red",
}

RESULT_STYLES = {
    ResultCode.OK: "green",
    ResultCode.ISSUES_REMAIN: "yellow",
    ResultCode.UNREACHABLE: "red",
    ResultCode.FATAL: "bold red",
}


def render_snapshots(console: Console, report: RunReport) -> None:
    table = Table(title="Node Health", show_lines=False)
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    table.add_column("Partners", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", overflow="fold")

    for node in sorted(report.snapshots, key=str.lower):
        snapshot = report.snapshots[node]
        style = STATUS_STYLES[snapshot.status]
        table.add_row(
            node,
            f"[{style}]{snapshot.status.name}[/{style}]",
            str(len(snapshot.partners)),
            str(len(snapshot.failures)),
            str(snapshot.attempts),
            snapshot.error or "",
        )
    console.print(table)


def render_issues(console: Console, report: RunReport) -> None:
    if not report.issues:
        console.print("[green]No issues found[/green]")
        return

    eligible = set(report.eligible)
    table = Table(title="Issues")
    table.add_column("Severity")
    table.add_column("Node", style="cyan")
    table.add_column("Category")
    table.add_column("Partner")
    table.add_column("Auto-heal", justify="center")
    table.add_column("Description", overflow="fold")

    for issue in report.issues:
        style = SEVERITY_STYLES[issue.severity]
        table.add_row(
            f"[{style}]{issue.severity.name}[/{style}]",
            issue.node,
            issue.category.name,
            issue.partner or "",
            "yes" if issue in eligible else "",
            issue.description,
        )
    console.print(table)


def render_actions(
    console: Console,
    actions: list[HealingAction],
    rollbacks: list[RollbackRecord],
    title: str = "Healing Actions",
) -> None:
    if not actions and not rollbacks:
        return

    rollback_by_action = {r.action_id: r for r in rollbacks}
    table = Table(title=title)
    table.add_column("Time")
    table.add_column("Node", style="cyan")
    table.add_column("Category")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Rollback")
    table.add_column("Message", overflow="fold")

    for action in actions:
        rollback = rollback_by_action.get(action.id)
        if rollback is not None:
            rollback_text = "ok" if rollback.success else "[red]failed[/red]"
        else:
            rollback_text = "flagged" if action.rolled_back else ""
        table.add_row(
            action.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            action.node,
            action.category.name,
            action.action_kind.name,
            "[green]success[/green]" if action.success else "[red]failed[/red]",
            rollback_text,
            action.message,
        )
    console.print(table)


def render_rollbacks(console: Console, rollbacks: list[RollbackRecord]) -> None:
    if not rollbacks:
        return
    table = Table(title="Rollbacks")
    table.add_column("Time")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Reason", overflow="fold")
    for record in rollbacks:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.action_id,
            "[green]success[/green]" if record.success else "[red]failed[/red]",
            record.reason,
        )
    console.print(table)


def render_summary(console: Console, report: RunReport) -> None:
    summary = report.summary
    style = RESULT_STYLES[summary.result_code]
    lines = [
        f"Run:        {summary.run_id}",
        f"Scan:       {summary.scan_mode.name if summary.scan_mode else '-'}"
        + (f" ({report.plan.reason})" if report.plan else ""),
        f"Nodes:      {summary.total_nodes} total, {summary.healthy} healthy, "
        f"{summary.degraded} degraded, {summary.unreachable} unreachable, {summary.unknown} unknown",
        f"Issues:     {summary.issues_found} found, {summary.issues_remaining} remaining",
        f"Actions:    {summary.actions_performed} performed, {summary.actions_failed} failed, "
        f"{summary.rollbacks} rolled back, {summary.verified_healthy} verified healthy",
    ]
    if report.dry_run:
        lines.append(f"Dry run:    {len(report.eligible)} repair(s) would be dispatched")
    if report.manual_review:
        lines.append(f"Manual:     {len(report.manual_review)} issue(s) need operator review")
    if report.healing_refused:
        lines.append(f"Healing:    refused ({report.healing_refused})")
    if summary.error:
        lines.append(f"Error:      {summary.error}")
    lines.append(f"Result:     [{style}]{summary.result_code.name} ({int(summary.result_code)})[/{style}]")

    console.print(Panel("\n".join(lines), title="fleetheal", border_style=style))


def render_report(console: Console, report: RunReport) -> None:
    if report.snapshots:
        render_snapshots(console, report)
        render_issues(console, report)
        render_actions(console, report.actions, report.rollbacks)
    render_summary(console, report)


def render_policies(console: Console, policies: list[HealingPolicy]) -> None:
    """One two-column table per policy, so it fits an 80 column terminal."""
    for policy in policies:
        data = policy.to_dict()
        table = Table(title=policy.name, title_style="bold cyan", show_header=False)
        table.add_column("Setting", style="dim", no_wrap=True)
        table.add_column("Value")
        table.add_row("Categories", ", ".join(data["allowed_categories"]))
        table.add_row("Severities", ", ".join(data["allowed_severities"]))
        table.add_row("Manual approval", ", ".join(data["requires_manual_approval_categories"]) or "-")
        table.add_row("Cooldown", f"{data['cooldown_minutes']:g} min")
        table.add_row("Max actions", str(policy.max_concurrent_actions))
        console.print(table)
