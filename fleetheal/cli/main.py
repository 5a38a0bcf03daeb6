# CLI Main
import argparse
import sys

from rich.console import Console

from fleetheal.cli.commands import cmd_history, cmd_policies, cmd_run, cmd_status
from fleetheal.core.exceptions import ConfigurationError, ScopeError, StorageError
from fleetheal.core.types import IssueCategory
from fleetheal.healing.policy import POLICIES

EXIT_USAGE = 1


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="YAML or JSON config file")
    parser.add_argument("--state-dir", help="Directory for cooldown ledger, delta cache and history")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def _add_scan(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fixture", "-f", required=True, help="Fixture fleet YAML file")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--site", help="Audit the nodes of one site")
    scope.add_argument("--nodes", help="Comma separated node list")
    parser.add_argument("--full", action="store_true", help="Force a full scan (skip delta)")
    parser.add_argument("--concurrency", type=int, help="Max nodes probed at once")
    parser.add_argument("--report", help="Write the run report as JSON ({run_id} allowed)")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        prog="fleetheal",
        description="fleetheal - replication health audit, repair and verification",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Exit status: 0 healthy, 2 issues remain, 3 unreachable nodes, 4 internal error, "
        "1 scope or configuration error.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_p = subparsers.add_parser("run", help="Scan, classify and optionally heal")
    _add_common(run_p)
    _add_scan(run_p)
    run_p.add_argument("--auto-heal", action="store_true", help="Dispatch eligible repairs")
    run_p.add_argument("--dry-run", action="store_true", help="Show what would be repaired")
    run_p.add_argument("--policy", choices=list(POLICIES), help="Healing policy preset")
    run_p.add_argument("--max-actions", type=int, help="Operator limit on repairs this run")
    run_p.add_argument("--convergence-wait", type=float, help="Seconds to wait before verifying")
    run_p.add_argument("--approve", metavar="TOKEN", help="Operator approval token")
    run_p.add_argument(
        "--override",
        action="append",
        choices=[c.name.lower() for c in IssueCategory],
        help="Lift the manual-approval gate for a category (needs --approve)",
    )

    # Status command
    status_p = subparsers.add_parser("status", help="Audit-only scan, never repairs")
    _add_common(status_p)
    _add_scan(status_p)

    # History command
    history_p = subparsers.add_parser("history", help="Show healing history")
    _add_common(history_p)
    history_p.add_argument("--limit", type=int, default=20, help="Limit results")
    history_p.add_argument("--node", help="Only actions on this node")

    # Policies command
    policies_p = subparsers.add_parser("policies", help="List healing policy presets")
    policies_p.add_argument("name", nargs="?", choices=list(POLICIES), help="Policy name")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    console = Console(stderr=True)
    try:
        if args.command == "run":
            return cmd_run(args)
        elif args.command == "status":
            return cmd_status(args)
        elif args.command == "history":
            return cmd_history(args)
        elif args.command == "policies":
            return cmd_policies(args)
    except ScopeError as e:
        console.print(f"[red]Scope error:[/red] {e.message}")
        return EXIT_USAGE
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e.message}")
        for key, value in e.details.items():
            console.print(f"  {key}: {value}")
        return EXIT_USAGE
    except StorageError as e:
        console.print(f"[red]Storage error:[/red] {e.message}")
        return EXIT_USAGE

    parser.print_help()
    return 0


def main() -> None:
    """Main entry point"""
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
