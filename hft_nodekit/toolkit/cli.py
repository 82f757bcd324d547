"""CLI interface for the Toolkit component."""

import argparse
import sys
from typing import Any, Dict, List, Optional


def _config_path(args: Any) -> Optional[str]:
    return args.config if hasattr(args, "config") else None


def _parse_env(pairs: Optional[List[str]]) -> Dict[str, str]:
    env = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"--env expects KEY=VALUE, got {pair!r}")
        key, value = pair.split("=", 1)
        env[key.strip()] = value
    return env


# --- Control Commands (start/stop/restart/status/logs/health) ---
def setup_control_args(parser: argparse.ArgumentParser, action: str):
    """Set up arguments for a single-node control command."""
    parser.add_argument("node", help="Registered node id.")
    if action in ("start", "restart"):
        parser.add_argument("--env", action="append", metavar="KEY=VALUE",
                            help="Extra environment variable for the bot (repeatable). Overrides [env] from config.")
    if action == "logs":
        parser.add_argument("--lines", "-n", type=int, default=50, help="Number of log lines to fetch.")
    parser.set_defaults(control_action=action)


def handle_control_command(args: Any):
    """Handle start/stop/restart/status/logs/health."""
    from hft_nodekit.toolkit.commands.control import run_control
    try:
        env = _parse_env(getattr(args, "env", None))
    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    success = run_control(
        action=args.control_action,
        node_id=args.node,
        env=env,
        lines=getattr(args, "lines", 50),
        config_path=_config_path(args)
    )
    if not success:
        sys.exit(1)


# --- Switch Command ---
def setup_switch_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'switch' command."""
    parser.add_argument("to_node", help="Node that becomes primary.")
    parser.add_argument("--start-after-switch", action="store_true",
                        help="Start the bot on the new primary. Without this flag it is left in standby.")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt.")


def handle_switch_command(args: Any):
    """Handle the 'switch' command."""
    from hft_nodekit.toolkit.commands.failover import manage_failover
    success = manage_failover(
        to_node_id=args.to_node,
        start_after_switch=args.start_after_switch,
        assume_yes=args.yes,
        config_path=_config_path(args)
    )
    if not success:
        sys.exit(1)


# --- Resume Command ---
def setup_resume_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'resume' command."""
    parser.add_argument("operation_id", help="Failover operation id (see 'nodes operations').")


def handle_resume_command(args: Any):
    """Handle the 'resume' command."""
    from hft_nodekit.toolkit.commands.failover import manage_resume
    if not manage_resume(args.operation_id, config_path=_config_path(args)):
        sys.exit(1)


# --- Nodes Command ---
def setup_nodes_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'nodes' command."""
    sub = parser.add_subparsers(dest="nodes_command", required=True)

    sub.add_parser("list", help="List registered nodes.")

    add = sub.add_parser("add", help="Register a node.")
    add.add_argument("node", help="Node id.")
    add.add_argument("address", help="IP address or hostname.")
    add.add_argument("--provider", help="Cloud provider label.")
    add.add_argument("--region", help="Region label.")
    add.add_argument("--lookup", action="store_true", help="Fill provider and region from ipinfo.io.")

    remove = sub.add_parser("remove", help="Remove a node (not the primary).")
    remove.add_argument("node", help="Node id.")

    history = sub.add_parser("history", help="Show the control command log.")
    history.add_argument("node", nargs="?", help="Only commands for this node.")
    history.add_argument("--limit", type=int, default=50)

    operations = sub.add_parser("operations", help="Show failover operations.")
    operations.add_argument("operation_id", nargs="?", help="Show one operation's stage log.")
    operations.add_argument("--limit", type=int, default=20)


def handle_nodes_command(args: Any):
    """Handle the 'nodes' command."""
    from hft_nodekit.toolkit.commands.nodes import manage_nodes
    success = manage_nodes(
        subcommand=args.nodes_command,
        node_id=getattr(args, "node", None) or getattr(args, "operation_id", None),
        address=getattr(args, "address", None),
        provider=getattr(args, "provider", None),
        region=getattr(args, "region", None),
        lookup=getattr(args, "lookup", False),
        limit=getattr(args, "limit", 20),
        config_path=_config_path(args)
    )
    if not success:
        sys.exit(1)


# --- Monitor Command ---
def setup_monitor_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'monitor' command."""
    parser.add_argument("--interval", "-i", type=float, help="Seconds between checks (overrides monitor.interval).")
    parser.add_argument("--once", action="store_true", help="Run a single check and exit.")
    parser.add_argument("--auto-failover", action="store_true", default=None,
                        help="Switch primary automatically when it stays down. The bot is never auto-started.")


def handle_monitor_command(args: Any):
    """Handle the 'monitor' command."""
    from hft_nodekit.toolkit.commands.monitor import run_monitor
    success = run_monitor(
        interval=args.interval,
        once=args.once,
        auto_failover=args.auto_failover,
        config_path=_config_path(args)
    )
    if not success:
        sys.exit(1)
