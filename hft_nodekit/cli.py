"""
Main CLI dispatcher for HFT-NodeKit.
"""

import sys
import argparse
import logging

from hft_nodekit.toolkit.cli import (
    setup_control_args, handle_control_command,
    setup_switch_args, handle_switch_command,
    setup_resume_args, handle_resume_command,
    setup_nodes_args, handle_nodes_command,
    setup_monitor_args, handle_monitor_command,
)
from hft_nodekit.toolkit.core.errors import NodeKitError

CONTROL_COMMANDS = {
    "start": "Start the bot on a node (writes env bundle, then the start signal) and verify it.",
    "stop": "Remove the start signal and stop the bot on a node. Safe to repeat.",
    "restart": "Restart the bot on a node and verify it.",
    "status": "Verify and record a node's running state (signal + liveness).",
    "logs": "Fetch recent bot logs from a node.",
    "health": "Query a node's control endpoint health.",
}

COMMAND_HANDLERS = {
    "switch": handle_switch_command,
    "resume": handle_resume_command,
    "nodes": handle_nodes_command,
    "monitor": handle_monitor_command,
}


def main():
    """Main entry point for the unified CLI."""
    parser = argparse.ArgumentParser(
        description="HFT-NodeKit - trading bot control plane"
    )

    # Common arguments must be known before the version short-circuit
    parser.add_argument("--config", help="Path to a custom TOML configuration file.")
    parser.add_argument("--version", action="store_true", help="Show version and exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG level) logging for all modules.")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for action, help_text in CONTROL_COMMANDS.items():
        setup_control_args(subparsers.add_parser(action, help=help_text), action)

    switch_parser = subparsers.add_parser("switch", help="Move the primary role to another node.")
    setup_switch_args(switch_parser)

    resume_parser = subparsers.add_parser("resume", help="Resume a failed or warned primary switch.")
    setup_resume_args(resume_parser)

    nodes_parser = subparsers.add_parser("nodes", help="Manage the node registry and view audit logs.")
    setup_nodes_args(nodes_parser)

    monitor_parser = subparsers.add_parser("monitor", help="Health-check nodes and flag a down primary.")
    setup_monitor_args(monitor_parser)

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s', force=True)
    if args.verbose:
        logging.getLogger("hft_nodekit").setLevel(logging.DEBUG)
    # urllib3 connection noise is only useful with -v
    logging.getLogger("urllib3").setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    logger = logging.getLogger("hft_nodekit.cli")
    logger.debug(f"Log level set to {logging.getLevelName(log_level)}")

    if args.version:
        from hft_nodekit import __version__
        print(f"HFT-NodeKit v{__version__}")
        sys.exit(0)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command in CONTROL_COMMANDS:
            handle_control_command(args)
        elif args.command in COMMAND_HANDLERS:
            COMMAND_HANDLERS[args.command](args)
        else:
            logger.error(f"Unhandled command: {args.command}")
            parser.print_help()
            sys.exit(1)
    except NodeKitError as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"An unexpected error occurred during {args.command}: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
