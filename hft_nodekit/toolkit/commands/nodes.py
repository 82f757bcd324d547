"""Node catalogue commands: list, add, remove, history, operations."""

import logging
from typing import Optional

from hft_nodekit.toolkit.core.context import build_nodekit
from hft_nodekit.toolkit.core.errors import NodeKitError
from hft_nodekit.toolkit.core.ip_tools import get_ip_info, is_ip_address
from hft_nodekit.toolkit.core.utils import green, red, yellow
from hft_nodekit.toolkit.display.status_display import StatusDisplay

logger = logging.getLogger(__name__)


def manage_nodes(subcommand: str, node_id: Optional[str] = None, address: Optional[str] = None,
                 provider: Optional[str] = None, region: Optional[str] = None, lookup: bool = False,
                 limit: int = 20, config_path: Optional[str] = None) -> bool:
    """Dispatch a ``nodes`` sub-command. Returns False on failure."""
    kit = build_nodekit(config_path)
    display = StatusDisplay(timezone=kit.config.get("display.timezone"))
    try:
        if subcommand == "list":
            nodes = kit.registry.list()
            if not nodes:
                print(yellow("No nodes registered. Add one with 'hft-nodekit nodes add'."))
                return True
            display.show_nodes(nodes)
            return True

        if subcommand == "add":
            if lookup:
                if not is_ip_address(address):
                    print(red(f"--lookup needs an IP address, got {address}"))
                    return False
                info = get_ip_info(address)
                provider = provider or info["provider"]
                region = region or info["region_label"]
                print(f"ipinfo: {info['asn']} {info['org_name']} ({info['region_label']})")
            node = kit.registry.add_node(node_id, address, provider or "unknown", region)
            print(green(f"Added {node.id} ({node.address}, {node.provider})"))
            return True

        if subcommand == "remove":
            kit.registry.remove_node(node_id)
            print(green(f"Removed {node_id}"))
            return True

        if subcommand == "history":
            display.show_commands(kit.registry.commands(node_id, limit=limit))
            return True

        if subcommand == "operations":
            if node_id:
                display.show_operation(kit.registry.get_operation(node_id))
            else:
                display.show_operations(kit.registry.operations(limit=limit))
            return True

        print(red(f"Unknown nodes sub-command: {subcommand}"))
        return False
    except KeyError as e:
        print(red(str(e)))
        return False
    except NodeKitError as e:
        logger.debug("nodes command failed", exc_info=True)
        print(red(str(e)))
        return False
    finally:
        kit.close()
