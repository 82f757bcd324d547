"""
Wires the registry, transports, control channel and verification engine
together from configuration.
"""

import logging
import os
import socket
import uuid
from dataclasses import dataclass, field
from typing import Optional

from hft_nodekit.config import Config, get_config
from hft_nodekit.toolkit.core.allowlist import AllowlistSync
from hft_nodekit.toolkit.core.control_channel import ControlChannel
from hft_nodekit.toolkit.core.http_transport import HttpTransport
from hft_nodekit.toolkit.core.registry import Registry
from hft_nodekit.toolkit.core.shell_transport import ShellTransport
from hft_nodekit.toolkit.core.verification import VerificationEngine

logger = logging.getLogger(__name__)


def default_owner() -> str:
    """Lease owner id: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class NodeKit:
    config: Config
    registry: Registry
    channel: ControlChannel
    verifier: VerificationEngine
    allowlist: AllowlistSync
    owner: str = field(default_factory=default_owner)

    def close(self) -> None:
        self.channel.http.close()
        self.registry.close()


def build_nodekit(config_path: Optional[str] = None, config: Optional[Config] = None) -> NodeKit:
    """Build every collaborator from the layered configuration."""
    config = config or get_config(config_path)

    registry = Registry(config.get_registry_path())
    timeouts = config.get_timeouts()
    http_settings = config.get_http_settings()
    http = HttpTransport(scheme=http_settings["scheme"], port=http_settings["port"], timeouts=timeouts)
    shell = ShellTransport(timeout=timeouts.get("shell", 30.0), **config.get_ssh_settings())

    manifest = config.get_manifest()
    channel = ControlChannel(http, shell, manifest, registry=registry)
    verifier = VerificationEngine(channel, registry, settle_delay=config.get_settle_delay())
    allowlist = AllowlistSync(**config.get_allowlist_settings())

    logger.debug(f"NodeKit ready (registry {registry.path}, settle {verifier.settle_delay}s)")
    return NodeKit(config=config, registry=registry, channel=channel, verifier=verifier, allowlist=allowlist)
