"""Remote-shell fallback channel: key-authenticated ssh via subprocess."""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from hft_nodekit.toolkit.core.errors import TransportError
from hft_nodekit.toolkit.core.models import Node

logger = logging.getLogger(__name__)

# ssh reserves 255 for its own failures (auth, connect, host key)
SSH_TRANSPORT_EXIT_CODE = 255


@dataclass(frozen=True)
class ShellResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ShellTransport:
    """Runs rendered scripts on a node over ssh and returns combined output."""

    def __init__(
        self,
        user: str = "root",
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: int = 10,
        control_persist: bool = True,
        timeout: float = 30.0,
        **_ignored
    ):
        self.user = user
        self.key_path = key_path
        self.port = port
        self.connect_timeout = connect_timeout
        self.control_persist = control_persist
        self.timeout = timeout

    def ssh_command(self, node: Node) -> List[str]:
        """Build the ssh argv prefix for a node."""
        cmd = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=accept-new",
        ]
        if self.control_persist:
            cmd.extend([
                "-o", "ControlMaster=auto",
                "-o", "ControlPath=/tmp/ssh-%r@%h:%p",
                "-o", "ControlPersist=60",
            ])
        if self.key_path:
            cmd.extend(["-o", "IdentitiesOnly=yes", "-i", self.key_path])
        if int(self.port) != 22:
            cmd.extend(["-p", str(int(self.port))])
        cmd.append(f"{self.user}@{node.address}")
        return cmd

    def run(self, node: Node, script: str, stdin: Optional[str] = None, timeout: Optional[float] = None) -> ShellResult:
        """
        Execute a script on the node.

        Returns:
            ShellResult with the remote exit code and stdout+stderr text

        Raises:
            TransportError: ssh could not reach the node or the call timed out
        """
        command = self.ssh_command(node) + [script]
        timeout = timeout or self.timeout
        logger.debug(f"Running on {node.id} ({node.address}): {script}")

        try:
            process = subprocess.run(
                command,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                check=False  # We check manually
            )
        except subprocess.TimeoutExpired as e:
            raise TransportError(f"ssh to {node.address} timed out after {timeout}s",
                                 node_id=node.id, transport="shell") from e
        except FileNotFoundError as e:
            raise TransportError("ssh executable not found", node_id=node.id, transport="shell") from e
        except OSError as e:
            raise TransportError(f"ssh to {node.address} failed: {e}", node_id=node.id, transport="shell") from e

        output = (process.stdout or "").strip()
        if process.returncode == SSH_TRANSPORT_EXIT_CODE:
            raise TransportError(f"ssh to {node.address} failed: {output or 'exit 255'}",
                                 node_id=node.id, transport="shell")

        if process.returncode != 0:
            logger.warning(f"Remote command on {node.id} finished with non-zero exit code: {process.returncode}")
        else:
            logger.debug(f"Remote output from {node.id}: {output}")

        return ShellResult(exit_code=process.returncode, output=output)
