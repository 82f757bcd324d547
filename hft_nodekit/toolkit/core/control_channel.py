"""
Control channel for one node: HTTP control endpoint first, ssh fallback.

A reply is only taken as proof of a mutation when it carries an explicit
confirmation. Transport failures and inconclusive replies move on to the
shell channel; a definitive remote failure on either channel is surfaced
as-is.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from hft_nodekit.toolkit.core.errors import RemoteExecutionError, TransportError
from hft_nodekit.toolkit.core.http_transport import HttpTransport
from hft_nodekit.toolkit.core.manifest import DeploymentManifest
from hft_nodekit.toolkit.core.models import Action, CommandResult, ControlCommand, Node, Transport
from hft_nodekit.toolkit.core.responses import (
    Ok, ParseResult, Unparseable, parse_container_status, parse_control_reply, parse_health,
    parse_json_text, parse_shell_mutation, parse_signal_check, parse_signal_probe, parse_status_reply,
)
from hft_nodekit.toolkit.core.shell_transport import ShellTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlOutcome:
    """Successful result of one control channel invocation."""
    action: Action
    node_id: str
    transport: Transport
    raw_output: Any
    command: ControlCommand


class ControlChannel:
    """Executes control actions against nodes and records each invocation."""

    def __init__(self, http: HttpTransport, shell: ShellTransport, manifest: DeploymentManifest, registry=None):
        """
        Args:
            http: Transport for the node's control endpoint
            shell: ssh fallback transport
            manifest: Deployment layout used to render fallback scripts
            registry: Audit sink exposing ``record_command``; None disables recording
        """
        self.http = http
        self.shell = shell
        self.manifest = manifest
        self.registry = registry

    def _record(self, node: Node, action: Action, transport: Optional[Transport],
                result: CommandResult, detail: str = "") -> ControlCommand:
        command = ControlCommand(
            action=action,
            target_node_id=node.id,
            transport_used=transport,
            result=result,
            detail=detail,
        )
        if self.registry is not None:
            self.registry.record_command(command)
        logger.debug(f"Recorded {action.value} on {node.id}: {result.value} via "
                     f"{transport.value if transport else '-'}")
        return command

    def record_mismatch(self, node: Node, action: Action, detail: str) -> ControlCommand:
        """Record that a command's effect could not be verified after the settle delay."""
        return self._record(node, action, None, CommandResult.VERIFICATION_MISMATCH, detail)

    def execute(self, node: Node, action: Action, env: Optional[Dict[str, str]] = None,
                lines: Optional[int] = None) -> ControlOutcome:
        """
        Run an action on a node.

        Args:
            node: Target node
            action: Control action
            env: Extra environment variables for start/restart
            lines: Number of log lines for ``logs``

        Returns:
            ControlOutcome naming the channel that produced the result

        Raises:
            TransportError: Neither channel could reach the node
            RemoteExecutionError: A channel answered with a definitive failure
        """
        action = Action(action)
        manifest = self.manifest.with_env(env)
        try:
            transport, output = self._dispatch(node, action, manifest, lines or 50)
        except TransportError as e:
            self._record(node, action, None, CommandResult.TRANSPORT_ERROR, str(e))
            raise
        except RemoteExecutionError as e:
            transport = Transport(e.transport) if e.transport else None
            self._record(node, action, transport, CommandResult.REMOTE_EXECUTION_ERROR, str(e))
            raise

        command = self._record(node, action, transport, CommandResult.SUCCESS)
        logger.info(f"{action.value} on {node.id} succeeded via {transport.value}")
        return ControlOutcome(action=action, node_id=node.id, transport=transport,
                              raw_output=output, command=command)

    def _dispatch(self, node: Node, action: Action, manifest: DeploymentManifest,
                  lines: int) -> Tuple[Transport, Any]:
        http_failure = None
        try:
            body = self._http_attempt(node, action, manifest, lines)
        except TransportError as e:
            http_failure = str(e)
            logger.warning(f"HTTP channel unavailable for {node.id}: {e}; falling back to shell")
        else:
            if not isinstance(body, Unparseable):
                return Transport.HTTP, body
            http_failure = f"inconclusive reply ({body.reason})"
            logger.warning(f"HTTP reply for {action.value} on {node.id} is inconclusive: "
                           f"{body.reason}; falling back to shell")

        try:
            return Transport.SHELL, self._shell_attempt(node, action, manifest, lines)
        except TransportError as e:
            raise TransportError(
                f"Both channels failed for {action.value} on {node.id}: http: {http_failure}; shell: {e}",
                node_id=node.id, transport="shell",
            ) from e

    def _http_attempt(self, node: Node, action: Action, manifest: DeploymentManifest, lines: int) -> Any:
        """Returns the accepted body, or an Unparseable when the reply proves nothing."""
        if action.is_mutation:
            body = self.http.control(node, action, manifest.env or None)
            result = parse_control_reply(action, body, node_id=node.id)
            return body if isinstance(result, Ok) else result

        if action == Action.HEALTH:
            result = parse_health(self.http.health(node))
            return result.value if isinstance(result, Ok) else result
        if action == Action.LOGS:
            body = self.http.logs(node, lines)
            if isinstance(body, dict):
                body = body.get("logs", body)
            return body
        return self.http.status(node)

    def _shell_attempt(self, node: Node, action: Action, manifest: DeploymentManifest, lines: int) -> Any:
        stdin = manifest.env_bundle() if action.creates_signal else None
        result = self.shell.run(node, manifest.render(action, lines=lines), stdin=stdin)

        if not result.ok:
            raise RemoteExecutionError(
                f"{action.value} on {node.id} exited with code {result.exit_code}",
                node_id=node.id, transport="shell", output=result.output,
            )

        if action.is_mutation:
            parsed = parse_shell_mutation(action, result.output)
            if isinstance(parsed, Unparseable):
                raise RemoteExecutionError(
                    f"{action.value} on {node.id} did not confirm: {parsed.reason}",
                    node_id=node.id, transport="shell", output=result.output,
                )
            return result.output

        if action == Action.HEALTH:
            parsed = parse_health(parse_json_text(result.output))
            if isinstance(parsed, Unparseable):
                raise RemoteExecutionError(
                    f"health on {node.id} is not ok: {parsed.reason}",
                    node_id=node.id, transport="shell", output=result.output,
                )
            return parsed.value
        return result.output

    # --- verification probes ---

    def probe_signal(self, node: Node) -> Tuple[ParseResult, Optional[Transport]]:
        """Read the signal artifact. Raises TransportError when both channels fail."""
        try:
            parsed = parse_signal_check(self.http.signal_check(node))
            if isinstance(parsed, Ok):
                return parsed, Transport.HTTP
            logger.debug(f"Signal check on {node.id} unparseable over HTTP: {parsed.reason}")
        except TransportError as e:
            logger.debug(f"Signal check on {node.id} failed over HTTP: {e}")

        result = self.shell.run(node, self.manifest.render_signal_probe(), timeout=self.http.timeouts["signal"])
        if not result.ok:
            return Unparseable(result.output, f"signal probe exited {result.exit_code}"), Transport.SHELL
        return parse_signal_probe(result.output), Transport.SHELL

    def probe_liveness(self, node: Node) -> Tuple[ParseResult, Optional[Transport]]:
        """Check container liveness independently of the signal."""
        container = self.manifest.container_name
        try:
            parsed = parse_status_reply(self.http.status(node, timeout_key="liveness"), container)
            if isinstance(parsed, Ok):
                return parsed, Transport.HTTP
            logger.debug(f"Liveness on {node.id} unparseable over HTTP: {parsed.reason}")
        except TransportError as e:
            logger.debug(f"Liveness on {node.id} failed over HTTP: {e}")

        result = self.shell.run(node, self.manifest.render_liveness_probe(),
                                timeout=self.http.timeouts["liveness"])
        if not result.ok:
            return Unparseable(result.output, f"liveness probe exited {result.exit_code}"), Transport.SHELL
        return parse_container_status(result.output), Transport.SHELL
