"""
Operator commands against a single node: start, stop, restart, status,
logs and health.

Every command holds the node's lease for its whole duration, including the
verification that follows a mutation, so a stop and a start can never
interleave on the same signal artifact.
"""

import json
import logging
from typing import Any, Dict, Optional

from hft_nodekit.toolkit.core.context import NodeKit, build_nodekit
from hft_nodekit.toolkit.core.control_channel import ControlOutcome
from hft_nodekit.toolkit.core.errors import NodeKitError
from hft_nodekit.toolkit.core.models import Action, Node, RunningState, VerificationResult
from hft_nodekit.toolkit.core.verification import CancelToken, cancel_on_interrupt
from hft_nodekit.toolkit.core.utils import red

logger = logging.getLogger(__name__)


class NodeController:
    """Runs control actions and the verification appropriate to each."""

    def __init__(self, kit: NodeKit, owner: Optional[str] = None, lease_ttl: Optional[float] = None):
        self.kit = kit
        self.owner = owner or kit.owner
        self.lease_ttl = lease_ttl if lease_ttl is not None else kit.config.get_lease_ttl()

    def _lease(self, node_id: str):
        return self.kit.registry.lease(node_id, self.owner, self.lease_ttl)

    def start(self, node_id: str, env: Optional[Dict[str, str]] = None,
              cancel: Optional[CancelToken] = None) -> VerificationResult:
        return self._start_like(node_id, Action.START, env, cancel)

    def restart(self, node_id: str, env: Optional[Dict[str, str]] = None,
                cancel: Optional[CancelToken] = None) -> VerificationResult:
        return self._start_like(node_id, Action.RESTART, env, cancel)

    def _start_like(self, node_id: str, action: Action, env: Optional[Dict[str, str]],
                    cancel: Optional[CancelToken]) -> VerificationResult:
        with self._lease(node_id):
            node = self.kit.registry.get(node_id)
            self.kit.channel.execute(node, action, env=env)
            return self.kit.verifier.verify_after_command(node, action, cancel)

    def stop(self, node_id: str, cancel: Optional[CancelToken] = None) -> VerificationResult:
        """Stop the bot; a node that is already stopped reports success again."""
        with self._lease(node_id):
            node = self.kit.registry.get(node_id)
            self.kit.channel.execute(node, Action.STOP)
            return self.kit.verifier.verify_and_commit(node, cancel)

    def issue_stop(self, node_id: str) -> ControlOutcome:
        """Send stop without verifying; the caller verifies later."""
        with self._lease(node_id):
            return self.kit.channel.execute(self.kit.registry.get(node_id), Action.STOP)

    def status(self, node_id: str, cancel: Optional[CancelToken] = None) -> VerificationResult:
        """Refresh and commit the node's running state."""
        with self._lease(node_id):
            node = self.kit.registry.get(node_id)
            return self.kit.verifier.verify_and_commit(node, cancel)

    def logs(self, node_id: str, lines: int = 50) -> ControlOutcome:
        with self._lease(node_id):
            return self.kit.channel.execute(self.kit.registry.get(node_id), Action.LOGS, lines=lines)

    def health(self, node_id: str) -> ControlOutcome:
        with self._lease(node_id):
            return self.kit.channel.execute(self.kit.registry.get(node_id), Action.HEALTH)


def _display(kit: NodeKit):
    from hft_nodekit.toolkit.display.status_display import StatusDisplay
    return StatusDisplay(timezone=kit.config.get("display.timezone"))


def _logs_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        return "\n".join(str(line) for line in output)
    return json.dumps(output, indent=2)


def run_control(action: str, node_id: str, env: Optional[Dict[str, str]] = None, lines: int = 50,
                config_path: Optional[str] = None) -> bool:
    """
    CLI entry point for a single-node action.

    Returns:
        True when the action succeeded and, for mutations, verification
        reached the expected state
    """
    action = Action(action)
    kit = build_nodekit(config_path)
    try:
        with cancel_on_interrupt(CancelToken()) as cancel:
            return _run_action(kit, action, node_id, env, lines, cancel)
    except NodeKitError as e:
        logger.debug(f"{action.value} on {node_id} failed", exc_info=True)
        print(red(f"{action.value} on {node_id} failed: {e}"))
        return False
    finally:
        kit.close()


def _run_action(kit: NodeKit, action: Action, node_id: str, env: Optional[Dict[str, str]], lines: int,
                cancel: CancelToken) -> bool:
    controller = NodeController(kit)
    display = _display(kit)
    node: Node = kit.registry.get(node_id)

    if action.creates_signal:
        if action == Action.RESTART:
            result = controller.restart(node_id, env, cancel)
        else:
            result = controller.start(node_id, env, cancel)
        display.show_verification(node, result, action.value)
        return result.state == RunningState.RUNNING

    if action == Action.STOP:
        result = controller.stop(node_id, cancel)
        display.show_verification(node, result, action.value)
        return result.state == RunningState.STOPPED

    if action == Action.STATUS:
        display.show_verification(node, controller.status(node_id, cancel), action.value)
        return True

    if action == Action.LOGS:
        outcome = controller.logs(node_id, lines)
        display.show_text(f"{node_id} logs (last {lines}, via {outcome.transport.value})",
                          _logs_text(outcome.raw_output))
        return True

    outcome = controller.health(node_id)
    display.show_health(node, outcome.raw_output, outcome.transport.value)
    return True
