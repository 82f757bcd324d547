"""
Primary-role migration between nodes.

Stages run strictly in order and each is persisted as it finishes. A failed
stage halts the sequence; effects of stages already completed (the old
primary being stopped, most importantly) are left in place and reported,
since restarting the old primary automatically could put two nodes in the
market at once.
"""

import logging
import time
from contextlib import ExitStack
from typing import Callable, Dict, List, Optional

from hft_nodekit.toolkit.commands.control import NodeController
from hft_nodekit.toolkit.core.allowlist import AllowlistError
from hft_nodekit.toolkit.core.context import NodeKit, build_nodekit
from hft_nodekit.toolkit.core.errors import NodeKitError, VerificationMismatch
from hft_nodekit.toolkit.core.models import (
    FailoverOperation, FailoverStage, OperationStatus, RunningState, StageStatus,
)
from hft_nodekit.toolkit.core.utils import bright_cyan, format_duration, green, red, yellow
from hft_nodekit.toolkit.core.verification import CancelToken, cancel_on_interrupt

logger = logging.getLogger(__name__)

STOP_OLD = "stop-old"
DRAIN_WAIT = "drain-wait"
START_NEW = "start-new"
SET_PRIMARY = "set-primary"
ALLOWLIST_SYNC = "allowlist-sync"

STAGES = (STOP_OLD, DRAIN_WAIT, START_NEW, SET_PRIMARY, ALLOWLIST_SYNC)

FAILOVER_LEASE = "failover:global"


class FailoverOrchestrator:
    """Sequences a primary switch and records every stage."""

    def __init__(self, kit: NodeKit, drain_delay: Optional[float] = None, owner: Optional[str] = None):
        self.kit = kit
        self.registry = kit.registry
        self.controller = NodeController(kit, owner=owner)
        self.owner = self.controller.owner
        self.drain_delay = drain_delay if drain_delay is not None else kit.config.get_drain_delay()
        self._handlers: Dict[str, Callable[[FailoverOperation, FailoverStage, CancelToken], None]] = {
            STOP_OLD: self._stop_old,
            DRAIN_WAIT: self._drain_wait,
            START_NEW: self._start_new,
            SET_PRIMARY: self._set_primary,
            ALLOWLIST_SYNC: self._allowlist_sync,
        }

    def switch_primary(self, to_node_id: str, start_after_switch: bool = False,
                       cancel: Optional[CancelToken] = None) -> FailoverOperation:
        """
        Move the primary role to ``to_node_id``.

        The new node is only started when ``start_after_switch`` is true;
        otherwise it is left in standby.

        Returns:
            The FailoverOperation, terminal status ``completed``,
            ``completed-with-warning`` or ``failed``

        Raises:
            NodeNotFound: The target is not registered
            NodeBusy: Another failover or a command on either node is in flight
        """
        with self.registry.lease(FAILOVER_LEASE, self.owner, self.controller.lease_ttl):
            self.registry.get(to_node_id)
            current = self.registry.primary()
            operation = FailoverOperation(
                from_node_id=current.id if current else None,
                to_node_id=to_node_id,
                start_bot_after_switch=bool(start_after_switch),
                stages=[FailoverStage(name) for name in STAGES],
            )
            logger.info(f"Failover {operation.id}: {operation.from_node_id or '(none)'} -> {to_node_id}, "
                        f"start after switch: {operation.start_bot_after_switch}")
            return self._run(operation, cancel or CancelToken())

    def resume(self, operation_id: str, cancel: Optional[CancelToken] = None) -> FailoverOperation:
        """Re-run a failover from its first stage that is not success or skipped."""
        with self.registry.lease(FAILOVER_LEASE, self.owner, self.controller.lease_ttl):
            operation = self.registry.get_operation(operation_id)
            if operation.status == OperationStatus.COMPLETED:
                logger.info(f"Failover {operation_id} already completed; nothing to resume")
                return operation
            logger.info(f"Resuming failover {operation_id} from "
                        f"{next((s.name for s in operation.stages if not s.is_done), '-')}")
            return self._run(operation, cancel or CancelToken())

    def _lease_keys(self, operation: FailoverOperation) -> List[str]:
        return [FAILOVER_LEASE] + sorted({operation.from_node_id, operation.to_node_id} - {None})

    def _run(self, operation: FailoverOperation, cancel: CancelToken) -> FailoverOperation:
        with ExitStack() as stack:
            for node_id in self._lease_keys(operation)[1:]:
                stack.enter_context(self.registry.lease(node_id, self.owner, self.controller.lease_ttl))
            operation.status = OperationStatus.RUNNING
            self.registry.save_operation(operation)

            for stage in operation.stages:
                if stage.is_done:
                    continue
                try:
                    if cancel.cancelled:
                        raise NodeKitError(f"Failover cancelled before {stage.name}", stage=stage.name)
                    for key in self._lease_keys(operation):
                        self.registry.renew_lease(key, self.owner, self.controller.lease_ttl)
                    self._handlers[stage.name](operation, stage, cancel)
                except NodeKitError as e:
                    stage.mark(StageStatus.FAILED, str(e))
                    operation.status = OperationStatus.FAILED
                    self.registry.save_operation(operation)
                    logger.error(f"Failover {operation.id} failed at {stage.name}: {e}. "
                                 f"Completed stages: {', '.join(operation.completed_stages()) or 'none'}")
                    return operation
                self.registry.save_operation(operation)
                logger.info(f"Failover {operation.id} {stage.name}: {stage.status.value}")

        if any(s.status == StageStatus.WARNING for s in operation.stages):
            operation.status = OperationStatus.COMPLETED_WITH_WARNING
        else:
            operation.status = OperationStatus.COMPLETED
        self.registry.save_operation(operation)
        return operation

    def _has_old_primary(self, operation: FailoverOperation) -> bool:
        return operation.from_node_id is not None and operation.from_node_id != operation.to_node_id

    # --- stages ---

    def _stop_old(self, operation: FailoverOperation, stage: FailoverStage, cancel: CancelToken) -> None:
        if operation.from_node_id is None:
            stage.mark(StageStatus.SKIPPED, "no current primary")
            return
        if operation.from_node_id == operation.to_node_id:
            stage.mark(StageStatus.SKIPPED, "target is already primary")
            return
        outcome = self.controller.issue_stop(operation.from_node_id)
        stage.mark(StageStatus.SUCCESS, f"stop issued via {outcome.transport.value}")

    def _drain_wait(self, operation: FailoverOperation, stage: FailoverStage, cancel: CancelToken) -> None:
        if not self._has_old_primary(operation):
            stage.mark(StageStatus.SKIPPED, "nothing to drain")
            return
        if cancel.wait(self.drain_delay):
            raise NodeKitError("Failover cancelled during drain wait", stage=DRAIN_WAIT)

        old = self.registry.get(operation.from_node_id)
        result = self.kit.verifier.verify_and_commit(old, cancel)
        if result.state == RunningState.RUNNING:
            raise VerificationMismatch(
                f"{old.id} still running after stop and {self.drain_delay}s drain",
                node_id=old.id, stage=DRAIN_WAIT,
            )
        if result.state != RunningState.STOPPED:
            logger.warning(f"Old primary {old.id} is {result.state.value} after drain ({result.detail})")
        stage.mark(StageStatus.SUCCESS, f"{old.id} {result.state.value} after {self.drain_delay}s")

    def _start_new(self, operation: FailoverOperation, stage: FailoverStage, cancel: CancelToken) -> None:
        target = operation.to_node_id
        if not operation.start_bot_after_switch:
            result = self.kit.verifier.hold_in_standby(self.registry.get(target), cancel)
            if result.state == RunningState.RUNNING:
                logger.warning(f"{target} is already running although no start was requested")
            stage.mark(StageStatus.SKIPPED, f"start not requested; {target} is {result.state.value}")
            return

        result = self.controller.start(target, cancel=cancel)
        if result.state != RunningState.RUNNING:
            raise VerificationMismatch(
                f"{target} is {result.state.value} after start, not running",
                node_id=target, stage=START_NEW,
            )
        stage.mark(StageStatus.SUCCESS, f"{target} running")

    def _set_primary(self, operation: FailoverOperation, stage: FailoverStage, cancel: CancelToken) -> None:
        self.registry.set_primary(operation.to_node_id, expected_primary=operation.from_node_id)
        stage.mark(StageStatus.SUCCESS, f"{operation.to_node_id} is primary")

    def _allowlist_sync(self, operation: FailoverOperation, stage: FailoverStage, cancel: CancelToken) -> None:
        target = self.registry.get(operation.to_node_id)
        try:
            result = self.kit.allowlist.propagate(target)
        except AllowlistError as e:
            logger.warning(f"Allow-list propagation failed; primary switch stands: {e}")
            stage.mark(StageStatus.WARNING, str(e))
            return
        if result.skipped:
            stage.mark(StageStatus.SKIPPED, result.detail)
        else:
            stage.mark(StageStatus.SUCCESS, f"{target.address} propagated")


# --- CLI ---

def print_header(title):
    """Prints a consistent, formatted header."""
    separator = "-" * 100
    print(bright_cyan(separator))
    print(f"{green('HFT-NodeKit')} {bright_cyan('| Primary Switch:')} {yellow(title)}")
    print(bright_cyan(separator))


def display_confirmation_prompt(kit: NodeKit, to_node_id: str, start_after_switch: bool) -> bool:
    """Shows the planned stages and asks for confirmation."""
    current = kit.registry.primary()
    target = kit.registry.get(to_node_id)

    print_header("Confirmation")
    print(f"FROM (current primary):  {current.id + ' (' + current.address + ')' if current else '(none)'}")
    print(f"TO   (new primary):      {target.id} ({target.address}, {target.provider})")
    print(f"START AFTER SWITCH:      {red('YES - the bot will start trading') if start_after_switch else green('no')}")
    print(bright_cyan("-" * 100))
    for index, name in enumerate(STAGES, 1):
        print(f"({index}). {name}")
    print(bright_cyan("-" * 100))

    try:
        confirm = input(green("Proceed with this switch? (y/N): "))
    except (EOFError, KeyboardInterrupt):
        confirm = ""
    if confirm.lower() != "y":
        print(yellow("Switch aborted by user."))
        return False
    return True


def _report(kit: NodeKit, operation: FailoverOperation, started: float) -> bool:
    from hft_nodekit.toolkit.display.status_display import StatusDisplay
    StatusDisplay(timezone=kit.config.get("display.timezone")).show_operation(operation)

    print_header("Summary")
    print(f"Elapsed: {format_duration(time.monotonic() - started)}")
    if operation.status == OperationStatus.FAILED:
        print(red(f"Switch FAILED. Completed stages: {', '.join(operation.completed_stages()) or 'none'}"))
        print(red("Completed stages were not rolled back. Review the nodes and run "
                  f"'hft-nodekit resume {operation.id}' or finish manually."))
        return False
    if operation.status == OperationStatus.COMPLETED_WITH_WARNING:
        print(yellow(f"Switch completed with warnings. Retry allow-list sync with 'hft-nodekit resume {operation.id}'."))
        return True
    print(green("Switch complete."))
    return True


def manage_failover(to_node_id: str, start_after_switch: bool = False, assume_yes: bool = False,
                    config_path: Optional[str] = None) -> bool:
    """Main entry point for a primary switch."""
    kit = build_nodekit(config_path)
    try:
        if not assume_yes and not display_confirmation_prompt(kit, to_node_id, start_after_switch):
            return True
        print_header("Execution")
        started = time.monotonic()
        with cancel_on_interrupt(CancelToken()) as cancel:
            operation = FailoverOrchestrator(kit).switch_primary(to_node_id, start_after_switch, cancel)
        return _report(kit, operation, started)
    except NodeKitError as e:
        print(red(f"Switch not started: {e}"))
        return False
    finally:
        kit.close()


def manage_resume(operation_id: str, config_path: Optional[str] = None) -> bool:
    """Resume a failed or warned failover."""
    kit = build_nodekit(config_path)
    try:
        print_header(f"Resume {operation_id}")
        started = time.monotonic()
        with cancel_on_interrupt(CancelToken()) as cancel:
            operation = FailoverOrchestrator(kit).resume(operation_id, cancel)
        return _report(kit, operation, started)
    except KeyError as e:
        print(red(str(e)))
        return False
    except NodeKitError as e:
        print(red(f"Resume not started: {e}"))
        return False
    finally:
        kit.close()
