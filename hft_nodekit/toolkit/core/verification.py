"""
Signal state reader and verification engine.

State is inferred from two independent observations taken in the same pass:
the signal artifact (start intent) and container liveness. Only agreement on
both yields ``running``.
"""

import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from multiprocessing import TimeoutError as PoolTimeout
from multiprocessing.dummy import Pool as ThreadPool
from typing import Iterator, Optional, Tuple

from hft_nodekit.toolkit.core.control_channel import ControlChannel
from hft_nodekit.toolkit.core.errors import NodeKitError, VerificationCancelled
from hft_nodekit.toolkit.core.models import Action, Node, RunningState, SignalArtifact, VerificationResult
from hft_nodekit.toolkit.core.responses import Ok

logger = logging.getLogger(__name__)

# How often an outstanding probe checks for cancellation
POLL_INTERVAL = 0.1


def combine(signal_exists: Optional[bool], liveness_ok: Optional[bool]) -> RunningState:
    """Map one pass of observations to a state. None means the probe failed."""
    if signal_exists is None or liveness_ok is None:
        return RunningState.ERROR
    if signal_exists and liveness_ok:
        return RunningState.RUNNING
    if signal_exists or liveness_ok:
        return RunningState.STANDBY
    return RunningState.STOPPED


class CancelToken:
    """Cancels an in-progress verification from another thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled meanwhile."""
        return self._event.wait(seconds)


@contextmanager
def cancel_on_interrupt(cancel: CancelToken) -> Iterator[CancelToken]:
    """Route Ctrl+C to ``cancel`` while the block runs (main thread only)."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _signal_handler(sig, frame):
        logger.warning("Interrupt received; cancelling verification (issued commands are not undone)")
        cancel.cancel()

    previous = signal.signal(signal.SIGINT, _signal_handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


class VerificationEngine:
    """Runs verification passes and commits their results to the registry."""

    def __init__(self, channel: ControlChannel, registry, settle_delay: float = 10.0,
                 probe_timeout: Optional[float] = None):
        self.channel = channel
        self.registry = registry
        self.settle_delay = settle_delay
        # Slightly above the slowest probe so a shell fallback can finish
        self.probe_timeout = probe_timeout or (
            max(channel.http.timeouts["signal"], channel.http.timeouts["liveness"]) * 2 + 1
        )

    def verify(self, node: Node, cancel: Optional[CancelToken] = None) -> VerificationResult:
        """Single uncommitted pass: probe signal and liveness concurrently."""
        if cancel and cancel.cancelled:
            raise VerificationCancelled(f"Verification of {node.id} cancelled", node_id=node.id)

        pool = ThreadPool(2)
        try:
            signal_job = pool.apply_async(self.channel.probe_signal, (node,))
            liveness_job = pool.apply_async(self.channel.probe_liveness, (node,))
            deadline = time.monotonic() + self.probe_timeout
            signal_result = self._collect(node, "signal", signal_job, deadline, cancel)
            liveness_result = self._collect(node, "liveness", liveness_job, deadline, cancel)
        finally:
            # An abandoned probe finishes on its own transport timeout
            pool.close()
        artifact, signal_detail, signal_transport = signal_result
        liveness, liveness_detail, liveness_transport = liveness_result

        state = combine(artifact.exists if artifact else None, liveness)
        detail = "; ".join(d for d in (signal_detail, liveness_detail) if d)
        logger.debug(f"Verified {node.id}: signal={artifact.exists if artifact else '?'} "
                     f"liveness={liveness} -> {state.value}")
        return VerificationResult(
            node_id=node.id,
            state=state,
            signal=artifact,
            liveness=liveness,
            transport=signal_transport or liveness_transport,
            detail=detail,
        )

    def _collect(self, node: Node, axis: str, job, deadline: float,
                 cancel: Optional[CancelToken]) -> Tuple[Optional[object], str, Optional[object]]:
        while not job.ready():
            if cancel and cancel.cancelled:
                raise VerificationCancelled(f"Verification of {node.id} cancelled during {axis} probe",
                                            node_id=node.id)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None, f"{axis} probe timed out", None
            job.wait(min(POLL_INTERVAL, remaining))
        if cancel and cancel.cancelled:
            raise VerificationCancelled(f"Verification of {node.id} cancelled", node_id=node.id)

        try:
            parsed, transport = job.get(0)
        except PoolTimeout:
            return None, f"{axis} probe timed out", None
        except NodeKitError as e:
            return None, f"{axis} probe failed: {e}", None

        if not isinstance(parsed, Ok):
            return None, f"{axis} output unparseable: {parsed.reason}", transport
        value = parsed.value
        if axis == "signal" and not isinstance(value, SignalArtifact):
            return None, "signal probe returned no artifact", transport
        return value, "", transport

    def verify_and_commit(self, node: Node, cancel: Optional[CancelToken] = None) -> VerificationResult:
        """One pass, committed to the registry."""
        result = self.verify(node, cancel)
        self.registry.update_state(result)
        return result

    def verify_after_command(self, node: Node, action: Action,
                             cancel: Optional[CancelToken] = None) -> VerificationResult:
        """
        Two-phase check after a start or restart.

        The first pass only catches obviously failed writes: when the signal is
        already missing the settle delay is skipped. Otherwise a second pass is
        taken after the settle delay. Only the second pass is committed; a
        committed state other than ``running`` is recorded as a verification
        mismatch.

        Raises:
            VerificationCancelled: Cancelled before the committed pass; the
                remote mutation is left as issued
        """
        action = Action(action)
        cancel = cancel or CancelToken()

        first = self.verify(node, cancel)
        write_failed = first.signal is not None and not first.signal.exists
        if write_failed:
            logger.warning(f"Signal missing on {node.id} right after {action.value}; skipping settle delay")
        elif self.settle_delay > 0:
            logger.info(f"Waiting {self.settle_delay}s for {node.id} to settle")
        if not write_failed and cancel.wait(self.settle_delay):
            raise VerificationCancelled(
                f"Verification of {node.id} cancelled during settle delay; {action.value} was not undone",
                node_id=node.id,
            )

        second = self.verify(node, cancel)
        self.registry.update_state(second)

        if action.creates_signal and second.state != RunningState.RUNNING:
            if write_failed:
                summary = f"signal absent on first pass; {action.value} not confirmed: {second.state.value}"
            else:
                summary = f"{action.value} not confirmed after settle delay: {second.state.value}"
            self.channel.record_mismatch(
                node, action, summary + (f" ({second.detail})" if second.detail else ""),
            )
            logger.warning(f"{node.id} is {second.state.value} after {action.value}, not running")
        return second

    def hold_in_standby(self, node: Node, cancel: Optional[CancelToken] = None) -> VerificationResult:
        """
        Verify and commit a node that was deliberately left unstarted.

        A verified ``stopped`` is committed as ``standby`` (not trading, kept
        on hold). Any other verified state is committed as observed, so a
        proven ``running`` is never hidden.
        """
        result = self.verify(node, cancel)
        if result.state == RunningState.STOPPED:
            result = replace(result, state=RunningState.STANDBY,
                             detail=result.detail or "held in standby: not started")
        self.registry.update_state(result)
        return result
