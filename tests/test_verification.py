import signal
import threading
import time

import pytest

from hft_nodekit.toolkit.core.errors import TransportError, VerificationCancelled
from hft_nodekit.toolkit.core.models import Action, CommandResult, RunningState, Transport
from hft_nodekit.toolkit.core.responses import Unparseable
from hft_nodekit.toolkit.core.verification import CancelToken, VerificationEngine, cancel_on_interrupt, combine


@pytest.mark.parametrize("signal, live, expected", [
    (True, True, RunningState.RUNNING),
    (True, False, RunningState.STANDBY),
    (False, True, RunningState.STANDBY),
    (False, False, RunningState.STOPPED),
    (None, True, RunningState.ERROR),
    (True, None, RunningState.ERROR),
])
def test_truth_table(signal, live, expected):
    assert combine(signal, live) == expected


@pytest.mark.parametrize("signal, live, expected", [
    (True, True, RunningState.RUNNING),
    (True, False, RunningState.STANDBY),
    (False, True, RunningState.STANDBY),
    (False, False, RunningState.STOPPED),
])
def test_verify_reports_running_only_with_both_proofs(kit, add_node, signal, live, expected):
    node = add_node("fra-1", "10.0.0.1", signal=signal, live=live)
    result = kit.verifier.verify(node)
    assert result.state == expected
    assert result.signal.exists is signal
    assert result.liveness is live


def test_query_failure_on_one_axis_is_error(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)

    def broken(n):
        raise TransportError("both channels down", node_id=n.id)

    monkeypatch.setattr(kit.channel, "probe_liveness", broken)
    result = kit.verifier.verify(node)
    assert result.state == RunningState.ERROR
    assert "liveness" in result.detail


def test_unparseable_axis_is_error(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    monkeypatch.setattr(kit.channel, "probe_signal",
                        lambda n: (Unparseable("garbage", "unexpected first line"), Transport.SHELL))
    assert kit.verifier.verify(node).state == RunningState.ERROR


def test_verify_and_commit_updates_registry(kit, add_node):
    node = add_node("fra-1", "10.0.0.1", signal=False, live=True)
    kit.verifier.verify_and_commit(node)
    assert kit.registry.get("fra-1").running_state == RunningState.STANDBY


def test_only_second_pass_is_committed(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1")
    bot = world["10.0.0.1"]
    states = []
    kit.registry.subscribe(lambda event, payload: states.append(payload.get("current")))

    original = kit.verifier.verify
    passes = []

    def counting_verify(n, cancel=None):
        passes.append(n.id)
        if len(passes) == 2:
            # Container finishes booting during the settle delay
            bot.live = True
        return original(n, cancel)

    bot.signal, bot.live = True, False
    kit.verifier.verify = counting_verify
    result = kit.verifier.verify_after_command(node, Action.START)

    assert len(passes) == 2
    assert result.state == RunningState.RUNNING
    assert states == ["running"]


def test_mismatch_after_settle_resolves_to_standby_and_is_recorded(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1", boots=False)
    kit.channel.execute(node, Action.START)

    result = kit.verifier.verify_after_command(node, Action.START)

    assert result.state == RunningState.STANDBY
    assert kit.registry.get("fra-1").running_state == RunningState.STANDBY
    latest = kit.registry.commands("fra-1")[0]
    assert latest.result == CommandResult.VERIFICATION_MISMATCH
    assert latest.action == Action.START


def test_cancel_during_settle_delay_leaves_state_uncommitted(kit, add_node):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    engine = VerificationEngine(kit.channel, kit.registry, settle_delay=30, probe_timeout=5)
    cancel = CancelToken()
    threading.Timer(0.1, cancel.cancel).start()

    with pytest.raises(VerificationCancelled):
        engine.verify_after_command(node, Action.START, cancel)
    assert kit.registry.get("fra-1").running_state == RunningState.UNKNOWN


def test_cancelled_token_aborts_before_any_query(kit, add_node):
    node = add_node("fra-1", "10.0.0.1")
    cancel = CancelToken()
    cancel.cancel()
    with pytest.raises(VerificationCancelled):
        kit.verifier.verify(node, cancel)


def test_non_numeric_signal_age_falls_back_to_shell(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    monkeypatch.setattr(kit.channel.http, "signal_check",
                        lambda n: {"signalExists": True, "signalAgeSeconds": "12s", "dockerRunning": True})
    result = kit.verifier.verify(node)
    assert result.state == RunningState.RUNNING
    assert result.signal.exists
    assert result.transport == Transport.SHELL


def test_non_numeric_signal_age_without_shell_is_error(kit, add_node, world, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    world["10.0.0.1"].shell_up = False
    monkeypatch.setattr(kit.channel.http, "signal_check",
                        lambda n: {"signalExists": True, "signalAgeSeconds": "NaN", "dockerRunning": True})
    result = kit.verifier.verify(node)
    assert result.state == RunningState.ERROR
    assert "signal" in result.detail


def test_cancel_interrupts_a_slow_signal_check(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    original = kit.channel.probe_signal

    def slow(n):
        time.sleep(3)
        return original(n)

    monkeypatch.setattr(kit.channel, "probe_signal", slow)
    cancel = CancelToken()
    threading.Timer(0.2, cancel.cancel).start()

    started = time.monotonic()
    with pytest.raises(VerificationCancelled):
        kit.verifier.verify(node, cancel)
    assert time.monotonic() - started < 2
    assert kit.registry.get("fra-1").running_state == RunningState.UNKNOWN


def test_slow_axis_times_out_as_error(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    engine = VerificationEngine(kit.channel, kit.registry, settle_delay=0, probe_timeout=0.3)
    original = kit.channel.probe_liveness

    def slow(n):
        time.sleep(1)
        return original(n)

    monkeypatch.setattr(kit.channel, "probe_liveness", slow)
    result = engine.verify(node)
    assert result.state == RunningState.ERROR
    assert "liveness probe timed out" in result.detail


def test_missing_signal_on_first_pass_skips_settle_delay(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1")
    # Control endpoint claims success but never writes the signal
    world["10.0.0.1"].control_reply = {"success": True, "signalCreated": True}
    engine = VerificationEngine(kit.channel, kit.registry, settle_delay=30, probe_timeout=5)
    kit.channel.execute(node, Action.START)

    started = time.monotonic()
    result = engine.verify_after_command(node, Action.START)

    assert time.monotonic() - started < 5
    assert result.state == RunningState.STOPPED
    assert kit.registry.get("fra-1").running_state == RunningState.STOPPED
    latest = kit.registry.commands("fra-1")[0]
    assert latest.result == CommandResult.VERIFICATION_MISMATCH
    assert "first pass" in latest.detail


@pytest.mark.parametrize("signal_on, live, expected", [
    (False, False, RunningState.STANDBY),
    (False, True, RunningState.STANDBY),
    (True, True, RunningState.RUNNING),
])
def test_hold_in_standby_never_hides_a_running_bot(kit, add_node, signal_on, live, expected):
    node = add_node("fra-1", "10.0.0.1", signal=signal_on, live=live)
    result = kit.verifier.hold_in_standby(node)
    assert result.state == expected
    assert kit.registry.get("fra-1").running_state == expected


def test_cancel_on_interrupt_routes_sigint_to_token():
    previous = signal.getsignal(signal.SIGINT)
    with cancel_on_interrupt(CancelToken()) as cancel:
        handler = signal.getsignal(signal.SIGINT)
        assert handler is not previous
        handler(signal.SIGINT, None)
        assert cancel.cancelled
    assert signal.getsignal(signal.SIGINT) is previous


def test_cancel_on_interrupt_outside_main_thread_leaves_handler_alone():
    previous = signal.getsignal(signal.SIGINT)
    seen = []

    def worker():
        with cancel_on_interrupt(CancelToken()) as cancel:
            seen.append((signal.getsignal(signal.SIGINT), cancel.cancelled))

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    assert seen == [(previous, False)]
