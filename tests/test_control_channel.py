import pytest

from hft_nodekit.toolkit.core.errors import RemoteExecutionError, TransportError
from hft_nodekit.toolkit.core.models import Action, CommandResult, Transport
from hft_nodekit.toolkit.core.responses import Ok
from hft_nodekit.toolkit.core.shell_transport import ShellResult


def test_http_confirmation_is_used_when_available(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1")
    outcome = kit.channel.execute(node, Action.START)

    assert outcome.transport == Transport.HTTP
    assert world["10.0.0.1"].signal is True
    assert kit.channel.shell.scripts == []
    [command] = kit.registry.commands("fra-1")
    assert command.action == Action.START
    assert command.result == CommandResult.SUCCESS
    assert command.transport_used == Transport.HTTP


def test_unreachable_http_falls_back_to_shell_for_every_command(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1", http_up=False)

    for action in (Action.START, Action.STATUS, Action.LOGS, Action.HEALTH, Action.STOP):
        assert kit.channel.execute(node, action).transport == Transport.SHELL

    commands = kit.registry.commands("fra-1")
    assert len(commands) == 5
    assert all(c.transport_used == Transport.SHELL for c in commands)
    assert all(c.result == CommandResult.SUCCESS for c in commands)


def test_bare_http_success_is_inconclusive_and_falls_back(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1")
    world["10.0.0.1"].control_reply = {"success": True}

    outcome = kit.channel.execute(node, Action.START)
    assert outcome.transport == Transport.SHELL
    assert world["10.0.0.1"].signal is True


def test_start_delivers_env_bundle_over_stdin(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1", http_up=False)
    kit.channel.execute(node, Action.START, env={"LEVERAGE": "3"})

    _, script, stdin = kit.channel.shell.scripts[-1]
    assert "LEVERAGE=3\n" in stdin
    assert "STRATEGY_ENABLED=true\n" in stdin
    assert "LEVERAGE" not in script


def test_explicit_remote_failure_is_surfaced_without_fallback(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1")
    world["10.0.0.1"].control_reply = {"success": False, "error": "docker daemon not running"}

    with pytest.raises(RemoteExecutionError):
        kit.channel.execute(node, Action.START)
    assert kit.channel.shell.scripts == []
    [command] = kit.registry.commands("fra-1")
    assert command.result == CommandResult.REMOTE_EXECUTION_ERROR
    assert command.transport_used == Transport.HTTP


def test_shell_non_zero_exit_is_remote_execution_error(kit, add_node, monkeypatch):
    node = add_node("fra-1", "10.0.0.1", http_up=False)
    monkeypatch.setattr(kit.channel.shell, "run", lambda *a, **kw: ShellResult(1, "compose: no such file"))

    with pytest.raises(RemoteExecutionError) as excinfo:
        kit.channel.execute(node, Action.START)
    assert excinfo.value.transport == "shell"
    assert kit.registry.commands("fra-1")[0].transport_used == Transport.SHELL


def test_both_channels_down_surfaces_transport_error(kit, add_node):
    node = add_node("fra-1", "10.0.0.1", http_up=False, shell_up=False)

    with pytest.raises(TransportError) as excinfo:
        kit.channel.execute(node, Action.STOP)
    assert "http" in str(excinfo.value) and "shell" in str(excinfo.value)
    [command] = kit.registry.commands("fra-1")
    assert command.result == CommandResult.TRANSPORT_ERROR
    assert command.transport_used is None


def test_stop_is_idempotent(kit, add_node):
    node = add_node("fra-1", "10.0.0.1")
    first = kit.channel.execute(node, Action.STOP)
    second = kit.channel.execute(node, Action.STOP)
    assert first.command.result == second.command.result == CommandResult.SUCCESS

    shell_node = add_node("ams-1", "10.0.0.2", http_up=False)
    for _ in range(2):
        assert kit.channel.execute(shell_node, Action.STOP).command.result == CommandResult.SUCCESS


def test_state_reads_prefer_http_and_fall_back(kit, add_node, world):
    node = add_node("fra-1", "10.0.0.1", signal=True, live=True)
    signal, via = kit.channel.probe_signal(node)
    assert isinstance(signal, Ok) and signal.value.exists and via == Transport.HTTP

    world["10.0.0.1"].http_up = False
    liveness, via = kit.channel.probe_liveness(node)
    assert liveness == Ok(True) and via == Transport.SHELL


def test_logs_and_health_values(kit, add_node):
    node = add_node("fra-1", "10.0.0.1")
    logs = kit.channel.execute(node, Action.LOGS, lines=3)
    assert logs.raw_output == "line 0\nline 1\nline 2"
    health = kit.channel.execute(node, Action.HEALTH)
    assert health.raw_output["version"] == "1.4.2"
