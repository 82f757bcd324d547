import pytest

from hft_nodekit.toolkit.commands.control import NodeController
from hft_nodekit.toolkit.core.errors import NodeBusy
from hft_nodekit.toolkit.core.models import Action, RunningState


@pytest.fixture
def controller(kit):
    return NodeController(kit, lease_ttl=60)


def test_start_and_stop_verify_and_commit(kit, add_node, controller, world):
    add_node("fra-1", "10.0.0.1")

    assert controller.start("fra-1").state == RunningState.RUNNING
    assert kit.registry.get("fra-1").running_state == RunningState.RUNNING

    assert controller.stop("fra-1").state == RunningState.STOPPED
    assert world["10.0.0.1"].signal is False
    # Stopping again is reported as success
    assert controller.stop("fra-1").state == RunningState.STOPPED


@pytest.mark.parametrize("call", [
    lambda c: c.start("fra-1"),
    lambda c: c.stop("fra-1"),
    lambda c: c.status("fra-1"),
    lambda c: c.logs("fra-1", 5),
    lambda c: c.health("fra-1"),
])
def test_every_command_refuses_a_node_leased_elsewhere(kit, add_node, controller, call):
    add_node("fra-1", "10.0.0.1")
    with kit.registry.lease("fra-1", "someone-else"):
        with pytest.raises(NodeBusy):
            call(controller)
    assert kit.registry.commands("fra-1") == []


def test_read_only_commands_release_the_lease(kit, add_node, controller):
    add_node("fra-1", "10.0.0.1")
    assert controller.logs("fra-1", 3).raw_output == "line 0\nline 1\nline 2"
    assert controller.health("fra-1").raw_output["ok"] is True

    with kit.registry.lease("fra-1", "someone-else"):
        pass
    assert [c.action for c in kit.registry.commands("fra-1")] == [Action.HEALTH, Action.LOGS]
