from hft_nodekit.toolkit.commands.monitor import HealthCheck, HealthMonitor
from hft_nodekit.toolkit.core.models import Action, OperationStatus


def _cluster(kit, add_node):
    add_node("prim", "10.0.0.1", provider="hetzner", signal=True, live=True)
    add_node("same", "10.0.0.2", provider="hetzner")
    add_node("other", "10.0.0.3", provider="vultr")
    kit.registry.set_primary("prim")


def test_healthy_cluster_reports_no_outage(kit, add_node):
    _cluster(kit, add_node)
    report = HealthMonitor(kit, failure_threshold=2).run_once()

    assert report.primary_id == "prim"
    assert not report.primary_down
    assert report.recommended is None
    assert {c.node_id: c.status for c in report.checks} == {"prim": "healthy", "same": "healthy", "other": "healthy"}


def test_primary_flagged_only_after_threshold(kit, add_node, world):
    _cluster(kit, add_node)
    world["10.0.0.1"].http_up = False
    world["10.0.0.1"].shell_up = False
    monitor = HealthMonitor(kit, failure_threshold=2)

    first = monitor.run_once()
    assert not first.primary_down
    assert kit.registry.get("prim").consecutive_failures == 1

    second = monitor.run_once()
    assert second.primary_down
    assert second.recommended == "other"
    assert second.operation is None


def test_recovery_resets_failure_counter(kit, add_node, world):
    _cluster(kit, add_node)
    world["10.0.0.1"].http_up = False
    world["10.0.0.1"].shell_up = False
    monitor = HealthMonitor(kit, failure_threshold=3)
    monitor.run_once()

    world["10.0.0.1"].http_up = True
    monitor.run_once()
    assert kit.registry.get("prim").consecutive_failures == 0


def test_recommend_prefers_other_provider_then_health_then_latency(kit, add_node):
    _cluster(kit, add_node)
    add_node("other-2", "10.0.0.4", provider="vultr")
    primary = kit.registry.primary()
    checks = [
        HealthCheck("prim", "down", 5000.0),
        HealthCheck("same", "healthy", 10.0),
        HealthCheck("other", "warning", 350.0),
        HealthCheck("other-2", "healthy", 80.0),
    ]
    monitor = HealthMonitor(kit)
    assert monitor.recommend(checks, primary) == "other-2"

    checks[3] = HealthCheck("other-2", "down", 5000.0)
    assert monitor.recommend(checks, primary) == "other"

    checks[2] = HealthCheck("other", "down", 5000.0)
    assert monitor.recommend(checks, primary) == "same"


def test_auto_failover_never_starts_the_bot(kit, add_node, world):
    _cluster(kit, add_node)
    world["10.0.0.1"].http_up = False
    world["10.0.0.1"].shell_up = False
    monitor = HealthMonitor(kit, failure_threshold=1, auto_failover=True)

    report = monitor.run_once()

    assert report.operation is not None
    assert report.operation.to_node_id == "other"
    assert report.operation.start_bot_after_switch is False
    # The unreachable primary cannot be confirmed stopped, so the switch halts
    assert report.operation.status == OperationStatus.FAILED
    assert report.operation.stage_log()[0] == "stop-old: failed"
    assert kit.registry.primary().id == "prim"
    assert world["10.0.0.3"].signal is False
    assert not any(c.action == Action.START for c in kit.registry.commands("other"))


def test_auto_failover_switches_when_old_primary_stops(kit, add_node, world):
    _cluster(kit, add_node)
    # Health endpoint broken but control still reachable over ssh
    monitor = HealthMonitor(kit, failure_threshold=1, auto_failover=True)
    original_check = monitor._check

    def flaky_primary(node):
        if node.id == "prim":
            return HealthCheck(node.id, "down", 3000.0, error="health timed out")
        return original_check(node)

    monitor._check = flaky_primary
    report = monitor.run_once()

    assert report.operation.status == OperationStatus.COMPLETED
    assert report.operation.stage("start-new").status.value == "skipped"
    assert kit.registry.primary().id == "other"
    assert world["10.0.0.1"].signal is False
    assert world["10.0.0.3"].signal is False
