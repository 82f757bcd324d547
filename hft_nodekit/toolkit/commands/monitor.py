"""
Health monitor: probes every node, tracks consecutive failures, and flags
(or, when enabled, fails over) a primary that stays down.

Automatic failover never starts the bot on the new primary.
"""

import logging
import time
from dataclasses import dataclass
from multiprocessing.dummy import Pool as ThreadPool
from typing import Dict, List, Optional

from hft_nodekit.toolkit.commands.failover import FailoverOrchestrator
from hft_nodekit.toolkit.core.context import NodeKit, build_nodekit
from hft_nodekit.toolkit.core.errors import NodeKitError
from hft_nodekit.toolkit.core.models import Action, FailoverOperation, Node
from hft_nodekit.toolkit.core.utils import green, red, yellow

logger = logging.getLogger(__name__)

THREADS_COUNT = 8


@dataclass
class HealthCheck:
    node_id: str
    status: str  # healthy, warning, down
    latency_ms: float
    consecutive_failures: int = 0
    transport: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MonitorReport:
    checks: List[HealthCheck]
    primary_id: Optional[str]
    primary_down: bool
    recommended: Optional[str]
    operation: Optional[FailoverOperation] = None


class HealthMonitor:
    def __init__(self, kit: NodeKit, failure_threshold: int = 3, auto_failover: bool = False,
                 latency_warning_ms: float = 300.0):
        self.kit = kit
        self.failure_threshold = max(1, int(failure_threshold))
        self.auto_failover = auto_failover
        self.latency_warning_ms = latency_warning_ms

    def _check(self, node: Node) -> HealthCheck:
        started = time.monotonic()
        try:
            outcome = self.kit.channel.execute(node, Action.HEALTH)
        except NodeKitError as e:
            return HealthCheck(node.id, "down", (time.monotonic() - started) * 1000, error=str(e))
        latency = (time.monotonic() - started) * 1000
        status = "healthy" if latency < self.latency_warning_ms else "warning"
        return HealthCheck(node.id, status, latency, transport=outcome.transport.value)

    def check_all(self) -> List[HealthCheck]:
        """Probe every node concurrently and update failure counters."""
        nodes = self.kit.registry.list()
        if not nodes:
            return []
        pool = ThreadPool(min(THREADS_COUNT, len(nodes)))
        try:
            checks = pool.map(self._check, nodes)
        finally:
            pool.close()
            pool.join()

        for check in checks:
            check.consecutive_failures = self.kit.registry.record_health(check.node_id, check.status != "down")
        return checks

    def recommend(self, checks: List[HealthCheck], primary: Optional[Node]) -> Optional[str]:
        """Pick the fastest healthy secondary, preferring a different provider."""
        by_id: Dict[str, Node] = {n.id: n for n in self.kit.registry.list()}
        candidates = [
            c for c in checks
            if c.status != "down" and (primary is None or c.node_id != primary.id)
        ]
        if not candidates:
            return None
        provider = primary.provider if primary else None
        candidates.sort(key=lambda c: (by_id[c.node_id].provider == provider, c.status != "healthy", c.latency_ms))
        return candidates[0].node_id

    def run_once(self) -> MonitorReport:
        checks = self.check_all()
        primary = self.kit.registry.primary()
        primary_check = next((c for c in checks if primary and c.node_id == primary.id), None)
        primary_down = bool(primary_check and primary_check.status == "down"
                            and primary_check.consecutive_failures >= self.failure_threshold)

        report = MonitorReport(checks=checks, primary_id=primary.id if primary else None,
                               primary_down=primary_down, recommended=None)
        if not primary_down:
            return report

        report.recommended = self.recommend(checks, primary)
        logger.warning(f"Primary {primary.id} down for {primary_check.consecutive_failures} checks; "
                       f"recommended target: {report.recommended or 'none'}")
        if self.auto_failover and report.recommended:
            try:
                report.operation = FailoverOrchestrator(self.kit).switch_primary(
                    report.recommended, start_after_switch=False
                )
            except NodeKitError as e:
                logger.error(f"Auto-failover to {report.recommended} not started: {e}")
        return report


def _print_report(report: MonitorReport) -> None:
    colours = {"healthy": green, "warning": yellow, "down": red}
    for check in report.checks:
        marker = " (primary)" if check.node_id == report.primary_id else ""
        line = f"{check.node_id}{marker}: {check.status} {check.latency_ms:.0f}ms"
        if check.error:
            line += f" - {check.error}"
        line += f" [failures: {check.consecutive_failures}]"
        print(colours[check.status](line))

    if report.primary_down:
        print(red(f"Primary {report.primary_id} is DOWN."))
        if report.operation:
            print(yellow(f"Auto-failover to {report.recommended}: {report.operation.status.value} "
                         f"({', '.join(report.operation.stage_log())}). Bot NOT started."))
        elif report.recommended:
            print(yellow(f"Recommended: hft-nodekit switch {report.recommended}"))
        else:
            print(red("No healthy secondary available."))


def run_monitor(interval: Optional[float] = None, once: bool = False, auto_failover: Optional[bool] = None,
                config_path: Optional[str] = None) -> bool:
    """CLI entry point. Returns False when the last check found the primary down."""
    kit = build_nodekit(config_path)
    settings = kit.config.get_monitor_settings()
    monitor = HealthMonitor(
        kit,
        failure_threshold=settings["failure_threshold"],
        auto_failover=settings["auto_failover"] if auto_failover is None else auto_failover,
        latency_warning_ms=settings["latency_warning_ms"],
    )
    interval = interval or settings["interval"]

    try:
        while True:
            report = monitor.run_once()
            _print_report(report)
            if once:
                return not report.primary_down
            time.sleep(interval)
    except KeyboardInterrupt:
        print(yellow("Monitor stopped."))
        return True
    finally:
        kit.close()
