import json

import pytest

from hft_nodekit.config import Config
from hft_nodekit.toolkit.core.allowlist import AllowlistError, PropagationResult
from hft_nodekit.toolkit.core.context import NodeKit
from hft_nodekit.toolkit.core.control_channel import ControlChannel
from hft_nodekit.toolkit.core.errors import TransportError
from hft_nodekit.toolkit.core.http_transport import DEFAULT_TIMEOUTS
from hft_nodekit.toolkit.core.registry import Registry
from hft_nodekit.toolkit.core.shell_transport import ShellResult
from hft_nodekit.toolkit.core.verification import VerificationEngine


class RemoteBot:
    """Simulated node: a signal file, a container, and two reachable channels."""

    def __init__(self, signal=False, live=False, http_up=True, shell_up=True, boots=True):
        self.signal = signal
        self.live = live
        self.http_up = http_up
        self.shell_up = shell_up
        self.boots = boots
        self.env_written = None
        self.control_reply = None

    def start(self, env_text=None):
        self.env_written = env_text
        self.live = self.boots
        self.signal = True

    def stop(self):
        self.signal = False
        self.live = False


class FakeHttp:
    def __init__(self, world):
        self.world = world
        self.timeouts = dict(DEFAULT_TIMEOUTS)
        self.calls = []

    def _bot(self, node, path):
        self.calls.append((node.id, path))
        bot = self.world[node.address]
        if not bot.http_up:
            raise TransportError(f"{path} timed out", node_id=node.id, transport="http")
        return bot

    def control(self, node, action, env=None):
        bot = self._bot(node, "/control")
        if bot.control_reply is not None:
            return bot.control_reply
        if action.creates_signal:
            bot.start(json.dumps(env or {}))
            return {"success": True, "signalCreated": True, "dockerStatus": "starting"}
        bot.stop()
        return {"success": True, "signalCreated": False}

    def signal_check(self, node):
        bot = self._bot(node, "/signal-check")
        return {
            "signalExists": bot.signal,
            "signalData": {"started_at": "2026-10-19T10:00:00Z", "source": "nodekit", "mode": "live"}
            if bot.signal else None,
            "signalAgeSeconds": 12.0 if bot.signal else None,
            "dockerRunning": bot.live,
        }

    def status(self, node, timeout_key="status"):
        bot = self._bot(node, "/status")
        state = "Up 3 minutes" if bot.live else "Exited (0) 2 minutes ago"
        return {"bot": "ok", "docker": {"containers": [f"hft-bot: {state}"]}}

    def health(self, node):
        self._bot(node, "/health")
        return {"ok": True, "version": "1.4.2", "uptimeSeconds": 420}

    def logs(self, node, lines=50):
        self._bot(node, "/logs")
        return {"logs": "\n".join(f"line {i}" for i in range(lines))}

    def close(self):
        pass


class FakeShell:
    def __init__(self, world):
        self.world = world
        self.scripts = []

    def run(self, node, script, stdin=None, timeout=None):
        self.scripts.append((node.id, script, stdin))
        bot = self.world[node.address]
        if not bot.shell_up:
            raise TransportError("ssh connect timed out", node_id=node.id, transport="shell")

        if "SIGNAL:true" in script:
            if bot.signal:
                return ShellResult(0, 'SIGNAL:true\nAGE:7\n{"source": "nodekit", "mode": "live"}')
            return ShellResult(0, "SIGNAL:false")
        if "rm -f" in script:
            bot.stop()
            return ShellResult(0, "STOPPED")
        if "SIGNAL_VERIFIED" in script:
            bot.start(stdin)
            return ShellResult(0, "Container hft-bot  Started\nSIGNAL_VERIFIED:true")
        if "curl" in script:
            return ShellResult(0, '{"ok": true, "version": "1.4.2", "uptime": 99}')
        if "logs --tail" in script:
            return ShellResult(0, "shell log line")
        if "docker ps" in script:
            return ShellResult(0, "Up 1 minute" if bot.live else "")
        raise AssertionError(f"unexpected script: {script}")


class FakeAllowlist:
    def __init__(self, fail=False, enabled=True):
        self.fail = fail
        self.enabled = enabled
        self.pushed = []

    def propagate(self, node):
        if not self.enabled:
            return PropagationResult(skipped=True, detail="no webhook configured")
        if self.fail:
            raise AllowlistError("webhook returned HTTP 502", node_id=node.id, stage="allowlist-sync")
        self.pushed.append(node.address)
        return PropagationResult(skipped=False, attempts=1)


@pytest.fixture
def world():
    return {}


@pytest.fixture
def registry(tmp_path):
    reg = Registry(str(tmp_path / "registry.db"))
    yield reg
    reg.close()


@pytest.fixture
def config(tmp_path):
    cfg = Config(load_user_files=False)
    cfg.set("registry.path", str(tmp_path / "registry.db"))
    cfg.set("failover.drain_delay", 0)
    return cfg


@pytest.fixture
def kit(config, registry, world):
    http = FakeHttp(world)
    shell = FakeShell(world)
    channel = ControlChannel(http, shell, config.get_manifest(), registry=registry)
    verifier = VerificationEngine(channel, registry, settle_delay=0, probe_timeout=5)
    return NodeKit(config=config, registry=registry, channel=channel, verifier=verifier,
                   allowlist=FakeAllowlist(), owner="test-owner")


@pytest.fixture
def add_node(registry, world):
    def _add(node_id, address, provider="hetzner", **bot_state):
        world[address] = RemoteBot(**bot_state)
        return registry.add_node(node_id, address, provider)
    return _add

