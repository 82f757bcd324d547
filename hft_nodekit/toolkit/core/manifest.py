"""
Deployment manifest for the remote trading bot and the shell command
templates rendered from it.

Templates are plain ``str.format`` strings. Every value substituted into a
template is shell-quoted first, so callers never assemble shell text
themselves.
"""

import datetime
import json
import re
import shlex
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from hft_nodekit.toolkit.core.models import Action, utc_now

SIGNAL_VERIFIED_MARKER = "SIGNAL_VERIFIED:true"
STOPPED_MARKER = "STOPPED"

_ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SHELL_COMMANDS = {
    # The env bundle arrives on stdin. The signal file is written last so a
    # failure anywhere above leaves no stale start intent behind.
    "start": (
        "set -e; "
        "mkdir -p {data_dir}; "
        "cat > {env_file}; "
        "cd {bot_dir}; "
        "docker compose -f {compose_file} --env-file {env_file} down 2>/dev/null || true; "
        "docker compose -f {compose_file} --env-file {env_file} up -d --remove-orphans; "
        "printf '%s' {signal_payload} > {signal_file}; "
        "test -f {signal_file} && echo {verified_marker}"
    ),
    "restart": (
        "set -e; "
        "mkdir -p {data_dir}; "
        "cat > {env_file}; "
        "cd {bot_dir}; "
        "docker compose -f {compose_file} --env-file {env_file} restart 2>/dev/null "
        "|| docker compose -f {compose_file} --env-file {env_file} up -d --remove-orphans; "
        "printf '%s' {signal_payload} > {signal_file}; "
        "test -f {signal_file} && echo {verified_marker}"
    ),
    # Signal removal comes first; an absent process still counts as stopped.
    "stop": (
        "rm -f {signal_file}; "
        "cd {bot_dir} 2>/dev/null && docker compose -f {compose_file} down 2>/dev/null "
        "|| docker stop {container_name} 2>/dev/null "
        "|| true; "
        "echo {stopped_marker}"
    ),
    "status": "docker ps --all --filter name={container_name} --format '{{{{.Status}}}}' | head -n 1",
    "logs": (
        "docker compose -f {bot_dir}/{compose_file} logs --tail={lines} 2>/dev/null "
        "|| docker logs {container_name} --tail={lines} 2>&1"
    ),
    "health": "curl -sf --max-time 5 http://localhost:{api_port}/health",
    "signal_probe": (
        "if test -f {signal_file}; then "
        "echo SIGNAL:true; "
        "echo AGE:$(( $(date +%s) - $(stat -c %Y {signal_file}) )); "
        "cat {signal_file}; "
        "else echo SIGNAL:false; fi"
    ),
    "liveness_probe": "docker ps --all --filter name={container_name} --format '{{{{.Status}}}}' | head -n 1",
}


@dataclass
class DeploymentManifest:
    """Where the bot lives on a node and how it is started."""
    bot_dir: str = "/opt/hft-bot"
    data_dir: str = "/opt/hft-bot/app/data"
    signal_file: str = "/opt/hft-bot/app/data/START_SIGNAL"
    env_file: str = "/opt/hft-bot/.env.exchanges"
    compose_file: str = "docker-compose.yml"
    container_name: str = "hft-bot"
    api_port: int = 8080
    signal_source: str = "nodekit"
    signal_mode: str = "live"
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, section: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> "DeploymentManifest":
        known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__ and k != "env"}
        if "api_port" in known:
            known["api_port"] = int(known["api_port"])
        return cls(env=dict(env or {}), **known)

    def with_env(self, extra: Optional[Dict[str, str]]) -> "DeploymentManifest":
        """Return a copy whose env bundle is overlaid with ``extra``."""
        if not extra:
            return self
        merged = dict(self.env)
        merged.update(extra)
        return replace(self, env=merged)

    def env_bundle(self) -> str:
        """Render the KEY=VALUE env file body."""
        lines = []
        for key in sorted(self.env):
            value = str(self.env[key])
            if not _ENV_KEY.match(key):
                raise ValueError(f"Invalid environment variable name: {key!r}")
            if "\n" in value or "\r" in value:
                raise ValueError(f"Environment value for {key} must be a single line")
            lines.append(f"{key}={value}")
        return "\n".join(lines) + ("\n" if lines else "")

    def signal_payload(self, now: Optional[datetime.datetime] = None) -> Dict[str, str]:
        now = now or utc_now()
        return {
            "started_at": now.isoformat(),
            "source": self.signal_source,
            "mode": self.signal_mode,
        }

    def _values(self, **extra: Any) -> Dict[str, str]:
        values = {
            "bot_dir": self.bot_dir,
            "data_dir": self.data_dir,
            "signal_file": self.signal_file,
            "env_file": self.env_file,
            "compose_file": self.compose_file,
            "container_name": self.container_name,
            "api_port": str(int(self.api_port)),
            "verified_marker": SIGNAL_VERIFIED_MARKER,
            "stopped_marker": STOPPED_MARKER,
        }
        values.update({k: str(v) for k, v in extra.items()})
        return {k: shlex.quote(v) for k, v in values.items()}

    def render(self, action: Action, lines: int = 50, now: Optional[datetime.datetime] = None) -> str:
        """Render the remote script for a control action."""
        action = Action(action)
        extra: Dict[str, Any] = {"lines": int(lines)}
        if action.creates_signal:
            extra["signal_payload"] = json.dumps(self.signal_payload(now), sort_keys=True)
        return SHELL_COMMANDS[action.value].format(**self._values(**extra))

    def render_signal_probe(self) -> str:
        return SHELL_COMMANDS["signal_probe"].format(**self._values())

    def render_liveness_probe(self) -> str:
        return SHELL_COMMANDS["liveness_probe"].format(**self._values())
