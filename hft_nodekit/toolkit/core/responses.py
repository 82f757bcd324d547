"""
Strict parsers for remote replies.

Every parser returns either ``Ok(value)`` or ``Unparseable(raw, reason)``.
Ambiguous output is never guessed into a state; callers turn
``Unparseable`` into an ``error`` state or a fallback.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from hft_nodekit.toolkit.core.errors import RemoteExecutionError
from hft_nodekit.toolkit.core.manifest import SIGNAL_VERIFIED_MARKER, STOPPED_MARKER
from hft_nodekit.toolkit.core.models import Action, SignalArtifact, SignalPayload


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Unparseable:
    raw: str
    reason: str


ParseResult = Union[Ok, Unparseable]

_ALIVE_PREFIXES = ("Up",)
_DEAD_PREFIXES = ("Exited", "Created", "Dead", "Removing")
# An "Up" container with one of these suffixes is not serving
_NOT_SERVING_MARKERS = ("(Paused)", "(unhealthy)")


def _raw(body: Any) -> str:
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return repr(body)


def parse_control_reply(action: Action, body: Any, node_id: Optional[str] = None) -> ParseResult:
    """Accept a /control reply only when it explicitly confirms the mutation.

    Raises:
        RemoteExecutionError: The endpoint reported a definitive failure.
    """
    if not isinstance(body, dict):
        return Unparseable(_raw(body), "reply is not a JSON object")

    if body.get("success") is False or body.get("error"):
        raise RemoteExecutionError(
            f"Control endpoint rejected {action.value}: {body.get('error', 'success=false')}",
            node_id=node_id, transport="http", output=_raw(body),
        )

    if body.get("success") is not True or "signalCreated" not in body:
        return Unparseable(_raw(body), "missing confirmation fields")

    signal_created = body["signalCreated"]
    if action.creates_signal and signal_created is True:
        return Ok(True)
    if action == Action.STOP and signal_created is False:
        return Ok(True)
    return Unparseable(_raw(body), f"signalCreated={signal_created!r} does not confirm {action.value}")


def parse_shell_mutation(action: Action, output: str) -> ParseResult:
    """Check the marker line printed as the last step of a mutation script."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    marker = SIGNAL_VERIFIED_MARKER if action.creates_signal else STOPPED_MARKER
    if marker in lines:
        return Ok(True)
    return Unparseable(output, f"marker {marker} not found")


def parse_signal_check(body: Any) -> ParseResult:
    """Parse the JSON from GET /signal-check."""
    if not isinstance(body, dict) or not isinstance(body.get("signalExists"), bool):
        return Unparseable(_raw(body), "signalExists missing or not boolean")

    if not body["signalExists"]:
        return Ok(SignalArtifact.absent())

    data = body.get("signalData")
    payload = SignalPayload.from_dict(data) if isinstance(data, dict) else None
    age = body.get("signalAgeSeconds")
    try:
        if age is None and body.get("signalAgeMs") is not None:
            age = float(body["signalAgeMs"]) / 1000.0
        age = float(age) if age is not None else None
    except (TypeError, ValueError):
        return Unparseable(_raw(body), "signal age is not numeric")
    if age is not None and not math.isfinite(age):
        return Unparseable(_raw(body), "signal age is not numeric")
    artifact = SignalArtifact(exists=True, payload=payload, age_seconds=age)
    return Ok(artifact.with_age())


def parse_signal_probe(output: str) -> ParseResult:
    """Parse the output of the shell signal probe.

    Expected shape::

        SIGNAL:true
        AGE:<seconds>
        <json payload>

    or a single ``SIGNAL:false`` line.
    """
    lines = output.strip().splitlines()
    if not lines:
        return Unparseable(output, "empty output")

    head = lines[0].strip()
    if head == "SIGNAL:false":
        return Ok(SignalArtifact.absent())
    if head != "SIGNAL:true":
        return Unparseable(output, "unexpected first line")

    age = None
    rest = lines[1:]
    if rest and rest[0].startswith("AGE:"):
        try:
            age = float(rest[0][4:].strip())
        except ValueError:
            return Unparseable(output, "AGE is not numeric")
        if not math.isfinite(age):
            return Unparseable(output, "AGE is not numeric")
        rest = rest[1:]

    payload = None
    body = "\n".join(rest).strip()
    if body:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            payload = SignalPayload.from_dict(data)

    return Ok(SignalArtifact(exists=True, payload=payload, age_seconds=age).with_age())


def parse_container_status(output: str) -> ParseResult:
    """Classify one `docker ps --format {{.Status}}` line as alive or not."""
    line = output.strip().splitlines()[0].strip() if output.strip() else ""
    if not line:
        # No container at all
        return Ok(False)
    if line.startswith(_ALIVE_PREFIXES):
        return Ok(not any(marker in line for marker in _NOT_SERVING_MARKERS))
    if line.startswith(_DEAD_PREFIXES):
        return Ok(False)
    return Unparseable(output, "unrecognised container status")


def parse_status_reply(body: Any, container_name: str) -> ParseResult:
    """Derive liveness from the GET /status JSON document."""
    if not isinstance(body, dict):
        return Unparseable(_raw(body), "reply is not a JSON object")
    docker = body.get("docker")
    if not isinstance(docker, dict) or not isinstance(docker.get("containers"), list):
        return Unparseable(_raw(body), "docker.containers missing")

    for entry in docker["containers"]:
        if not isinstance(entry, str) or ":" not in entry:
            return Unparseable(_raw(body), f"malformed container entry {entry!r}")
        name, status = entry.split(":", 1)
        if name.strip() == container_name:
            return parse_container_status(status)
    return Ok(False)


def parse_health(body: Any) -> ParseResult:
    """Parse GET /health. Only an explicit ok=true counts as healthy."""
    if not isinstance(body, dict) or not isinstance(body.get("ok"), bool):
        return Unparseable(_raw(body), "ok missing or not boolean")
    if not body["ok"]:
        return Unparseable(_raw(body), "endpoint reports ok=false")
    return Ok({
        "version": body.get("version"),
        "uptime_seconds": body.get("uptimeSeconds", body.get("uptime")),
    })


def parse_json_text(output: str) -> Optional[Dict[str, Any]]:
    """Best-effort JSON decode for shell output that wraps an HTTP body (curl)."""
    try:
        data = json.loads(output.strip())
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None
