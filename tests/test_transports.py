import subprocess

import pytest
import requests

from hft_nodekit.toolkit.core.errors import TransportError
from hft_nodekit.toolkit.core.http_transport import HttpTransport
from hft_nodekit.toolkit.core.models import Action, Node
from hft_nodekit.toolkit.core.shell_transport import ShellTransport

NODE = Node(id="fra-1", address="10.0.0.1", provider="hetzner")


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


def test_base_url_omits_default_ports():
    assert HttpTransport().base_url(NODE) == "http://10.0.0.1"
    assert HttpTransport(port=8080).base_url(NODE) == "http://10.0.0.1:8080"
    assert HttpTransport(scheme="https", port=443).base_url(NODE) == "https://10.0.0.1"


def test_control_posts_action_with_timeout(monkeypatch):
    transport = HttpTransport(timeouts={"control": 7})
    calls = []

    def fake_request(method, url, timeout=None, **kwargs):
        calls.append((method, url, timeout, kwargs))
        return FakeResponse(body={"success": True, "signalCreated": True})

    monkeypatch.setattr(transport.session, "request", fake_request)
    body = transport.control(NODE, Action.START, env={"A": "1"})

    assert body == {"success": True, "signalCreated": True}
    method, url, timeout, kwargs = calls[0]
    assert (method, url, timeout) == ("POST", "http://10.0.0.1/control", 7.0)
    assert kwargs["json"] == {"action": "start", "createSignal": True, "env": {"A": "1"}}


def test_stop_never_sends_env(monkeypatch):
    transport = HttpTransport()
    sent = {}
    monkeypatch.setattr(transport.session, "request",
                        lambda method, url, timeout=None, **kw: sent.update(kw) or FakeResponse(body={}))
    transport.control(NODE, Action.STOP, env={"A": "1"})
    assert sent["json"] == {"action": "stop", "createSignal": False}


def test_timeout_and_http_errors_become_transport_errors(monkeypatch):
    transport = HttpTransport()

    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(transport.session, "request", timeout)
    with pytest.raises(TransportError) as excinfo:
        transport.signal_check(NODE)
    assert excinfo.value.transport == "http"
    assert "timed out" in str(excinfo.value)

    monkeypatch.setattr(transport.session, "request", lambda *a, **kw: FakeResponse(status_code=502))
    with pytest.raises(TransportError, match="HTTP 502"):
        transport.health(NODE)


def test_non_json_body_is_returned_as_text(monkeypatch):
    transport = HttpTransport()
    monkeypatch.setattr(transport.session, "request", lambda *a, **kw: FakeResponse(text="OK"))
    assert transport.status(NODE) == "OK"


def test_ssh_command_options():
    cmd = ShellTransport(user="ops", key_path="/keys/id", port=2222).ssh_command(NODE)
    assert cmd[0] == "ssh"
    assert "BatchMode=yes" in cmd
    assert cmd[cmd.index("-i") + 1] == "/keys/id"
    assert cmd[cmd.index("-p") + 1] == "2222"
    assert cmd[-1] == "ops@10.0.0.1"

    plain = ShellTransport(control_persist=False).ssh_command(NODE)
    assert "ControlMaster=auto" not in plain
    assert "-p" not in plain


def test_shell_run_returns_exit_code_and_output(monkeypatch):
    captured = {}

    def fake_run(command, **kwargs):
        captured["command"] = command
        captured["input"] = kwargs["input"]
        return subprocess.CompletedProcess(command, 3, stdout="  boom \n")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = ShellTransport().run(NODE, "echo hi", stdin="A=1\n")

    assert (result.exit_code, result.output, result.ok) == (3, "boom", False)
    assert captured["command"][-1] == "echo hi"
    assert captured["input"] == "A=1\n"


def test_ssh_failures_are_transport_errors(monkeypatch):
    transport = ShellTransport()

    monkeypatch.setattr(subprocess, "run",
                        lambda command, **kw: subprocess.CompletedProcess(command, 255, stdout="Connection refused"))
    with pytest.raises(TransportError, match="Connection refused"):
        transport.run(NODE, "true")

    def too_slow(command, **kw):
        raise subprocess.TimeoutExpired(command, kw["timeout"])

    monkeypatch.setattr(subprocess, "run", too_slow)
    with pytest.raises(TransportError, match="timed out"):
        transport.run(NODE, "sleep 100", timeout=1)

    def missing(command, **kw):
        raise FileNotFoundError("ssh")

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(TransportError, match="not found"):
        transport.run(NODE, "true")
