import sys

import pytest

from hft_nodekit import cli


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "nodekit.toml"
    path.write_text(f'[registry]\npath = "{tmp_path / "registry.db"}"\n')
    return str(path)


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["hft-nodekit", *argv])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    return excinfo.value.code


def test_version(monkeypatch, capsys):
    assert run(monkeypatch, "--version") == 0
    assert "HFT-NodeKit v" in capsys.readouterr().out


def test_no_command_prints_help(monkeypatch):
    assert run(monkeypatch) == 1


def test_nodes_add_list_remove(monkeypatch, capsys, config_file):
    monkeypatch.setattr(sys, "argv", ["hft-nodekit", "--config", config_file,
                                      "nodes", "add", "fra-1", "10.0.0.1", "--provider", "hetzner"])
    cli.main()
    assert "Added fra-1" in capsys.readouterr().out

    monkeypatch.setattr(sys, "argv", ["hft-nodekit", "--config", config_file, "nodes", "list"])
    cli.main()
    assert "fra-1" in capsys.readouterr().out

    monkeypatch.setattr(sys, "argv", ["hft-nodekit", "--config", config_file, "nodes", "remove", "fra-1"])
    cli.main()
    assert "Removed fra-1" in capsys.readouterr().out


def test_unknown_node_exits_non_zero(monkeypatch, config_file):
    assert run(monkeypatch, "--config", config_file, "status", "ghost") == 1


def test_bad_env_pair_is_rejected(monkeypatch, config_file):
    assert run(monkeypatch, "--config", config_file, "start", "fra-1", "--env", "NOEQUALS") == 1
