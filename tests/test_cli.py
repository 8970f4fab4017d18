import io
import json
import sys

import pytest

from featuremanifest.cli import main
from featuremanifest.protocol import SERVER_VERSION


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("MANIFEST_BIND_ADDR", "MANIFEST_PORT", "MANIFEST_URL", "MANIFEST_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_status(capsys):
    assert main(["status"]) == 0
    assert capsys.readouterr().out == "Checking Manifest server status...\n"


def test_stop(capsys):
    assert main(["stop"]) == 0
    assert capsys.readouterr().out == "Stopping Manifest server...\n"


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == f"mfst {SERVER_VERSION}"


def test_invalid_port_rejected():
    with pytest.raises(SystemExit) as excinfo:
        main(["serve", "--port", "70000"])
    assert excinfo.value.code == 2


def test_serve_reports_requested_address(capsys):
    assert main(["serve", "--port", "9000", "--bind", "10.0.0.5"]) == 1
    assert "10.0.0.5:9000" in capsys.readouterr().err


def test_serve_bind_env_overrides_flag(monkeypatch, capsys):
    monkeypatch.setenv("MANIFEST_BIND_ADDR", "0.0.0.0")
    assert main(["serve", "-p", "9000", "-b", "10.0.0.5"]) == 1
    err = capsys.readouterr().err
    assert "0.0.0.0:9000" in err
    assert "10.0.0.5" not in err


def test_default_command_uses_defaults_for_bad_port(monkeypatch, capsys):
    monkeypatch.setenv("MANIFEST_PORT", "not-a-port")
    assert main([]) == 1
    assert "127.0.0.1:17010" in capsys.readouterr().err


def test_default_command_reads_env(monkeypatch, capsys):
    monkeypatch.setenv("MANIFEST_PORT", "8123")
    monkeypatch.setenv("MANIFEST_BIND_ADDR", "0.0.0.0")
    assert main([]) == 1
    assert "0.0.0.0:8123" in capsys.readouterr().err


def test_mcp_serves_stdin(monkeypatch, capsys):
    monkeypatch.setattr(
        sys, "stdin", io.StringIO('{"jsonrpc": "2.0", "id": 4, "method": "ping"}\n')
    )
    assert main(["mcp"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert [json.loads(line) for line in lines] == [
        {"jsonrpc": "2.0", "id": 4, "result": {}}
    ]