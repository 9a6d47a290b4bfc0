"""
Unit Tests for the Command Line Entry Point
===========================================

Tests for sandbox_proxy/app/cli.py

Test Coverage:
--------------
1. Startup aborted on configuration and key errors, before any listener
2. Successful startup hands the full registry to the launcher
3. Exit status when listeners fail

Run tests:
----------
    pytest sandbox_proxy/app/tests/test_cli.py -v
"""

import pytest
from click.testing import CliRunner

from sandbox_proxy.app import cli
from sandbox_proxy.app.errors import BindError, ProxyError


@pytest.fixture
def launcher_calls(monkeypatch):
    """Replace the blocking launcher; records its arguments"""
    calls = []

    def fake_run_launcher(registry, sandbox, bind_address, timeout=None):
        calls.append({
            "registry": registry,
            "sandbox": sandbox,
            "bind_address": bind_address,
            "timeout": timeout,
        })
        return [None] * len(registry)

    monkeypatch.setattr(cli, "run_launcher", fake_run_launcher)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    return calls


@pytest.fixture
def runner():
    return CliRunner()


def test_missing_sandbox_name_aborts(runner, launcher_calls, private_key_file):
    """Test that startup without a sandbox name exits non-zero and binds nothing"""
    result = runner.invoke(cli.main, ["--private-key", str(private_key_file)])

    assert result.exit_code == 1
    assert "SANDBOX_NAME" in result.output
    assert launcher_calls == []


def test_unreadable_key_aborts(runner, launcher_calls, tmp_path):
    result = runner.invoke(
        cli.main, ["--sandbox-name", "acme", "--private-key", str(tmp_path / "missing.pem")]
    )

    assert result.exit_code == 1
    assert "missing.pem" in result.output
    assert launcher_calls == []


def test_garbage_key_aborts(runner, launcher_calls, tmp_path):
    """Test that a key that cannot be parsed exits non-zero"""
    key_file = tmp_path / "garbage.pem"
    key_file.write_text("not a key")

    result = runner.invoke(cli.main, ["--sandbox-name", "acme", "--private-key", str(key_file)])

    assert result.exit_code == 1
    assert launcher_calls == []


def test_startup_launches_every_service(runner, launcher_calls, private_key_file):
    """Test that a valid configuration starts one listener per registered service"""
    result = runner.invoke(
        cli.main,
        ["--sandbox-name", "acme", "--private-key", str(private_key_file), "--upstream-timeout", "30"],
    )

    assert result.exit_code == 0, result.output
    assert len(launcher_calls) == 1

    call = launcher_calls[0]
    assert len(call["registry"]) == 7
    assert call["sandbox"].name == "acme"
    assert call["sandbox"].remote_url == "https://sandbox.pdok.nl"
    assert call["bind_address"] == "127.0.0.1"
    assert call["timeout"] == 30.0


def test_environment_configures_dev_mode(runner, launcher_calls, private_key_file, monkeypatch):
    """Test that DEV from the environment selects the local sandbox"""
    monkeypatch.setenv("SANDBOX_NAME", "acme")
    monkeypatch.setenv("PRIVATE_KEY", str(private_key_file))
    monkeypatch.setenv("DEV", "true")

    result = runner.invoke(cli.main, ["--bind-address", "::1"])

    assert result.exit_code == 0, result.output
    call = launcher_calls[0]
    assert call["sandbox"].remote_url == "http://localhost:32788"
    assert call["sandbox"].dev is True
    assert call["bind_address"] == "::1"


def test_bind_error_exits_non_zero(runner, monkeypatch, private_key_file):
    def fake_run_launcher(registry, sandbox, bind_address, timeout=None):
        raise BindError("api.pdok.nl", bind_address, 5002, "Address already in use")

    monkeypatch.setattr(cli, "run_launcher", fake_run_launcher)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    result = runner.invoke(cli.main, ["--sandbox-name", "acme", "--private-key", str(private_key_file)])

    assert result.exit_code == 1
    assert "5002" in result.output


def test_all_listeners_failing_exits_non_zero(runner, monkeypatch, private_key_file):
    """Test that the process fails when no listener stopped cleanly"""
    def fake_run_launcher(registry, sandbox, bind_address, timeout=None):
        return [ProxyError("failed")] * len(registry)

    monkeypatch.setattr(cli, "run_launcher", fake_run_launcher)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    result = runner.invoke(cli.main, ["--sandbox-name", "acme", "--private-key", str(private_key_file)])

    assert result.exit_code == 1
    assert "All listeners failed" in result.output


def test_some_listeners_failing_exits_zero(runner, monkeypatch, private_key_file):
    def fake_run_launcher(registry, sandbox, bind_address, timeout=None):
        return [ProxyError("failed")] + [None] * (len(registry) - 1)

    monkeypatch.setattr(cli, "run_launcher", fake_run_launcher)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    result = runner.invoke(cli.main, ["--sandbox-name", "acme", "--private-key", str(private_key_file)])

    assert result.exit_code == 0
