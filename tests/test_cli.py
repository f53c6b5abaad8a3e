"""Tests for the command line interface."""

import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from typer.testing import CliRunner

from wagerd import __version__
from wagerd.cli import main as cli
from wagerd.cli.main import _format_interval, app

runner = CliRunner()

ROOT = Path(__file__).resolve().parent.parent
MOCK_WORKERS = ROOT / "tests" / "mock_workers"


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Keep PID files and env overrides out of the real home directory."""
    monkeypatch.setattr(cli, "DEFAULT_PID_FILE", tmp_path / "state" / "wagerd.pid")
    monkeypatch.delenv("WAGERD_CONFIG", raising=False)
    monkeypatch.delenv("WAGERD_ENV", raising=False)


class TestCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_init_then_refuse_overwrite(self, tmp_path):
        path = tmp_path / "wagerd.yaml"

        result = runner.invoke(app, ["init", "--path", str(path)])
        assert result.exit_code == 0
        assert path.exists()

        result = runner.invoke(app, ["init", "--path", str(path)])
        assert result.exit_code == 1
        assert "already exists" in result.stdout

        result = runner.invoke(app, ["init", "--path", str(path), "--force"])
        assert result.exit_code == 0

    def test_config_lists_workers_and_schedule(self, tmp_path):
        path = tmp_path / "wagerd.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "mode": "dev",
                    "workers": [{"name": "users", "entry": "workers/users.py", "port": 3001}],
                    "schedule": [{"worker": "users", "endpoint": "/sync", "interval_ms": 30000}],
                }
            )
        )

        result = runner.invoke(app, ["config", "--config", str(path)])

        assert result.exit_code == 0
        assert "users" in result.stdout
        assert "/sync" in result.stdout
        assert "30s" in result.stdout

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "wagerd.yaml"
        path.write_text(yaml.safe_dump({"schedule": [{"worker": "ui", "endpoint": "x", "interval_ms": 5}]}))

        result = runner.invoke(app, ["config", "--config", str(path)])

        assert result.exit_code == 1

    def test_status_when_not_running(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "not running" in result.stdout

    def test_stop_when_not_running(self):
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 1
        assert "not running" in result.stdout

    def test_stale_pid_file_is_removed(self, tmp_path):
        pid_file = cli.DEFAULT_PID_FILE
        pid_file.parent.mkdir(parents=True)
        pid_file.write_text(str(2**22 + 4242))

        assert cli.get_daemon_pid() is None
        assert not pid_file.exists()

    def test_own_pid_is_detected(self):
        cli.DEFAULT_PID_FILE.parent.mkdir(parents=True)
        cli.DEFAULT_PID_FILE.write_text(str(os.getpid()))

        assert cli.get_daemon_pid() == os.getpid()

    def test_exit_removes_pid_file(self, monkeypatch):
        cli.DEFAULT_PID_FILE.parent.mkdir(parents=True)
        cli.DEFAULT_PID_FILE.write_text(str(os.getpid()))
        exit_mock = MagicMock()
        monkeypatch.setattr(cli.os, "_exit", exit_mock)

        cli._exit_daemon(1)

        assert not cli.DEFAULT_PID_FILE.exists()
        exit_mock.assert_called_once_with(1)


@pytest.mark.parametrize(
    "ms,expected",
    [(500, "0.5s"), (30_000, "30s"), (90_000, "1.5m"), (14_400_000, "4h")],
)
def test_format_interval(ms, expected):
    assert _format_interval(ms) == expected


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(predicate, timeout: float = 15.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
class TestRunCommand:
    """Run the daemon as a real process with an isolated home directory."""

    def spawn(self, tmp_path, workers, *args):
        config_path = tmp_path / "wagerd.yaml"
        config_path.write_text(
            yaml.safe_dump(
                {
                    "mode": "compiled",
                    "base_dir": str(MOCK_WORKERS),
                    "host": "127.0.0.1",
                    "warmup_seconds": 0.2,
                    "grace_period_seconds": 1,
                    "workers": workers,
                }
            )
        )
        home = tmp_path / "home"
        home.mkdir()
        env = {k: v for k, v in os.environ.items() if k not in ("WAGERD_ENV", "WAGERD_CONFIG")}
        env["HOME"] = str(home)
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(ROOT / "src"), env.get("PYTHONPATH")) if p
        )
        log = open(tmp_path / "daemon.log", "w")
        process = subprocess.Popen(
            [sys.executable, "-m", "wagerd.cli.main", "run", "-c", str(config_path), *args],
            env=env,
            stdout=log,
            stderr=subprocess.STDOUT,
        )
        log.close()
        return process, home / ".wagerd" / "wagerd.pid"

    def test_sigterm_exits_cleanly_and_removes_pid_file(self, tmp_path):
        workers = [{"name": "ui", "entry": "http_worker.py", "port": free_port()}]
        # Config asks for compiled artifacts; --mode dev must override it
        process, pid_file = self.spawn(tmp_path, workers, "--mode", "dev")
        try:
            assert wait_for(pid_file.exists), (tmp_path / "daemon.log").read_text()
            assert pid_file.read_text().strip() == str(process.pid)
            assert wait_for(lambda: "Scheduler will start" in (tmp_path / "daemon.log").read_text())

            process.send_signal(signal.SIGTERM)
            exit_code = process.wait(timeout=15)
        finally:
            if process.poll() is None:
                process.kill()

        log = (tmp_path / "daemon.log").read_text()
        assert exit_code == 0, log
        assert not pid_file.exists()
        assert "Shutdown complete." in log
        assert "Using dev launcher" in log

    def test_fatal_shutdown_exits_nonzero_and_removes_pid_file(self, tmp_path):
        workers = [
            {"name": "flaky", "entry": "failing_worker.py", "port": free_port(), "max_retries": 0}
        ]
        process, pid_file = self.spawn(tmp_path, workers, "--mode", "dev")
        try:
            exit_code = process.wait(timeout=15)
        finally:
            if process.poll() is None:
                process.kill()

        log = (tmp_path / "daemon.log").read_text()
        assert exit_code == 1, log
        assert not pid_file.exists()
        assert "failed after 0 retries" in log
