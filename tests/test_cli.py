"""
Tests for CLI commands — plan, apply, flags, doctor and global options.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from cortado.adapters.mock import RecordingRunner
from cortado.core.use_cases.doctor import DEGRADED, UNHEALTHY, ComponentHealth, DoctorReport
from cortado.main import cli

FLAG_ENV = {
    "ENABLE_BLUETOOTH": None,
    "ENABLE_DOCKER": None,
    "ENABLE_DEVOPS": None,
    "ENABLE_LAZYVIM": None,
    "ENABLE_AUTOHYPR": None,
    "ENABLE_AUTOLOGIN": None,
    "ENABLE_PRINTING": None,
    "ENABLE_NM_DNS": None,
}


@pytest.fixture
def probes(monkeypatch, home: Path) -> RecordingRunner:
    """Route the plan use case through a scripted runner for user 'alice'."""
    recording = RecordingRunner(euid=1000)
    recording.script(["getent", "passwd", "alice"], stdout=f"alice:x:1000:1000::{home}:/bin/bash\n")
    monkeypatch.setattr("cortado.core.use_cases.plan.CommandRunner", lambda: recording)
    return recording


def _invoke(args: list[str], **env):
    runner = CliRunner()
    return runner.invoke(cli, args, env={**FLAG_ENV, "SUDO_USER": "alice", **env})


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("plan", "apply", "flags", "doctor", "wifi"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestPlanCommand:
    def test_plan_json(self, probes):
        result = _invoke(["plan", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["target_user"] == "alice"
        ids = [s["id"] for s in data["plan"]["steps"]]
        assert ids.index("network:online") < ids.index("pacman:sync") < ids.index("packages:base")
        assert "service:docker" in ids

    def test_flag_disables_steps(self, probes):
        result = _invoke(["plan", "--json"], ENABLE_DOCKER="0")
        data = json.loads(result.stdout)
        ids = [s["id"] for s in data["plan"]["steps"]]
        assert not any("docker" in step_id for step_id in ids)
        assert data["flags"]["docker"] is False

    def test_plan_text(self, probes):
        result = _invoke(["plan"])
        assert result.exit_code == 0
        assert "packages:base" in result.output

    def test_plan_check(self, probes):
        result = _invoke(["plan", "--check"])
        assert result.exit_code == 0
        assert "[would skip]" in result.output
        assert "steps would run" in result.output

    def test_bad_manifest_exits_2(self, probes, tmp_path: Path):
        path = tmp_path / "cortado.yml"
        path.write_text("packages: [\n")
        result = _invoke(["-m", str(path), "plan"])
        assert result.exit_code == 2
        assert "Invalid YAML" in result.output

    def test_bad_flag_value_exits_2(self, probes):
        result = _invoke(["plan", "--json"], ENABLE_DOCKER="maybe")
        assert result.exit_code == 2
        assert "ENABLE_DOCKER" in json.loads(result.stdout)["error"]

    def test_unknown_user_exits_3(self, monkeypatch):
        recording = RecordingRunner(euid=1000)
        recording.script(["getent", "passwd"], returncode=2)
        monkeypatch.setattr("cortado.core.use_cases.plan.CommandRunner", lambda: recording)
        result = _invoke(["plan"], SUDO_USER="ghost")
        assert result.exit_code == 3


class TestApplyCommand:
    def test_dry_run_is_plan_check(self, probes):
        result = _invoke(["apply", "--dry-run", "--json"])
        assert result.exit_code == 0
        assert "checks" in json.loads(result.stdout)
        assert not any(call[:2] == ["sudo", "--"] for call in probes.calls)

    def test_bad_manifest_exits_2(self, tmp_path: Path):
        path = tmp_path / "cortado.yml"
        path.write_text("commands:\n  - name: x\n    argv: [echo, hi]\n")
        result = _invoke(["-m", str(path), "apply", "--no-preflight"])
        assert result.exit_code == 2

    def test_jobs_must_be_positive(self):
        result = _invoke(["apply", "--jobs", "0"])
        assert result.exit_code == 2
        assert "--jobs" in result.output


class TestFlagsCommand:
    def test_json(self):
        result = _invoke(["flags", "--json"], ENABLE_DOCKER="0")
        assert result.exit_code == 0
        rows = {row["name"]: row for row in json.loads(result.stdout)["flags"]}
        assert rows["docker"]["default"] is True
        assert rows["docker"]["enabled"] is False
        assert rows["docker"]["env_var"] == "ENABLE_DOCKER"
        assert "services:docker" in rows["docker"]["gates"]

    def test_text(self):
        result = _invoke(["flags"], ENABLE_PRINTING="1")
        assert result.exit_code == 0
        assert "ENABLE_PRINTING" in result.output
        assert "(overridden)" in result.output

    def test_bad_value(self):
        result = _invoke(["flags"], ENABLE_DOCKER="sometimes")
        assert result.exit_code == 2


class TestDoctorCommand:
    def _patch(self, monkeypatch, status: str) -> None:
        report = DoctorReport([ComponentHealth("os"), ComponentHealth("dns", status, "slow")])
        monkeypatch.setattr("cortado.core.use_cases.doctor.run_doctor", lambda **_: report)

    def test_degraded_is_ok(self, monkeypatch):
        self._patch(monkeypatch, DEGRADED)
        result = _invoke(["doctor"])
        assert result.exit_code == 0
        assert "Overall: degraded" in result.output

    def test_unhealthy_exits_3(self, monkeypatch):
        self._patch(monkeypatch, UNHEALTHY)
        result = _invoke(["doctor", "--json"])
        assert result.exit_code == 3
        assert json.loads(result.stdout)["status"] == UNHEALTHY


class TestWifiCommand:
    def _runner(self, monkeypatch) -> RecordingRunner:
        recording = RecordingRunner(euid=1000)
        monkeypatch.setattr("cortado.adapters.shell.command.CommandRunner", lambda: recording)
        monkeypatch.setattr("cortado.core.services.networkmanager.nmcli_available", lambda: True)
        return recording

    def test_requires_nmcli(self, monkeypatch):
        monkeypatch.setattr("cortado.core.services.networkmanager.nmcli_available", lambda: False)
        result = _invoke(["wifi"])
        assert result.exit_code == 1
        assert "nmcli" in result.output

    def test_already_online(self, monkeypatch):
        recording = self._runner(monkeypatch)
        recording.script(["getent", "ahosts"], stdout="140.82.121.4 STREAM github.com\n")
        result = _invoke(["wifi"])
        assert result.exit_code == 0
        assert "Online" in result.output

    def test_connects(self, monkeypatch):
        recording = self._runner(monkeypatch)
        recording.script(["getent", "ahosts"], returncode=2)
        recording.script(["getent", "ahosts"], stdout="140.82.121.4 STREAM github.com\n")
        recording.script(["nmcli", "-t", "-f", "DEVICE,TYPE"], stdout="wlan0:wifi\nlo:loopback\n")
        recording.script(["nmcli", "-t", "-f", "SSID,SECURITY,SIGNAL"], stdout="home:WPA2:70\n")

        result = CliRunner().invoke(
            cli, ["wifi", "--ssid", "home"], input="hunter2\n", env={**FLAG_ENV, "SUDO_USER": "alice"}
        )

        assert result.exit_code == 0, result.output
        assert "Connected to home" in result.output
        connect = next(c for c in recording.calls if c[:4] == ["nmcli", "dev", "wifi", "connect"])
        assert connect[4:7] == ["home", "password", "hunter2"]
        assert "hunter2" not in result.output
        assert ["sudo", "--", "rfkill", "unblock", "wifi"] in recording.calls

    def test_gives_up(self, monkeypatch):
        recording = self._runner(monkeypatch)
        recording.script(["getent", "ahosts"], returncode=2)
        recording.script(["nmcli", "-t", "-f", "DEVICE,TYPE"], stdout="wlan0:wifi\n")
        recording.script(["nmcli", "dev", "wifi", "connect"], returncode=4, stderr="Secrets were required")

        result = CliRunner().invoke(
            cli,
            ["wifi", "--ssid", "cafe", "--attempts", "2"],
            input="pw1\npw2\n",
            env={**FLAG_ENV, "SUDO_USER": "alice"},
        )

        assert result.exit_code == 1
        assert "Attempt 2/2 failed: Secrets were required" in result.output
