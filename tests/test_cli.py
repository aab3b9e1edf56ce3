"""
Tests for the fleet-kernel command line.
"""

import json

import pytest
import yaml

from fleet_kernel.cli import main


def _run(capsys, *argv):
    code = main(list(argv))
    return code, capsys.readouterr().out


class TestCommands:
    """Tests for each subcommand over a snapshot file."""

    def test_scan(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "scan")
        assert code == 0
        assert "Discovered 5 nodes from home" in out
        assert "phantasy: ports 1/2" in out

    def test_scan_json(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "--json", "scan")
        data = json.loads(out)
        assert sorted(data["authorized"]) == ["CSEC", "foodnstuff", "n00dles"]

    def test_status_json(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "--json", "status")
        assert code == 0
        data = json.loads(out)
        assert data["ledger"]["nodes"] == 6
        assert "zer0" in data["waiting"]

    def test_status_text(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "status")
        assert code == 0
        assert "Fleet: 0 purchased nodes" in out
        assert "waiting on access to zer0" in out

    def test_schedule(self, capsys, snapshot_file):
        code, out = _run(
            capsys, "--snapshot", str(snapshot_file),
            "schedule", "hack.js", "n00dles", "--threads", "10",
        )
        assert code == 0
        assert out.startswith("home: hack.js x10/10")

    def test_schedule_declined(self, capsys, snapshot_file):
        code, out = _run(
            capsys, "--snapshot", str(snapshot_file),
            "schedule", "hack.js", "n00dles", "--ram", "1000",
        )
        assert code == 1
        assert "declined: insufficient capacity" in out

    def test_schedule_unknown_script(self, capsys, snapshot_file):
        code, _ = _run(capsys, "--snapshot", str(snapshot_file), "schedule", "nope.js", "n00dles")
        assert code == 1

    def test_schedule_spread(self, capsys, snapshot_file):
        code, out = _run(
            capsys, "--snapshot", str(snapshot_file), "--json",
            "schedule", "grow.js", "n00dles", "--threads", "40", "--ram", "2", "--spread",
        )
        assert code == 0
        placements = json.loads(out)
        assert sum(p["threads"] for p in placements) == 40
        assert placements[0]["node"] == "home"

    def test_tick(self, capsys, tmp_path, world_data):
        world_data["funds"] = 32
        path = tmp_path / "rich.yaml"
        path.write_text(yaml.safe_dump(world_data))
        code, out = _run(capsys, "--snapshot", str(path), "--json", "tick", "-n", "2")
        assert code == 0
        ticks = json.loads(out)
        assert ticks[0]["purchased"] == ["pserv"]
        assert ticks[1]["reason"] == "insufficient_funds"

    def test_path(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "path", "CSEC")
        assert code == 0
        assert out.strip() == "home -> n00dles -> CSEC"

    def test_path_unreachable(self, capsys, snapshot_file):
        code, out = _run(capsys, "--snapshot", str(snapshot_file), "path", "nowhere")
        assert code == 1
        assert "not reachable" in out


class TestConfigCommands:
    """Tests for configuration management."""

    def test_config_init_and_show(self, capsys, tmp_path):
        path = tmp_path / "kernel.yaml"
        code, out = _run(capsys, "--config", str(path), "config", "init")
        assert code == 0
        assert path.exists()

        code, out = _run(capsys, "--config", str(path), "config", "show")
        assert json.loads(out)["fleet"]["prefix"] == "pserv"


class TestErrors:
    """Tests for argument handling."""

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_snapshot_required(self):
        with pytest.raises(SystemExit):
            main(["scan"])
