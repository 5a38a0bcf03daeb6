"""
Unit tests for the command line interface
"""

import io

import orjson
import pytest
import yaml
from rich.console import Console

from fleetheal.cli.main import create_parser, run_cli
from fleetheal.cli.render import render_policies
from fleetheal.healing.policy import POLICIES

FLEET = {
    "sites": {"HQ": ["DC01", "DC02"]},
    "nodes": {
        "DC01": {"partners": [{"partner": "DC02", "last_success_hours_ago": 1}]},
        "DC02": {
            "partners": [{"partner": "DC01", "last_success_hours_ago": 26}],
            "repair": {"success": True, "heals": True},
        },
    },
}


@pytest.fixture
def fixture_file(tmp_path):
    path = tmp_path / "fleet.yaml"
    path.write_text(yaml.safe_dump(FLEET))
    return str(path)


@pytest.fixture
def cli_env(monkeypatch):
    for name in ("FLEETHEAL_AUTO_HEAL", "FLEETHEAL_POLICY", "FLEETHEAL_STATE_DIR", "FLEETHEAL_MAX_ACTIONS"):
        monkeypatch.delenv(name, raising=False)


class TestParser:
    """Test argument parsing"""

    def test_run_arguments(self):
        argv = [
            "run",
            "--fixture", "f.yaml",
            "--nodes", "DC01,DC02",
            "--auto-heal",
            "--policy", "moderate",
            "--approve", "T-1",
            "--override", "replication_failure",
        ]
        args = create_parser().parse_args(argv)
        assert args.command == "run"
        assert args.nodes == "DC01,DC02"
        assert args.auto_heal
        assert args.override == ["replication_failure"]

    def test_site_and_nodes_exclusive(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["status", "--fixture", "f.yaml", "--site", "HQ", "--nodes", "DC01"])


class TestCommands:
    """Test command exit codes"""

    def test_policies(self, capsys):
        assert run_cli(["policies"]) == 0
        assert "conservative" in capsys.readouterr().out

    def test_policies_fit_80_columns(self):
        """Test names and categories are never split at the default width"""
        out = io.StringIO()
        render_policies(Console(file=out, width=80), [factory() for factory in POLICIES.values()])
        text = out.getvalue()

        assert all(len(line) <= 80 for line in text.splitlines())
        for name in ("conservative", "moderate", "aggressive"):
            assert name in text
        assert "CONNECTIVITY, REPLICATION_FAILURE, STALE_REPLICATION" in text

    def test_no_command_prints_help(self, capsys):
        assert run_cli([]) == 0

    def test_unknown_site_is_scope_error(self, fixture_file, tmp_path, cli_env):
        code = run_cli(["status", "--fixture", fixture_file, "--site", "Mars", "--state-dir", str(tmp_path / "s")])
        assert code == 1

    def test_status_reports_issues_without_healing(self, fixture_file, tmp_path, cli_env):
        code = run_cli(["status", "--fixture", fixture_file, "--state-dir", str(tmp_path / "s")])
        assert code == 2

    def test_run_heals_and_writes_report(self, fixture_file, tmp_path, cli_env):
        report_path = tmp_path / "report-{run_id}.json"
        code = run_cli(
            [
                "run",
                "--fixture", fixture_file,
                "--state-dir", str(tmp_path / "s"),
                "--auto-heal",
                "--convergence-wait", "0",
                "--report", str(report_path),
            ]
        )
        assert code == 0

        reports = list(tmp_path.glob("report-*.json"))
        assert len(reports) == 1
        data = orjson.loads(reports[0].read_bytes())
        assert data["summary"]["actions_performed"] == 1
        assert data["summary"]["verified_healthy"] == 1

    def test_history_after_run(self, fixture_file, tmp_path, cli_env, capsys):
        state_dir = str(tmp_path / "s")
        run_cli(["run", "--fixture", fixture_file, "--state-dir", state_dir, "--auto-heal", "--convergence-wait", "0"])
        capsys.readouterr()

        assert run_cli(["history", "--state-dir", state_dir, "--node", "DC02"]) == 0
        assert "DC02" in capsys.readouterr().out

    def test_bad_config_file(self, tmp_path, cli_env):
        assert run_cli(["history", "--config", str(tmp_path / "missing.yaml")]) == 1
