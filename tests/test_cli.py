"""Tests for the CLI entry point."""

import json
import os
import tempfile

import yaml
from click.testing import CliRunner

from vuflow.cli import THRESHOLD_FAILURE_EXIT, main
from vuflow.loader import load_config


FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "..", "fixtures")


def _fixture(name):
    return os.path.join(FIXTURES_DIR, name)


class TestRunCommand:
    def test_passing_run(self, patched_transport):
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", _fixture("smoke-config.yaml")])
        assert result.exit_code == 0, result.output
        assert "Status: PASS" in result.output
        assert "smoke:" in result.output
        assert patched_transport[0].posts >= 1
        assert patched_transport[0].closed is True

    def test_failing_thresholds_exit_code(self, patched_transport):
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", _fixture("failing-config.yaml")])
        assert result.exit_code == THRESHOLD_FAILURE_EXIT
        assert "Status: FAIL" in result.output
        assert "THRESHOLD BREACH" in result.output

    def test_invalid_config_exits_with_error(self, patched_transport):
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", _fixture("invalid-config.yaml")])
        assert result.exit_code == 1
        assert patched_transport == []

    def test_report_to_file(self, patched_transport):
        with tempfile.TemporaryDirectory() as tmpdir:
            out_path = os.path.join(tmpdir, "report.json")
            runner = CliRunner()
            result = runner.invoke(
                main, ["run", "--config", _fixture("smoke-config.yaml"), "--out", out_path]
            )
            assert result.exit_code == 0
            with open(out_path, "r") as f:
                parsed = json.loads(f.read())
            assert parsed["passed"] is True
            assert "smoke" in parsed["scenarios"]
            assert parsed["verdict"]["status"] == "pass"

    def test_run_with_evidence_log(self, patched_transport):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "evidence.jsonl")
            runner = CliRunner()
            result = runner.invoke(
                main,
                [
                    "run",
                    "--config", _fixture("failing-config.yaml"),
                    "--log", log_path,
                ],
            )
            assert result.exit_code == THRESHOLD_FAILURE_EXIT
            with open(log_path, "r") as f:
                entry = json.loads(f.readline())
            assert entry["status"] == "fail"
            assert entry["breached"] == ["checks: rate<0.5"]
            assert entry["scenarios"] == ["smoke"]


class TestValidateCommand:
    def test_valid_config(self):
        runner = CliRunner()
        result = runner.invoke(main, ["validate", "--config", _fixture("reference-config.json")])
        assert result.exit_code == 0
        assert "OK: 3 scenario(s), 3 threshold(s)" in result.output

    def test_invalid_config(self):
        runner = CliRunner()
        result = runner.invoke(main, ["validate", "--config", _fixture("invalid-config.yaml")])
        assert result.exit_code == 1

    def test_unknown_threshold_metric(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            yaml.safe_dump({
                "workload": "vuflow.workloads.shortener:default",
                "scenarios": {"s": {"executor": "constant-vus", "vus": 1, "duration": "1s"}},
                "thresholds": {"not_a_metric": ["rate<0.1"]},
            }, f)
            f.flush()
            try:
                runner = CliRunner()
                result = runner.invoke(main, ["validate", "--config", f.name])
                assert result.exit_code == 1
            finally:
                os.unlink(f.name)


class TestInitCommand:
    def test_writes_loadable_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            out_path = os.path.join(tmpdir, "load-test.yaml")
            runner = CliRunner()
            result = runner.invoke(
                main, ["init", "--out", out_path, "--base-url", "http://svc:8080"]
            )
            assert result.exit_code == 0
            assert "Config written to" in result.output
            config = load_config(out_path)
            assert config.base_url == "http://svc:8080"
            assert list(config.scenarios) == ["constant_load", "ramping_load", "spike_test"]


class TestHistoryCommand:
    def test_lists_logged_runs(self, patched_transport):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "evidence.jsonl")
            runner = CliRunner()
            runner.invoke(main, ["run", "--config", _fixture("smoke-config.yaml"), "--log", log_path])
            runner.invoke(main, ["run", "--config", _fixture("failing-config.yaml"), "--log", log_path])

            result = runner.invoke(main, ["history", "--log", log_path])
            assert result.exit_code == 0
            lines = result.output.splitlines()
            assert "PASS" in lines[0] and "smoke-config.yaml" in lines[0]
            assert "FAIL" in lines[1] and "failing-config.yaml" in lines[1]
            assert "breached checks: rate<0.5" in lines[2]

            result = runner.invoke(main, ["history", "--log", log_path, "--last", "1"])
            assert "smoke-config.yaml" not in result.output

    def test_empty_log(self):
        runner = CliRunner()
        result = runner.invoke(main, ["history", "--log", "/tmp/no_such_vuflow_log.jsonl"])
        assert result.exit_code == 0
        assert "No runs recorded" in result.output
