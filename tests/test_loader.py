"""Tests for run configuration loading and validation."""

import json
import os
import tempfile

import pytest

from vuflow.loader import ConfigurationError, build_config, load_config, parse_duration
from vuflow.models import ConstantProfile, RampingProfile


FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "..", "fixtures")


def _minimal(**overrides):
    data = {
        "workload": "vuflow.workloads.shortener:default",
        "scenarios": {
            "steady": {"executor": "constant-vus", "vus": 2, "duration": "10s"},
        },
    }
    data.update(overrides)
    return data


class TestParseDuration:
    @pytest.mark.parametrize("value, expected", [
        (5, 5.0),
        (2.5, 2.5),
        ("30s", 30.0),
        ("500ms", 0.5),
        ("1m", 60.0),
        ("1m30s", 90.0),
        ("2h", 7200.0),
        ("1.5s", 1.5),
        ("12", 12.0),
        ("-5s", -5.0),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", [
        "", "abc", "10x", "s", "1m 30s", None, True, [1],
        "nan", "inf", "-inf", float("nan"), float("inf"),
    ])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestLoadConfig:
    def test_load_valid_yaml(self):
        config = load_config(os.path.join(FIXTURES_DIR, "smoke-config.yaml"))
        assert config.base_url == "http://testserver"
        assert config.seed == 7
        smoke = config.scenarios["smoke"]
        assert isinstance(smoke.profile, ConstantProfile)
        assert smoke.profile.vus == 2
        assert smoke.profile.duration == pytest.approx(0.2)
        assert smoke.graceful_stop == 5.0
        assert {t.metric for t in config.thresholds} == {
            "errors", "http_req_failed", "http_req_duration",
        }

    def test_load_reference_json(self):
        config = load_config(os.path.join(FIXTURES_DIR, "reference-config.json"))
        assert set(config.scenarios) == {"constant_load", "ramping_load", "spike_test"}
        ramp = config.scenarios["ramping_load"]
        assert isinstance(ramp.profile, RampingProfile)
        assert ramp.start_offset == 60.0
        assert ramp.profile.total_duration == 120.0
        spike = config.scenarios["spike_test"]
        assert spike.start_offset == 180.0
        assert [s.target for s in spike.profile.stages] == [50, 50, 0]
        assert config.metrics == {"errors": "rate"}
        aborting = [t for t in config.thresholds if t.abort_on_fail]
        assert len(aborting) == 1
        assert aborting[0].expression == "rate<0.5"

    def test_invalid_fixture_lists_every_field(self):
        with pytest.raises(ConfigurationError) as excinfo:
            load_config(os.path.join(FIXTURES_DIR, "invalid-config.yaml"))
        message = str(excinfo.value)
        assert "scenarios.broken_constant.duration: must be >= 0" in message
        assert "scenarios.broken_ramp.stages: required and must be a non-empty list" in message
        assert "thresholds.http_req_duration[0]" in message


class TestConfigValidation:
    def test_missing_file(self):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config("/nonexistent/config.yaml")

    def test_unsupported_extension(self):
        with tempfile.NamedTemporaryFile(suffix=".txt", delete=False) as f:
            f.write(b"some text")
            f.flush()
            try:
                with pytest.raises(ConfigurationError, match="unsupported"):
                    load_config(f.name)
            finally:
                os.unlink(f.name)

    def test_invalid_json_content(self):
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as f:
            f.write("{bad json")
            f.flush()
            try:
                with pytest.raises(ConfigurationError, match="parse"):
                    load_config(f.name)
            finally:
                os.unlink(f.name)

    def test_non_mapping_top_level(self):
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as f:
            json.dump([1, 2, 3], f)
            f.flush()
            try:
                with pytest.raises(ConfigurationError, match="mapping"):
                    load_config(f.name)
            finally:
                os.unlink(f.name)

    def test_missing_scenarios(self):
        with pytest.raises(ConfigurationError, match="scenarios: required"):
            build_config({"workload": "x:y"})

    def test_unknown_executor(self):
        data = _minimal(scenarios={"s": {"executor": "per-vu-iterations", "vus": 1}})
        with pytest.raises(ConfigurationError, match="scenarios.s.executor"):
            build_config(data)

    def test_constant_requires_duration(self):
        data = _minimal(scenarios={"s": {"executor": "constant-vus", "vus": 1}})
        with pytest.raises(ConfigurationError, match="scenarios.s.duration: required"):
            build_config(data)

    def test_negative_vus(self):
        data = _minimal(scenarios={"s": {"executor": "constant-vus", "vus": -1, "duration": 1}})
        with pytest.raises(ConfigurationError, match="scenarios.s.vus: must be >= 0"):
            build_config(data)

    def test_negative_stage_target(self):
        data = _minimal(scenarios={"s": {
            "executor": "ramping-vus",
            "stages": [{"duration": "1s", "target": 5}, {"duration": "1s", "target": -2}],
        }})
        with pytest.raises(ConfigurationError, match=r"stages\[1\]\.target: must be >= 0"):
            build_config(data)

    def test_negative_start_time(self):
        data = _minimal(scenarios={"s": {
            "executor": "constant-vus", "vus": 1, "duration": 1, "start_time": "-1s",
        }})
        with pytest.raises(ConfigurationError, match="scenarios.s.start_time: must be >= 0"):
            build_config(data)

    def test_bad_metric_kind(self):
        with pytest.raises(ConfigurationError, match="metrics.errors"):
            build_config(_minimal(metrics={"errors": "gauge"}))

    def test_tick_interval_bounds(self):
        with pytest.raises(ConfigurationError, match="tick_interval"):
            build_config(_minimal(tick_interval="2s"))

    def test_single_threshold_string(self):
        config = build_config(_minimal(thresholds={"checks": "rate>0.9"}))
        assert config.thresholds[0].expression == "rate>0.9"

    def test_defaults(self):
        config = build_config(_minimal())
        assert config.tick_interval == 0.1
        assert config.evaluation_interval == 1.0
        assert config.request_timeout == 30.0
        steady = config.scenarios["steady"]
        assert steady.start_offset == 0.0
        assert steady.graceful_stop == 30.0
        assert steady.workload is None
        assert config.thresholds == []

    def test_scenario_exec_reference(self):
        data = _minimal(scenarios={"s": {
            "executor": "constant-vus", "vus": 1, "duration": 1,
            "exec": "vuflow.workloads.shortener:create_short_url",
        }})
        config = build_config(data)
        assert config.scenarios["s"].workload == "vuflow.workloads.shortener:create_short_url"

    def test_nan_duration_rejected(self):
        data = _minimal(scenarios={"s": {"executor": "constant-vus", "vus": 1, "duration": "nan"}})
        with pytest.raises(ConfigurationError, match="scenarios.s.duration"):
            build_config(data)

    def test_duplicate_threshold(self):
        data = _minimal(thresholds={"errors": ["rate<0.1", "rate<0.1"]})
        with pytest.raises(ConfigurationError, match=r"thresholds.errors\[1\]: duplicate threshold"):
            build_config(data)
