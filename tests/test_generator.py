"""Tests for the reference configuration generator."""

import os
import tempfile

from vuflow.generator import reference_config, write_yaml_config
from vuflow.loader import build_config, load_config
from vuflow.models import ConstantProfile


class TestReferenceConfig:
    def test_builds_three_phases(self):
        config = build_config(reference_config())
        assert list(config.scenarios) == ["constant_load", "ramping_load", "spike_test"]
        constant = config.scenarios["constant_load"].profile
        assert isinstance(constant, ConstantProfile)
        assert constant.vus == 10
        assert constant.duration == 60.0

    def test_phases_are_chained(self):
        config = build_config(reference_config())
        constant = config.scenarios["constant_load"]
        ramp = config.scenarios["ramping_load"]
        spike = config.scenarios["spike_test"]
        assert ramp.start_offset == constant.end_offset
        assert ramp.end_offset == 180.0
        assert spike.start_offset == 180.0
        assert spike.profile.target_at(15.0) == 50

    def test_thresholds(self):
        config = build_config(reference_config())
        labels = sorted(t.label for t in config.thresholds)
        assert labels == ["errors: rate<0.1", "http_req_duration: p(99)<1000"]

    def test_base_url(self):
        assert reference_config("http://svc")["base_url"] == "http://svc"


class TestWriteYamlConfig:
    def test_round_trip_through_loader(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "load.yaml")
            write_yaml_config(reference_config(), path)
            config = load_config(path)
            assert config.base_url == "http://localhost:3001"
            assert config.scenarios["spike_test"].start_offset == 180.0
            assert config.metrics == {"errors": "rate"}
