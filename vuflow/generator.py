import yaml
from typing import Dict


def reference_config(base_url: str = "http://localhost:3001") -> Dict:
    """
    Three-phase run against the URL shortener: a constant baseline, a ramp
    starting when the baseline ends, then a spike after the ramp.
    """
    return {
        "base_url": base_url,
        "workload": "vuflow.workloads.shortener:default",
        "metrics": {"errors": "rate"},
        "scenarios": {
            "constant_load": {
                "executor": "constant-vus",
                "vus": 10,
                "duration": "1m",
            },
            "ramping_load": {
                "executor": "ramping-vus",
                "start_vus": 0,
                "stages": [
                    {"duration": "30s", "target": 20},
                    {"duration": "1m", "target": 20},
                    {"duration": "30s", "target": 0},
                ],
                "start_time": "1m",
            },
            "spike_test": {
                "executor": "ramping-vus",
                "start_vus": 0,
                "stages": [
                    {"duration": "10s", "target": 50},
                    {"duration": "20s", "target": 50},
                    {"duration": "10s", "target": 0},
                ],
                "start_time": "3m",
            },
        },
        "thresholds": {
            "http_req_duration": ["p(99)<1000"],
            "errors": ["rate<0.1"],
        },
    }


def write_yaml_config(config: Dict, out_path: str):
    with open(out_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f, sort_keys=False)
