"""Load and validate run configuration files (YAML or JSON)."""

import json
import math
import os
import re
from typing import Any, Dict, List, Optional

import yaml

from vuflow.metrics import METRIC_KINDS
from vuflow.models import (
    CONSTANT_VUS,
    RAMPING_VUS,
    ConstantProfile,
    RampingProfile,
    RunConfig,
    Scenario,
    Stage,
    Threshold,
)
from vuflow.thresholds import ThresholdParseError, parse_threshold


class ConfigurationError(Exception):
    """Raised when a run configuration fails validation."""


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Parse a duration to seconds.

    Accepts numbers (seconds) and strings such as ``"500ms"``, ``"30s"``,
    ``"1m30s"`` or ``"2h"``.

    Raises:
        ValueError: If the value is not a recognised duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return _finite(float(value), value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip().lower()
    sign = 1.0
    if text.startswith("-"):
        sign, text = -1.0, text[1:]
    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        return _finite(sign * number, value)

    pos, total = 0, 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


def load_config(path: str) -> RunConfig:
    """Load a run configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        A validated RunConfig instance.

    Raises:
        ConfigurationError: If the file is missing, unreadable, or invalid.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"config file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, "r") as f:
            if ext in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            elif ext == ".json":
                raw = json.load(f)
            else:
                raise ConfigurationError(
                    f"unsupported file extension: {ext} (expected .yaml, .yml, or .json)"
                )
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"failed to parse {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("config must be a mapping/object at the top level")

    return build_config(raw)


def build_config(raw: dict) -> RunConfig:
    """Construct and validate a RunConfig from a raw dict."""
    errors: List[str] = []

    scenarios_raw = raw.get("scenarios")
    if not isinstance(scenarios_raw, dict) or not scenarios_raw:
        errors.append("scenarios: required and must be a non-empty mapping")
        scenarios = {}
    else:
        scenarios = {
            name: _parse_scenario(str(name), body, errors)
            for name, body in scenarios_raw.items()
        }

    metrics = _parse_metrics(raw.get("metrics", {}), errors)
    thresholds = _parse_thresholds(raw.get("thresholds", {}), errors)

    base_url = raw.get("base_url", "")
    if not isinstance(base_url, str):
        errors.append("base_url: must be a string")
        base_url = ""

    seed = raw.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        errors.append("seed: must be an integer")
        seed = None

    tick_interval = _duration_field(raw, "tick_interval", 0.1, errors)
    if tick_interval is not None and not 0 < tick_interval <= 1:
        errors.append("tick_interval: must be greater than 0 and at most 1s")
    evaluation_interval = _duration_field(raw, "evaluation_interval", 1.0, errors)
    if evaluation_interval is not None and evaluation_interval <= 0:
        errors.append("evaluation_interval: must be > 0")
    request_timeout = _duration_field(raw, "request_timeout", 30.0, errors)
    if request_timeout is not None and request_timeout <= 0:
        errors.append("request_timeout: must be > 0")

    if errors:
        raise ConfigurationError(
            "config validation failed:\n  - " + "\n  - ".join(errors)
        )

    return RunConfig(
        scenarios=scenarios,
        thresholds=thresholds,
        metrics=metrics,
        base_url=base_url,
        workload=raw.get("workload"),
        seed=seed,
        tick_interval=tick_interval,
        evaluation_interval=evaluation_interval,
        request_timeout=request_timeout,
    )


# -- internal helpers ---------------------------------------------------------


def _duration_field(raw: dict, key: str, default: float, errors: List[str],
                    prefix: str = "") -> Optional[float]:
    if key not in raw:
        return default
    try:
        value = parse_duration(raw[key])
    except ValueError as exc:
        errors.append(f"{prefix}{key}: {exc}")
        return None
    if value < 0:
        errors.append(f"{prefix}{key}: must be >= 0")
        return None
    return value


def _int_field(raw: dict, key: str, errors: List[str], prefix: str,
               default: Optional[int] = None) -> Optional[int]:
    value = raw.get(key, default)
    if value is None:
        errors.append(f"{prefix}{key}: required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{prefix}{key}: must be an integer")
        return None
    if value < 0:
        errors.append(f"{prefix}{key}: must be >= 0")
        return None
    return value


def _parse_scenario(name: str, raw: Any, errors: List[str]) -> Optional[Scenario]:
    prefix = f"scenarios.{name}."
    if not isinstance(raw, dict):
        errors.append(f"scenarios.{name}: must be a mapping")
        return None

    executor = raw.get("executor")
    if executor == CONSTANT_VUS:
        vus = _int_field(raw, "vus", errors, prefix, default=1)
        if "duration" not in raw:
            errors.append(f"{prefix}duration: required for {CONSTANT_VUS}")
        duration = _duration_field(raw, "duration", 0.0, errors, prefix)
        profile = ConstantProfile(vus=vus or 0, duration=duration or 0.0)
    elif executor == RAMPING_VUS:
        start_vus = _int_field(raw, "start_vus", errors, prefix, default=1)
        stages = _parse_stages(raw.get("stages"), errors, prefix)
        profile = RampingProfile(start_vus=start_vus or 0, stages=stages)
    else:
        errors.append(
            f"{prefix}executor: must be one of {CONSTANT_VUS!r}, {RAMPING_VUS!r} "
            f"(got {executor!r})"
        )
        return None

    start_offset = _duration_field(raw, "start_time", 0.0, errors, prefix)
    graceful_stop = _duration_field(raw, "graceful_stop", 30.0, errors, prefix)

    return Scenario(
        name=name,
        profile=profile,
        start_offset=start_offset or 0.0,
        workload=raw.get("exec"),
        graceful_stop=30.0 if graceful_stop is None else graceful_stop,
    )


def _parse_stages(raw: Any, errors: List[str], prefix: str) -> List[Stage]:
    if not isinstance(raw, list) or not raw:
        errors.append(f"{prefix}stages: required and must be a non-empty list")
        return []
    stages = []
    for i, entry in enumerate(raw):
        stage_prefix = f"{prefix}stages[{i}]."
        if not isinstance(entry, dict):
            errors.append(f"{prefix}stages[{i}]: must be a mapping")
            continue
        if "duration" not in entry:
            errors.append(f"{stage_prefix}duration: required")
        duration = _duration_field(entry, "duration", 0.0, errors, stage_prefix)
        target = _int_field(entry, "target", errors, stage_prefix)
        if duration is not None and target is not None:
            stages.append(Stage(duration=duration, target=target))
    return stages


def _parse_metrics(raw: Any, errors: List[str]) -> Dict[str, str]:
    if not isinstance(raw, dict):
        errors.append("metrics: must be a mapping of name to kind")
        return {}
    metrics = {}
    for name, kind in raw.items():
        if kind not in METRIC_KINDS:
            errors.append(
                f"metrics.{name}: kind must be one of {', '.join(METRIC_KINDS)} (got {kind!r})"
            )
            continue
        metrics[str(name)] = kind
    return metrics


def _parse_thresholds(raw: Any, errors: List[str]) -> List[Threshold]:
    if not isinstance(raw, dict):
        errors.append("thresholds: must be a mapping of metric name to predicates")
        return []
    thresholds = []
    for metric, entries in raw.items():
        if isinstance(entries, (str, dict)):
            entries = [entries]
        if not isinstance(entries, list):
            errors.append(f"thresholds.{metric}: must be a list of predicates")
            continue
        for i, entry in enumerate(entries):
            field_name = f"thresholds.{metric}[{i}]"
            abort_on_fail = False
            if isinstance(entry, dict):
                abort_on_fail = bool(entry.get("abort_on_fail", False))
                entry = entry.get("threshold")
            try:
                threshold = parse_threshold(str(metric), entry, abort_on_fail)
            except ThresholdParseError as exc:
                errors.append(f"{field_name}: {exc}")
                continue
            if any(t.metric == threshold.metric and t.expression == threshold.expression
                   for t in thresholds):
                errors.append(f"{field_name}: duplicate threshold {threshold.expression!r}")
                continue
            thresholds.append(threshold)
    return thresholds


def _finite(seconds: float, raw: Any) -> float:
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration: {raw!r}")
    return seconds
