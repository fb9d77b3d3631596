"""Metric series shared by every VU of a test run.

Each series guards its observations with its own lock, so ``add`` and the
aggregate queries are atomic with respect to each other whether they are
called from coroutines on one event loop or from worker threads.
"""

import math
import threading
from typing import Dict, List, Optional

RATE = "rate"
TREND = "trend"
COUNTER = "counter"

METRIC_KINDS = (RATE, TREND, COUNTER)

# Aggregators a threshold may use, per metric kind.
AGGREGATORS = {
    TREND: ("avg", "min", "max", "med", "p"),
    RATE: ("rate",),
    COUNTER: ("count", "rate"),
}

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
ITERATION_FAILED = "iteration_failed"
CHECKS = "checks"

BUILTIN_METRICS = {
    HTTP_REQS: COUNTER,
    HTTP_REQ_DURATION: TREND,
    HTTP_REQ_FAILED: RATE,
    ITERATIONS: COUNTER,
    ITERATION_DURATION: TREND,
    ITERATION_FAILED: RATE,
    CHECKS: RATE,
}


class MetricTypeError(Exception):
    """Raised when a metric name is reused with a different kind."""


class Rate:
    """Fraction of true observations."""

    kind = RATE

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._passes = 0
        self._total = 0

    def add(self, value: bool) -> None:
        with self._lock:
            self._total += 1
            if value:
                self._passes += 1

    @property
    def count(self) -> int:
        with self._lock:
            return self._total

    @property
    def value(self) -> Optional[float]:
        """true_count / total_count, or None when nothing was observed."""
        with self._lock:
            if self._total == 0:
                return None
            return self._passes / self._total

    def aggregate(self, aggregator: str, argument=None, elapsed=None) -> Optional[float]:
        if aggregator != "rate":
            raise ValueError(f"unsupported aggregator for rate metric: {aggregator}")
        return self.value

    def summary(self) -> dict:
        with self._lock:
            passes, total = self._passes, self._total
        return {
            "kind": RATE,
            "rate": passes / total if total else None,
            "passes": passes,
            "fails": total - passes,
            "count": total,
        }


class Trend:
    """Distribution of numeric observations with nearest-rank percentiles."""

    kind = TREND

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._values: List[float] = []

    def add(self, value: float) -> None:
        value = float(value)
        with self._lock:
            self._values.append(value)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._values)

    def _sorted(self) -> List[float]:
        with self._lock:
            return sorted(self._values)

    def percentile(self, p: float) -> Optional[float]:
        """Nearest-rank percentile: the value at rank ceil(p/100 * n).

        Raises:
            ValueError: If ``p`` is outside (0, 100].
        """
        if not 0 < p <= 100:
            raise ValueError(f"percentile must be in (0, 100], got {p}")
        values = self._sorted()
        return _nearest_rank(values, p)

    def aggregate(self, aggregator: str, argument=None, elapsed=None) -> Optional[float]:
        if aggregator == "p":
            return self.percentile(argument)
        values = self._sorted()
        if not values:
            return None
        if aggregator == "avg":
            return sum(values) / len(values)
        if aggregator == "min":
            return values[0]
        if aggregator == "max":
            return values[-1]
        if aggregator == "med":
            return _nearest_rank(values, 50)
        raise ValueError(f"unsupported aggregator for trend metric: {aggregator}")

    def summary(self) -> dict:
        values = self._sorted()
        if not values:
            return {"kind": TREND, "count": 0, "avg": None, "min": None,
                    "med": None, "max": None, "p(90)": None, "p(95)": None,
                    "p(99)": None}
        return {
            "kind": TREND,
            "count": len(values),
            "avg": sum(values) / len(values),
            "min": values[0],
            "med": _nearest_rank(values, 50),
            "max": values[-1],
            "p(90)": _nearest_rank(values, 90),
            "p(95)": _nearest_rank(values, 95),
            "p(99)": _nearest_rank(values, 99),
        }


class Counter:
    """Monotonic sum of observations."""

    kind = COUNTER

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._total = 0.0
        self._samples = 0

    def add(self, value: float = 1) -> None:
        with self._lock:
            self._total += value
            self._samples += 1

    @property
    def count(self) -> int:
        with self._lock:
            return self._samples

    @property
    def total(self) -> float:
        with self._lock:
            return self._total

    def aggregate(self, aggregator: str, argument=None, elapsed=None) -> Optional[float]:
        with self._lock:
            total, samples = self._total, self._samples
        if samples == 0:
            return None
        if aggregator == "count":
            return total
        if aggregator == "rate":
            if not elapsed:
                return None
            return total / elapsed
        raise ValueError(f"unsupported aggregator for counter metric: {aggregator}")

    def summary(self, elapsed: Optional[float] = None) -> dict:
        total = self.total
        return {
            "kind": COUNTER,
            "count": total,
            "rate": total / elapsed if elapsed else None,
        }


_SERIES_TYPES = {RATE: Rate, TREND: Trend, COUNTER: Counter}


class MetricRegistry:
    """Get-or-create access to the metric series of one test run."""

    def __init__(self, declared: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._series: Dict[str, object] = {}
        for name, kind in BUILTIN_METRICS.items():
            self.get_or_create(name, kind)
        for name, kind in (declared or {}).items():
            self.get_or_create(name, kind)

    def get_or_create(self, name: str, kind: str):
        if kind not in _SERIES_TYPES:
            raise MetricTypeError(f"unknown metric kind {kind!r} for {name!r}")
        with self._lock:
            series = self._series.get(name)
            if series is None:
                series = _SERIES_TYPES[kind](name)
                self._series[name] = series
            elif series.kind != kind:
                raise MetricTypeError(
                    f"metric {name!r} is a {series.kind}, not a {kind}"
                )
            return series

    def rate(self, name: str) -> Rate:
        return self.get_or_create(name, RATE)

    def trend(self, name: str) -> Trend:
        return self.get_or_create(name, TREND)

    def counter(self, name: str) -> Counter:
        return self.get_or_create(name, COUNTER)

    def get(self, name: str):
        with self._lock:
            return self._series.get(name)

    def kinds(self) -> Dict[str, str]:
        with self._lock:
            return {name: series.kind for name, series in self._series.items()}

    def summaries(self, elapsed: Optional[float] = None) -> Dict[str, dict]:
        with self._lock:
            series = dict(self._series)
        result = {}
        for name in sorted(series):
            metric = series[name]
            if metric.kind == COUNTER:
                result[name] = metric.summary(elapsed)
            else:
                result[name] = metric.summary()
        return result


def _nearest_rank(sorted_values: List[float], p: float) -> Optional[float]:
    if not sorted_values:
        return None
    rank = math.ceil(p / 100.0 * len(sorted_values))
    return sorted_values[max(rank, 1) - 1]
