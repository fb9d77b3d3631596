"""Parse threshold predicates and evaluate them against metric series."""

import re
import threading
from typing import Callable, Dict, List, Optional, Set

from vuflow.metrics import AGGREGATORS, MetricRegistry
from vuflow.models import BreachRecord, Threshold, Verdict


class ThresholdParseError(ValueError):
    """Raised when a threshold expression cannot be parsed."""


_EXPRESSION = re.compile(
    r"^\s*(?P<agg>[a-z]+)\s*(?:\(\s*(?P<arg>[^)]*?)\s*\))?\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*(?P<value>[-+]?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}

_ALL_AGGREGATORS = {agg for aggs in AGGREGATORS.values() for agg in aggs}


def parse_threshold(metric: str, expression: str, abort_on_fail: bool = False) -> Threshold:
    """Parse ``<aggregator>[(<arg>)] <op> <value>``, e.g. ``p(99)<1000``.

    Args:
        metric: Name of the metric the threshold applies to.
        expression: The predicate string.
        abort_on_fail: Whether a breach should stop the run early.

    Returns:
        A Threshold instance.

    Raises:
        ThresholdParseError: If the expression is malformed.
    """
    if not isinstance(expression, str):
        raise ThresholdParseError(f"threshold must be a string, got {expression!r}")
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ThresholdParseError(f"cannot parse threshold {expression!r}")

    aggregator = match.group("agg")
    raw_arg = match.group("arg")
    if aggregator not in _ALL_AGGREGATORS:
        raise ThresholdParseError(f"unknown aggregator {aggregator!r} in {expression!r}")

    argument = None
    if aggregator == "p":
        if raw_arg is None:
            raise ThresholdParseError(f"p() needs a percentile argument in {expression!r}")
        try:
            argument = float(raw_arg)
        except ValueError:
            raise ThresholdParseError(
                f"non-numeric percentile {raw_arg!r} in {expression!r}"
            ) from None
        if not 0 < argument <= 100:
            raise ThresholdParseError(f"percentile must be in (0, 100] in {expression!r}")
    elif raw_arg is not None:
        raise ThresholdParseError(f"{aggregator} takes no argument in {expression!r}")

    return Threshold(
        metric=metric,
        expression=expression.strip(),
        aggregator=aggregator,
        operator=match.group("op"),
        value=float(match.group("value")),
        argument=argument,
        abort_on_fail=abort_on_fail,
    )


def check_compatible(threshold: Threshold, kind: str) -> Optional[str]:
    """Return an error message if the aggregator does not apply to ``kind``."""
    allowed = AGGREGATORS.get(kind, ())
    if threshold.aggregator not in allowed:
        return (
            f"aggregator {threshold.aggregator!r} does not apply to {kind} metric "
            f"{threshold.metric!r} (expected one of: {', '.join(allowed)})"
        )
    return None


class ThresholdEvaluator:
    """Evaluate thresholds against a registry, remembering every breach.

    A threshold whose metric has no observations yet is inconclusive and
    does not breach. Once a threshold breaches it stays breached for the rest
    of the run, along with the observed value and time of the first breach.
    """

    def __init__(
        self,
        thresholds: List[Threshold],
        registry: MetricRegistry,
        elapsed: Optional[Callable[[], float]] = None,
    ):
        self.thresholds = list(dict.fromkeys(thresholds))
        self._registry = registry
        self._elapsed = elapsed or (lambda: 0.0)
        self._lock = threading.Lock()
        self._breaches: Dict[Threshold, BreachRecord] = {}

    def observe(self, threshold: Threshold) -> Optional[float]:
        series = self._registry.get(threshold.metric)
        if series is None:
            return None
        return series.aggregate(
            threshold.aggregator, threshold.argument, elapsed=self._elapsed()
        )

    def evaluate(self) -> Set[Threshold]:
        """Check every threshold now and return all breached so far."""
        for threshold in self.thresholds:
            observed = self.observe(threshold)
            if observed is None:
                continue
            if not _OPERATORS[threshold.operator](observed, threshold.value):
                with self._lock:
                    if threshold not in self._breaches:
                        self._breaches[threshold] = BreachRecord(
                            metric=threshold.metric,
                            expression=threshold.expression,
                            observed=observed,
                            at=self._elapsed(),
                        )
        with self._lock:
            return set(self._breaches)

    def breach_for(self, threshold: Threshold) -> Optional[BreachRecord]:
        with self._lock:
            return self._breaches.get(threshold)

    def final_verdict(self) -> Verdict:
        """Run a last evaluation and build the verdict for the report."""
        breached = self.evaluate()
        checks = []
        for threshold in self.thresholds:
            observed = self.observe(threshold)
            if threshold in breached:
                record = self.breach_for(threshold)
                result = "fail"
                detail = (
                    f"{threshold.label} breached at {record.at:.1f}s "
                    f"(observed {_fmt(record.observed)}, now {_fmt(observed)})"
                )
            elif observed is None:
                result = "skip"
                detail = f"{threshold.label} inconclusive (no observations)"
            else:
                result = "pass"
                detail = f"{threshold.label} (observed {_fmt(observed)})"
            checks.append({
                "metric": threshold.metric,
                "threshold": threshold.expression,
                "result": result,
                "detail": detail,
            })

        breaches = [self._breaches[t] for t in self.thresholds if t in breached]
        status = "fail" if breaches else "pass"
        return Verdict(
            status=status,
            narrative=_build_narrative(status, checks),
            checks=checks,
            breaches=breaches,
        )


# -- internal helpers ---------------------------------------------------------


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:.4g}"


def _build_narrative(status: str, checks: List[dict]) -> str:
    lines = []
    if not checks:
        lines.append("No thresholds declared.")
    elif status == "pass":
        lines.append("All thresholds passed.")
    else:
        failed = [c for c in checks if c["result"] == "fail"]
        lines.append(f"THRESHOLD BREACH: {len(failed)} threshold(s) failed.")
        for c in failed:
            lines.append(f"  - {c['detail']}")

    skipped = [c for c in checks if c["result"] == "skip"]
    if skipped:
        lines.append("Inconclusive:")
        for c in skipped:
            lines.append(f"  - {c['detail']}")
    return "\n".join(lines)
