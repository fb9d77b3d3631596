"""Top-level test run: scheduler, metrics, thresholds, and the report."""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Dict, Optional

from vuflow.clock import MonotonicClock, sleep_or_stop
from vuflow.executor import ScenarioExecutor
from vuflow.loader import ConfigurationError
from vuflow.metrics import BUILTIN_METRICS, MetricRegistry, MetricTypeError
from vuflow.models import Report, RunConfig, Scenario
from vuflow.pool import SharedStatePool
from vuflow.scheduler import ScenarioScheduler
from vuflow.thresholds import ThresholdEvaluator, check_compatible
from vuflow.transport import HttpxTransport, InstrumentedTransport
from vuflow.workload import WorkloadResolutionError, WorkloadStep, resolve_workload

logger = logging.getLogger(__name__)


class TestRun:
    """One invocation of the engine.

    Everything that must be valid before load starts (workload references,
    metric declarations, thresholds against known metrics) is checked in the
    constructor, which raises ``ConfigurationError`` listing every problem.

    Args:
        config: The run configuration.
        transport: Object with async ``post``/``get``. Defaults to an
            ``HttpxTransport`` on ``config.base_url``, closed after the run.
        clock: Time source; defaults to ``MonotonicClock``.
        pool: Shared state pool; a fresh empty one by default.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, config: RunConfig, transport=None, clock=None,
                 pool: Optional[SharedStatePool] = None):
        self.config = config
        self.clock = clock or MonotonicClock()
        self.pool = pool if pool is not None else SharedStatePool()
        self._owns_transport = transport is None
        self._raw_transport = transport
        self._stop = asyncio.Event()
        self._started_at: Optional[float] = None
        self.abort_reason = ""
        self.scheduler: Optional[ScenarioScheduler] = None

        errors = []
        self.steps: Dict[str, WorkloadStep] = self._resolve_steps(errors)
        declared = dict(config.metrics)
        for step in self.steps.values():
            declared.update(step.declared_metrics())
        try:
            self.registry = MetricRegistry(declared)
        except MetricTypeError as exc:
            errors.append(f"metrics: {exc}")
            self.registry = MetricRegistry()
        self._check_thresholds(errors)
        if errors:
            raise ConfigurationError(
                "config validation failed:\n  - " + "\n  - ".join(errors)
            )

        self.evaluator = ThresholdEvaluator(
            config.thresholds, self.registry, elapsed=self.elapsed
        )

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self.clock.now() - self._started_at

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self, reason: str = "stop requested") -> None:
        """Request a graceful stop: no new iterations, in-flight ones finish."""
        if not self._stop.is_set():
            logger.info("stopping test run: %s", reason)
            self.abort_reason = reason
            self._stop.set()

    async def run(self) -> Report:
        transport = self._raw_transport
        if transport is None:
            transport = HttpxTransport(self.config.base_url, timeout=self.config.request_timeout)
        instrumented = InstrumentedTransport(transport, self.registry)

        self._started_at = self.clock.now()
        self.scheduler = ScenarioScheduler(
            self.config.scenarios,
            lambda scenario, test_start: self._make_executor(scenario, test_start, instrumented),
            self.clock,
            self._stop,
        )
        done = asyncio.Event()
        watcher = asyncio.ensure_future(self._watch_thresholds(done))
        try:
            timings = await self.scheduler.run()
        finally:
            done.set()
            await watcher
            if self._owns_transport:
                await transport.aclose()

        duration = self.elapsed()
        verdict = self.evaluator.final_verdict()
        logger.info("test run finished in %.1fs: %s", duration, verdict.status)
        return Report(
            scenarios=timings,
            metrics=self.registry.summaries(elapsed=duration),
            verdict=verdict,
            duration=duration,
            aborted=self._stop.is_set(),
            abort_reason=self.abort_reason if self._stop.is_set() else "",
        )

    # -- internal helpers -----------------------------------------------------

    def _resolve_steps(self, errors) -> Dict[str, WorkloadStep]:
        steps = {}
        for name, scenario in self.config.scenarios.items():
            ref = scenario.workload if scenario.workload is not None else self.config.workload
            if ref is None:
                errors.append(f"scenarios.{name}.exec: no workload given and no default workload")
                continue
            try:
                steps[name] = resolve_workload(ref)
            except WorkloadResolutionError as exc:
                errors.append(f"scenarios.{name}.exec: {exc}")
        return steps

    def _check_thresholds(self, errors) -> None:
        kinds = self.registry.kinds()
        for threshold in self.config.thresholds:
            kind = kinds.get(threshold.metric)
            if kind is None:
                errors.append(
                    f"thresholds.{threshold.metric}: unknown metric (declare it under "
                    f"'metrics' or use one of: {', '.join(sorted(BUILTIN_METRICS))})"
                )
                continue
            problem = check_compatible(threshold, kind)
            if problem:
                errors.append(f"thresholds.{threshold.metric}: {problem}")

    def _make_executor(self, scenario: Scenario, test_start: float, transport) -> ScenarioExecutor:
        return ScenarioExecutor(
            scenario,
            self.steps[scenario.name],
            transport=transport,
            registry=self.registry,
            pool=self.pool,
            clock=self.clock,
            stop_event=self._stop,
            tick_interval=self.config.tick_interval,
            test_start=test_start,
            seed=self.config.seed,
        )

    async def _watch_thresholds(self, done: asyncio.Event) -> None:
        aborting = [t for t in self.config.thresholds if t.abort_on_fail]
        while not await sleep_or_stop(self.clock, self.config.evaluation_interval, done):
            breached = self.evaluator.evaluate()
            for threshold in aborting:
                if threshold in breached:
                    self.stop(f"threshold {threshold.label} breached (abort_on_fail)")
                    break


async def execute(config: RunConfig, transport=None, clock=None,
                  pool: Optional[SharedStatePool] = None) -> Report:
    """Build a TestRun for ``config`` and run it to completion."""
    return await TestRun(config, transport=transport, clock=clock, pool=pool).run()


def run(config: RunConfig, transport=None) -> Report:
    """Synchronous wrapper around ``execute`` using a fresh event loop."""
    return asyncio.run(execute(config, transport=transport))


def report_to_dict(report: Report) -> dict:
    data = asdict(report)
    data["passed"] = report.passed
    for name, timing in report.scenarios.items():
        data["scenarios"][name]["duration"] = timing.duration
    return data


def report_to_json(report: Report, indent: int = 2) -> str:
    return json.dumps(report_to_dict(report), indent=indent)
