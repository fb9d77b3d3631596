"""Scenario executor: keeps the profile's target number of VUs iterating."""

import asyncio
import logging
import random
from typing import List, Optional

from vuflow.clock import sleep_or_stop
from vuflow.metrics import (
    ITERATION_DURATION,
    ITERATION_FAILED,
    ITERATIONS,
    MetricRegistry,
)
from vuflow.models import Scenario, ScenarioTiming
from vuflow.pool import SharedStatePool
from vuflow.workload import VUContext, WorkloadStep

logger = logging.getLogger(__name__)


class VirtualUser:
    """One simulated client running iterations back to back.

    Retiring a VU that is mid-iteration lets the iteration finish; retiring
    one that is idle (think time, or not yet started) cancels it at once.
    """

    def __init__(self, vu_id: int, executor: "ScenarioExecutor"):
        self.vu_id = vu_id
        self.iterations = 0
        self.retired = False
        self.in_iteration = False
        self._executor = executor
        self._rng = random.Random(executor.seed_for(vu_id))
        self.task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self.task = asyncio.ensure_future(self._loop())

    def retire(self) -> None:
        self.retired = True
        if not self.in_iteration and self.task is not None and not self.task.done():
            self.task.cancel()

    async def _loop(self) -> None:
        ex = self._executor
        while not self.retired and not ex.stop_event.is_set():
            self.in_iteration = True
            try:
                think_time = await self._iterate()
            finally:
                self.in_iteration = False
            if self.retired or ex.stop_event.is_set():
                break
            await ex.clock.sleep(think_time)

    async def _iterate(self) -> float:
        ex = self._executor
        ctx = VUContext(
            scenario=ex.scenario.name,
            vu_id=self.vu_id,
            iteration=self.iterations,
            http=ex.transport,
            pool=ex.pool,
            metrics=ex.registry,
            random=self._rng,
            think_time=ex.step.think_time,
        )
        started = ex.clock.now()
        failed = False
        try:
            think_time = await ex.step.execute(ctx)
        except Exception as exc:
            failed = True
            think_time = ctx.think_time
            logger.warning(
                "scenario %s vu %d iteration %d failed: %r",
                ex.scenario.name, self.vu_id, self.iterations, exc,
            )
        self.iterations += 1
        ex.iterations += 1
        ex.registry.counter(ITERATIONS).add(1)
        ex.registry.trend(ITERATION_DURATION).add((ex.clock.now() - started) * 1000.0)
        ex.registry.rate(ITERATION_FAILED).add(failed)
        return think_time


class ScenarioExecutor:
    """Drive one scenario's VUs according to its concurrency profile.

    The target VU count is recomputed every ``tick_interval`` seconds of the
    run clock. Growth starts fresh VUs; shrinkage retires the newest VUs
    first. When the profile's duration has elapsed, or the run's stop event
    is set, every VU is retired and in-flight iterations get the scenario's
    ``graceful_stop`` window before being cancelled.
    """

    def __init__(
        self,
        scenario: Scenario,
        step: WorkloadStep,
        *,
        transport,
        registry: MetricRegistry,
        pool: SharedStatePool,
        clock,
        stop_event: asyncio.Event,
        tick_interval: float = 0.1,
        test_start: float = 0.0,
        seed: Optional[int] = None,
    ):
        self.scenario = scenario
        self.step = step
        self.transport = transport
        self.registry = registry
        self.pool = pool
        self.clock = clock
        self.stop_event = stop_event
        self.tick_interval = tick_interval
        self.iterations = 0
        self.timing = ScenarioTiming(name=scenario.name, start_offset=scenario.start_offset)
        self._test_start = test_start
        self._seed = seed
        self._vus: List[VirtualUser] = []
        self._next_id = 1

    def seed_for(self, vu_id: int) -> Optional[str]:
        if self._seed is None:
            return None
        return f"{self._seed}:{self.scenario.name}:{vu_id}"

    @property
    def active_vus(self) -> int:
        """VUs currently required by the profile (not retired)."""
        return sum(1 for vu in self._vus if not vu.retired)

    @property
    def draining_vus(self) -> int:
        """Retired VUs still finishing their last iteration."""
        return sum(1 for vu in self._vus if vu.retired and vu.task is not None and not vu.task.done())

    async def run(self) -> ScenarioTiming:
        profile = self.scenario.profile
        total = profile.total_duration
        started = self.clock.now()
        self.timing.started_at = started - self._test_start
        logger.info(
            "scenario %s started (%s, %.1fs)", self.scenario.name, profile.kind, total
        )

        ticks = 0
        while True:
            # rounded so tick times land exactly on stage boundaries
            elapsed = round(self.clock.now() - started, 9)
            if elapsed >= total:
                break
            self._scale_to(profile.target_at(elapsed))
            ticks += 1
            next_tick = min(ticks * self.tick_interval, total)
            if await sleep_or_stop(self.clock, next_tick - elapsed, self.stop_event):
                logger.info("scenario %s stopping on request", self.scenario.name)
                break

        await self._drain()
        self.timing.finished_at = self.clock.now() - self._test_start
        self.timing.iterations = self.iterations
        logger.info(
            "scenario %s finished: %d iterations, peak %d VUs",
            self.scenario.name, self.iterations, self.timing.peak_vus,
        )
        return self.timing

    # -- internal helpers -----------------------------------------------------

    def _scale_to(self, target: int) -> None:
        alive = [vu for vu in self._vus if not vu.retired]
        if target > len(alive):
            for _ in range(target - len(alive)):
                vu = VirtualUser(self._next_id, self)
                self._next_id += 1
                self._vus.append(vu)
                vu.start()
            logger.debug("scenario %s scaled up to %d VUs", self.scenario.name, target)
        elif target < len(alive):
            for vu in reversed(alive[target:]):
                vu.retire()
            logger.debug("scenario %s scaled down to %d VUs", self.scenario.name, target)
        self.timing.peak_vus = max(self.timing.peak_vus, target)
        self._vus = [vu for vu in self._vus if not (vu.retired and vu.task.done())]

    async def _drain(self) -> None:
        for vu in self._vus:
            if not vu.retired:
                vu.retire()
        pending = {vu.task for vu in self._vus if not vu.task.done()}
        if not pending:
            return

        grace = asyncio.ensure_future(self.clock.sleep(self.scenario.graceful_stop))
        try:
            while pending and not grace.done():
                done, _ = await asyncio.wait(
                    pending | {grace}, return_when=asyncio.FIRST_COMPLETED
                )
                pending -= done
        finally:
            if not grace.done():
                grace.cancel()

        if pending:
            logger.warning(
                "scenario %s: cancelling %d iteration(s) still running after %.1fs graceful stop",
                self.scenario.name, len(pending), self.scenario.graceful_stop,
            )
            self.timing.interrupted_iterations += len(pending)
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)
