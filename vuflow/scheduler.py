"""Launch scenario executors at their declared start offsets."""

import asyncio
import logging
from typing import Callable, Dict, Mapping

from vuflow.clock import sleep_or_stop
from vuflow.executor import ScenarioExecutor
from vuflow.models import Scenario, ScenarioTiming

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[Scenario, float], ScenarioExecutor]


class ScenarioScheduler:
    """Run every declared scenario concurrently, each from its own offset.

    Scenarios are independent: overlapping offsets run side by side and
    chained offsets simply start later. ``run`` returns once every launched
    executor has finished. Scenarios still waiting for their offset when the
    stop event is set are never launched and are reported as skipped.
    """

    def __init__(
        self,
        scenarios: Mapping[str, Scenario],
        executor_factory: ExecutorFactory,
        clock,
        stop_event: asyncio.Event,
    ):
        self.scenarios = dict(scenarios)
        self._factory = executor_factory
        self._clock = clock
        self._stop = stop_event
        self.executors: Dict[str, ScenarioExecutor] = {}

    async def run(self) -> Dict[str, ScenarioTiming]:
        test_start = self._clock.now()
        names = list(self.scenarios)
        timings = await asyncio.gather(
            *(self._launch(self.scenarios[name], test_start) for name in names)
        )
        return dict(zip(names, timings))

    def active_vus(self) -> int:
        return sum(ex.active_vus for ex in self.executors.values())

    async def _launch(self, scenario: Scenario, test_start: float) -> ScenarioTiming:
        start_at = test_start + scenario.start_offset
        if await sleep_or_stop(self._clock, start_at - self._clock.now(), self._stop):
            logger.info("scenario %s skipped: run stopped before its start", scenario.name)
            return ScenarioTiming(
                name=scenario.name, start_offset=scenario.start_offset, skipped=True
            )
        executor = self._factory(scenario, test_start)
        self.executors[scenario.name] = executor
        return await executor.run()
