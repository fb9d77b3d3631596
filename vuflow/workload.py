"""Workload step contract and the per-iteration context handed to it."""

import importlib
import math
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from vuflow.metrics import CHECKS, MetricRegistry
from vuflow.pool import SharedStatePool


class WorkloadResolutionError(Exception):
    """Raised when a ``module:attr`` workload reference cannot be loaded."""


@dataclass
class VUContext:
    """Everything a workload step may touch during one iteration."""

    scenario: str
    vu_id: int
    iteration: int
    http: Any
    pool: SharedStatePool
    metrics: MetricRegistry
    random: random.Random
    think_time: float = 0.0  # pacing of the step currently running

    def check(self, value: Any, predicates: Dict[str, Callable[[Any], bool]]) -> bool:
        """Record each named predicate into ``checks`` and return whether all passed.

        A predicate that raises counts as failed.
        """
        checks = self.metrics.rate(CHECKS)
        all_passed = True
        for _name, predicate in predicates.items():
            try:
                ok = bool(predicate(value))
            except Exception:
                ok = False
            checks.add(ok)
            all_passed = all_passed and ok
        return all_passed


StepFunc = Callable[[VUContext], Awaitable[Optional[float]]]


class WorkloadStep:
    """One unit of work a VU runs per iteration.

    Args:
        func: Async callable taking a VUContext. It may return a number to
            override the think time for this iteration.
        think_time: Seconds the VU idles after the step.
        name: Label used in logs; defaults to the function name.
        metrics: Custom metrics the step records, as ``{name: kind}``.
    """

    def __init__(
        self,
        func: StepFunc,
        think_time: float = 0.0,
        name: Optional[str] = None,
        metrics: Optional[Dict[str, str]] = None,
    ):
        if think_time < 0:
            raise ValueError(f"think_time must be >= 0, got {think_time}")
        self.func = func
        self.think_time = think_time
        self.name = name or getattr(func, "__name__", "workload")
        self.metrics = dict(metrics or {})

    async def execute(self, ctx: VUContext) -> float:
        """Run the step once and return the think time to apply afterwards.

        ``ctx.think_time`` is set before the call, so pacing is still known
        when the step raises.
        """
        ctx.think_time = self.think_time
        result = await self.func(ctx)
        if result is None:
            return self.think_time
        return float(result)

    def declared_metrics(self) -> Dict[str, str]:
        return dict(self.metrics)

    def __repr__(self):
        return f"WorkloadStep({self.name!r}, think_time={self.think_time})"


def workload(think_time: float = 0.0, name: Optional[str] = None,
             metrics: Optional[Dict[str, str]] = None):
    """Decorator turning an async function into a WorkloadStep."""

    def wrap(func: StepFunc) -> WorkloadStep:
        return WorkloadStep(func, think_time=think_time, name=name, metrics=metrics)

    return wrap


class WeightedMix(WorkloadStep):
    """Pick one variant per iteration by an independent weighted random draw.

    Args:
        variants: ``(probability, step)`` pairs. Probabilities must be
            positive and sum to 1.
    """

    def __init__(self, variants: Sequence[Tuple[float, WorkloadStep]], name: str = "mix"):
        if not variants:
            raise ValueError("a weighted mix needs at least one variant")
        for weight, _ in variants:
            if weight <= 0:
                raise ValueError(f"variant weights must be positive, got {weight}")
        total = sum(weight for weight, _ in variants)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"variant weights must sum to 1, got {total}")

        self.variants: List[Tuple[float, WorkloadStep]] = list(variants)
        self.name = name
        self.think_time = 0.0
        self.metrics = {}

    def choose(self, rng: random.Random) -> WorkloadStep:
        draw = rng.random()
        cumulative = 0.0
        for weight, step in self.variants:
            cumulative += weight
            if draw < cumulative:
                return step
        return self.variants[-1][1]

    async def execute(self, ctx: VUContext) -> float:
        return await self.choose(ctx.random).execute(ctx)

    def declared_metrics(self) -> Dict[str, str]:
        merged = {}
        for _, step in self.variants:
            merged.update(step.declared_metrics())
        return merged

    def __repr__(self):
        return f"WeightedMix({self.variants!r})"


def resolve_workload(ref: Any) -> WorkloadStep:
    """Turn a ``package.module:attr`` reference into a WorkloadStep.

    Plain async functions are wrapped with zero think time.

    Raises:
        WorkloadResolutionError: If the reference cannot be imported or does
            not point at a workload.
    """
    if isinstance(ref, WorkloadStep):
        return ref
    if not isinstance(ref, str) or ":" not in ref:
        raise WorkloadResolutionError(
            f"workload must be a 'module:attr' reference, got {ref!r}"
        )
    module_name, _, attr = ref.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise WorkloadResolutionError(f"cannot import {module_name!r}: {exc}") from exc
    try:
        target = getattr(module, attr)
    except AttributeError:
        raise WorkloadResolutionError(f"{module_name!r} has no attribute {attr!r}") from None

    if isinstance(target, WorkloadStep):
        return target
    if callable(target):
        return WorkloadStep(target)
    raise WorkloadResolutionError(f"{ref!r} is not a workload step")
