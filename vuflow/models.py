"""Data models for scenarios, run configuration, thresholds, and reports."""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

CONSTANT_VUS = "constant-vus"
RAMPING_VUS = "ramping-vus"


@dataclass
class Stage:
    duration: float  # seconds
    target: int


@dataclass
class ConstantProfile:
    vus: int
    duration: float

    kind = CONSTANT_VUS

    @property
    def total_duration(self) -> float:
        return self.duration

    def target_at(self, elapsed: float) -> int:
        """Return the VU count required ``elapsed`` seconds into the scenario."""
        if elapsed < 0 or elapsed >= self.duration:
            return 0
        return self.vus


@dataclass
class RampingProfile:
    start_vus: int
    stages: List[Stage] = field(default_factory=list)

    kind = RAMPING_VUS

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def target_at(self, elapsed: float) -> int:
        """Return the VU count required ``elapsed`` seconds into the scenario.

        Each stage moves linearly from the previous stage's end count to its
        own target. The count only moves once a whole VU's worth of the ramp
        has elapsed (floor going up, ceiling going down), so it never passes
        either bounding target and lands on ``target`` exactly at the end of
        the stage.
        """
        if elapsed < 0:
            return self.start_vus
        current = self.start_vus
        stage_start = 0.0
        for stage in self.stages:
            stage_end = stage_start + stage.duration
            if elapsed < stage_end:
                progress = (elapsed - stage_start) / stage.duration
                value = current + (stage.target - current) * progress
                if stage.target >= current:
                    return int(math.floor(value))
                return int(math.ceil(value))
            current = stage.target
            stage_start = stage_end
        return current


Profile = Union[ConstantProfile, RampingProfile]


@dataclass
class Scenario:
    name: str
    profile: Profile
    start_offset: float = 0.0
    workload: Any = None  # WorkloadStep or "module:attr" reference
    graceful_stop: float = 30.0

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.profile.total_duration


@dataclass(frozen=True)
class Threshold:
    metric: str
    expression: str
    aggregator: str
    operator: str
    value: float
    argument: Optional[float] = None
    abort_on_fail: bool = False

    @property
    def label(self) -> str:
        return f"{self.metric}: {self.expression}"


@dataclass
class RunConfig:
    scenarios: Dict[str, Scenario] = field(default_factory=dict)
    thresholds: List[Threshold] = field(default_factory=list)
    metrics: Dict[str, str] = field(default_factory=dict)  # custom name -> kind
    base_url: str = ""
    workload: Any = None
    seed: Optional[int] = None
    tick_interval: float = 0.1
    evaluation_interval: float = 1.0
    request_timeout: float = 30.0


@dataclass
class ScenarioTiming:
    name: str
    start_offset: float
    started_at: Optional[float] = None  # seconds since test start
    finished_at: Optional[float] = None
    peak_vus: int = 0
    iterations: int = 0
    interrupted_iterations: int = 0
    skipped: bool = False

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass
class BreachRecord:
    metric: str
    expression: str
    observed: float
    at: float  # seconds since test start


@dataclass
class Verdict:
    status: str  # "pass", "fail"
    narrative: str
    checks: List[dict] = field(default_factory=list)  # each: {metric, threshold, result, detail}
    breaches: List[BreachRecord] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "pass"


@dataclass
class Report:
    scenarios: Dict[str, ScenarioTiming] = field(default_factory=dict)
    metrics: Dict[str, dict] = field(default_factory=dict)
    verdict: Optional[Verdict] = None
    duration: float = 0.0
    aborted: bool = False
    abort_reason: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict is not None and self.verdict.passed


@dataclass
class EvidenceEvent:
    ts: str
    config: str
    scenarios: List[str] = field(default_factory=list)
    status: str = "pass"
    breached: List[str] = field(default_factory=list)
    aborted: bool = False
