"""
Construction task records — what the generator emits and the executor consumes.

A ConstructionTask is a single "build `kind` at `position`" request with a
priority, a cost estimate and the structures it depends on. A
ConstructionPlan bundles one invocation's tasks with a bucketed view, the
metrics block and human-readable recommendations. Neither is ever cached:
both are rebuilt from the snapshot on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, FrozenSet, List

from FoundryBot.room_state import RoomPosition, RoomSnapshot, StructureKind


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class DependencyKind(Enum):
    STORAGE  = auto()   # a storage must already be built
    TERMINAL = auto()   # a terminal must already be built


# Exhaustive: every DependencyKind maps to the structure that satisfies it
DEPENDENCY_STRUCTURES: Dict[DependencyKind, StructureKind] = {
    DependencyKind.STORAGE:  StructureKind.STORAGE,
    DependencyKind.TERMINAL: StructureKind.TERMINAL,
}


def dependency_met(dep: DependencyKind, snapshot: RoomSnapshot) -> bool:
    return snapshot.count(DEPENDENCY_STRUCTURES[dep]) > 0


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class PriorityBucket(Enum):
    CRITICAL  = auto()  # ≥ 90 or urgent
    IMPORTANT = auto()  # ≥ 75
    NORMAL    = auto()  # ≥ 50
    DEFERRED  = auto()


# Rough energy cost per site, used only for metrics
ESTIMATED_COST: Dict[StructureKind, int] = {
    StructureKind.ROAD:        300,
    StructureKind.STORAGE:     30000,
    StructureKind.TERMINAL:    100000,
    StructureKind.FACTORY:     100000,
    StructureKind.POWER_SPAWN: 100000,
    StructureKind.NUKER:       100000,
    StructureKind.TOWER:       5000,
    StructureKind.CONTAINER:   5000,
    StructureKind.LINK:        5000,
    StructureKind.EXTRACTOR:   5000,
    StructureKind.EXTENSION:   3000,
    StructureKind.SPAWN:       15000,
    StructureKind.LAB:         50000,
    StructureKind.OBSERVER:    8000,
    StructureKind.RAMPART:     1000,
    StructureKind.WALL:        1000,
}


@dataclass(frozen=True)
class ConstructionTask:
    """
    One requested site.

    Fields
    ------
    kind : StructureKind
    position : RoomPosition
    priority : float
        Higher = sooner. Ordering within a bucket, and across the executor's
        single pass.
    reason : str
        Short tag naming the policy that emitted it (for logs).
    estimated_cost : int
    dependencies : frozenset[DependencyKind]
        Structures that must exist before the site may be placed.
    urgent : bool
        Forces the critical bucket regardless of priority.
    """
    kind: StructureKind
    position: RoomPosition
    priority: float
    reason: str
    estimated_cost: int = 0
    dependencies: FrozenSet[DependencyKind] = frozenset()
    urgent: bool = False

    @property
    def is_road(self) -> bool:
        return self.kind == StructureKind.ROAD

    def bucket(self) -> PriorityBucket:
        if self.priority >= 90 or self.urgent:
            return PriorityBucket.CRITICAL
        if self.priority >= 75:
            return PriorityBucket.IMPORTANT
        if self.priority >= 50:
            return PriorityBucket.NORMAL
        return PriorityBucket.DEFERRED

    def __str__(self) -> str:
        flag = " !" if self.urgent else ""
        return f"{self.kind.value}@{self.position} p={self.priority:.1f}{flag} [{self.reason}]"


@dataclass
class PlanMetrics:
    total_tasks: int = 0
    total_cost: int = 0
    estimated_time: float = 0.0         # ticks at the current build rate
    completion_rate: float = 100.0      # 0..100


@dataclass
class Recommendations:
    immediate: List[str] = field(default_factory=list)
    short_term: List[str] = field(default_factory=list)
    long_term: List[str] = field(default_factory=list)


@dataclass
class ConstructionPlan:
    room: str
    tasks: List[ConstructionTask] = field(default_factory=list)
    buckets: Dict[PriorityBucket, List[ConstructionTask]] = field(default_factory=dict)
    recommendations: Recommendations = field(default_factory=Recommendations)
    metrics: PlanMetrics = field(default_factory=PlanMetrics)

    def ordered(self) -> List[ConstructionTask]:
        """Bucket-major, priority-descending view: the executor's pass order."""
        out: List[ConstructionTask] = []
        for bucket in PriorityBucket:
            out.extend(self.buckets.get(bucket, []))
        return out

    def summary(self) -> str:
        counts = " ".join(
            f"{b.name.lower()}={len(self.buckets.get(b, []))}" for b in PriorityBucket
        )
        return (
            f"Plan[{self.room}] tasks={self.metrics.total_tasks} {counts} "
            f"cost={self.metrics.total_cost} eta={self.metrics.estimated_time:.0f}"
        )


# ---------------------------------------------------------------------------
# Failure taxonomy
# ---------------------------------------------------------------------------

class FailureKind(Enum):
    PLANNING_FAILURE   = auto()     # no anchor; room deferred this invocation
    STALE_CACHE        = auto()     # layout version mismatch; regenerated
    PLACEMENT_REJECTED = auto()     # host refused a site; next task tried
    BUDGET_EXHAUSTED   = auto()     # per-room or global budget hit zero
    UNREACHABLE_SLOT   = auto()     # candidate discarded by the reach check
