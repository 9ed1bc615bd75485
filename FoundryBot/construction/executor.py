"""
ConstructionExecutor — turns a prioritized plan into a handful of real sites.

Responsibility
--------------
One call per room per tick. Walks the plan in bucket order and asks the
host to queue sites until the room's budget for this tick is spent,
honouring every constraint at once:

  Global ceiling   Never push the platform-wide outstanding-site count past
                   GLOBAL_SITE_LIMIT − GLOBAL_SITE_BUFFER.
  Room budget      A few sites per tick, scaled by builders, the energy
                   ratio and banked energy, capped by controller level.
  Road quota       While any non-road task is placeable, roads get only a
                   small share of the budget.
  Early roads      At low controller levels, roads and ramparts wait until
                   the room has an extension and every source a container.
  Caps             Built + queued + placed-this-call never exceeds the
                   controller level's cap for the kind.
  Dependencies     Terminal-era structures wait for storage/terminal.
  Emergency        When banked energy is low and falling, only recovery
                   structures are considered at all.

Road conflicts
--------------
A non-road, non-rampart task whose tile is blocked only by a road removes
that road (destroying a built one, cancelling a queued one) and moves on
without spending budget. The structure itself is placed on a later tick
once the tile is clear.

Leftover budget
---------------
If budget remains after the plan, the busiest traffic tiles get road sites
(a few per call, only in well-stocked rooms past the early game). Every
HYGIENE_INTERVAL ticks, roads left under blocking structures are removed.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from FoundryBot.construction.host import ConstructionHost, PlacementResult
from FoundryBot.construction.tasks import (
    ConstructionPlan,
    ConstructionTask,
    FailureKind,
    dependency_met,
)
from FoundryBot.logger import get_logger
from FoundryBot.planning.traffic import TrafficTracker
from FoundryBot.room_state import (
    WALKABLE_KINDS,
    RoomPosition,
    RoomSnapshot,
    StructureKind,
    can_share_tile,
    structure_cap,
)

log = get_logger()


@dataclass
class ExecutorConfig:
    global_site_limit: int = 100        # platform-wide construction site ceiling
    global_site_buffer: int = 5         # headroom left for other systems
    base_sites_per_tick: int = 2
    stored_reference: int = 50000       # stored energy at which scale == 1.0
    stored_factor_min: float = 0.5
    stored_factor_max: float = 1.5
    emergency_stored: int = 20000
    emergency_extension_limit: int = 3
    emergency_container_range: int = 2
    road_quota_fraction: float = 0.25
    road_quota_max: int = 2
    road_block_max_level: int = 3
    heat_min_level: int = 3
    heat_stored: int = 10000
    heat_energy_ratio: float = 0.6
    heat_max_per_call: int = 5
    hygiene_interval: int = 1000


@dataclass
class ExecutionReport:
    """What one execute() call did, for logs, stats and tests."""
    room: str
    tick: int
    emergency: bool = False
    budget: int = 0
    road_quota: int = 0
    global_remaining: int = 0
    placed: List[ConstructionTask] = field(default_factory=list)
    removed: List[Tuple[RoomPosition, StructureKind]] = field(default_factory=list)
    heat_roads: List[RoomPosition] = field(default_factory=list)
    hygiene_removed: List[RoomPosition] = field(default_factory=list)
    failures: Counter = field(default_factory=Counter)

    @property
    def sites_placed(self) -> int:
        return len(self.placed) + len(self.heat_roads)

    def summary(self) -> str:
        fails = " ".join(f"{k.name.lower()}={v}" for k, v in sorted(self.failures.items(), key=lambda kv: kv[0].name))
        return (
            f"Exec[{self.room}] placed={len(self.placed)} heat={len(self.heat_roads)} "
            f"removed={len(self.removed)} budget={self.budget} quota={self.road_quota} "
            f"global={self.global_remaining}{' EMERGENCY' if self.emergency else ''}"
            f"{' ' + fails if fails else ''}"
        )


class _Ledger:
    """Snapshot counts plus everything placed during this call."""

    def __init__(self, snapshot: RoomSnapshot) -> None:
        self.snap = snapshot
        self.placed: Dict[RoomPosition, Set[StructureKind]] = {}
        self.placed_counts: Counter = Counter()

    def total(self, kind: StructureKind) -> int:
        return self.snap.count(kind) + self.snap.queued(kind) + self.placed_counts[kind]

    def add(self, pos: RoomPosition, kind: StructureKind) -> None:
        self.placed.setdefault(pos, set()).add(kind)
        self.placed_counts[kind] += 1

    def site_at(self, pos: RoomPosition) -> bool:
        return bool(self.snap.sites_at(pos)) or pos in self.placed

    def built_or_queued(self, pos: RoomPosition, kind: StructureKind) -> bool:
        return (self.snap.has_structure(pos, kind)
                or self.snap.has_site(pos, kind)
                or kind in self.placed.get(pos, ()))


class ConstructionExecutor:

    def __init__(
        self,
        host: ConstructionHost,
        traffic: Optional[TrafficTracker] = None,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        self.host = host
        self.traffic = traffic
        self.cfg = config or ExecutorConfig()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def execute(self, snapshot: RoomSnapshot, plan: ConstructionPlan, outstanding_sites: int) -> ExecutionReport:
        report = ExecutionReport(room=snapshot.name, tick=snapshot.tick)
        tasks = plan.ordered()

        if snapshot.tick > 0 and snapshot.tick % self.cfg.hygiene_interval == 0:
            self._road_hygiene(snapshot, report)

        if self.is_emergency(snapshot):
            report.emergency = True
            tasks = [t for t in tasks if self._emergency_allowed(snapshot, t)]
            log.plan_event(
                "EMERGENCY",
                f"{snapshot.name} stored={snapshot.energy_stored} trend={snapshot.net_energy_trend:.1f} "
                f"→ {len(tasks)} recovery tasks",
                tick=snapshot.tick,
            )
            if not tasks:
                return report

        remaining = max(0, self.cfg.global_site_limit - self.cfg.global_site_buffer - outstanding_sites)
        report.global_remaining = remaining
        if remaining <= 0:
            report.failures[FailureKind.BUDGET_EXHAUSTED] += 1
            log.debug("BUDGET_EXHAUSTED: global site ceiling reached (%d outstanding)",
                      outstanding_sites, tick=snapshot.tick)
            return report

        budget = min(self.room_budget(snapshot), remaining)
        report.budget = budget

        ledger = _Ledger(snapshot)
        reserved = {t.position for t in tasks
                    if t.kind not in (StructureKind.ROAD, StructureKind.RAMPART)}

        nonroad_left = self._count_placeable_nonroad(snapshot, tasks)
        quota = self.road_quota(snapshot, budget, nonroad_left)
        report.road_quota = quota
        roads_blocked = self._early_roads_blocked(snapshot)
        roads_used = 0
        stopped = False

        for task in tasks:
            if budget <= 0:
                break
            if task.kind in (StructureKind.ROAD, StructureKind.RAMPART) and roads_blocked:
                continue
            if task.is_road and nonroad_left > 0 and roads_used >= quota:
                continue
            if not all(dependency_met(d, snapshot) for d in task.dependencies):
                continue
            if ledger.total(task.kind) >= structure_cap(task.kind, snapshot.controller_level):
                continue
            if ledger.built_or_queued(task.position, task.kind):
                continue
            if not self.is_buildable(snapshot, ledger, task.position, task.kind):
                self._clear_road_conflict(snapshot, task, report)
                continue

            result = self.host.create_site(snapshot.name, task.position, task.kind)
            log.placement(snapshot.name, task.kind.value, (task.position.x, task.position.y),
                          result.name, tick=snapshot.tick, reason=task.reason)

            if result is PlacementResult.OK:
                budget -= 1
                ledger.add(task.position, task.kind)
                report.placed.append(task)
                if task.is_road:
                    roads_used += 1
                elif nonroad_left > 0:
                    nonroad_left -= 1
            elif result is PlacementResult.INVALID_TARGET:
                report.failures[FailureKind.PLACEMENT_REJECTED] += 1
            else:
                report.failures[FailureKind.BUDGET_EXHAUSTED] += 1
                stopped = True
                break

        if budget > 0 and not stopped and not roads_blocked:
            self._heat_roads(snapshot, ledger, budget, reserved, report)

        log.debug("%s", report.summary(), tick=snapshot.tick)
        return report

    # ------------------------------------------------------------------ #
    # Budget policy
    # ------------------------------------------------------------------ #

    def is_emergency(self, snapshot: RoomSnapshot) -> bool:
        return snapshot.energy_stored < self.cfg.emergency_stored and snapshot.net_energy_trend < 0

    def stored_factor(self, snapshot: RoomSnapshot) -> float:
        raw = snapshot.energy_stored / self.cfg.stored_reference
        return max(self.cfg.stored_factor_min, min(self.cfg.stored_factor_max, raw))

    def room_budget(self, snapshot: RoomSnapshot) -> int:
        ratio = max(0.0, min(1.0, snapshot.energy_ratio))
        target = self.cfg.base_sites_per_tick + snapshot.builder_count // 2
        target = math.floor(target * (0.5 + 0.5 * ratio) * self.stored_factor(snapshot))

        level = snapshot.controller_level
        if level <= 3:
            cap = 2
        elif level <= 5:
            cap = 3
        else:
            cap = 5
        return max(1, min(cap, target))

    def road_quota(self, snapshot: RoomSnapshot, budget: int, nonroad_placeable: int) -> int:
        if nonroad_placeable <= 0:
            return budget
        ratio = max(0.0, min(1.0, snapshot.energy_ratio))
        if ratio < 0.5 and self.stored_factor(snapshot) < 1.0:
            return 0
        return max(1, min(self.cfg.road_quota_max, math.floor(budget * self.cfg.road_quota_fraction)))

    # ------------------------------------------------------------------ #
    # Buildability
    # ------------------------------------------------------------------ #

    def is_buildable(self, snapshot: RoomSnapshot, ledger: _Ledger, pos: RoomPosition, kind: StructureKind) -> bool:
        if not pos.in_bounds or ledger.site_at(pos):
            return False
        structures = snapshot.structures_at(pos)
        if kind == StructureKind.EXTRACTOR:
            return pos == snapshot.mineral and not structures
        if snapshot.terrain.is_wall(pos) or snapshot.is_feature(pos):
            return False
        return all(can_share_tile(kind, s.kind) for s in structures)

    def _clear_road_conflict(self, snapshot: RoomSnapshot, task: ConstructionTask, report: ExecutionReport) -> None:
        if task.kind in (StructureKind.ROAD, StructureKind.RAMPART):
            return
        pos = task.position
        blockers = [s for s in snapshot.structures_at(pos) if not can_share_tile(task.kind, s.kind)]
        if blockers and all(s.kind == StructureKind.ROAD for s in blockers):
            if self.host.destroy_structure(snapshot.name, pos, StructureKind.ROAD):
                report.removed.append((pos, StructureKind.ROAD))
                log.info("Removed road at %s in %s to make room for %s",
                         pos, snapshot.name, task.kind.value, tick=snapshot.tick)
            return
        sites = snapshot.sites_at(pos)
        if not blockers and sites and all(c.kind == StructureKind.ROAD for c in sites):
            if self.host.cancel_site(snapshot.name, pos, StructureKind.ROAD):
                report.removed.append((pos, StructureKind.ROAD))
                log.info("Cancelled road site at %s in %s for %s",
                         pos, snapshot.name, task.kind.value, tick=snapshot.tick)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _emergency_allowed(self, snapshot: RoomSnapshot, task: ConstructionTask) -> bool:
        if task.kind == StructureKind.CONTAINER:
            return any(task.position.range_to(s.pos) <= self.cfg.emergency_container_range
                       for s in snapshot.sources)
        if task.kind == StructureKind.SPAWN:
            return True
        if task.kind == StructureKind.EXTENSION:
            return snapshot.count(StructureKind.EXTENSION) < self.cfg.emergency_extension_limit
        return False

    def _count_placeable_nonroad(self, snapshot: RoomSnapshot, tasks: List[ConstructionTask]) -> int:
        """Non-road tasks that would pass every check right now, caps consumed as we go."""
        ledger = _Ledger(snapshot)
        count = 0
        for task in tasks:
            if task.is_road:
                continue
            if not all(dependency_met(d, snapshot) for d in task.dependencies):
                continue
            if ledger.total(task.kind) >= structure_cap(task.kind, snapshot.controller_level):
                continue
            if ledger.built_or_queued(task.position, task.kind):
                continue
            if not self.is_buildable(snapshot, ledger, task.position, task.kind):
                continue
            ledger.add(task.position, task.kind)
            count += 1
        return count

    def _early_roads_blocked(self, snapshot: RoomSnapshot) -> bool:
        if snapshot.controller_level > self.cfg.road_block_max_level:
            return False
        has_extension = snapshot.count(StructureKind.EXTENSION) > 0
        containers_done = all(
            snapshot.kinds_near(src.pos, 1, [StructureKind.CONTAINER], include_sites=False)
            for src in snapshot.sources
        )
        return not (has_extension and containers_done)

    def _heat_roads(
        self,
        snapshot: RoomSnapshot,
        ledger: _Ledger,
        budget: int,
        reserved: Set[RoomPosition],
        report: ExecutionReport,
    ) -> None:
        if self.traffic is None or snapshot.controller_level < self.cfg.heat_min_level:
            return
        well_stocked = (snapshot.energy_stored > self.cfg.heat_stored
                        or snapshot.energy_ratio > self.cfg.heat_energy_ratio)
        if not well_stocked:
            return

        threshold = max(6, min(15, math.floor(5 + snapshot.controller_level * 1.5)))
        limit = min(self.cfg.heat_max_per_call, budget)
        exclude = reserved | set(ledger.placed)
        for pos in self.traffic.hot_tiles(snapshot, threshold, limit, exclude=exclude):
            if ledger.total(StructureKind.ROAD) >= structure_cap(StructureKind.ROAD, snapshot.controller_level):
                break
            result = self.host.create_site(snapshot.name, pos, StructureKind.ROAD)
            log.placement(snapshot.name, StructureKind.ROAD.value, (pos.x, pos.y),
                          result.name, tick=snapshot.tick, reason="traffic")
            if result is PlacementResult.OK:
                ledger.add(pos, StructureKind.ROAD)
                report.heat_roads.append(pos)
            elif result is PlacementResult.FULL:
                report.failures[FailureKind.BUDGET_EXHAUSTED] += 1
                break
            else:
                report.failures[FailureKind.PLACEMENT_REJECTED] += 1

    def _road_hygiene(self, snapshot: RoomSnapshot, report: ExecutionReport) -> None:
        for s in snapshot.of_kind(StructureKind.ROAD):
            under = [o for o in snapshot.structures_at(s.pos)
                     if o.kind != StructureKind.ROAD and o.kind not in WALKABLE_KINDS]
            if under and self.host.destroy_structure(snapshot.name, s.pos, StructureKind.ROAD):
                report.hygiene_removed.append(s.pos)
        if report.hygiene_removed:
            log.info("Road hygiene removed %d roads under structures in %s",
                     len(report.hygiene_removed), snapshot.name, tick=snapshot.tick)
