"""
ConstructionTaskGenerator — the gap between the layout and reality, as tasks.

Responsibility
--------------
Given a snapshot and the room's LayoutPlan, emit one ConstructionTask for
every structure that should exist (under the current controller level's
caps) but is neither built nor queued. Each structure category has its own
policy method below; a policy reads layout slots first and falls back to a
local search around the relevant feature when the layout runs out of
usable slots.

The generator is stateless across calls. Identical inputs produce an
identical task list; the only side effect is warming the PathCache.

Policy order
------------
Structures are emitted before roads so road policies can skip every tile a
structure task has already claimed. Within roads, higher-priority policies
run first and claim their tiles, so a tile reached by two routes keeps the
better priority.

Prioritize
----------
After generation a second pass applies situational bonuses (threat, weak
economy), sorts tasks into critical / important / normal / deferred buckets,
computes the metrics block and writes recommendations.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from FoundryBot.construction.tasks import (
    ESTIMATED_COST,
    ConstructionPlan,
    ConstructionTask,
    DependencyKind,
    PlanMetrics,
    PriorityBucket,
    Recommendations,
)
from FoundryBot.logger import get_logger
from FoundryBot.planning.layout import LayoutPlan
from FoundryBot.planning.path_cache import PathCache
from FoundryBot.planning.pathfinder import (
    IMPASSABLE,
    PathStep,
    build_cost_matrix,
    reachable_from,
    search,
)
from FoundryBot.planning.templates import (
    CORE_RADIUS,
    HUB_WIDENING,
    LINK_BANDS,
    LOOP_RADIUS,
    RangeBand,
)
from FoundryBot.room_state import (
    WALKABLE_KINDS,
    RoomPosition,
    RoomSnapshot,
    StructureKind,
    can_share_tile,
    chebyshev_ring,
    structure_cap,
)

log = get_logger()

_STORAGE = frozenset({DependencyKind.STORAGE})
_TERMINAL = frozenset({DependencyKind.TERMINAL})
_TERMINAL_AND_STORAGE = frozenset({DependencyKind.TERMINAL, DependencyKind.STORAGE})

# Structures worth a rampart when the room is exposed
_RAMPART_COVERED = (
    StructureKind.SPAWN,
    StructureKind.STORAGE,
    StructureKind.TERMINAL,
    StructureKind.TOWER,
)

_THREAT_KINDS = frozenset({StructureKind.TOWER, StructureKind.RAMPART, StructureKind.WALL})
_ECONOMY_KINDS = frozenset({StructureKind.CONTAINER, StructureKind.EXTENSION, StructureKind.STORAGE})

# Tower fallback offsets around the first spawn
_TOWER_FALLBACK = ((-3, -3), (3, -3), (-3, 3), (3, 3), (0, -4), (0, 4))


@dataclass
class TaskConfig:
    low_level: int = 3                  # roads/containers urgent at or below
    widening_min_level: int = 3
    widening_min_capacity: int = 550
    spawn_connector_steps: int = 4
    hub_connector_steps: int = 3
    spur_steps: int = 3
    extension_search_min: int = 3      # square-ring fallback radii
    extension_search_max: int = 10
    reach_max_ops: int = 2000
    rampart_threat: float = 30.0        # ramparts below level 3 past this threat
    rampart_urgent_threat: float = 70.0
    threat_floor: float = 50.0          # "hostiles present"
    threat_bonus: float = 20.0
    efficiency_floor: float = 0.5
    efficiency_bonus: float = 15.0
    build_work_per_builder: int = 2     # WORK parts per builder
    build_rate_per_work: int = 5        # progress per WORK part per tick


class ConstructionTaskGenerator:

    def __init__(self, path_cache: PathCache, config: Optional[TaskConfig] = None) -> None:
        self.paths = path_cache
        self.cfg = config or TaskConfig()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def generate(self, snapshot: RoomSnapshot, layout: LayoutPlan) -> List[ConstructionTask]:
        run = _GenerationPass(self, snapshot, layout)
        return run.execute()

    def build_plan(self, snapshot: RoomSnapshot, layout: LayoutPlan) -> ConstructionPlan:
        tasks = self.generate(snapshot, layout)
        plan = self.prioritize(snapshot, tasks)
        log.debug("%s", plan.summary(), tick=snapshot.tick)
        return plan

    def prioritize(self, snapshot: RoomSnapshot, tasks: List[ConstructionTask]) -> ConstructionPlan:
        plan = ConstructionPlan(room=snapshot.name, tasks=list(tasks))

        threatened = snapshot.threat_score >= self.cfg.threat_floor
        struggling = snapshot.economy_efficiency < self.cfg.efficiency_floor

        buckets: Dict[PriorityBucket, List[ConstructionTask]] = {b: [] for b in PriorityBucket}
        for task in tasks:
            bonus = 0.0
            if threatened and task.kind in _THREAT_KINDS:
                bonus += self.cfg.threat_bonus
            if struggling and task.kind in _ECONOMY_KINDS:
                bonus += self.cfg.efficiency_bonus
            adjusted = dataclasses.replace(task, priority=task.priority + bonus) if bonus else task
            buckets[adjusted.bucket()].append(adjusted)

        for bucket in buckets.values():
            bucket.sort(key=lambda t: t.priority, reverse=True)
        plan.buckets = buckets
        plan.metrics = self._metrics(snapshot, tasks)
        plan.recommendations = self._recommendations(snapshot, tasks)
        return plan

    # ------------------------------------------------------------------ #
    # Plan extras
    # ------------------------------------------------------------------ #

    def _metrics(self, snapshot: RoomSnapshot, tasks: List[ConstructionTask]) -> PlanMetrics:
        total_cost = sum(t.estimated_cost for t in tasks)
        work_parts = snapshot.builder_count * self.cfg.build_work_per_builder
        build_rate = work_parts * self.cfg.build_rate_per_work
        active = len(snapshot.sites)
        completion = min(100.0, build_rate / active * 10) if active else 100.0
        return PlanMetrics(
            total_tasks=len(tasks),
            total_cost=total_cost,
            estimated_time=total_cost / max(1, build_rate),
            completion_rate=completion,
        )

    def _recommendations(self, snapshot: RoomSnapshot, tasks: List[ConstructionTask]) -> Recommendations:
        rec = Recommendations()
        kinds = {t.kind for t in tasks}
        level = snapshot.controller_level

        if snapshot.energy_capacity < 800:
            rec.immediate.append("Build extensions to increase energy capacity")
        if snapshot.count(StructureKind.CONTAINER) < len(snapshot.sources):
            rec.immediate.append("Build containers near sources for efficient harvesting")
        if snapshot.threat_score >= self.cfg.threat_floor and StructureKind.TOWER not in kinds:
            rec.immediate.append("Build towers for defense against hostiles")

        if snapshot.energy_capacity < 1000 and StructureKind.EXTENSION not in kinds:
            rec.short_term.append("Plan more extension construction for energy scaling")
        if level >= 3 and snapshot.count(StructureKind.TOWER) == 0:
            rec.short_term.append("Build towers for defense and maintenance")
        if level >= 4 and snapshot.count(StructureKind.STORAGE) == 0:
            rec.short_term.append("Build storage for bulk energy management")

        if level >= 5 and snapshot.count(StructureKind.LINK) == 0:
            rec.long_term.append("Build links for efficient energy transport")
        if level >= 6 and snapshot.count(StructureKind.TERMINAL) == 0:
            rec.long_term.append("Build terminal for market access and resource sharing")
        return rec


# ---------------------------------------------------------------------------
# One generation pass
# ---------------------------------------------------------------------------

class _GenerationPass:
    """
    Mutable working state for a single generate() call: emitted tasks and
    the tiles they claimed. Never outlives the call.
    """

    def __init__(self, gen: ConstructionTaskGenerator, snapshot: RoomSnapshot, layout: LayoutPlan) -> None:
        self.gen = gen
        self.cfg = gen.cfg
        self.snap = snapshot
        self.layout = layout
        self.anchor = layout.anchor
        self.level = snapshot.controller_level
        self.low = self.level <= self.cfg.low_level

        self.tasks: List[ConstructionTask] = []
        self.claimed: Set[RoomPosition] = set()         # non-road task tiles
        self.road_tiles: Set[RoomPosition] = set()      # road task tiles
        self.reserved = layout.structure_tiles()        # roads never go here
        self.layout_tiles = {pos for _, pos in layout.placements()}
        self._cost: Optional[np.ndarray] = None

    def execute(self) -> List[ConstructionTask]:
        self.spawns()
        self.storage()
        self.terminal()
        self.towers()
        self.containers()
        self.links()
        extension_tasks = self.extensions()
        self.late_game()
        self.ramparts()

        self.hub_roads()
        self.hub_connectors()
        self.hub_widening()
        self.extension_spur(extension_tasks)
        self.controller_spur()
        self.feature_roads()
        self.core_loop()
        return self.tasks

    # ── Emit helpers ─────────────────────────────────────────────────────────

    def emit(
        self,
        kind: StructureKind,
        pos: RoomPosition,
        priority: float,
        reason: str,
        urgent: bool = False,
        deps: frozenset = frozenset(),
    ) -> ConstructionTask:
        task = ConstructionTask(
            kind=kind,
            position=pos,
            priority=round(priority, 3),
            reason=reason,
            estimated_cost=ESTIMATED_COST.get(kind, 0),
            dependencies=deps,
            urgent=urgent,
        )
        self.tasks.append(task)
        if kind == StructureKind.ROAD:
            self.road_tiles.add(pos)
        elif kind != StructureKind.RAMPART:
            self.claimed.add(pos)
        return task

    def missing(self, kind: StructureKind) -> int:
        """Cap minus built minus queued minus already emitted this pass."""
        emitted = sum(1 for t in self.tasks if t.kind == kind)
        have = self.snap.count(kind) + self.snap.queued(kind) + emitted
        return max(0, structure_cap(kind, self.level) - have)

    # ── Tile predicates ──────────────────────────────────────────────────────

    def _base_ok(self, pos: RoomPosition) -> bool:
        return pos.in_bounds and not self.snap.terrain.is_wall(pos) and not self.snap.is_feature(pos)

    def slot_ok(self, kind: StructureKind, pos: RoomPosition) -> bool:
        """
        Layout slot usable for `kind`: nothing incompatible built there, no
        site at all. A road in the way is fine; the executor clears it.
        """
        if not self._base_ok(pos) or pos in self.claimed:
            return False
        if self.snap.sites_at(pos):
            return False
        for s in self.snap.structures_at(pos):
            if s.kind == StructureKind.ROAD or can_share_tile(kind, s.kind):
                continue
            return False
        return True

    def free_ok(self, kind: StructureKind, pos: RoomPosition) -> bool:
        """Ad hoc search tile: off the layout and not sharing with a road."""
        if pos in self.layout_tiles:
            return False
        if not self._base_ok(pos) or pos in self.claimed or self.snap.sites_at(pos):
            return False
        return all(can_share_tile(kind, s.kind) for s in self.snap.structures_at(pos))

    def road_ok(self, pos: RoomPosition) -> bool:
        if not self._base_ok(pos):
            return False
        if pos in self.reserved or pos in self.claimed or pos in self.road_tiles:
            return False
        if self.snap.sites_at(pos):
            return False
        return all(can_share_tile(StructureKind.ROAD, s.kind) for s in self.snap.structures_at(pos))

    def search_free(self, kind: StructureKind, center: RoomPosition, r_min: int, r_max: int) -> Optional[RoomPosition]:
        for radius in range(r_min, r_max + 1):
            for pos in chebyshev_ring(center, radius):
                if self.free_ok(kind, pos):
                    return pos
        return None

    # ── Paths ────────────────────────────────────────────────────────────────

    def cost_matrix(self) -> np.ndarray:
        if self._cost is None:
            self._cost = build_cost_matrix(self.snap, avoid=self.reserved)
        return self._cost

    def route(self, key: str, origin: RoomPosition, goal: RoomPosition) -> List[PathStep]:
        return self.gen.paths.get_path(
            self.snap.name, key, origin, goal, self.snap.tick, self.cost_matrix,
        )

    # ------------------------------------------------------------------ #
    # Structure policies
    # ------------------------------------------------------------------ #

    def spawns(self) -> None:
        need = self.missing(StructureKind.SPAWN)
        no_spawn = self.snap.count(StructureKind.SPAWN) == 0
        spots = self._slots(StructureKind.SPAWN, self.layout.spawns, need)
        while len(spots) < need:
            pos = self.search_free(StructureKind.SPAWN, self.anchor, 2, 4)
            if pos is None:
                break
            spots.append(pos)
            self.claimed.add(pos)
        for i, pos in enumerate(spots):
            self.emit(StructureKind.SPAWN, pos, 88 - i, "spawn", urgent=no_spawn and i == 0)

    def storage(self) -> None:
        if self.missing(StructureKind.STORAGE) <= 0:
            return
        pos = self._single_slot(StructureKind.STORAGE, self.layout.storage, 1, 3)
        if pos is not None:
            self.emit(StructureKind.STORAGE, pos, 90, "storage",
                      urgent=self.snap.energy_stored > 10000)

    def terminal(self) -> None:
        if self.missing(StructureKind.TERMINAL) <= 0:
            return
        pos = self._single_slot(StructureKind.TERMINAL, self.layout.terminal, 1, 3)
        if pos is not None:
            self.emit(StructureKind.TERMINAL, pos, 76, "terminal", deps=_STORAGE)

    def towers(self) -> None:
        need = self.missing(StructureKind.TOWER)
        if need <= 0:
            return
        first = self.snap.count(StructureKind.TOWER) + self.snap.queued(StructureKind.TOWER) == 0
        threatened = self.snap.threat_score >= self.cfg.threat_floor

        spots = self._slots(StructureKind.TOWER, self.layout.towers, need)
        if len(spots) < need:
            center = self.snap.first_spawn() or self.anchor
            for dx, dy in _TOWER_FALLBACK:
                pos = center.offset(dx, dy)
                if len(spots) >= need:
                    break
                if pos not in spots and self.free_ok(StructureKind.TOWER, pos):
                    spots.append(pos)
                    self.claimed.add(pos)

        for i, pos in enumerate(spots):
            urgent = threatened or (first and i == 0)
            self.emit(StructureKind.TOWER, pos, 84 - i * 2, "tower", urgent=urgent)

    def containers(self) -> None:
        for src in sorted(self.snap.sources, key=lambda s: s.id):
            if self.missing(StructureKind.CONTAINER) <= 0:
                return
            if self.snap.kinds_near(src.pos, 1, [StructureKind.CONTAINER]):
                continue
            pos = self._container_spot(src.pos, 1)
            if pos is not None:
                self.emit(StructureKind.CONTAINER, pos, 88, f"source:{src.id}", urgent=self.low)

        ctrl = self.snap.controller
        if ctrl is not None and self.missing(StructureKind.CONTAINER) > 0:
            if not self.snap.kinds_near(ctrl, 2, [StructureKind.CONTAINER]):
                pos = self._container_spot(ctrl, 2)
                if pos is not None:
                    self.emit(StructureKind.CONTAINER, pos, 82, "controller", urgent=self.low)

    def links(self) -> None:
        if self.missing(StructureKind.LINK) <= 0:
            return
        source_index = 0
        for band in LINK_BANDS:
            for target in self._link_targets(band):
                if self.missing(StructureKind.LINK) <= 0:
                    return
                if band.target == "source":
                    priority, deps, reason = 68 - source_index, frozenset(), "link:source"
                    source_index += 1
                elif band.target == "storage":
                    priority, deps, reason = 72, _STORAGE, "link:storage"
                else:
                    priority, deps, reason = 70, frozenset(), "link:controller"

                if self._link_near(target, band.max_range):
                    continue
                pos = self._link_slot(target, band)
                if pos is not None:
                    self.emit(StructureKind.LINK, pos, priority, reason, deps=deps)

    def extensions(self) -> List[ConstructionTask]:
        need = self.missing(StructureKind.EXTENSION)
        if need <= 0:
            return []

        urgent = self.level <= 2 or self.snap.energy_capacity < 800
        reach_cost = build_cost_matrix(self.snap).copy()
        reachable = reachable_from(self.anchor, reach_cost, self.cfg.reach_max_ops)
        accepted: List[RoomPosition] = []
        routes: Dict[RoomPosition, List[RoomPosition]] = {}
        rejected = 0

        for pos in self._extension_candidates():
            if len(accepted) >= need:
                break
            if not self._has_open_neighbour(pos, accepted):
                continue
            # Cheap prefilter: the room flood must touch a neighbour first
            if not any(n in reachable for n in pos.neighbours()):
                rejected += 1
                continue
            result = search(self.anchor, pos, reach_cost, range_=1, max_ops=self.cfg.reach_max_ops)
            if result.incomplete:
                rejected += 1
                continue
            before = reach_cost[pos.y, pos.x]
            reach_cost[pos.y, pos.x] = IMPASSABLE
            if not self._reroute_around(pos, routes, reach_cost):
                reach_cost[pos.y, pos.x] = before
                rejected += 1
                continue
            accepted.append(pos)
            routes[pos] = result.path
            self.claimed.add(pos)

        if rejected:
            log.debug("UNREACHABLE_SLOT: %d extension candidates rejected in %s",
                      rejected, self.snap.name, tick=self.snap.tick)

        return [
            self.emit(StructureKind.EXTENSION, pos, 82 - i * 0.2, "extension", urgent=urgent)
            for i, pos in enumerate(accepted)
        ]

    def late_game(self) -> None:
        if self.level >= 6:
            need = self.missing(StructureKind.LAB)
            spots = self._slots(StructureKind.LAB, self.layout.labs, need)
            for i, pos in enumerate(spots):
                self.emit(StructureKind.LAB, pos, 54 - i, "lab", deps=_TERMINAL)
            self._extractor()

        singles = (
            (StructureKind.FACTORY, self.layout.factory, 52, _TERMINAL_AND_STORAGE),
            (StructureKind.POWER_SPAWN, self.layout.power_spawn, 48, _TERMINAL_AND_STORAGE),
            (StructureKind.OBSERVER, self.layout.observer, 46, _TERMINAL),
            (StructureKind.NUKER, self.layout.nuker, 44, _TERMINAL_AND_STORAGE),
        )
        for kind, slot, priority, deps in singles:
            if self.missing(kind) <= 0:
                continue
            pos = self._single_slot(kind, slot, 4, 6)
            if pos is not None:
                self.emit(kind, pos, priority, kind.value, deps=deps)

    def _extractor(self) -> None:
        mineral = self.snap.mineral
        if mineral is None:
            return
        if self.missing(StructureKind.EXTRACTOR) > 0 and not self.snap.structures_at(mineral) \
                and not self.snap.sites_at(mineral):
            self.emit(StructureKind.EXTRACTOR, mineral, 53, "extractor", deps=_STORAGE)
        if self.missing(StructureKind.CONTAINER) > 0 \
                and not self.snap.kinds_near(mineral, 1, [StructureKind.CONTAINER]):
            pos = self._container_spot(mineral, 1)
            if pos is not None:
                self.emit(StructureKind.CONTAINER, pos, 52, "mineral", deps=_STORAGE)

    def ramparts(self) -> None:
        if not (self.level >= 3 or self.snap.threat_score >= self.cfg.rampart_threat):
            return
        if structure_cap(StructureKind.RAMPART, self.level) <= 0:
            return
        urgent = self.snap.threat_score > self.cfg.rampart_urgent_threat
        covered = sorted(
            (s for s in self.snap.structures if s.kind in _RAMPART_COVERED),
            key=lambda s: (_RAMPART_COVERED.index(s.kind), s.pos),
        )
        i = 0
        for s in covered:
            if self.missing(StructureKind.RAMPART) <= 0:
                break
            if self.snap.has_structure(s.pos, StructureKind.RAMPART) \
                    or self.snap.has_site(s.pos, StructureKind.RAMPART):
                continue
            self.emit(StructureKind.RAMPART, s.pos, 36 - i * 0.1, f"cover:{s.kind.value}", urgent=urgent)
            i += 1

    # ------------------------------------------------------------------ #
    # Road policies
    # ------------------------------------------------------------------ #

    def hub_roads(self) -> None:
        hub = [p for p in self.layout.roads if p.range_to(self.anchor) <= CORE_RADIUS]
        for i, pos in enumerate(hub):
            if self.road_ok(pos):
                self.emit(StructureKind.ROAD, pos, 92 - i * 0.1, "hub", urgent=self.low)

    def hub_connectors(self) -> None:
        origins = [(s.pos, self.cfg.spawn_connector_steps) for s in
                   sorted(self.snap.of_kind(StructureKind.SPAWN), key=lambda s: s.pos)]
        for kind in (StructureKind.STORAGE, StructureKind.TERMINAL):
            origins += [(s.pos, self.cfg.hub_connector_steps) for s in self.snap.of_kind(kind)]

        for origin, steps in origins:
            if origin.range_to(self.anchor) <= 1:
                continue
            path = self.route(f"hub:{origin.key}", origin, self.anchor)
            for step in path[:steps]:
                if self.road_ok(step.pos):
                    self.emit(StructureKind.ROAD, step.pos, 91.5, "connector", urgent=self.low)

    def hub_widening(self) -> None:
        if not self._infrastructure_ready():
            return
        for dx, dy in HUB_WIDENING:
            pos = self.anchor.offset(dx, dy)
            if self.road_ok(pos):
                self.emit(StructureKind.ROAD, pos, 91.2, "widening")

    def core_loop(self) -> None:
        if not self._infrastructure_ready():
            return
        for pos in self.layout.roads:
            if pos.range_to(self.anchor) == LOOP_RADIUS and self.road_ok(pos):
                self.emit(StructureKind.ROAD, pos, 60, "loop")

    def extension_spur(self, extension_tasks: List[ConstructionTask]) -> None:
        targets = [t.position for t in extension_tasks]
        targets += sorted(s.pos for s in self.snap.of_kind(StructureKind.EXTENSION))
        if not targets:
            return
        target = targets[0]
        path = self.route(f"spur:{target.key}", self.anchor, target)
        for i, step in enumerate(path[: self.cfg.spur_steps]):
            if self.road_ok(step.pos):
                self.emit(StructureKind.ROAD, step.pos, 83.5 - i * 0.1, "spur:extension", urgent=self.low)

    def controller_spur(self) -> None:
        ctrl = self.snap.controller
        if ctrl is None:
            return
        path = self.route("ctrl", self.anchor, ctrl)
        for i, step in enumerate(path[: self.cfg.spur_steps]):
            if self.road_ok(step.pos):
                self.emit(StructureKind.ROAD, step.pos, 83.2 - i * 0.1, "spur:controller", urgent=self.low)

    def feature_roads(self) -> None:
        routes = [(f"src:{s.id}", s.pos, 62.0) for s in sorted(self.snap.sources, key=lambda s: s.id)]
        if self.snap.controller is not None:
            routes.append(("ctrl", self.snap.controller, 58.0))
        if self.snap.mineral is not None and self.level >= 6:
            routes.append(("mineral", self.snap.mineral, 50.0))

        endpoints = []
        for key, goal, base in routes:
            path = self.route(key, self.anchor, goal)
            for i, step in enumerate(path):
                if self.road_ok(step.pos):
                    self.emit(StructureKind.ROAD, step.pos, base - i * 0.05, f"road:{key}")
            if path:
                endpoints.append(path[-1].pos)

        for end in endpoints:
            for dx, dy in ((0, -1), (1, 0), (0, 1), (-1, 0)):
                pos = end.offset(dx, dy)
                if self.road_ok(pos):
                    self.emit(StructureKind.ROAD, pos, 57, "pad")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _infrastructure_ready(self) -> bool:
        return (self.level >= self.cfg.widening_min_level
                and self.snap.energy_capacity >= self.cfg.widening_min_capacity)

    def _slots(self, kind: StructureKind, candidates: Iterable[RoomPosition], need: int) -> List[RoomPosition]:
        out: List[RoomPosition] = []
        for pos in candidates:
            if len(out) >= need:
                break
            if self.snap.has_structure(pos, kind):
                continue
            if self.slot_ok(kind, pos):
                out.append(pos)
                self.claimed.add(pos)
        return out

    def _single_slot(self, kind: StructureKind, slot: Optional[RoomPosition], r_min: int, r_max: int) -> Optional[RoomPosition]:
        if slot is not None and self.slot_ok(kind, slot):
            return slot
        return self.search_free(kind, self.anchor, r_min, r_max)

    def _container_spot(self, center: RoomPosition, radius: int) -> Optional[RoomPosition]:
        ring = [p for r in range(1, radius + 1) for p in chebyshev_ring(center, r)]
        usable = [
            p for p in ring
            if self._base_ok(p) and p not in self.claimed and p not in self.reserved
            and not self.snap.sites_at(p)
            and all(can_share_tile(StructureKind.CONTAINER, s.kind) for s in self.snap.structures_at(p))
        ]
        # Prefer untouched ground over tiles already carrying a road/rampart
        for p in usable:
            if not self.snap.structures_at(p):
                return p
        return usable[0] if usable else None

    def _link_targets(self, band: RangeBand) -> List[RoomPosition]:
        if band.target == "storage":
            built = [s.pos for s in self.snap.of_kind(StructureKind.STORAGE)]
            if built:
                return built[:1]
            return [self.layout.storage] if self.layout.storage is not None else []
        if band.target == "controller":
            return [self.snap.controller] if self.snap.controller is not None else []
        return [s.pos for s in sorted(self.snap.sources, key=lambda s: s.id)]

    def _link_near(self, target: RoomPosition, radius: int) -> bool:
        if self.snap.kinds_near(target, radius, [StructureKind.LINK]):
            return True
        return any(t.kind == StructureKind.LINK and t.position.range_to(target) <= radius
                   for t in self.tasks)

    def _link_slot(self, target: RoomPosition, band: RangeBand) -> Optional[RoomPosition]:
        for pos in self.layout.links:
            r = pos.range_to(target)
            if band.min_range <= r <= band.max_range and self.slot_ok(StructureKind.LINK, pos):
                return pos
        for radius in range(band.min_range, band.max_range + 1):
            for pos in chebyshev_ring(target, radius):
                if self.free_ok(StructureKind.LINK, pos):
                    return pos
        return None

    def _extension_candidates(self) -> Iterable[RoomPosition]:
        seen: Set[RoomPosition] = set()
        for pos in self.layout.extensions:
            if pos in seen:
                continue
            seen.add(pos)
            if not self.snap.has_structure(pos, StructureKind.EXTENSION) \
                    and self.slot_ok(StructureKind.EXTENSION, pos):
                yield pos
        for radius in range(self.cfg.extension_search_min, self.cfg.extension_search_max + 1):
            for pos in chebyshev_ring(self.anchor, radius):
                if pos in seen:
                    continue
                seen.add(pos)
                if self.free_ok(StructureKind.EXTENSION, pos) and not self.snap.structures_at(pos):
                    yield pos

    def _reroute_around(
        self,
        blocked: RoomPosition,
        routes: Dict[RoomPosition, List[RoomPosition]],
        cost: np.ndarray,
    ) -> bool:
        """
        Re-search every accepted extension whose route crosses `blocked`.
        False when one of them can no longer be reached; routes are only
        updated when all of them still can.
        """
        rerouted: Dict[RoomPosition, List[RoomPosition]] = {}
        for ext, path in routes.items():
            if blocked not in path:
                continue
            result = search(self.anchor, ext, cost, range_=1, max_ops=self.cfg.reach_max_ops)
            if result.incomplete:
                return False
            rerouted[ext] = result.path
        routes.update(rerouted)
        return True

    def _has_open_neighbour(self, pos: RoomPosition, accepted: List[RoomPosition]) -> bool:
        taken = set(accepted)
        for n in pos.neighbours():
            if n in taken or n in self.claimed:
                continue
            if self.snap.terrain.is_wall(n) or self.snap.is_feature(n):
                continue
            if all(s.kind in WALKABLE_KINDS for s in self.snap.structures_at(n)):
                return True
        return False
