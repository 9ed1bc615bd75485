"""
LayoutGenerator — turns an anchor into a versioned, persisted base layout.

Responsibility
--------------
Walk the template table (planning/templates.py) in placement order and
assign every structure category its coordinates, rejecting tiles that are
out of the buildable box, walls, strategic features or already reserved by
an earlier category. The result is a LayoutPlan: single-instance slots for
the core and late-game structures, lists for everything else.

Caching
-------
Plans are persisted as plain records under the room's `layout` key and are
reused until one of:
  - the record's `version` differs from LAYOUT_SCHEMA_VERSION
    (the whole record is discarded; there is no partial migration),
  - the record is older than the TTL,
  - the anchor it was built around has changed,
  - an operator cleared it (see ColonyPlanner.request_replan).

The layout always covers the full controller-level-8 footprint so it does
not need regenerating as the controller levels up; the level it was built
at is recorded for diagnostics only.

Ramparts and walls are part of the schema but the templates leave them
empty: ramparts stack over other structures and are derived per invocation
by the task generator instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from FoundryBot.logger import get_logger
from FoundryBot.planning.templates import (
    CORE_SINGLETONS,
    EXTENSION_LIMIT,
    EXTENSION_RINGS,
    HUB_CROSS,
    LAB_BLOCK,
    LATE_GAME,
    LINK_BANDS,
    PLACEMENT_ORDER,
    SPAWN_OFFSETS,
    TOWER_HEX,
    RangeBand,
    loop_offsets,
    ring_offsets,
)
from FoundryBot.room_state import (
    RoomPosition,
    RoomSnapshot,
    StructureKind,
    chebyshev_ring,
)
from FoundryBot.storage import (
    LAYOUT_KEY,
    KeyValueRepository,
    position_from_record,
    position_to_record,
    positions_from_record,
    positions_to_record,
)

log = get_logger()

LAYOUT_SCHEMA_VERSION = 3


@dataclass
class LayoutConfig:
    ttl: int = 10000                    # ticks before the plan is rebuilt
    min_coord: int = 2                  # buildable box (inclusive)
    max_coord: int = 47
    extension_limit: int = EXTENSION_LIMIT


# ---------------------------------------------------------------------------
# LayoutPlan
# ---------------------------------------------------------------------------

_SINGLE_FIELDS: Dict[str, StructureKind] = {
    "storage":     StructureKind.STORAGE,
    "terminal":    StructureKind.TERMINAL,
    "factory":     StructureKind.FACTORY,
    "power_spawn": StructureKind.POWER_SPAWN,
    "nuker":       StructureKind.NUKER,
    "observer":    StructureKind.OBSERVER,
}

_MULTI_FIELDS: Dict[str, StructureKind] = {
    "spawns":     StructureKind.SPAWN,
    "extensions": StructureKind.EXTENSION,
    "towers":     StructureKind.TOWER,
    "labs":       StructureKind.LAB,
    "links":      StructureKind.LINK,
    "roads":      StructureKind.ROAD,
    "ramparts":   StructureKind.RAMPART,
    "walls":      StructureKind.WALL,
}


@dataclass
class LayoutPlan:
    """
    Where everything goes, relative to nothing: all positions are absolute
    room coordinates.

    Invariant: no coordinate appears under two categories.
    """
    anchor: RoomPosition
    version: int = LAYOUT_SCHEMA_VERSION
    generated_at: int = 0
    controller_level: int = 0

    storage: Optional[RoomPosition] = None
    terminal: Optional[RoomPosition] = None
    factory: Optional[RoomPosition] = None
    power_spawn: Optional[RoomPosition] = None
    nuker: Optional[RoomPosition] = None
    observer: Optional[RoomPosition] = None

    spawns: List[RoomPosition] = field(default_factory=list)
    extensions: List[RoomPosition] = field(default_factory=list)
    towers: List[RoomPosition] = field(default_factory=list)
    labs: List[RoomPosition] = field(default_factory=list)
    links: List[RoomPosition] = field(default_factory=list)
    roads: List[RoomPosition] = field(default_factory=list)
    ramparts: List[RoomPosition] = field(default_factory=list)
    walls: List[RoomPosition] = field(default_factory=list)

    def placements(self) -> Iterator[Tuple[StructureKind, RoomPosition]]:
        for name, kind in _SINGLE_FIELDS.items():
            pos = getattr(self, name)
            if pos is not None:
                yield kind, pos
        for name, kind in _MULTI_FIELDS.items():
            for pos in getattr(self, name):
                yield kind, pos

    def positions_for(self, kind: StructureKind) -> List[RoomPosition]:
        return [pos for k, pos in self.placements() if k == kind]

    def structure_tiles(self) -> Set[RoomPosition]:
        """Tiles reserved for anything other than roads."""
        return {pos for kind, pos in self.placements() if kind != StructureKind.ROAD}

    def summary(self) -> str:
        counts = {}
        for kind, _ in self.placements():
            counts[kind.value] = counts.get(kind.value, 0) + 1
        parts = " ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        return f"Layout v{self.version} @ {self.anchor} | {parts}"


# ---------------------------------------------------------------------------
# Record boundary
# ---------------------------------------------------------------------------

def layout_to_record(plan: LayoutPlan) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "version": plan.version,
        "generated_at": plan.generated_at,
        "controller_level": plan.controller_level,
        "anchor": position_to_record(plan.anchor),
    }
    for name in _SINGLE_FIELDS:
        record[name] = position_to_record(getattr(plan, name))
    for name in _MULTI_FIELDS:
        record[name] = positions_to_record(getattr(plan, name))
    return record


def migrate_layout_record(record: Any) -> Optional[Dict[str, Any]]:
    """
    Return a record readable by this schema version, or None to discard.
    Only an exact version match is readable; older layouts are rebuilt.
    """
    if not isinstance(record, dict):
        return None
    if record.get("version") != LAYOUT_SCHEMA_VERSION:
        return None
    return record


def layout_from_record(record: Dict[str, Any]) -> Optional[LayoutPlan]:
    anchor = position_from_record(record.get("anchor"))
    if anchor is None:
        return None
    plan = LayoutPlan(
        anchor=anchor,
        version=int(record.get("version", 0)),
        generated_at=int(record.get("generated_at", 0)),
        controller_level=int(record.get("controller_level", 0)),
    )
    for name in _SINGLE_FIELDS:
        setattr(plan, name, position_from_record(record.get(name)))
    for name in _MULTI_FIELDS:
        setattr(plan, name, positions_from_record(record.get(name)))
    return plan


# ---------------------------------------------------------------------------
# Reservation
# ---------------------------------------------------------------------------

class _Reservation:
    """Tracks claimed tiles while a plan is being built."""

    def __init__(self, snapshot: RoomSnapshot, cfg: LayoutConfig) -> None:
        self.snapshot = snapshot
        self.cfg = cfg
        self.claimed: Dict[RoomPosition, StructureKind] = {}

    def available(self, pos: RoomPosition) -> bool:
        if not (self.cfg.min_coord <= pos.x <= self.cfg.max_coord):
            return False
        if not (self.cfg.min_coord <= pos.y <= self.cfg.max_coord):
            return False
        if self.snapshot.terrain.is_wall(pos) or self.snapshot.is_feature(pos):
            return False
        return pos not in self.claimed

    def claim(self, kind: StructureKind, pos: RoomPosition) -> bool:
        if not self.available(pos):
            return False
        self.claimed[pos] = kind
        return True


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class LayoutGenerator:

    def __init__(self, repo: KeyValueRepository, config: Optional[LayoutConfig] = None) -> None:
        self.repo = repo
        self.cfg = config or LayoutConfig()

    # ── Cached access ─────────────────────────────────────────────────────────

    def get_or_generate(self, snapshot: RoomSnapshot, anchor: RoomPosition) -> LayoutPlan:
        plan = self.load(snapshot.name)
        if plan is not None:
            if plan.anchor != anchor:
                log.info("Layout for %s built around %s, anchor is now %s",
                         snapshot.name, plan.anchor, anchor, tick=snapshot.tick)
            elif snapshot.tick - plan.generated_at > self.cfg.ttl:
                log.debug("Layout for %s expired (age %d)", snapshot.name,
                          snapshot.tick - plan.generated_at, tick=snapshot.tick)
            else:
                return plan

        plan = self.generate(snapshot, anchor)
        self.repo.set(snapshot.name, LAYOUT_KEY, layout_to_record(plan))
        log.plan_event("LAYOUT", f"{snapshot.name} {plan.summary()}", tick=snapshot.tick)
        return plan

    def load(self, room: str) -> Optional[LayoutPlan]:
        raw = self.repo.get(room, LAYOUT_KEY)
        if raw is None:
            return None
        record = migrate_layout_record(raw)
        if record is None:
            log.info("STALE_CACHE: discarding layout for %s (version %s, want %d)",
                     room, raw.get("version") if isinstance(raw, dict) else None,
                     LAYOUT_SCHEMA_VERSION)
            self.repo.delete(room, LAYOUT_KEY)
            return None
        return layout_from_record(record)

    def invalidate(self, room: str) -> None:
        self.repo.delete(room, LAYOUT_KEY)

    # ── Generation ────────────────────────────────────────────────────────────

    def generate(self, snapshot: RoomSnapshot, anchor: RoomPosition) -> LayoutPlan:
        """Pure: same snapshot terrain/features and anchor ⇒ same plan."""
        plan = LayoutPlan(
            anchor=anchor,
            generated_at=snapshot.tick,
            controller_level=snapshot.controller_level,
        )
        res = _Reservation(snapshot, self.cfg)

        steps = {
            "core":       self._place_core,
            "spawns":     self._place_spawns,
            "hub_roads":  self._place_hub_roads,
            "loop_roads": self._place_loop_roads,
            "towers":     self._place_towers,
            "labs":       self._place_labs,
            "late_game":  self._place_late_game,
            "links":      self._place_links,
            "extensions": self._place_extensions,
        }
        for name in PLACEMENT_ORDER:
            steps[name](plan, res, snapshot)
        return plan

    def _place_core(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for kind, (dx, dy) in CORE_SINGLETONS.items():
            pos = plan.anchor.offset(dx, dy)
            if res.claim(kind, pos):
                setattr(plan, _field_for(kind), pos)

    def _place_spawns(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for dx, dy in SPAWN_OFFSETS:
            pos = plan.anchor.offset(dx, dy)
            if res.claim(StructureKind.SPAWN, pos):
                plan.spawns.append(pos)

    def _place_hub_roads(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        self._claim_roads(plan, res, HUB_CROSS)

    def _place_loop_roads(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        self._claim_roads(plan, res, loop_offsets())

    def _claim_roads(self, plan: LayoutPlan, res: _Reservation, offsets) -> None:
        for dx, dy in offsets:
            pos = plan.anchor.offset(dx, dy)
            if res.claim(StructureKind.ROAD, pos):
                plan.roads.append(pos)

    def _place_towers(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for dx, dy in TOWER_HEX:
            pos = plan.anchor.offset(dx, dy)
            if res.claim(StructureKind.TOWER, pos):
                plan.towers.append(pos)

    def _place_labs(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for dx, dy in LAB_BLOCK:
            pos = plan.anchor.offset(dx, dy)
            if res.claim(StructureKind.LAB, pos):
                plan.labs.append(pos)

    def _place_late_game(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for kind, (dx, dy) in LATE_GAME.items():
            pos = plan.anchor.offset(dx, dy)
            if res.claim(kind, pos):
                setattr(plan, _field_for(kind), pos)

    def _place_links(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        for band in LINK_BANDS:
            for target in self._band_targets(band, plan, snapshot):
                pos = self._search_band(target, band, res)
                if pos is not None:
                    res.claim(StructureKind.LINK, pos)
                    plan.links.append(pos)

    def _band_targets(self, band: RangeBand, plan: LayoutPlan, snapshot: RoomSnapshot) -> List[RoomPosition]:
        if band.target == "storage":
            return [plan.storage] if plan.storage is not None else []
        if band.target == "controller":
            return [snapshot.controller] if snapshot.controller is not None else []
        if band.target == "source":
            return [s.pos for s in sorted(snapshot.sources, key=lambda s: s.id)]
        raise ValueError(f"unknown link band target {band.target!r}")

    def _search_band(self, target: RoomPosition, band: RangeBand, res: _Reservation) -> Optional[RoomPosition]:
        for radius in range(band.min_range, band.max_range + 1):
            for pos in chebyshev_ring(target, radius):
                if res.available(pos):
                    return pos
        return None

    def _place_extensions(self, plan: LayoutPlan, res: _Reservation, snapshot: RoomSnapshot) -> None:
        limit = self.cfg.extension_limit
        for ring in EXTENSION_RINGS:
            for dx, dy in ring_offsets(ring):
                if len(plan.extensions) >= limit:
                    return
                pos = plan.anchor.offset(dx, dy)
                if res.claim(StructureKind.EXTENSION, pos):
                    plan.extensions.append(pos)


def _field_for(kind: StructureKind) -> str:
    for name, k in _SINGLE_FIELDS.items():
        if k == kind:
            return name
    raise KeyError(kind)
