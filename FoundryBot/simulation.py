"""
Simulated host — an in-memory world the planner can drive end to end.

SimulatedHost implements ConstructionHost over a set of SimRooms, builds
RoomSnapshots from them, and advances construction each tick at a fixed
rate per builder. run.py uses it to play out a colony; the test suite uses
it as the fake host behind the executor.

Placement rules mirror the live platform closely enough for scheduling:
a global site limit (FULL), and INVALID_TARGET for walls, feature tiles,
occupied tiles, existing sites and anything over the controller-level cap.

synthetic_room() produces a reproducible room from a seed: a walled border,
a few wall blobs away from the centre, two sources, a controller and a
mineral on plain ground.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from FoundryBot.construction.host import ConstructionHost, PlacementResult
from FoundryBot.construction.tasks import ESTIMATED_COST
from FoundryBot.logger import get_logger
from FoundryBot.planning.pathfinder import build_cost_matrix, search
from FoundryBot.room_state import (
    ROOM_SIZE,
    TERRAIN_SWAMP,
    TERRAIN_WALL,
    ConstructionSite,
    RoomPosition,
    RoomSnapshot,
    Source,
    Structure,
    StructureKind,
    Terrain,
    UnitSighting,
    can_share_tile,
    structure_cap,
)

log = get_logger()

# Energy capacity contributed per structure
_SPAWN_ENERGY = 300
_EXTENSION_ENERGY = 50


@dataclass
class SimSite:
    kind: StructureKind
    pos: RoomPosition
    progress: int = 0

    @property
    def total(self) -> int:
        return max(1, ESTIMATED_COST.get(self.kind, 1000))


@dataclass
class Walker:
    """A unit shuttling back and forth along a fixed route."""
    id: str
    route: List[RoomPosition]
    index: int = 0
    step: int = 1

    @property
    def pos(self) -> RoomPosition:
        return self.route[self.index]

    def advance(self) -> None:
        if len(self.route) < 2:
            return
        nxt = self.index + self.step
        if not 0 <= nxt < len(self.route):
            self.step = -self.step
            nxt = self.index + self.step
        self.index = nxt


@dataclass
class SimRoom:
    name: str
    terrain: Terrain
    controller: RoomPosition
    sources: List[Source]
    mineral: Optional[RoomPosition] = None
    controller_level: int = 1
    structures: List[Structure] = field(default_factory=list)
    sites: List[SimSite] = field(default_factory=list)
    energy_stored: int = 0
    net_energy_trend: float = 0.0
    economy_efficiency: float = 1.0
    energy_fill: float = 1.0            # fraction of capacity available
    threat_score: float = 0.0
    builder_count: int = 2
    walkers: List[Walker] = field(default_factory=list)

    @property
    def energy_capacity(self) -> int:
        spawns = sum(1 for s in self.structures if s.kind == StructureKind.SPAWN)
        extensions = sum(1 for s in self.structures if s.kind == StructureKind.EXTENSION)
        return spawns * _SPAWN_ENERGY + extensions * _EXTENSION_ENERGY


class SimulatedHost(ConstructionHost):

    def __init__(self, site_limit: int = 100, build_per_builder: int = 10) -> None:
        self.rooms: Dict[str, SimRoom] = {}
        self.site_limit = site_limit
        self.build_per_builder = build_per_builder
        self.calls: List[tuple] = []        # (verb, room, pos, kind) audit trail

    def add_room(self, room: SimRoom) -> SimRoom:
        self.rooms[room.name] = room
        return room

    # ── ConstructionHost ──────────────────────────────────────────────────────

    def create_site(self, room: str, pos: RoomPosition, kind: StructureKind) -> PlacementResult:
        self.calls.append(("create", room, pos, kind))
        sim = self.rooms.get(room)
        if sim is None:
            return PlacementResult.INVALID_TARGET
        if self.outstanding_sites() >= self.site_limit:
            return PlacementResult.FULL
        if not pos.in_bounds or any(s.pos == pos for s in sim.sites):
            return PlacementResult.INVALID_TARGET

        occupants = [s for s in sim.structures if s.pos == pos]
        if kind == StructureKind.EXTRACTOR:
            if pos != sim.mineral or occupants:
                return PlacementResult.INVALID_TARGET
        else:
            if sim.terrain.is_wall(pos) or pos == sim.controller or pos == sim.mineral:
                return PlacementResult.INVALID_TARGET
            if any(src.pos == pos for src in sim.sources):
                return PlacementResult.INVALID_TARGET
            if not all(can_share_tile(kind, s.kind) for s in occupants):
                return PlacementResult.INVALID_TARGET

        have = sum(1 for s in sim.structures if s.kind == kind) + sum(1 for c in sim.sites if c.kind == kind)
        if have >= structure_cap(kind, sim.controller_level):
            return PlacementResult.INVALID_TARGET

        sim.sites.append(SimSite(kind, pos))
        return PlacementResult.OK

    def destroy_structure(self, room: str, pos: RoomPosition, kind: StructureKind) -> bool:
        self.calls.append(("destroy", room, pos, kind))
        sim = self.rooms.get(room)
        if sim is None:
            return False
        before = len(sim.structures)
        sim.structures = [s for s in sim.structures if not (s.pos == pos and s.kind == kind)]
        return len(sim.structures) < before

    def cancel_site(self, room: str, pos: RoomPosition, kind: StructureKind) -> bool:
        self.calls.append(("cancel", room, pos, kind))
        sim = self.rooms.get(room)
        if sim is None:
            return False
        before = len(sim.sites)
        sim.sites = [c for c in sim.sites if not (c.pos == pos and c.kind == kind)]
        return len(sim.sites) < before

    def outstanding_sites(self) -> int:
        return sum(len(r.sites) for r in self.rooms.values())

    # ── World helpers ─────────────────────────────────────────────────────────

    def place_structure(self, room: str, pos: RoomPosition, kind: StructureKind) -> None:
        """Test/setup helper: put a finished structure straight onto the map."""
        self.rooms[room].structures.append(Structure(kind, pos))

    def snapshot(self, room: str, tick: int) -> RoomSnapshot:
        sim = self.rooms[room]
        capacity = sim.energy_capacity
        return RoomSnapshot(
            name=sim.name,
            tick=tick,
            terrain=sim.terrain,
            controller=sim.controller,
            controller_level=sim.controller_level,
            structures=list(sim.structures),
            sites=[ConstructionSite(c.kind, c.pos) for c in sim.sites],
            sources=list(sim.sources),
            mineral=sim.mineral,
            energy_available=int(capacity * sim.energy_fill),
            energy_capacity=capacity,
            energy_stored=sim.energy_stored,
            net_energy_trend=sim.net_energy_trend,
            economy_efficiency=sim.economy_efficiency,
            threat_score=sim.threat_score,
            builder_count=sim.builder_count,
            units=[UnitSighting(w.id, w.pos) for w in sim.walkers],
        )

    def advance(self, room: str) -> List[SimSite]:
        """One tick of building and walking. Returns the sites finished this tick."""
        sim = self.rooms[room]
        for walker in sim.walkers:
            walker.advance()

        work = sim.builder_count * self.build_per_builder
        finished = []
        while work > 0 and sim.sites:
            site = sim.sites[0]
            spend = min(work, site.total - site.progress)
            site.progress += spend
            work -= spend
            if site.progress >= site.total:
                sim.sites.pop(0)
                sim.structures.append(Structure(site.kind, site.pos))
                finished.append(site)
        return finished

    def spawn_walkers(self, room: str, origin: RoomPosition) -> None:
        """One walker per source, shuttling between origin and the source."""
        sim = self.rooms[room]
        snap = self.snapshot(room, 0)
        cost = build_cost_matrix(snap)
        sim.walkers = []
        for src in sim.sources:
            result = search(origin, src.pos, cost, range_=1)
            route = [origin] + result.path
            sim.walkers.append(Walker(id=f"hauler-{src.id}", route=route))


# ---------------------------------------------------------------------------
# Synthetic rooms
# ---------------------------------------------------------------------------

def synthetic_room(name: str = "W1N1", seed: int = 7, controller_level: int = 1) -> SimRoom:
    rng = np.random.default_rng(seed)
    grid = np.zeros((ROOM_SIZE, ROOM_SIZE), dtype=np.uint8)
    grid[0, :] = grid[-1, :] = TERRAIN_WALL
    grid[:, 0] = grid[:, -1] = TERRAIN_WALL

    # Wall blobs and swamp patches, kept off the central 21×21 box
    for value, blobs in ((TERRAIN_WALL, 6), (TERRAIN_SWAMP, 4)):
        placed = 0
        while placed < blobs:
            cx, cy = (int(v) for v in rng.integers(3, ROOM_SIZE - 3, size=2))
            if abs(cx - 25) <= 10 and abs(cy - 25) <= 10:
                continue
            r = int(rng.integers(2, 4))
            grid[max(1, cy - r):min(ROOM_SIZE - 1, cy + r + 1),
                 max(1, cx - r):min(ROOM_SIZE - 1, cx + r + 1)] = value
            placed += 1

    terrain = Terrain(grid)

    def plain_near(x: int, y: int) -> RoomPosition:
        for radius in range(0, 10):
            for dx in range(-radius, radius + 1):
                for dy in range(-radius, radius + 1):
                    pos = RoomPosition(x + dx, y + dy)
                    if 2 <= pos.x <= 47 and 2 <= pos.y <= 47 and int(grid[pos.y, pos.x]) == 0:
                        return pos
        raise ValueError(f"no plain tile near ({x}, {y})")

    sources = [Source("s0", plain_near(10, 12)), Source("s1", plain_near(40, 36))]
    return SimRoom(
        name=name,
        terrain=terrain,
        controller=plain_near(36, 10),
        sources=sources,
        mineral=plain_near(12, 40),
        controller_level=controller_level,
    )
