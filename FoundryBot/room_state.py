"""
Room model — the read-only world snapshot every planner stage consumes.

Responsibility
--------------
Everything the planner knows about a room for one invocation lives in a
RoomSnapshot: terrain, structures, queued construction sites, strategic
features (sources, controller, mineral) and the handful of economic and
threat scalars the scheduling policies key off. The snapshot is built by
the host (or by FoundryBot.simulation in tests and the CLI) and is never
mutated by the planner.

Coordinates
-----------
Rooms are 50×50 tiles. Terrain grids are numpy arrays indexed [y, x] so
that row slices read the way the room is drawn. RoomPosition values are
(x, y) and compare by value. "Range" is always Chebyshev distance, which
is how movement cost works on an 8-connected grid.

Structure caps
--------------
CONTROLLER_STRUCTURES is the per-controller-level cap table. Use
structure_cap(kind, level) rather than indexing it directly; kinds with no
entry are capped at zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np


# ---------------------------------------------------------------------------
# Geometry constants
# ---------------------------------------------------------------------------

ROOM_SIZE = 50

TERRAIN_PLAIN = 0
TERRAIN_WALL  = 1
TERRAIN_SWAMP = 2


# ---------------------------------------------------------------------------
# RoomPosition
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class RoomPosition:
    x: int
    y: int

    @property
    def key(self) -> str:
        """Stable "x:y" string used for persisted dict keys."""
        return f"{self.x}:{self.y}"

    @property
    def in_bounds(self) -> bool:
        """Strictly inside the room edge (edge tiles are exits)."""
        return 0 < self.x < ROOM_SIZE - 1 and 0 < self.y < ROOM_SIZE - 1

    def offset(self, dx: int, dy: int) -> "RoomPosition":
        return RoomPosition(self.x + dx, self.y + dy)

    def range_to(self, other: "RoomPosition") -> int:
        return max(abs(self.x - other.x), abs(self.y - other.y))

    def neighbours(self) -> List["RoomPosition"]:
        return [
            RoomPosition(self.x + dx, self.y + dy)
            for dx in (-1, 0, 1)
            for dy in (-1, 0, 1)
            if dx or dy
        ]

    @classmethod
    def from_key(cls, key: str) -> "RoomPosition":
        x, y = key.split(":")
        return cls(int(x), int(y))

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


def chebyshev_ring(center: RoomPosition, radius: int) -> List[RoomPosition]:
    """All tiles at exactly `radius` from center, scanned dx-outer, dy-inner."""
    if radius == 0:
        return [center]
    ring = []
    for dx in range(-radius, radius + 1):
        for dy in range(-radius, radius + 1):
            if max(abs(dx), abs(dy)) == radius:
                ring.append(center.offset(dx, dy))
    return ring


# ---------------------------------------------------------------------------
# Structure kinds and caps
# ---------------------------------------------------------------------------

class StructureKind(str, Enum):
    SPAWN       = "spawn"
    EXTENSION   = "extension"
    ROAD        = "road"
    WALL        = "constructedWall"
    RAMPART     = "rampart"
    LINK        = "link"
    STORAGE     = "storage"
    TOWER       = "tower"
    OBSERVER    = "observer"
    POWER_SPAWN = "powerSpawn"
    EXTRACTOR   = "extractor"
    LAB         = "lab"
    TERMINAL    = "terminal"
    CONTAINER   = "container"
    NUKER       = "nuker"
    FACTORY     = "factory"


# Structures units can stand on. Everything else blocks movement.
WALKABLE_KINDS = frozenset({
    StructureKind.ROAD,
    StructureKind.CONTAINER,
    StructureKind.RAMPART,
})

def can_share_tile(kind: StructureKind, occupant: StructureKind) -> bool:
    """
    Whether a `kind` site may go on a tile already holding `occupant`.

    Ramparts go over anything except walls and other ramparts. Roads and
    containers may sit under ramparts and with each other. Everything else
    only tolerates a rampart on top.
    """
    if kind == StructureKind.RAMPART:
        return occupant not in (StructureKind.RAMPART, StructureKind.WALL)
    if kind in (StructureKind.ROAD, StructureKind.CONTAINER):
        # Road + container share; ramparts cover both
        return occupant in (StructureKind.RAMPART, StructureKind.ROAD, StructureKind.CONTAINER) \
            and occupant != kind
    return occupant == StructureKind.RAMPART


# Index = controller level 0..8
_LATE_GAME = [0, 0, 0, 0, 0, 0, 0, 0, 1]

CONTROLLER_STRUCTURES: Dict[StructureKind, List[int]] = {
    StructureKind.SPAWN:       [1, 1, 1, 1, 1, 1, 1, 2, 3],
    StructureKind.EXTENSION:   [0, 0, 5, 10, 20, 30, 40, 50, 60],
    StructureKind.TOWER:       [0, 0, 0, 1, 1, 2, 2, 3, 6],
    StructureKind.LINK:        [0, 0, 0, 0, 0, 2, 3, 4, 6],
    StructureKind.LAB:         [0, 0, 0, 0, 0, 0, 3, 6, 10],
    StructureKind.STORAGE:     [0, 0, 0, 0, 1, 1, 1, 1, 1],
    StructureKind.TERMINAL:    [0, 0, 0, 0, 0, 0, 1, 1, 1],
    StructureKind.EXTRACTOR:   [0, 0, 0, 0, 0, 0, 1, 1, 1],
    StructureKind.FACTORY:     [0, 0, 0, 0, 0, 0, 0, 1, 1],
    StructureKind.POWER_SPAWN: _LATE_GAME,
    StructureKind.NUKER:       _LATE_GAME,
    StructureKind.OBSERVER:    _LATE_GAME,
    StructureKind.CONTAINER:   [5] * 9,
    StructureKind.ROAD:        [2500] * 9,
    StructureKind.RAMPART:     [0, 0, 2500, 2500, 2500, 2500, 2500, 2500, 2500],
    StructureKind.WALL:        [0, 0, 2500, 2500, 2500, 2500, 2500, 2500, 2500],
}

MAX_CONTROLLER_LEVEL = 8


def structure_cap(kind: StructureKind, level: int) -> int:
    """How many `kind` structures a room at controller `level` may hold."""
    table = CONTROLLER_STRUCTURES.get(kind)
    if table is None:
        return 0
    level = max(0, min(MAX_CONTROLLER_LEVEL, level))
    return table[level]


# ---------------------------------------------------------------------------
# Terrain
# ---------------------------------------------------------------------------

class Terrain:
    """
    Static 50×50 terrain mask (plain / swamp / wall), stored as a uint8
    numpy grid indexed [y, x].
    """

    _CHARS = {".": TERRAIN_PLAIN, "#": TERRAIN_WALL, "~": TERRAIN_SWAMP}

    def __init__(self, grid: np.ndarray) -> None:
        if grid.shape != (ROOM_SIZE, ROOM_SIZE):
            raise ValueError(f"terrain must be {ROOM_SIZE}x{ROOM_SIZE}, got {grid.shape}")
        self.grid = grid.astype(np.uint8, copy=False)

    @classmethod
    def open(cls) -> "Terrain":
        """Plain room with a solid wall border, the way real rooms look without exits."""
        grid = np.zeros((ROOM_SIZE, ROOM_SIZE), dtype=np.uint8)
        grid[0, :] = grid[-1, :] = TERRAIN_WALL
        grid[:, 0] = grid[:, -1] = TERRAIN_WALL
        return cls(grid)

    @classmethod
    def from_rows(cls, rows: Sequence[str]) -> "Terrain":
        """Build from 50 strings of '.', '#' and '~'."""
        if len(rows) != ROOM_SIZE:
            raise ValueError(f"expected {ROOM_SIZE} terrain rows, got {len(rows)}")
        grid = np.zeros((ROOM_SIZE, ROOM_SIZE), dtype=np.uint8)
        for y, row in enumerate(rows):
            if len(row) != ROOM_SIZE:
                raise ValueError(f"terrain row {y} has {len(row)} columns")
            for x, ch in enumerate(row):
                grid[y, x] = cls._CHARS.get(ch, TERRAIN_PLAIN)
        return cls(grid)

    def to_rows(self) -> List[str]:
        chars = {v: k for k, v in self._CHARS.items()}
        return ["".join(chars[int(v)] for v in row) for row in self.grid]

    def is_wall(self, pos: RoomPosition) -> bool:
        if not (0 <= pos.x < ROOM_SIZE and 0 <= pos.y < ROOM_SIZE):
            return True
        return int(self.grid[pos.y, pos.x]) == TERRAIN_WALL

    def is_swamp(self, pos: RoomPosition) -> bool:
        if not (0 <= pos.x < ROOM_SIZE and 0 <= pos.y < ROOM_SIZE):
            return False
        return int(self.grid[pos.y, pos.x]) == TERRAIN_SWAMP

    def walls_within(self, pos: RoomPosition, radius: int) -> int:
        """Wall tiles inside the (2r+1)² box around pos, clipped to the room."""
        y0 = max(0, pos.y - radius)
        y1 = min(ROOM_SIZE, pos.y + radius + 1)
        x0 = max(0, pos.x - radius)
        x1 = min(ROOM_SIZE, pos.x + radius + 1)
        patch = self.grid[y0:y1, x0:x1]
        return int(np.count_nonzero(patch == TERRAIN_WALL))


# ---------------------------------------------------------------------------
# Snapshot records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Structure:
    kind: StructureKind
    pos: RoomPosition


@dataclass(frozen=True)
class ConstructionSite:
    kind: StructureKind
    pos: RoomPosition


@dataclass(frozen=True)
class Source:
    id: str
    pos: RoomPosition


@dataclass(frozen=True)
class UnitSighting:
    """One moving unit seen this tick. Feeds the traffic tracker."""
    id: str
    pos: RoomPosition


@dataclass
class RoomSnapshot:
    """
    Everything the planner reads about one room for one invocation.

    Fields
    ------
    name : str
        Room name, also the repository namespace.
    tick : int
        Game tick the snapshot was taken on.
    terrain : Terrain
    controller : RoomPosition | None
        None for rooms we do not own a controller in (never planned).
    controller_level : int
        0..8.
    structures / sites : list
        Built structures and queued construction sites.
    sources : list[Source]
    mineral : RoomPosition | None
    energy_available / energy_capacity : int
        Spawn-side energy, used for the energy ratio.
    energy_stored : int
        Banked energy (storage + containers).
    net_energy_trend : float
        Income minus spend per tick, smoothed by the host. Negative = bleeding.
    economy_efficiency : float
        0..1 harvesting efficiency estimate.
    threat_score : float
        0..100, higher = more danger. Owned by an external combat module.
    builder_count : int
        Builder agents assigned to this room.
    units : list[UnitSighting]
        Moving units seen this tick.
    """
    name: str
    tick: int
    terrain: Terrain
    controller: Optional[RoomPosition] = None
    controller_level: int = 0
    structures: List[Structure] = field(default_factory=list)
    sites: List[ConstructionSite] = field(default_factory=list)
    sources: List[Source] = field(default_factory=list)
    mineral: Optional[RoomPosition] = None
    energy_available: int = 0
    energy_capacity: int = 0
    energy_stored: int = 0
    net_energy_trend: float = 0.0
    economy_efficiency: float = 1.0
    threat_score: float = 0.0
    builder_count: int = 0
    units: List[UnitSighting] = field(default_factory=list)

    _structures_by_pos: Dict[RoomPosition, List[Structure]] = field(
        default_factory=dict, init=False, repr=False, compare=False)
    _sites_by_pos: Dict[RoomPosition, List[ConstructionSite]] = field(
        default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for s in self.structures:
            self._structures_by_pos.setdefault(s.pos, []).append(s)
        for c in self.sites:
            self._sites_by_pos.setdefault(c.pos, []).append(c)

    # ── Economy ──────────────────────────────────────────────────────────────

    @property
    def energy_ratio(self) -> float:
        if self.energy_capacity <= 0:
            return 0.0
        return self.energy_available / self.energy_capacity

    # ── Spatial lookups ──────────────────────────────────────────────────────

    def structures_at(self, pos: RoomPosition) -> List[Structure]:
        return self._structures_by_pos.get(pos, [])

    def sites_at(self, pos: RoomPosition) -> List[ConstructionSite]:
        return self._sites_by_pos.get(pos, [])

    def has_structure(self, pos: RoomPosition, kind: StructureKind) -> bool:
        return any(s.kind == kind for s in self.structures_at(pos))

    def has_site(self, pos: RoomPosition, kind: StructureKind) -> bool:
        return any(c.kind == kind for c in self.sites_at(pos))

    def is_walkable(self, pos: RoomPosition) -> bool:
        """Not a wall and not occupied by a blocking structure."""
        if self.terrain.is_wall(pos):
            return False
        return all(s.kind in WALKABLE_KINDS for s in self.structures_at(pos))

    def is_feature(self, pos: RoomPosition) -> bool:
        """Source, controller or mineral tile (never buildable)."""
        if pos == self.controller or pos == self.mineral:
            return True
        return any(src.pos == pos for src in self.sources)

    # ── Counting ─────────────────────────────────────────────────────────────

    def of_kind(self, kind: StructureKind) -> List[Structure]:
        return [s for s in self.structures if s.kind == kind]

    def sites_of_kind(self, kind: StructureKind) -> List[ConstructionSite]:
        return [c for c in self.sites if c.kind == kind]

    def count(self, kind: StructureKind) -> int:
        return sum(1 for s in self.structures if s.kind == kind)

    def queued(self, kind: StructureKind) -> int:
        return sum(1 for c in self.sites if c.kind == kind)

    def kinds_near(
        self,
        pos: RoomPosition,
        radius: int,
        kinds: Iterable[StructureKind],
        include_sites: bool = True,
    ) -> bool:
        """True if any structure (or site) of `kinds` lies within `radius` of pos."""
        wanted = set(kinds)
        for s in self.structures:
            if s.kind in wanted and s.pos.range_to(pos) <= radius:
                return True
        if include_sites:
            for c in self.sites:
                if c.kind in wanted and c.pos.range_to(pos) <= radius:
                    return True
        return False

    def first_spawn(self) -> Optional[RoomPosition]:
        spawns = self.of_kind(StructureKind.SPAWN)
        return spawns[0].pos if spawns else None
