"""
Geometric layout templates — pure data, all offsets relative to the anchor.

Each category has exactly one template here; LayoutGenerator walks them in
PLACEMENT_ORDER and knows nothing about the shapes themselves. Offsets are
(dx, dy) with y growing downward.

Core footprint (Chebyshev radius 2):

        -2 -1  0 +1 +2
    -2   S  .  R  .  .
    -1   .  T  R  St .
     0   R  R  A  R  R
    +1   .  S  R  S  .
    +2   .  .  R  .  .

    A anchor (road)   R hub road   St storage   T terminal   S spawn

The redundancy loop is the full Chebyshev ring at radius 3. Towers sit on a
hexagon just outside it, the late-game singletons at the end of each cross
arm, and labs in a compact block to the north-east. Extensions fill
polygonal rings from radius 4 outward; whatever a ring sample hits that is
already reserved is skipped, which is what keeps the categories disjoint.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Tuple

from FoundryBot.room_state import StructureKind

Offset = Tuple[int, int]


@dataclass(frozen=True)
class RingTemplate:
    """Sample points on a circle of `radius` at each angle plus jitter (degrees)."""
    radius: int
    angles: Tuple[float, ...]
    jitter: Tuple[float, ...] = (0.0,)


@dataclass(frozen=True)
class RangeBand:
    """Search tiles at Chebyshev range [min_range, max_range] from a target feature."""
    target: str                 # "storage" | "controller" | "source"
    min_range: int
    max_range: int


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------

CORE_RADIUS = 2

CORE_SINGLETONS: Dict[StructureKind, Offset] = {
    StructureKind.STORAGE:  (1, -1),
    StructureKind.TERMINAL: (-1, -1),
}

SPAWN_OFFSETS: Tuple[Offset, ...] = ((1, 1), (-1, 1), (-2, -2))

HUB_CROSS: Tuple[Offset, ...] = tuple(
    [(0, 0)]
    + [(d, 0) for d in (-2, -1, 1, 2)]
    + [(0, d) for d in (-2, -1, 1, 2)]
)

# Flank tiles either side of each cross arm's outer end
HUB_WIDENING: Tuple[Offset, ...] = (
    (-1, -2), (1, -2), (-1, 2), (1, 2),
    (-2, -1), (-2, 1), (2, -1), (2, 1),
)

LOOP_RADIUS = 3


def loop_offsets(radius: int = LOOP_RADIUS) -> List[Offset]:
    return [
        (dx, dy)
        for dx in range(-radius, radius + 1)
        for dy in range(-radius, radius + 1)
        if max(abs(dx), abs(dy)) == radius
    ]


# ---------------------------------------------------------------------------
# Defence, labs, late game
# ---------------------------------------------------------------------------

TOWER_HEX: Tuple[Offset, ...] = ((0, -5), (4, -3), (4, 3), (0, 5), (-4, 3), (-4, -3))

_LAB_CENTER = (5, -5)
LAB_BLOCK: Tuple[Offset, ...] = tuple(
    [(_LAB_CENTER[0] + dx, _LAB_CENTER[1] + dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1)]
    + [(_LAB_CENTER[0] + 2, _LAB_CENTER[1])]
)

LATE_GAME: Dict[StructureKind, Offset] = {
    StructureKind.FACTORY:     (0, -4),
    StructureKind.POWER_SPAWN: (0, 4),
    StructureKind.OBSERVER:    (4, 0),
    StructureKind.NUKER:       (-4, 0),
}

LINK_BANDS: Tuple[RangeBand, ...] = (
    RangeBand("storage", 1, 1),
    RangeBand("controller", 2, 3),
    RangeBand("source", 2, 2),
)


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------

_HEX = tuple(float(a) for a in range(0, 360, 60))
_HEX_OFFSET = tuple(float(a) for a in range(30, 360, 60))
_EIGHTEEN = tuple(float(a) for a in range(0, 360, 20))

EXTENSION_RINGS: Tuple[RingTemplate, ...] = (
    RingTemplate(4, _HEX),
    RingTemplate(5, _HEX, (-7.5, 0.0, 7.5)),
    RingTemplate(6, _HEX, (-7.5, 0.0, 7.5)),
    RingTemplate(6, _HEX_OFFSET),
    RingTemplate(7, _HEX, (-7.5, 0.0, 7.5)),
    RingTemplate(7, _HEX_OFFSET),
    RingTemplate(8, _EIGHTEEN),
    RingTemplate(9, _EIGHTEEN),
)

EXTENSION_LIMIT = 60


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def ring_offsets(ring: RingTemplate) -> List[Offset]:
    """Integer offsets for one ring, in angle order, duplicates removed."""
    seen = set()
    out = []
    for angle in ring.angles:
        for j in ring.jitter:
            rad = math.radians(angle + j)
            off = (_round_half_up(ring.radius * math.cos(rad)),
                   _round_half_up(ring.radius * math.sin(rad)))
            if off not in seen:
                seen.add(off)
                out.append(off)
    return out


# Reservation order: earlier categories win contested tiles
PLACEMENT_ORDER: Tuple[str, ...] = (
    "core",
    "spawns",
    "hub_roads",
    "loop_roads",
    "towers",
    "labs",
    "late_game",
    "links",
    "extensions",
)
