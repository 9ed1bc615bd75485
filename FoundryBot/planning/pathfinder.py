"""
Bounded grid search over a room cost matrix.

A cost matrix is a 50×50 uint8 numpy grid indexed [y, x]; IMPASSABLE (255)
marks tiles that can never be entered. search() is an 8-connected A* with a
Chebyshev heuristic scaled by the cheapest step cost, stopping as soon as a
node within `range_` of the goal is popped or `max_ops` nodes have been
expanded. An exhausted search still returns the path to the node that got
closest, flagged incomplete, so callers can decide whether a partial route
is useful.
"""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from FoundryBot.room_state import (
    ROOM_SIZE,
    TERRAIN_SWAMP,
    TERRAIN_WALL,
    WALKABLE_KINDS,
    RoomPosition,
    RoomSnapshot,
    StructureKind,
)

IMPASSABLE = 255

# (dx, dy) → direction code, clockwise from north
DIRECTIONS = {
    (0, -1): 1, (1, -1): 2, (1, 0): 3, (1, 1): 4,
    (0, 1): 5, (-1, 1): 6, (-1, 0): 7, (-1, -1): 8,
}
_NEIGHBOUR_DELTAS = list(DIRECTIONS.keys())


@dataclass(frozen=True)
class PathStep:
    x: int
    y: int
    dx: int
    dy: int
    direction: int

    @property
    def pos(self) -> RoomPosition:
        return RoomPosition(self.x, self.y)


@dataclass
class SearchResult:
    path: List[RoomPosition] = field(default_factory=list)
    ops: int = 0
    incomplete: bool = False
    cost: int = 0


def steps_from_positions(origin: RoomPosition, positions: Iterable[RoomPosition]) -> List[PathStep]:
    """Annotate a bare coordinate list with per-step deltas and directions."""
    steps = []
    prev = origin
    for pos in positions:
        dx = pos.x - prev.x
        dy = pos.y - prev.y
        steps.append(PathStep(pos.x, pos.y, dx, dy, DIRECTIONS.get((dx, dy), 0)))
        prev = pos
    return steps


def build_cost_matrix(
    snapshot: RoomSnapshot,
    plain_cost: int = 2,
    swamp_cost: int = 5,
    road_cost: int = 1,
    avoid: Optional[Iterable[RoomPosition]] = None,
    avoid_cost: int = 20,
    block_structures: bool = True,
    obstacles: Optional[Iterable[RoomPosition]] = None,
) -> np.ndarray:
    """
    Terrain costs overlaid with what is built.

    avoid      : tiles to route around when possible (planned structures).
    obstacles  : tiles treated as impassable in addition to walls.
    """
    grid = snapshot.terrain.grid
    cost = np.full((ROOM_SIZE, ROOM_SIZE), plain_cost, dtype=np.uint8)
    cost[grid == TERRAIN_SWAMP] = swamp_cost
    cost[grid == TERRAIN_WALL] = IMPASSABLE

    for s in snapshot.structures:
        if s.kind == StructureKind.ROAD:
            if cost[s.pos.y, s.pos.x] != IMPASSABLE:
                cost[s.pos.y, s.pos.x] = road_cost
        elif block_structures and s.kind not in WALKABLE_KINDS:
            cost[s.pos.y, s.pos.x] = IMPASSABLE

    # Sources, controller and mineral are solid objects
    features = [src.pos for src in snapshot.sources]
    features += [p for p in (snapshot.controller, snapshot.mineral) if p is not None]
    for pos in features:
        cost[pos.y, pos.x] = IMPASSABLE

    for pos in avoid or ():
        current = cost[pos.y, pos.x]
        if current != IMPASSABLE and current < avoid_cost:
            cost[pos.y, pos.x] = avoid_cost

    for pos in obstacles or ():
        cost[pos.y, pos.x] = IMPASSABLE

    return cost


def search(
    origin: RoomPosition,
    goal: RoomPosition,
    cost: np.ndarray,
    range_: int = 1,
    max_ops: int = 2000,
) -> SearchResult:
    """A* from origin to any tile within `range_` of goal. Origin is not in the path."""
    if origin.range_to(goal) <= range_:
        return SearchResult()

    min_step = max(1, int(cost[cost != IMPASSABLE].min())) if np.any(cost != IMPASSABLE) else 1

    def heuristic(p: RoomPosition) -> int:
        return max(0, p.range_to(goal) - range_) * min_step

    g_score: Dict[RoomPosition, int] = {origin: 0}
    came_from: Dict[RoomPosition, RoomPosition] = {}
    counter = 0
    open_heap = [(heuristic(origin), counter, origin)]
    closed = set()
    best = origin
    best_h = heuristic(origin)
    ops = 0

    while open_heap:
        _, _, current = heapq.heappop(open_heap)
        if current in closed:
            continue
        closed.add(current)

        if current.range_to(goal) <= range_:
            return SearchResult(_reconstruct(came_from, current), ops, False, g_score[current])

        ops += 1
        if ops > max_ops:
            break

        h = heuristic(current)
        if h < best_h:
            best, best_h = current, h

        for dx, dy in _NEIGHBOUR_DELTAS:
            nx, ny = current.x + dx, current.y + dy
            if not (0 <= nx < ROOM_SIZE and 0 <= ny < ROOM_SIZE):
                continue
            step = int(cost[ny, nx])
            if step == IMPASSABLE:
                continue
            nxt = RoomPosition(nx, ny)
            if nxt in closed:
                continue
            tentative = g_score[current] + step
            if tentative < g_score.get(nxt, 1 << 30):
                g_score[nxt] = tentative
                came_from[nxt] = current
                counter += 1
                heapq.heappush(open_heap, (tentative + heuristic(nxt), counter, nxt))

    return SearchResult(_reconstruct(came_from, best), ops, True, g_score.get(best, 0))


def _reconstruct(came_from: Dict[RoomPosition, RoomPosition], end: RoomPosition) -> List[RoomPosition]:
    path = []
    node = end
    while node in came_from:
        path.append(node)
        node = came_from[node]
    path.reverse()
    return path


def reachable_from(origin: RoomPosition, cost: np.ndarray, max_ops: int = 2000) -> Set[RoomPosition]:
    """Tiles a breadth-first flood from origin reaches within `max_ops` expansions."""
    seen = {origin}
    frontier = deque([origin])
    ops = 0
    while frontier and ops < max_ops:
        current = frontier.popleft()
        ops += 1
        for dx, dy in _NEIGHBOUR_DELTAS:
            nx, ny = current.x + dx, current.y + dy
            if not (0 <= nx < ROOM_SIZE and 0 <= ny < ROOM_SIZE):
                continue
            if int(cost[ny, nx]) == IMPASSABLE:
                continue
            nxt = RoomPosition(nx, ny)
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return seen
