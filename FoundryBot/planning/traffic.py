"""
Traffic Tracker — where units actually walk, as a decaying heat grid.

A tile's counter goes up by one each time a unit arrives on it (standing
still does not count). Counters are capped, halved on a fixed cadence and
dropped once they fall under a floor, so the map forgets old routes the
same way a scent trail fades. The executor turns the hottest tiles into
opportunistic road sites.

In memory the counters are a 50×50 numpy grid; at rest they are a sparse
{"x:y": count} record under the room's `traffic` key, trimmed to the
busiest `max_entries` tiles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from FoundryBot.logger import get_logger
from FoundryBot.room_state import (
    ROOM_SIZE,
    RoomPosition,
    RoomSnapshot,
    StructureKind,
    can_share_tile,
)
from FoundryBot.storage import TRAFFIC_KEY, KeyValueRepository

log = get_logger()


@dataclass
class TrafficConfig:
    max_count: int = 1000           # per-tile ceiling
    decay_interval: int = 1000      # ticks between halvings
    floor: int = 5                  # counters below this are dropped after decay
    max_entries: int = 600          # tiles kept at rest


class TrafficTracker:

    def __init__(self, repo: KeyValueRepository, config: Optional[TrafficConfig] = None) -> None:
        self.repo = repo
        self.cfg = config or TrafficConfig()

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #

    def update(self, snapshot: RoomSnapshot) -> None:
        """Record this tick's unit movement and decay if due. Once per tick."""
        state = self._load(snapshot.name)
        grid = state["grid"]
        last_seen: Dict[str, str] = state["last_seen"]

        seen_now = {}
        for unit in snapshot.units:
            key = unit.pos.key
            if last_seen.get(unit.id) != key and unit.pos.in_bounds:
                self._bump(grid, unit.pos)
            seen_now[unit.id] = key
        state["last_seen"] = seen_now

        if snapshot.tick - state["last_decay"] >= self.cfg.decay_interval:
            self._decay(grid)
            state["last_decay"] = snapshot.tick
            log.debug("Traffic decayed in %s (%d tiles left)", snapshot.name,
                      int(np.count_nonzero(grid)), tick=snapshot.tick)

        self._save(snapshot.name, state)

    def record_visit(self, room: str, pos: RoomPosition, times: int = 1) -> None:
        state = self._load(room)
        for _ in range(times):
            self._bump(state["grid"], pos)
        self._save(room, state)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def grid(self, room: str) -> np.ndarray:
        """Dense [y, x] copy of the counters."""
        return self._load(room)["grid"]

    def hot_tiles(
        self,
        snapshot: RoomSnapshot,
        threshold: int,
        limit: int,
        exclude: Optional[Iterable[RoomPosition]] = None,
    ) -> List[RoomPosition]:
        """
        Busiest tiles at or above threshold that could take a road right now,
        hottest first (ties broken by coordinate).
        """
        if limit <= 0:
            return []
        grid = self._load(snapshot.name)["grid"]
        excluded: Set[RoomPosition] = set(exclude or ())

        ys, xs = np.nonzero(grid >= threshold)
        candidates = sorted(
            (RoomPosition(int(x), int(y)) for y, x in zip(ys, xs)),
            key=lambda p: (-int(grid[p.y, p.x]), p.x, p.y),
        )

        out = []
        for pos in candidates:
            if pos in excluded or not self._road_fits(snapshot, pos):
                continue
            out.append(pos)
            if len(out) >= limit:
                break
        return out

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _road_fits(self, snapshot: RoomSnapshot, pos: RoomPosition) -> bool:
        if not pos.in_bounds or snapshot.terrain.is_wall(pos) or snapshot.is_feature(pos):
            return False
        if snapshot.sites_at(pos):
            return False
        return all(can_share_tile(StructureKind.ROAD, s.kind) for s in snapshot.structures_at(pos))

    def _bump(self, grid: np.ndarray, pos: RoomPosition) -> None:
        grid[pos.y, pos.x] = min(self.cfg.max_count, int(grid[pos.y, pos.x]) + 1)

    def _decay(self, grid: np.ndarray) -> None:
        grid //= 2
        grid[grid < self.cfg.floor] = 0

    def _load(self, room: str) -> dict:
        record = self.repo.get(room, TRAFFIC_KEY, {})
        grid = np.zeros((ROOM_SIZE, ROOM_SIZE), dtype=np.int32)
        for key, value in record.get("counts", {}).items():
            pos = RoomPosition.from_key(key)
            grid[pos.y, pos.x] = int(value)
        return {
            "grid": grid,
            "last_decay": int(record.get("last_decay", 0)),
            "last_seen": dict(record.get("last_seen", {})),
        }

    def _save(self, room: str, state: dict) -> None:
        grid = state["grid"]
        ys, xs = np.nonzero(grid)
        entries = sorted(
            ((int(grid[y, x]), int(x), int(y)) for y, x in zip(ys, xs)),
            key=lambda e: (-e[0], e[1], e[2]),
        )[: self.cfg.max_entries]
        self.repo.set(room, TRAFFIC_KEY, {
            "counts": {f"{x}:{y}": c for c, x, y in entries},
            "last_decay": state["last_decay"],
            "last_seen": state["last_seen"],
        })
