"""
PathCache — memoised anchor-to-feature routes.

Road tasks toward sources, the controller and the mineral are re-derived on
every invocation, but the routes behind them almost never change. Routes are
stored per room under the `paths` repository key as plain records:

    {route_key: {"origin": [x, y], "path": [[x, y], ...], "time": tick}}

A record is reused while its origin still matches and it is younger than
the TTL; otherwise one bounded search is run and the record replaced. The
step list handed back is rebuilt from coordinates on every read (dx, dy and
direction are derived, never stored).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from FoundryBot.logger import get_logger
from FoundryBot.planning.pathfinder import PathStep, search, steps_from_positions
from FoundryBot.room_state import RoomPosition
from FoundryBot.storage import (
    PATHS_KEY,
    KeyValueRepository,
    position_from_record,
    position_to_record,
    positions_from_record,
    positions_to_record,
)

log = get_logger()


@dataclass
class PathCacheConfig:
    ttl: int = 5000             # ticks before a route is searched again
    range_: int = 1             # stop adjacent to the goal
    max_ops: int = 2000         # search node budget
    max_entries: int = 80       # per room; oldest routes evicted first


class PathCache:

    def __init__(self, repo: KeyValueRepository, config: Optional[PathCacheConfig] = None) -> None:
        self.repo = repo
        self.cfg = config or PathCacheConfig()
        self.searches = 0       # underlying searches run, for diagnostics and tests
        self.hits = 0

    def get_path(
        self,
        room: str,
        route_key: str,
        origin: RoomPosition,
        goal: RoomPosition,
        tick: int,
        cost_factory: Callable[[], np.ndarray],
    ) -> List[PathStep]:
        """
        Route from origin to within range of goal. `cost_factory` is only
        called on a miss, so hits never pay for building a cost matrix.
        """
        records: Dict[str, dict] = self.repo.get(room, PATHS_KEY, {})
        record = records.get(route_key)

        if record is not None and self._is_fresh(record, origin, tick):
            self.hits += 1
            return steps_from_positions(origin, positions_from_record(record.get("path")))

        self.searches += 1
        result = search(origin, goal, cost_factory(), range_=self.cfg.range_, max_ops=self.cfg.max_ops)
        if result.incomplete:
            log.debug(
                "PathCache: %s %s incomplete after %d ops (%d steps kept)",
                room, route_key, result.ops, len(result.path),
                tick=tick,
            )
        if not result.path:
            records.pop(route_key, None)
            self.repo.set(room, PATHS_KEY, records)
            return []

        records[route_key] = {
            "origin": position_to_record(origin),
            "path": positions_to_record(result.path),
            "time": tick,
        }
        self._prune(records)
        self.repo.set(room, PATHS_KEY, records)
        return steps_from_positions(origin, result.path)

    def invalidate(self, room: str) -> None:
        self.repo.delete(room, PATHS_KEY)

    def _is_fresh(self, record: dict, origin: RoomPosition, tick: int) -> bool:
        if position_from_record(record.get("origin")) != origin:
            return False
        return tick - int(record.get("time", 0)) <= self.cfg.ttl

    def _prune(self, records: Dict[str, dict]) -> None:
        excess = len(records) - self.cfg.max_entries
        if excess <= 0:
            return
        oldest = sorted(records, key=lambda k: records[k].get("time", 0))[:excess]
        for key in oldest:
            del records[key]
