"""
AnchorSelector — picks the hub coordinate every layout is built around.

Scoring
-------
Candidates are scanned in an 11×11 box around the room centre (dx outer,
dy inner). A candidate must be walkable and at least `min_edge_distance`
tiles from every edge. Its score is

    2·edge_clearance
  − walls within `wall_radius`
  − 0.1·(range to controller + mean range to sources)
  − 0.2·range to the first spawn

Missing features fall back to default ranges so that a room with no spawn
yet still scores sensibly. The highest score wins; on ties the first
candidate scanned is kept.

Persistence
-----------
The winner is written to the room's `anchor` key as [x, y]. Later calls
reuse it as long as it is still in bounds and not a wall, so the anchor only
moves when someone deletes it (replan) or terrain data changes under it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from FoundryBot.logger import get_logger
from FoundryBot.room_state import ROOM_SIZE, RoomPosition, RoomSnapshot
from FoundryBot.storage import (
    ANCHOR_KEY,
    KeyValueRepository,
    position_from_record,
    position_to_record,
)

log = get_logger()


@dataclass
class AnchorConfig:
    scan_radius: int = 5                # ±tiles around the centre
    min_edge_distance: int = 6          # exits are dangerous and cramped
    wall_radius: int = 4                # wall-density window
    edge_weight: float = 2.0
    feature_weight: float = 0.1         # controller + mean source range
    spawn_weight: float = 0.2
    default_controller_range: int = 20
    default_source_range: int = 20
    default_spawn_range: int = 10


class AnchorSelector:

    def __init__(self, repo: KeyValueRepository, config: Optional[AnchorConfig] = None) -> None:
        self.repo = repo
        self.cfg = config or AnchorConfig()

    def select(self, snapshot: RoomSnapshot) -> Optional[RoomPosition]:
        """Persisted anchor if still valid, otherwise a fresh scan. None on failure."""
        stored = position_from_record(self.repo.get(snapshot.name, ANCHOR_KEY))
        if stored is not None and self._still_valid(snapshot, stored):
            return stored

        if stored is not None:
            log.warning("Anchor %s in %s no longer valid, rescanning", stored, snapshot.name,
                        tick=snapshot.tick)

        anchor, score = self.scan(snapshot)
        if anchor is None:
            log.warning("PLANNING_FAILURE: no anchor candidate in %s", snapshot.name,
                        tick=snapshot.tick)
            return None

        self.repo.set(snapshot.name, ANCHOR_KEY, position_to_record(anchor))
        log.plan_event("ANCHOR", f"{snapshot.name} → {anchor} score={score:.1f}", tick=snapshot.tick)
        return anchor

    def scan(self, snapshot: RoomSnapshot) -> Tuple[Optional[RoomPosition], float]:
        """Best candidate and its score, without touching the repository."""
        center = ROOM_SIZE // 2
        best: Optional[RoomPosition] = None
        best_score = float("-inf")

        r = self.cfg.scan_radius
        for dx in range(-r, r + 1):
            for dy in range(-r, r + 1):
                pos = RoomPosition(center + dx, center + dy)
                score = self.score(snapshot, pos)
                if score is not None and score > best_score:
                    best, best_score = pos, score

        return best, best_score

    def score(self, snapshot: RoomSnapshot, pos: RoomPosition) -> Optional[float]:
        """Candidate score, or None when the tile is not eligible at all."""
        if not pos.in_bounds or snapshot.terrain.is_wall(pos):
            return None

        edge = min(pos.x, pos.y, ROOM_SIZE - 1 - pos.x, ROOM_SIZE - 1 - pos.y)
        if edge < self.cfg.min_edge_distance:
            return None

        wall_penalty = snapshot.terrain.walls_within(pos, self.cfg.wall_radius)

        ctrl_range = (
            pos.range_to(snapshot.controller)
            if snapshot.controller is not None
            else self.cfg.default_controller_range
        )
        if snapshot.sources:
            src_range = sum(pos.range_to(s.pos) for s in snapshot.sources) / len(snapshot.sources)
        else:
            src_range = self.cfg.default_source_range
        spawn = snapshot.first_spawn()
        spawn_range = pos.range_to(spawn) if spawn is not None else self.cfg.default_spawn_range

        return (
            edge * self.cfg.edge_weight
            - wall_penalty
            - (ctrl_range + src_range) * self.cfg.feature_weight
            - spawn_range * self.cfg.spawn_weight
        )

    def _still_valid(self, snapshot: RoomSnapshot, pos: RoomPosition) -> bool:
        return pos.in_bounds and not snapshot.terrain.is_wall(pos)

    def forget(self, room: str) -> None:
        self.repo.delete(room, ANCHOR_KEY)
