"""
Per-room key-value persistence and the plain-record boundary.

The planner persists four things per room: the anchor, the layout plan, the
traffic counters and the path cache. Everything written through a
KeyValueRepository must be plain data (dicts, lists, str, int, float, bool,
None); rich values such as RoomPosition are converted at the boundary with
position_to_record / position_from_record and never stored directly.

InMemoryRepository JSON-round-trips every value on write, so a rich object
that slips through fails loudly in tests instead of silently aliasing.
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from FoundryBot.room_state import RoomPosition


# Repository keys
ANCHOR_KEY  = "anchor"
LAYOUT_KEY  = "layout"
TRAFFIC_KEY = "traffic"
PATHS_KEY   = "paths"
REPLAN_KEY  = "replan_requested"


class KeyValueRepository(ABC):
    """Room-scoped key-value store injected into every stateful component."""

    @abstractmethod
    def get(self, room: str, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, room: str, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, room: str, key: str) -> None:
        ...

    @abstractmethod
    def rooms(self) -> List[str]:
        ...


class InMemoryRepository(KeyValueRepository):

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        for room, values in (initial or {}).items():
            for key, value in values.items():
                self.set(room, key, value)

    def get(self, room: str, key: str, default: Any = None) -> Any:
        value = self._data.get(room, {}).get(key)
        if value is None:
            return default
        return copy.deepcopy(value)

    def set(self, room: str, key: str, value: Any) -> None:
        # Round-trip through JSON: only plain data may be persisted
        self._data.setdefault(room, {})[key] = json.loads(json.dumps(value))

    def delete(self, room: str, key: str) -> None:
        self._data.get(room, {}).pop(key, None)

    def rooms(self) -> List[str]:
        return sorted(self._data)


class JsonFileRepository(InMemoryRepository):
    """
    InMemoryRepository that loads from and flushes to a JSON file.
    Used by run.py so a simulated colony can be resumed across runs.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        initial = None
        if self.path.exists():
            initial = json.loads(self.path.read_text(encoding="utf-8"))
        super().__init__(initial)

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=1, sort_keys=True), encoding="utf-8")


# ---------------------------------------------------------------------------
# Record adapters
# ---------------------------------------------------------------------------

def position_to_record(pos: Optional[RoomPosition]) -> Optional[List[int]]:
    if pos is None:
        return None
    return [pos.x, pos.y]


def position_from_record(record: Any) -> Optional[RoomPosition]:
    """Accepts [x, y] or {"x": .., "y": ..}; anything else reads as None."""
    if isinstance(record, (list, tuple)) and len(record) == 2:
        return RoomPosition(int(record[0]), int(record[1]))
    if isinstance(record, dict) and "x" in record and "y" in record:
        return RoomPosition(int(record["x"]), int(record["y"]))
    return None


def positions_to_record(positions: List[RoomPosition]) -> List[List[int]]:
    return [[p.x, p.y] for p in positions]


def positions_from_record(records: Any) -> List[RoomPosition]:
    if not isinstance(records, list):
        return []
    out = []
    for record in records:
        pos = position_from_record(record)
        if pos is not None:
            out.append(pos)
    return out
