"""
Host boundary — the only way the planner changes the world.

The executor never creates, destroys or cancels anything itself; it asks a
ConstructionHost. A live deployment wraps the game API; tests and run.py use
FoundryBot.simulation.SimulatedHost.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto

from FoundryBot.room_state import RoomPosition, StructureKind


class PlacementResult(Enum):
    OK             = auto()     # site queued
    INVALID_TARGET = auto()     # tile refused; try the next task
    FULL           = auto()     # site limit reached; stop this invocation


class ConstructionHost(ABC):

    @abstractmethod
    def create_site(self, room: str, pos: RoomPosition, kind: StructureKind) -> PlacementResult:
        ...

    @abstractmethod
    def destroy_structure(self, room: str, pos: RoomPosition, kind: StructureKind) -> bool:
        """Remove a built structure of `kind` at pos. True if something was removed."""

    @abstractmethod
    def cancel_site(self, room: str, pos: RoomPosition, kind: StructureKind) -> bool:
        """Remove a queued site of `kind` at pos. True if something was removed."""

    @abstractmethod
    def outstanding_sites(self) -> int:
        """Sites queued across every room the host controls."""
