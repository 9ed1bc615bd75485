"""Shared fixtures: an open room, its snapshot and a simulated host around it."""

from __future__ import annotations

import numpy as np
import pytest

from FoundryBot.room_state import (
    RoomPosition,
    RoomSnapshot,
    Source,
    Structure,
    StructureKind,
    Terrain,
)
from FoundryBot.simulation import SimRoom, SimulatedHost
from FoundryBot.storage import InMemoryRepository

ROOM = "W1N1"
CONTROLLER = RoomPosition(36, 10)
SOURCES = (Source("s0", RoomPosition(10, 12)), Source("s1", RoomPosition(40, 36)))
MINERAL = RoomPosition(12, 40)
OPEN_ANCHOR = RoomPosition(24, 24)


def make_snapshot(
    level: int = 1,
    tick: int = 0,
    terrain: Terrain = None,
    structures=(),
    sites=(),
    name: str = ROOM,
    features: bool = True,
    **kwargs,
) -> RoomSnapshot:
    fields = dict(
        energy_available=300,
        energy_capacity=300,
        energy_stored=50000,
        builder_count=2,
    )
    fields.update(kwargs)
    return RoomSnapshot(
        name=name,
        tick=tick,
        terrain=terrain if terrain is not None else Terrain.open(),
        controller=CONTROLLER if features else None,
        controller_level=level,
        structures=list(structures),
        sites=list(sites),
        sources=list(SOURCES) if features else [],
        mineral=MINERAL if features else None,
        **fields,
    )


def walled_terrain(*positions: RoomPosition) -> Terrain:
    grid = Terrain.open().grid.copy()
    for pos in positions:
        grid[pos.y, pos.x] = 1
    return Terrain(grid)


def built(kind: StructureKind, *positions: RoomPosition):
    return [Structure(kind, pos) for pos in positions]


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def repo():
    return InMemoryRepository()


def make_sim_room(name: str = ROOM, level: int = 1, spawn: bool = True) -> SimRoom:
    room = SimRoom(
        name=name,
        terrain=Terrain(np.array(Terrain.open().grid)),
        controller=CONTROLLER,
        sources=list(SOURCES),
        mineral=MINERAL,
        controller_level=level,
        energy_stored=50000,
        builder_count=2,
    )
    if spawn:
        room.structures.append(Structure(StructureKind.SPAWN, RoomPosition(25, 25)))
    return room


@pytest.fixture
def host():
    sim = SimulatedHost()
    sim.add_room(make_sim_room())
    return sim
