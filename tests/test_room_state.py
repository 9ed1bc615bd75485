import pytest

from conftest import make_snapshot
from FoundryBot.room_state import (
    ROOM_SIZE,
    ConstructionSite,
    RoomPosition,
    Structure,
    StructureKind,
    Terrain,
    can_share_tile,
    chebyshev_ring,
    structure_cap,
)


@pytest.mark.parametrize("kind,occupant,ok", [
    (StructureKind.RAMPART, StructureKind.SPAWN, True),
    (StructureKind.RAMPART, StructureKind.ROAD, True),
    (StructureKind.RAMPART, StructureKind.RAMPART, False),
    (StructureKind.RAMPART, StructureKind.WALL, False),
    (StructureKind.ROAD, StructureKind.RAMPART, True),
    (StructureKind.ROAD, StructureKind.CONTAINER, True),
    (StructureKind.ROAD, StructureKind.ROAD, False),
    (StructureKind.CONTAINER, StructureKind.ROAD, True),
    (StructureKind.EXTENSION, StructureKind.RAMPART, True),
    (StructureKind.EXTENSION, StructureKind.ROAD, False),
    (StructureKind.TOWER, StructureKind.CONTAINER, False),
])
def test_can_share_tile(kind, occupant, ok):
    assert can_share_tile(kind, occupant) is ok


def test_structure_caps():
    assert structure_cap(StructureKind.EXTENSION, 2) == 5
    assert structure_cap(StructureKind.EXTENSION, 8) == 60
    assert structure_cap(StructureKind.TOWER, 12) == 6
    assert structure_cap(StructureKind.SPAWN, -1) == 1
    assert structure_cap(StructureKind.OBSERVER, 7) == 0
    assert structure_cap(StructureKind.OBSERVER, 8) == 1


def test_ring_and_range():
    center = RoomPosition(10, 10)
    ring = chebyshev_ring(center, 2)
    assert len(ring) == 16
    assert all(center.range_to(p) == 2 for p in ring)
    assert ring[0] == RoomPosition(8, 8) and ring[1] == RoomPosition(8, 9)
    assert chebyshev_ring(center, 0) == [center]


def test_position_keys_and_bounds():
    pos = RoomPosition(3, 47)
    assert RoomPosition.from_key(pos.key) == pos
    assert pos.in_bounds
    assert not RoomPosition(0, 5).in_bounds
    assert not RoomPosition(5, ROOM_SIZE - 1).in_bounds
    assert len(pos.neighbours()) == 8


def test_terrain_rows():
    rows = ["#" * ROOM_SIZE] + ["#" + "." * 48 + "#"] * 48 + ["#" * ROOM_SIZE]
    rows[10] = "#" + "~" * 48 + "#"
    terrain = Terrain.from_rows(rows)
    assert terrain.to_rows() == rows
    assert terrain.is_swamp(RoomPosition(5, 10))
    assert terrain.is_wall(RoomPosition(-1, 5))
    assert not terrain.is_swamp(RoomPosition(-1, 10))
    assert not terrain.is_swamp(RoomPosition(ROOM_SIZE, 10))
    assert terrain.walls_within(RoomPosition(1, 1), 1) == 5
    with pytest.raises(ValueError):
        Terrain.from_rows(rows[:-1])


def test_snapshot_lookups():
    pos = RoomPosition(20, 20)
    snap = make_snapshot(
        structures=[Structure(StructureKind.ROAD, pos), Structure(StructureKind.RAMPART, pos)],
        sites=[ConstructionSite(StructureKind.TOWER, RoomPosition(30, 30))],
        energy_available=150, energy_capacity=300,
    )
    assert snap.is_walkable(pos)
    assert snap.has_structure(pos, StructureKind.RAMPART)
    assert snap.queued(StructureKind.TOWER) == 1
    assert snap.kinds_near(RoomPosition(28, 28), 2, [StructureKind.TOWER])
    assert not snap.kinds_near(RoomPosition(28, 28), 2, [StructureKind.TOWER], include_sites=False)
    assert snap.is_feature(snap.controller)
    assert snap.energy_ratio == 0.5
