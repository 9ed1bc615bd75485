import pytest

from conftest import ROOM, make_sim_room, make_snapshot
from FoundryBot.construction.executor import ConstructionExecutor, ExecutorConfig
from FoundryBot.construction.host import PlacementResult
from FoundryBot.construction.task_generator import ConstructionTaskGenerator
from FoundryBot.construction.tasks import ConstructionTask, DependencyKind, FailureKind
from FoundryBot.planning.path_cache import PathCache
from FoundryBot.planning.traffic import TrafficTracker
from FoundryBot.room_state import RoomPosition, StructureKind
from FoundryBot.simulation import SimulatedHost


def task(kind, x, y, priority=80, deps=frozenset()):
    return ConstructionTask(kind, RoomPosition(x, y), priority, "test", dependencies=deps)


def plan_of(repo, snapshot, tasks):
    return ConstructionTaskGenerator(PathCache(repo)).prioritize(snapshot, tasks)


def placed_kinds(report):
    return [t.kind for t in report.placed]


def extensions(n, y=20):
    return [task(StructureKind.EXTENSION, 10 + i * 2, y) for i in range(n)]


def roads(n, y=30, priority=95):
    return [task(StructureKind.ROAD, 10 + i, y, priority=priority) for i in range(n)]


# ── Budget ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("level,builders,fill,stored,expected", [
    (2, 2, 1.0, 50000, 2),      # level cap
    (4, 2, 1.0, 50000, 3),
    (6, 6, 1.0, 100000, 5),     # 7 before the level cap
    (6, 2, 0.0, 0, 1),          # never below one
    (5, 4, 0.5, 50000, 3),      # 4 * 0.75 = 3
])
def test_room_budget(level, builders, fill, stored, expected):
    snap = make_snapshot(level=level, builder_count=builders, energy_available=int(300 * fill),
                         energy_capacity=300, energy_stored=stored)
    assert ConstructionExecutor(SimulatedHost()).room_budget(snap) == expected


def test_budget_limits_sites_per_tick(repo, host):
    host.rooms[ROOM].controller_level = 2
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(5)), 0)

    assert report.budget == 2
    assert placed_kinds(report) == [StructureKind.EXTENSION] * 2
    assert host.outstanding_sites() == 2


# ── Road quota and early roads ────────────────────────────────────────────────

def test_roads_get_a_small_share_while_structures_wait(repo, host):
    host.rooms[ROOM].controller_level = 4
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, roads(5) + extensions(2)), 0)

    assert report.budget == 3 and report.road_quota == 1
    assert sorted(k.value for k in placed_kinds(report)) == ["extension", "extension", "road"]


def test_roads_take_the_whole_budget_when_nothing_else_fits(repo, host):
    host.rooms[ROOM].controller_level = 4
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, roads(5)), 0)
    assert placed_kinds(report) == [StructureKind.ROAD] * 3


def test_quota_closes_when_energy_is_short():
    snap = make_snapshot(energy_available=100, energy_capacity=300, energy_stored=10000)
    assert ConstructionExecutor(SimulatedHost()).road_quota(snap, 3, 2) == 0


def test_early_roads_wait_for_extensions_and_containers(repo, host):
    host.rooms[ROOM].controller_level = 2
    snap = host.snapshot(ROOM, 1)
    tasks = roads(2) + [task(StructureKind.RAMPART, 25, 25, priority=99)] + extensions(1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, tasks), 0)
    assert placed_kinds(report) == [StructureKind.EXTENSION]


def test_early_roads_open_once_the_economy_exists(repo, host):
    sim = host.rooms[ROOM]
    sim.controller_level = 2
    host.place_structure(ROOM, RoomPosition(30, 30), StructureKind.EXTENSION)
    for src in sim.sources:
        host.place_structure(ROOM, src.pos.offset(0, 1), StructureKind.CONTAINER)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, roads(2)), 0)
    assert placed_kinds(report) == [StructureKind.ROAD] * 2


# ── Emergency ─────────────────────────────────────────────────────────────────

def test_emergency_only_places_recovery_structures(repo, host):
    sim = host.rooms[ROOM]
    sim.controller_level = 3
    sim.energy_stored = 1000
    sim.net_energy_trend = -5
    sim.builder_count = 8
    src = sim.sources[0].pos
    tasks = [
        task(StructureKind.TOWER, 20, 20, priority=95),
        task(StructureKind.CONTAINER, src.x, src.y + 1, priority=90),
        task(StructureKind.CONTAINER, 36, 12, priority=89),
        task(StructureKind.EXTENSION, 30, 30, priority=85),
    ] + roads(2, priority=99)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, tasks), 0)

    assert report.emergency
    assert [(t.kind, t.position) for t in report.placed] == [
        (StructureKind.CONTAINER, RoomPosition(src.x, src.y + 1)),
        (StructureKind.EXTENSION, RoomPosition(30, 30)),
    ]


def test_emergency_stops_extensions_past_the_limit(repo, host):
    sim = host.rooms[ROOM]
    sim.controller_level = 3
    sim.energy_stored = 1000
    sim.net_energy_trend = -1
    for x in (30, 32, 34):
        host.place_structure(ROOM, RoomPosition(x, 30), StructureKind.EXTENSION)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(2)), 0)
    assert report.emergency
    assert report.placed == []


def test_low_stored_energy_alone_is_not_an_emergency():
    snap = make_snapshot(energy_stored=1000, net_energy_trend=2.0)
    assert not ConstructionExecutor(SimulatedHost()).is_emergency(snap)


# ── Global ceiling and host results ───────────────────────────────────────────

def test_global_ceiling_leaves_no_budget(repo, host):
    host.rooms[ROOM].controller_level = 2
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(3)), 95)

    assert report.global_remaining == 0
    assert report.placed == []
    assert report.failures[FailureKind.BUDGET_EXHAUSTED] == 1
    assert not [c for c in host.calls if c[0] == "create"]


def test_global_remainder_caps_the_budget(repo, host):
    host.rooms[ROOM].controller_level = 2
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(3)), 94)
    assert report.budget == 1
    assert len(report.placed) == 1


def test_full_stops_the_invocation(repo):
    host = SimulatedHost(site_limit=1)
    host.add_room(make_sim_room(level=2))
    assert host.create_site(ROOM, RoomPosition(10, 13), StructureKind.CONTAINER) is PlacementResult.OK

    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(3)), 0)

    assert report.placed == []
    assert report.failures[FailureKind.BUDGET_EXHAUSTED] == 1
    assert len([c for c in host.calls if c[0] == "create"]) == 2


class PickyHost(SimulatedHost):
    """Refuses one tile the executor believes is fine."""

    def __init__(self, refuse):
        super().__init__()
        self.refuse = refuse

    def create_site(self, room, pos, kind):
        if pos == self.refuse:
            self.calls.append(("create", room, pos, kind))
            return PlacementResult.INVALID_TARGET
        return super().create_site(room, pos, kind)


def test_rejected_site_moves_on_to_the_next_task(repo):
    tasks = extensions(2)
    host = PickyHost(refuse=tasks[0].position)
    host.add_room(make_sim_room(level=2))
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, tasks), 0)

    assert [t.position for t in report.placed] == [tasks[1].position]
    assert report.failures[FailureKind.PLACEMENT_REJECTED] == 1


# ── Caps, dependencies, conflicts ─────────────────────────────────────────────

def test_caps_count_built_queued_and_placed(repo, host):
    host.rooms[ROOM].controller_level = 2
    for x in (30, 32, 34, 36):
        host.place_structure(ROOM, RoomPosition(x, 30), StructureKind.EXTENSION)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, extensions(3)), 0)
    assert len(report.placed) == 1


def test_unmet_dependency_is_skipped(repo, host):
    host.rooms[ROOM].controller_level = 6
    snap = host.snapshot(ROOM, 1)
    terminal = task(StructureKind.TERMINAL, 23, 23, deps=frozenset({DependencyKind.STORAGE}))
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, [terminal]), 0)
    assert report.placed == []

    host.place_structure(ROOM, RoomPosition(25, 23), StructureKind.STORAGE)
    snap = host.snapshot(ROOM, 2)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, [terminal]), 0)
    assert placed_kinds(report) == [StructureKind.TERMINAL]


def test_road_in_the_way_is_removed_then_built_over(repo, host):
    host.rooms[ROOM].controller_level = 2
    spot = RoomPosition(20, 20)
    host.place_structure(ROOM, spot, StructureKind.ROAD)
    executor = ConstructionExecutor(host)
    tasks = [task(StructureKind.EXTENSION, spot.x, spot.y)]

    snap = host.snapshot(ROOM, 1)
    report = executor.execute(snap, plan_of(repo, snap, tasks), 0)
    assert report.removed == [(spot, StructureKind.ROAD)]
    assert report.placed == []

    snap = host.snapshot(ROOM, 2)
    report = executor.execute(snap, plan_of(repo, snap, tasks), 0)
    assert placed_kinds(report) == [StructureKind.EXTENSION]


def test_queued_road_site_in_the_way_is_cancelled(repo, host):
    host.rooms[ROOM].controller_level = 4
    spot = RoomPosition(20, 20)
    host.create_site(ROOM, spot, StructureKind.ROAD)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(
        snap, plan_of(repo, snap, [task(StructureKind.TOWER, spot.x, spot.y)]), 0)

    assert report.removed == [(spot, StructureKind.ROAD)]
    assert host.outstanding_sites() == 0


def test_rampart_stacks_on_a_structure(repo, host):
    host.rooms[ROOM].controller_level = 4
    host.place_structure(ROOM, RoomPosition(30, 30), StructureKind.EXTENSION)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host).execute(
        snap, plan_of(repo, snap, [task(StructureKind.RAMPART, 30, 30)]), 0)
    assert placed_kinds(report) == [StructureKind.RAMPART]
    assert report.removed == []


# ── Leftover budget ───────────────────────────────────────────────────────────

def test_busy_tiles_get_roads_from_leftover_budget(repo, host):
    host.rooms[ROOM].controller_level = 4
    traffic = TrafficTracker(repo)
    hot = RoomPosition(18, 18)
    traffic.record_visit(ROOM, hot, times=50)
    traffic.record_visit(ROOM, RoomPosition(19, 18), times=3)

    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host, traffic).execute(snap, plan_of(repo, snap, []), 0)
    assert report.heat_roads == [hot]
    assert report.sites_placed == 1


def test_hygiene_removes_roads_under_structures(repo, host):
    spot = RoomPosition(30, 30)
    host.place_structure(ROOM, spot, StructureKind.ROAD)
    host.place_structure(ROOM, spot, StructureKind.EXTENSION)
    host.place_structure(ROOM, RoomPosition(31, 30), StructureKind.ROAD)

    snap = host.snapshot(ROOM, 1000)
    report = ConstructionExecutor(host).execute(snap, plan_of(repo, snap, []), 0)
    assert report.hygiene_removed == [spot]
    assert not host.snapshot(ROOM, 1001).has_structure(spot, StructureKind.ROAD)


def test_custom_ceiling_is_respected(repo, host):
    host.rooms[ROOM].controller_level = 2
    cfg = ExecutorConfig(global_site_limit=10, global_site_buffer=2)
    snap = host.snapshot(ROOM, 1)
    report = ConstructionExecutor(host, config=cfg).execute(snap, plan_of(repo, snap, extensions(3)), 7)
    assert report.global_remaining == 1
    assert len(report.placed) == 1
