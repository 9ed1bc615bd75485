from collections import Counter

import pytest

from conftest import OPEN_ANCHOR, built, make_snapshot, walled_terrain
from FoundryBot.construction.task_generator import ConstructionTaskGenerator
from FoundryBot.construction.tasks import (
    ConstructionTask,
    DependencyKind,
    PriorityBucket,
)
from FoundryBot.planning.layout import LayoutGenerator
from FoundryBot.planning.path_cache import PathCache
from FoundryBot.planning.pathfinder import IMPASSABLE, build_cost_matrix, search
from FoundryBot.room_state import RoomPosition, StructureKind, structure_cap


@pytest.fixture
def layout(repo):
    return LayoutGenerator(repo).generate(make_snapshot(), OPEN_ANCHOR)


@pytest.fixture
def generator(repo):
    return ConstructionTaskGenerator(PathCache(repo))


def kinds(tasks):
    return Counter(t.kind for t in tasks)


def test_fresh_room_asks_for_a_spawn_first(generator, layout):
    tasks = generator.generate(make_snapshot(level=1), layout)
    spawns = [t for t in tasks if t.kind == StructureKind.SPAWN]

    assert len(spawns) == 1
    assert spawns[0].position == layout.spawns[0]
    assert spawns[0].urgent
    assert StructureKind.EXTENSION not in kinds(tasks)
    assert StructureKind.TOWER not in kinds(tasks)


def test_generation_is_idempotent(generator, layout):
    snap = make_snapshot(level=3, structures=built(StructureKind.SPAWN, layout.spawns[0]))
    first = generator.generate(snap, layout)
    second = generator.generate(snap, layout)
    assert first == second
    assert generator.paths.hits > 0


@pytest.mark.parametrize("level", [1, 2, 3, 4, 6, 8])
def test_tasks_respect_caps_and_never_duplicate(generator, layout, level):
    snap = make_snapshot(level=level, structures=built(StructureKind.SPAWN, layout.spawns[0]))
    tasks = generator.generate(snap, layout)

    for kind, n in kinds(tasks).items():
        assert snap.count(kind) + snap.queued(kind) + n <= structure_cap(kind, level), kind
    keyed = Counter((t.kind, t.position) for t in tasks)
    assert max(keyed.values()) == 1
    assert not any(snap.has_structure(t.position, t.kind) for t in tasks)


def test_extensions_fill_the_gap_to_the_cap(generator, layout):
    have = layout.extensions[:3]
    snap = make_snapshot(
        level=2,
        structures=built(StructureKind.SPAWN, layout.spawns[0]) + built(StructureKind.EXTENSION, *have),
    )
    extensions = [t for t in generator.generate(snap, layout) if t.kind == StructureKind.EXTENSION]
    assert len(extensions) == 2
    assert not {t.position for t in extensions} & set(have)


def test_walled_in_extension_slot_is_skipped(generator, layout):
    slot = layout.extensions[0]
    snap = make_snapshot(level=2, terrain=walled_terrain(*slot.neighbours()))
    extensions = [t for t in generator.generate(snap, layout) if t.kind == StructureKind.EXTENSION]
    assert len(extensions) == 5
    assert slot not in {t.position for t in extensions}


def test_unreachable_pocket_is_skipped(generator, layout):
    slot = layout.extensions[0]
    pocket = {slot, slot.offset(1, 0)}
    ring = {n for p in pocket for n in p.neighbours()} - pocket
    snap = make_snapshot(level=2, terrain=walled_terrain(*ring))
    positions = {t.position for t in generator.generate(snap, layout) if t.kind == StructureKind.EXTENSION}
    assert not positions & pocket


def assert_extensions_reachable(snap, tasks):
    cost = build_cost_matrix(snap).copy()
    extensions = [t.position for t in tasks if t.kind == StructureKind.EXTENSION]
    for pos in extensions:
        cost[pos.y, pos.x] = IMPASSABLE
    for pos in extensions:
        assert not search(OPEN_ANCHOR, pos, cost, range_=1).incomplete, pos


def test_later_extension_cannot_seal_an_earlier_one(generator, layout):
    boxed, doorway = RoomPosition(30, 25), RoomPosition(29, 25)
    layout.extensions = [boxed, doorway]
    snap = make_snapshot(
        level=2,
        terrain=walled_terrain(*(n for n in boxed.neighbours() if n != doorway)),
        structures=built(StructureKind.SPAWN, layout.spawns[0]),
    )
    tasks = generator.generate(snap, layout)
    positions = [t.position for t in tasks if t.kind == StructureKind.EXTENSION]

    assert boxed in positions
    assert doorway not in positions
    assert_extensions_reachable(snap, tasks)


@pytest.mark.parametrize("level", [2, 5, 8])
def test_every_extension_keeps_a_path_to_the_anchor(generator, layout, level):
    snap = make_snapshot(level=level, structures=built(StructureKind.SPAWN, layout.spawns[0]),
                         energy_capacity=800, energy_available=800)
    tasks = generator.generate(snap, layout)
    assert any(t.kind == StructureKind.EXTENSION for t in tasks)
    assert_extensions_reachable(snap, tasks)


def test_first_tower_is_urgent(generator, layout):
    snap = make_snapshot(level=3, structures=built(StructureKind.SPAWN, layout.spawns[0]))
    towers = [t for t in generator.generate(snap, layout) if t.kind == StructureKind.TOWER]
    assert [t.position for t in towers] == layout.towers[:1]
    assert towers[0].urgent


def test_roads_never_cover_structure_tiles(generator, layout):
    snap = make_snapshot(level=4, structures=built(StructureKind.SPAWN, layout.spawns[0]),
                         energy_capacity=800, energy_available=800)
    tasks = generator.generate(snap, layout)
    roads = {t.position for t in tasks if t.is_road}
    others = {t.position for t in tasks if not t.is_road and t.kind != StructureKind.RAMPART}

    assert roads
    assert not roads & layout.structure_tiles()
    assert not roads & others


def test_terminal_waits_on_storage(generator, layout):
    snap = make_snapshot(level=6, structures=built(StructureKind.SPAWN, layout.spawns[0]))
    terminal = next(t for t in generator.generate(snap, layout) if t.kind == StructureKind.TERMINAL)
    assert terminal.position == layout.terminal
    assert terminal.dependencies == frozenset({DependencyKind.STORAGE})


def test_ramparts_cover_key_structures(generator, layout):
    spawn = layout.spawns[0]
    snap = make_snapshot(level=3, structures=built(StructureKind.SPAWN, spawn))
    ramparts = [t for t in generator.generate(snap, layout) if t.kind == StructureKind.RAMPART]
    assert [t.position for t in ramparts] == [spawn]


def test_extractor_goes_on_the_mineral(generator, layout):
    snap = make_snapshot(level=6, structures=built(StructureKind.SPAWN, layout.spawns[0]))
    extractor = [t for t in generator.generate(snap, layout) if t.kind == StructureKind.EXTRACTOR]
    assert [t.position for t in extractor] == [snap.mineral]


# ── Prioritize ────────────────────────────────────────────────────────────────

def task(kind, priority, urgent=False, x=10, cost=0):
    return ConstructionTask(kind, RoomPosition(x, 20), priority, "test", estimated_cost=cost, urgent=urgent)


@pytest.mark.parametrize("priority,urgent,bucket", [
    (95, False, PriorityBucket.CRITICAL),
    (90, False, PriorityBucket.CRITICAL),
    (10, True, PriorityBucket.CRITICAL),
    (75, False, PriorityBucket.IMPORTANT),
    (50, False, PriorityBucket.NORMAL),
    (49.9, False, PriorityBucket.DEFERRED),
])
def test_bucket_thresholds(priority, urgent, bucket):
    assert task(StructureKind.ROAD, priority, urgent).bucket() is bucket


def test_threat_and_economy_bonuses(generator):
    snap = make_snapshot(threat_score=60, economy_efficiency=0.3)
    tower = task(StructureKind.TOWER, 70, x=10)
    container = task(StructureKind.CONTAINER, 40, x=11)
    road = task(StructureKind.ROAD, 40, x=12)
    plan = generator.prioritize(snap, [tower, container, road])

    assert [t.priority for t in plan.buckets[PriorityBucket.CRITICAL]] == [90]
    assert [t.priority for t in plan.buckets[PriorityBucket.NORMAL]] == [55]
    assert plan.buckets[PriorityBucket.DEFERRED] == [road]
    assert plan.tasks == [tower, container, road]


def test_buckets_sort_by_priority(generator):
    tasks = [task(StructureKind.ROAD, p, x=10 + i) for i, p in enumerate((91, 99, 95))]
    plan = generator.prioritize(make_snapshot(), tasks)
    assert [t.priority for t in plan.ordered()] == [99, 95, 91]


def test_metrics(generator):
    snap = make_snapshot(builder_count=2)
    tasks = [task(StructureKind.TOWER, 80, cost=5000), task(StructureKind.CONTAINER, 80, x=11, cost=5000)]
    metrics = generator.prioritize(snap, tasks).metrics
    assert metrics.total_tasks == 2
    assert metrics.total_cost == 10000
    assert metrics.estimated_time == pytest.approx(500)
    assert metrics.completion_rate == 100.0


def test_recommendations_call_out_low_capacity(generator):
    rec = generator.prioritize(make_snapshot(energy_capacity=300), []).recommendations
    assert "Build extensions to increase energy capacity" in rec.immediate
