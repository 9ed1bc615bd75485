import pytest

from conftest import OPEN_ANCHOR, ROOM, make_snapshot, walled_terrain
from FoundryBot.planning.path_cache import PathCache, PathCacheConfig
from FoundryBot.planning.pathfinder import (
    DIRECTIONS,
    IMPASSABLE,
    build_cost_matrix,
    reachable_from,
    search,
)
from FoundryBot.room_state import RoomPosition, Structure, StructureKind
from FoundryBot.storage import PATHS_KEY

GOAL = RoomPosition(10, 12)


class CountingFactory:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return build_cost_matrix(self.snapshot)


@pytest.fixture
def factory():
    return CountingFactory(make_snapshot())


def test_second_request_is_served_from_cache(repo, factory):
    cache = PathCache(repo)
    first = cache.get_path(ROOM, "src:s0", OPEN_ANCHOR, GOAL, 0, factory)
    second = cache.get_path(ROOM, "src:s0", OPEN_ANCHOR, GOAL, 10, factory)

    assert first and first == second
    assert cache.searches == 1 and cache.hits == 1
    assert factory.calls == 1


def test_steps_describe_a_connected_route(repo, factory):
    steps = PathCache(repo).get_path(ROOM, "src:s0", OPEN_ANCHOR, GOAL, 0, factory)
    prev = OPEN_ANCHOR
    for step in steps:
        assert (step.dx, step.dy) == (step.x - prev.x, step.y - prev.y)
        assert DIRECTIONS[(step.dx, step.dy)] == step.direction
        prev = step.pos
    assert prev.range_to(GOAL) <= 1


def test_record_is_plain_data(repo, factory):
    PathCache(repo).get_path(ROOM, "ctrl", OPEN_ANCHOR, GOAL, 42, factory)
    record = repo.get(ROOM, PATHS_KEY)["ctrl"]
    assert record["origin"] == [24, 24]
    assert record["time"] == 42
    assert all(isinstance(xy, list) and len(xy) == 2 for xy in record["path"])


def test_stale_route_is_searched_again(repo, factory):
    cache = PathCache(repo, PathCacheConfig(ttl=100))
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 0, factory)
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 100, factory)
    assert cache.searches == 1
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 101, factory)
    assert cache.searches == 2
    assert repo.get(ROOM, PATHS_KEY)["k"]["time"] == 101


def test_moved_origin_invalidates_the_route(repo, factory):
    cache = PathCache(repo)
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 0, factory)
    cache.get_path(ROOM, "k", RoomPosition(25, 25), GOAL, 1, factory)
    assert cache.searches == 2


def test_invalidate_forgets_every_route(repo, factory):
    cache = PathCache(repo)
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 0, factory)
    cache.invalidate(ROOM)
    assert repo.get(ROOM, PATHS_KEY) is None
    cache.get_path(ROOM, "k", OPEN_ANCHOR, GOAL, 1, factory)
    assert cache.searches == 2


def test_goal_already_in_range_stores_nothing(repo, factory):
    cache = PathCache(repo)
    assert cache.get_path(ROOM, "k", RoomPosition(11, 12), GOAL, 0, factory) == []
    assert "k" not in repo.get(ROOM, PATHS_KEY, {})


def test_oldest_routes_are_pruned(repo, factory):
    cache = PathCache(repo, PathCacheConfig(max_entries=2))
    for tick, key in enumerate(("a", "b", "c")):
        cache.get_path(ROOM, key, OPEN_ANCHOR, GOAL, tick, factory)
    assert sorted(repo.get(ROOM, PATHS_KEY)) == ["b", "c"]


# ── Pathfinder ────────────────────────────────────────────────────────────────

def test_cost_matrix_marks_obstacles():
    snap = make_snapshot(structures=[
        Structure(StructureKind.ROAD, RoomPosition(20, 20)),
        Structure(StructureKind.EXTENSION, RoomPosition(21, 20)),
        Structure(StructureKind.CONTAINER, RoomPosition(22, 20)),
    ])
    cost = build_cost_matrix(snap, avoid=[RoomPosition(23, 20)])
    assert cost[20, 20] == 1
    assert cost[20, 21] == IMPASSABLE
    assert cost[20, 22] == 2
    assert cost[20, 23] == 20
    assert cost[0, 0] == IMPASSABLE
    assert cost[GOAL.y, GOAL.x] == IMPASSABLE


def test_search_routes_around_a_wall():
    wall = [RoomPosition(20, y) for y in range(1, 30)]
    snap = make_snapshot(features=False, terrain=walled_terrain(*wall))
    result = search(RoomPosition(15, 10), RoomPosition(25, 10), build_cost_matrix(snap))
    assert not result.incomplete
    assert all(p not in wall for p in result.path)
    assert any(p.y >= 30 for p in result.path)


def test_exhausted_search_returns_partial_path():
    snap = make_snapshot(features=False)
    result = search(RoomPosition(5, 5), RoomPosition(45, 45), build_cost_matrix(snap), max_ops=3)
    assert result.incomplete
    assert result.path


def test_enclosed_tile_is_not_reachable():
    pocket = RoomPosition(10, 10)
    snap = make_snapshot(features=False, terrain=walled_terrain(*pocket.neighbours()))
    reached = reachable_from(OPEN_ANCHOR, build_cost_matrix(snap), max_ops=5000)
    assert pocket not in reached
    assert RoomPosition(30, 30) in reached
