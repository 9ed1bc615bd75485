import pytest

from FoundryBot.room_state import RoomPosition
from FoundryBot.storage import (
    InMemoryRepository,
    JsonFileRepository,
    position_from_record,
    position_to_record,
    positions_from_record,
)


def test_values_are_copied_in_and_out(repo):
    value = {"path": [[1, 2]]}
    repo.set("W1N1", "paths", value)
    value["path"].append([3, 4])
    assert repo.get("W1N1", "paths") == {"path": [[1, 2]]}

    read = repo.get("W1N1", "paths")
    read["path"].clear()
    assert repo.get("W1N1", "paths") == {"path": [[1, 2]]}


def test_rich_values_are_refused(repo):
    with pytest.raises(TypeError):
        repo.set("W1N1", "anchor", RoomPosition(1, 2))


def test_delete_and_default(repo):
    repo.set("W1N1", "anchor", [1, 2])
    repo.delete("W1N1", "anchor")
    repo.delete("W9N9", "anchor")
    assert repo.get("W1N1", "anchor", "missing") == "missing"
    assert repo.rooms() == ["W1N1"]


def test_json_file_repository_resumes(tmp_path):
    path = tmp_path / "state" / "planner.json"
    first = JsonFileRepository(path)
    first.set("W1N1", "anchor", [24, 24])
    first.flush()

    second = JsonFileRepository(path)
    assert second.get("W1N1", "anchor") == [24, 24]
    assert isinstance(second, InMemoryRepository)


def test_position_records():
    assert position_to_record(RoomPosition(3, 4)) == [3, 4]
    assert position_to_record(None) is None
    assert position_from_record({"x": 3, "y": 4}) == RoomPosition(3, 4)
    assert position_from_record("3:4") is None
    assert positions_from_record([[1, 1], None, {"x": 2, "y": 2}]) == [RoomPosition(1, 1), RoomPosition(2, 2)]
    assert positions_from_record(None) == []
