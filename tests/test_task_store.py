from __future__ import annotations

import json
from pathlib import Path

import pytest

from squabble_mcp.tasks import Task, TaskStore, TaskStoreError


def make_store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.json", tmp_path / "task-counter.json")


def test_missing_and_empty_files_load_as_empty(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    assert store.load() == []

    store.tasks_path.write_text("  \n", encoding="utf-8")
    assert store.load() == []


def test_malformed_file_raises_store_error(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.tasks_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(TaskStoreError):
        store.load()

    store.tasks_path.write_text(json.dumps([{"id": "T1", "title": "x", "status": "bogus"}]), encoding="utf-8")
    with pytest.raises(TaskStoreError):
        store.load()


def test_save_round_trips_and_leaves_no_temp_files(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    tasks = [
        Task(id="T1", title="first", priority="high", requires_plan=True),
        Task(id="T2", title="second", dependencies=["T1", "T1"]),
    ]

    store.save(tasks)
    loaded = store.load()

    assert [task.id for task in loaded] == ["T1", "T2"]
    assert loaded[1].dependencies == ["T1"]
    assert loaded[0].requires_plan is True
    raw = json.loads(store.tasks_path.read_text(encoding="utf-8"))
    assert raw[0]["id"] == "T1"
    assert sorted(path.name for path in tmp_path.iterdir()) == ["tasks.json"]


def test_counter_starts_at_zero_and_persists(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    assert store.current_sequence() == 0
    assert store.allocate_sequence() == 1
    assert store.allocate_sequence() == 2
    assert json.loads(store.counter_path.read_text(encoding="utf-8")) == 2

    reopened = make_store(tmp_path)
    assert reopened.allocate_sequence() == 3


def test_corrupt_counter_raises(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.counter_path.write_text('"seven"', encoding="utf-8")

    with pytest.raises(TaskStoreError):
        store.current_sequence()
