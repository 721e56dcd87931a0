from __future__ import annotations

import threading

import pytest

from gateway.core.variables import GlobalVariableStore, ProjectVariables, default_for


def test_partitions_are_isolated_per_project():
    store = GlobalVariableStore()
    store.write("p1", "temp", 21.5)
    store.write("p2", "temp", 3)

    assert store.read("p1", "temp") == 21.5
    assert store.read("p2", "temp") == 3
    assert store.projects() == ["p1", "p2"]


def test_read_unknown_project_returns_default():
    store = GlobalVariableStore()
    assert store.read("nope", "x", 7) == 7
    assert store.snapshot("nope") == {}
    assert store.reset_to_default("nope", "x") is None


def test_empty_array_write_resets_time_companion():
    part = ProjectVariables("p")
    part.write("level", [1, 2, 3])
    part.write("level_time", [10, 20, 30])

    part.write("level", [])

    assert part.read("level") == []
    assert part.read("level_time") == []


def test_time_companion_not_created_when_absent():
    part = ProjectVariables("p")
    part.write("level", [])
    assert "level_time" not in part


def test_non_empty_write_leaves_companion_alone():
    part = ProjectVariables("p")
    part.write("level_time", [1])
    part.write("level", [5])
    assert part.read("level_time") == [1]


def test_reset_arrays_resets_each_name_and_companion():
    part = ProjectVariables("p")
    part.update({"a": [1], "a_time": [1], "b": [2]})

    part.reset_arrays(["a", "b"])

    assert part.snapshot() == {"a": [], "a_time": [], "b": []}


def test_tuples_are_stored_as_lists():
    part = ProjectVariables("p")
    part.write("xs", (1, 2))
    assert part.read("xs") == [1, 2]


def test_initialize_only_creates_missing_names():
    store = GlobalVariableStore()
    assert store.initialize("p", "count", 0) is True
    store.write("p", "count", 4)
    assert store.initialize("p", "count", 0) is False
    assert store.read("p", "count") == 4


def test_append_creates_and_extends_arrays():
    store = GlobalVariableStore()
    assert store.append("p", "samples", 1) == 1
    assert store.append("p", "samples", 2) == 2
    assert store.read("p", "samples") == [1, 2]

    store.write("p", "scalar", 5)
    with pytest.raises(TypeError):
        store.append("p", "scalar", 1)


@pytest.mark.parametrize(
    "value, expected",
    [(True, False), (12, 0), (1.5, 0), ([1], []), ({"a": 1}, {}), ("on", ""), (None, None)],
)
def test_default_for_types(value, expected):
    assert default_for(value) == expected


def test_reset_to_default_uses_type_of_current_value():
    store = GlobalVariableStore()
    store.update("p", {"on": True, "hist": [1, 2], "hist_time": [5, 6]})

    assert store.reset_to_default("p", "on") is False
    assert store.reset_to_default("p", "hist") == []
    assert store.read("p", "hist_time") == []
    assert store.reset_to_default("p", "missing") is None


def test_snapshot_is_a_deep_copy():
    store = GlobalVariableStore()
    store.write("p", "xs", [1])
    snap = store.snapshot("p")
    snap["xs"].append(2)
    assert store.read("p", "xs") == [1]


def test_drop_project():
    store = GlobalVariableStore()
    store.ensure_project("p")
    assert store.drop_project("p") is True
    assert store.drop_project("p") is False
    assert store.has_project("p") is False


def test_concurrent_reset_keeps_array_and_companion_consistent():
    part = ProjectVariables("p")
    part.update({"x": [0], "x_time": [0]})
    mismatches = []
    stop = threading.Event()

    def writer():
        for i in range(2000):
            with part._lock:
                part.write("x", [i])
                part.write("x_time", [i])
            part.write("x", [])
        stop.set()

    def reader():
        while not stop.is_set():
            with part._lock:
                x, t = part.read("x"), part.read("x_time")
            if (x == []) != (t == []):
                mismatches.append((x, t))

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert mismatches == []


def test_non_plain_values_are_rejected():
    store = GlobalVariableStore()
    store.write("p", "ok", {"a": [1, 2.5, None, True, "s"]})

    for bad in (object(), print, {1, 2}, [1, {"k": object()}], {("a",): 1}):
        with pytest.raises(TypeError):
            store.write("p", "bad", bad)
    with pytest.raises(TypeError):
        store.append("p", "ok_list", lambda: 0)

    looped = [1]
    looped.append(looped)
    with pytest.raises(TypeError):
        store.write("p", "loop", looped)

    assert store.snapshot("p") == {"ok": {"a": [1, 2.5, None, True, "s"]}}


def test_snapshot_exports_values_mutated_in_place():
    store = GlobalVariableStore()
    store.write("p", "xs", [1])
    live = store.read("p", "xs")
    live.append(object())
    live.append(live)

    snap = store.snapshot("p")

    assert snap["xs"][0] == 1
    assert snap["xs"][1].startswith("<object object")
    assert snap["xs"][2] == "[...]"
