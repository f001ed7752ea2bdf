import os
import threading

import pytest

from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import LifecycleState
from odoosupervisor.services.state import FileStateStore, MemoryStateStore


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def test_file_state_store_returns_none_when_file_missing(tmp_path):
    store = FileStateStore(str(tmp_path / ".container-state"), logger=DummyLogger())

    assert store.get() is None


def test_file_state_store_round_trips_every_state(tmp_path):
    state_file = tmp_path / "data" / ".container-state"
    store = FileStateStore(str(state_file), logger=DummyLogger())

    for state in LifecycleState:
        store.set(state)
        assert store.get() == state

    assert state_file.read_text(encoding="utf-8") == "UPGRADE_FAILED\n"


def test_file_state_store_leaves_no_temporary_files(tmp_path):
    store = FileStateStore(str(tmp_path / ".container-state"), logger=DummyLogger())

    store.set(LifecycleState.STARTING)
    store.set(LifecycleState.RUNNING)

    assert sorted(os.listdir(tmp_path)) == [".container-state"]


def test_file_state_store_treats_garbage_as_absent(tmp_path):
    state_file = tmp_path / ".container-state"
    state_file.write_text("NOT_A_STATE\n", encoding="utf-8")
    store = FileStateStore(str(state_file), logger=DummyLogger())

    assert store.get() is None
    assert store.read_raw() == "NOT_A_STATE"


def test_file_state_store_raises_when_directory_is_not_writable(tmp_path, monkeypatch):
    store = FileStateStore(str(tmp_path / ".container-state"), logger=DummyLogger())

    def fail_replace(*_args, **_kwargs):
        raise PermissionError("read-only")

    monkeypatch.setattr(os, "replace", fail_replace)

    with pytest.raises(SupervisorError, match="Could not write state file"):
        store.set(LifecycleState.RUNNING)

    assert os.listdir(tmp_path) == []


def test_file_state_store_readers_never_see_partial_values(tmp_path):
    store = FileStateStore(str(tmp_path / ".container-state"), logger=DummyLogger())
    store.set(LifecycleState.STARTING)
    observed = set()
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            observed.add(store.read_raw())

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for _ in range(50):
            store.set(LifecycleState.UPGRADING)
            store.set(LifecycleState.RUNNING)
    finally:
        stop.set()
        thread.join()

    assert observed <= {"STARTING", "UPGRADING", "RUNNING"}


def test_memory_state_store_records_history():
    store = MemoryStateStore(LifecycleState.RUNNING)

    store.set(LifecycleState.UPGRADING)
    store.set(LifecycleState.RUNNING)

    assert store.get() == LifecycleState.RUNNING
    assert store.history == [
        LifecycleState.RUNNING,
        LifecycleState.UPGRADING,
        LifecycleState.RUNNING,
    ]
