import json
import os
import threading
import time

import pytest

from app_errors import ConfigMissing
from state_store import RunState, StateStore, start_run, stop_run


def test_defaults_when_file_missing(store):
    state = store.load_run_state()
    assert state == RunState()
    assert state.sheet_tab_name == "Sheet1"
    assert state.poll_interval_seconds == 60


def test_set_field_survives_restart(tmp_path):
    store = StateStore(tmp_path)
    store.update_run_state(sheet_id="abc", processed_row_keys={"Sheet1!3", "Sheet1!2"})

    raw = json.loads((tmp_path / "run_state.json").read_text())
    assert raw["flowState"]["processed_row_keys"] == ["Sheet1!2", "Sheet1!3"]

    reloaded = StateStore(tmp_path).load_run_state()
    assert reloaded.processed_row_keys == {"Sheet1!2", "Sheet1!3"}
    assert isinstance(reloaded.processed_row_keys, set)


def test_write_leaves_no_temp_file(tmp_path):
    store = StateStore(tmp_path)
    store.set("other", {"x": 1})
    assert store.get("other") == {"x": 1}
    assert not [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"]
    assert (tmp_path / "run_state.json").exists()


def test_unknown_keys_ignored(tmp_path):
    (tmp_path / "run_state.json").write_text(json.dumps({"flowState": {"sheet_id": "abc", "legacy": 1}}))
    assert StateStore(tmp_path).load_run_state().sheet_id == "abc"


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    (tmp_path / "run_state.json").write_text("{not json")
    assert StateStore(tmp_path).load_run_state() == RunState()


def test_update_rejects_unknown_field(store):
    with pytest.raises(AttributeError):
        store.update_run_state(sheet="abc")


def test_start_requires_a_sheet(store):
    with pytest.raises(ConfigMissing):
        start_run(store)
    assert not store.load_run_state().is_running


def test_start_resets_per_run_cache_and_stop_keeps_config(store):
    store.update_run_state(sheet_id="abc", processed_rows=5, processed_row_keys={"Sheet1!2"})

    state = start_run(store, tab_name="Jobs", interval_seconds=30)
    assert state.is_running
    assert state.processed_rows == 0
    assert state.processed_row_keys == set()
    assert state.sheet_tab_name == "Jobs"
    assert state.poll_interval_seconds == 30

    stop_run(store)
    state = store.load_run_state()
    assert not state.is_running
    assert state.sheet_id == "abc"


@pytest.mark.skipif(os.name != "posix", reason="advisory file lock is POSIX only")
def test_stop_from_another_store_is_not_overwritten(tmp_path):
    worker = StateStore(tmp_path)
    cli = StateStore(tmp_path)
    start_run(worker, "abc")

    loaded = threading.Event()
    original_load = worker._load_all

    def slow_load():
        data = original_load()
        loaded.set()
        time.sleep(0.2)
        return data

    worker._load_all = slow_load
    writer = threading.Thread(target=worker.update_run_state, kwargs={'processed_rows': 3})
    writer.start()
    assert loaded.wait(2)
    stop_run(cli)
    writer.join()

    state = StateStore(tmp_path).load_run_state()
    assert not state.is_running
    assert state.processed_rows == 3


def test_writers_use_distinct_temp_files(tmp_path, monkeypatch):
    store = StateStore(tmp_path)
    seen = []
    original_replace = os.replace

    def recording_replace(src, dst):
        seen.append(os.path.basename(src))
        original_replace(src, dst)

    monkeypatch.setattr(os, "replace", recording_replace)
    store.set("a", 1)
    store.set("b", 2)

    assert len(seen) == 2 and seen[0] != seen[1]
    assert all(name.startswith("run_state.") and name.endswith(".tmp") for name in seen)
