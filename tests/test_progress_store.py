from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest

from zelara.config import Settings
from zelara.errors import PersistenceError
from zelara.progress import DEFAULT_PROGRESS_KEY, ProgressRecord, ProgressStore
from zelara.storage import FileKeyValueStore, MemoryKeyValueStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class BrokenStorage:
    def __init__(self, *, fail_get: bool = False, fail_set: bool = False) -> None:
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.inner = MemoryKeyValueStore()

    def get(self, key: str) -> bytes | None:
        if self.fail_get:
            raise OSError("disk unavailable")
        return self.inner.get(key)

    def set(self, key: str, value: bytes) -> None:
        if self.fail_set:
            raise OSError("disk full")
        self.inner.set(key, value)


def _store(storage: object | None = None, **kwargs: object) -> ProgressStore:
    return ProgressStore(storage or MemoryKeyValueStore(), clock=lambda: FIXED_NOW, **kwargs)  # type: ignore[arg-type]


def test_first_load_persists_defaults() -> None:
    storage = MemoryKeyValueStore()
    store = _store(storage)

    record = store.load_progress()

    assert record == ProgressRecord(
        points=0,
        unlocked_modules=frozenset({"green"}),
        available_unlocks=frozenset(),
        tasks_completed=frozenset(),
        last_updated=FIXED_NOW,
    )
    stored = json.loads(storage.get(DEFAULT_PROGRESS_KEY) or b"")
    assert stored == {
        "points": 0,
        "unlocked_modules": ["green"],
        "available_unlocks": [],
        "tasks_completed": [],
        "last_updated": "2024-05-01T12:00:00+00:00",
    }


def test_awards_with_distinct_ids_sum_exactly() -> None:
    store = _store()
    amounts = [10, 5, 0, 7, 3]

    for index, amount in enumerate(amounts):
        store.award_points(amount, f"task-{index}")

    record = store.load_progress()
    assert record.points == sum(amounts)
    assert record.tasks_completed == {f"task-{index}" for index in range(len(amounts))}


def test_repeated_task_id_is_credited_once() -> None:
    store = _store()

    first = store.award_points(10, "photo-1")
    retry = store.award_points(10, "photo-1")

    assert first.new_total == 10
    assert retry.new_total == 10
    assert store.get_points() == 10


def test_awards_without_task_id_always_add() -> None:
    store = _store()

    store.award_points(10)
    store.award_points(10)

    assert store.get_points() == 20
    assert store.load_progress().tasks_completed == frozenset()


def test_threshold_crossing_is_reported_once() -> None:
    store = _store()

    results = [store.award_points(10, f"task-{index}") for index in range(6)]

    assert [result.newly_unlocked for result in results] == [[], [], [], [], ["finance"], []]
    assert store.get_available_unlocks() == ["finance"]
    assert store.get_unlocked_modules() == ["green"]


def test_zero_award_picks_up_threshold_already_met() -> None:
    storage = MemoryKeyValueStore()
    _store(storage, thresholds={}).award_points(60, "task-1")
    store = _store(storage, thresholds={"finance": 50})

    assert store.award_points(0).newly_unlocked == ["finance"]
    assert store.award_points(0).newly_unlocked == []


def test_unlocked_module_is_not_reported_again() -> None:
    store = _store()
    store.award_points(50, "task-1")
    store.unlock_module("finance")

    assert store.award_points(10, "task-2").newly_unlocked == []
    assert store.get_available_unlocks() == []
    assert store.get_unlocked_modules() == ["finance", "green"]


def test_negative_award_is_rejected() -> None:
    store = _store()

    with pytest.raises(ValueError):
        store.award_points(-1)
    with pytest.raises(ValueError):
        store.award_points(True)  # type: ignore[arg-type]


def test_unlock_module_is_idempotent() -> None:
    storage = MemoryKeyValueStore()
    store = _store(storage)
    store.award_points(55, "task-1")

    store.unlock_module("finance")
    after_first = storage.get(DEFAULT_PROGRESS_KEY)
    store.unlock_module("finance")

    assert storage.get(DEFAULT_PROGRESS_KEY) == after_first
    record = store.load_progress()
    assert "finance" in record.unlocked_modules
    assert "finance" not in record.available_unlocks


def test_unlock_module_skips_threshold_check() -> None:
    store = _store()

    store.unlock_module("finance")

    assert store.get_points() == 0
    assert store.get_unlocked_modules() == ["finance", "green"]
    assert store.get_next_unlock_progress() is None


def test_next_unlock_progress_reports_lowest_pending_threshold() -> None:
    store = _store(thresholds={"finance": 50, "productivity": 100, "homeowner": 200})
    store.award_points(10, "task-1")

    progress = store.get_next_unlock_progress()

    assert progress is not None
    assert progress.module_name == "finance"
    assert progress.required_points == 50
    assert progress.current_points == 10
    assert progress.fraction == pytest.approx(0.2)

    store.award_points(50, "task-2")
    progress = store.get_next_unlock_progress()
    assert progress is not None
    assert progress.module_name == "productivity"
    assert 0 <= progress.fraction < 1


def test_next_unlock_progress_is_none_when_everything_is_reachable() -> None:
    store = _store()
    assert store.get_next_unlock_progress() is not None

    store.award_points(50, "task-1")

    assert store.get_available_unlocks() == ["finance"]
    assert store.get_next_unlock_progress() is None


def test_reset_then_load_returns_default_record() -> None:
    store = _store()
    store.award_points(70, "task-1")
    store.unlock_module("finance")

    store.reset_progress()

    assert store.load_progress() == store.default_record()


def test_load_degrades_to_default_when_storage_fails() -> None:
    store = _store(BrokenStorage(fail_get=True))

    assert store.load_progress() == store.default_record()
    assert store.get_next_unlock_progress() is not None


def test_load_degrades_when_first_save_fails() -> None:
    store = _store(BrokenStorage(fail_set=True))

    assert store.load_progress() == store.default_record()


def test_load_degrades_on_corrupt_record() -> None:
    storage = MemoryKeyValueStore()
    storage.set(DEFAULT_PROGRESS_KEY, b"{not json")
    store = _store(storage)

    assert store.load_progress().points == 0


def test_mutations_propagate_storage_failures() -> None:
    storage = BrokenStorage()
    store = _store(storage)
    store.award_points(5, "task-1")
    storage.fail_set = True

    with pytest.raises(PersistenceError, match="disk full"):
        store.award_points(5, "task-2")
    with pytest.raises(PersistenceError):
        store.unlock_module("finance")
    with pytest.raises(PersistenceError):
        store.reset_progress()

    storage.fail_set = False
    assert store.get_points() == 5


def test_record_never_holds_module_in_both_sets() -> None:
    record = ProgressRecord.from_payload({
        "points": 60,
        "unlocked_modules": ["green", "finance"],
        "available_unlocks": ["finance"],
        "tasks_completed": [],
        "last_updated": FIXED_NOW.isoformat(),
    })

    assert record is not None
    assert record.available_unlocks == frozenset()


def test_concurrent_awards_do_not_lose_points() -> None:
    store = _store()
    threads = [threading.Thread(target=store.award_points, args=(1, f"task-{index}")) for index in range(25)]

    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.get_points() == 25


def test_file_storage_survives_new_store_instance(tmp_path: Path) -> None:
    settings = Settings(home=tmp_path / "state")
    store = ProgressStore.from_settings(settings)
    store.award_points(12, "task-1")

    reopened = ProgressStore.from_settings(settings)

    assert reopened.get_points() == 12
    assert (tmp_path / "state" / "%40zelara_progress.json").exists()


def test_file_storage_returns_none_for_missing_key(tmp_path: Path) -> None:
    storage = FileKeyValueStore(tmp_path)

    assert storage.get("missing") is None
    storage.set("present", b"{}")
    assert storage.get("present") == b"{}"
    assert [path.name for path in tmp_path.iterdir()] == ["present.json"]
