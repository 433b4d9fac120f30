from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path

from grifo_turnos.storage import (
    CURRENT_OPEN_KEY,
    HISTORY_CACHE_KEY,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    SessionLocalFlagStore,
    open_flag_key,
    suggest_key,
)


def test_keys_are_namespaced_by_day_and_slug() -> None:
    assert open_flag_key("2024-05-10", "Búho") == "cash_box_open_v1:2024-05-10:buho"
    assert suggest_key("2024-05-10", "León") == "open_suggest_v1:2024-05-10:leon"


def test_mark_open_writes_flag_and_pointer(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    flags.mark_open("2024-05-10", "Lobo")

    assert kv_store.get("cash_box_open_v1:2024-05-10:lobo") == "1"
    pointer = json.loads(kv_store.get(CURRENT_OPEN_KEY) or "{}")
    assert pointer["day"] == "2024-05-10"
    assert pointer["shift"] == "Lobo"
    assert flags.current_open("2024-05-10").shift_name == "Lobo"
    assert flags.current_open("2024-05-11") is None


def test_flag_is_written_before_pointer(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    seen: list[str] = []
    kv_store.subscribe(seen.append)

    flags.mark_open("2024-05-10", "León")

    assert seen == [open_flag_key("2024-05-10", "León"), CURRENT_OPEN_KEY]


def test_clear_removes_flag_and_pointer(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    flags.mark_open("2024-05-10", "León")
    flags.clear("2024-05-10", "León")

    assert not flags.is_open("2024-05-10", "León")
    assert kv_store.get(CURRENT_OPEN_KEY) is None


def test_clear_day_keeps_pointer_of_other_day(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    flags.mark_open("2024-05-09", "Búho")
    flags.clear_day("2024-05-10", ["León", "Lobo", "Búho"])
    assert flags.current_open("2024-05-09") is not None

    flags.clear_day("2024-05-09", ["León", "Lobo", "Búho"])
    assert kv_store.get(CURRENT_OPEN_KEY) is None
    assert flags.open_shifts("2024-05-09", ["León", "Lobo", "Búho"]) == []


def test_pointer_without_flag_is_ignored(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    kv_store.set(CURRENT_OPEN_KEY, json.dumps({"day": "2024-05-10", "shift": "Lobo"}))
    assert flags.current_open("2024-05-10") is None


def test_corrupt_pointer_is_treated_as_absent(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    kv_store.set(CURRENT_OPEN_KEY, "{not json")
    assert flags.current_open("2024-05-10") is None
    kv_store.set(CURRENT_OPEN_KEY, json.dumps({"day": "2024-05-10"}))
    assert flags.current_open("2024-05-10") is None


def test_suggestion_roundtrip_and_corruption(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    flags.write_suggestion("2024-05-10", "Lobo", Decimal("120.50"))
    assert flags.read_suggestion("2024-05-10", "Lobo") == Decimal("120.50")

    stored = flags.write_suggestion("2024-05-10", "Lobo", Decimal("120.50"))
    assert (stored.day_key, stored.shift_name, stored.amount) == ("2024-05-10", "Lobo", Decimal("120.50"))

    flags.write_suggestion("2024-05-10", "Lobo", None)
    assert flags.read_suggestion("2024-05-10", "Lobo") is None

    kv_store.set(suggest_key("2024-05-10", "Lobo"), "abc")
    assert flags.read_suggestion("2024-05-10", "Lobo") is None


def test_history_cache_tolerates_corruption(flags: SessionLocalFlagStore, kv_store: InMemoryKeyValueStore) -> None:
    kv_store.set(HISTORY_CACHE_KEY, "[broken")
    assert flags.read_history_cache() == {}

    flags.write_history_cache("2024-05-10", [{"type": "open"}])
    assert flags.read_history_cache() == {"2024-05-10": [{"type": "open"}]}


def test_unsubscribe_stops_notifications() -> None:
    store = InMemoryKeyValueStore()
    seen: list[str] = []
    unsubscribe = store.subscribe(seen.append)
    store.set("a", "1")
    unsubscribe()
    store.set("b", "1")
    store.remove("missing")
    assert seen == ["a"]


def test_json_file_store_persists(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(directory=str(tmp_path))
    store.set("k", "v")

    reopened = JsonFileKeyValueStore(directory=str(tmp_path))
    assert reopened.get("k") == "v"
    reopened.remove("k")
    assert store.get("k") is None


def test_json_file_store_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    (tmp_path / "state.json").write_text("{oops", encoding="utf-8")
    store = JsonFileKeyValueStore(directory=str(tmp_path))

    assert store.get("anything") is None
    store.set("k", "v")
    assert json.loads((tmp_path / "state.json").read_text(encoding="utf-8")) == {"k": "v"}


def test_json_file_store_detects_external_changes(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(directory=str(tmp_path))
    store.set("a", "1")
    seen: list[str] = []
    store.subscribe(seen.append)
    assert store.check_external_changes() == []

    path = tmp_path / "state.json"
    path.write_text(json.dumps({"a": "1", "b": "2"}), encoding="utf-8")
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 5))

    assert store.check_external_changes() == ["b"]
    assert seen == ["b"]
