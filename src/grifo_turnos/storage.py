from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Iterable

from platformdirs import user_data_dir

from .logging import get_logger, log_action
from .models import LocalOpenFlag, SuggestedAmount
from .ports import KeyValueStore, StoreListener
from .shifts import shift_slug

logger = get_logger(__name__)

OPEN_FLAG_PREFIX = "cash_box_open_v1"
SUGGEST_PREFIX = "open_suggest_v1"
CURRENT_OPEN_KEY = "cash_box_open_current_v1"
HISTORY_CACHE_KEY = "caja_history_v1"
OPEN_FLAG_VALUE = "1"


def open_flag_key(day_key: str, shift_name: str) -> str:
    return f"{OPEN_FLAG_PREFIX}:{day_key}:{shift_slug(shift_name)}"


def suggest_key(day_key: str, shift_name: str) -> str:
    return f"{SUGGEST_PREFIX}:{day_key}:{shift_slug(shift_name)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Listeners:
    callbacks: list[StoreListener] = field(default_factory=list)

    def add(self, listener: StoreListener) -> Callable[[], None]:
        self.callbacks.append(listener)

        def unsubscribe() -> None:
            if listener in self.callbacks:
                self.callbacks.remove(listener)

        return unsubscribe

    def notify(self, key: str) -> None:
        for listener in list(self.callbacks):
            listener(key)


@dataclass
class InMemoryKeyValueStore:
    data: dict[str, str] = field(default_factory=dict)
    _listeners: _Listeners = field(default_factory=_Listeners, repr=False)

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self._listeners.notify(key)

    def remove(self, key: str) -> None:
        if self.data.pop(key, None) is not None:
            self._listeners.notify(key)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        return self._listeners.add(listener)


@dataclass
class JsonFileKeyValueStore:
    """Key/value pairs persisted as one JSON object under the user data dir.

    A file that cannot be read or decoded is treated as empty. Writes made by
    another process are picked up by ``check_external_changes``.
    """

    app_name: str = "grifo-turnos"
    filename: str = "state.json"
    directory: str | None = None
    _listeners: _Listeners = field(default_factory=_Listeners, repr=False)
    _snapshot: dict[str, str] = field(default_factory=dict, repr=False)
    _mtime: float | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._snapshot = self._read()
        self._mtime = self._current_mtime()

    def _path(self) -> Path:
        base = Path(self.directory) if self.directory else Path(user_data_dir(self.app_name, "Grifo"))
        base.mkdir(parents=True, exist_ok=True)
        return base / self.filename

    def _current_mtime(self) -> float | None:
        try:
            return self._path().stat().st_mtime
        except OSError:
            return None

    def _read(self) -> dict[str, str]:
        path = self._path()
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (ValueError, OSError):
            log_action(logger, "storage", "read", "corrupt", path=str(path))
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value) for key, value in payload.items() if value is not None}

    def _write(self, data: dict[str, str]) -> None:
        path = self._path()
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        self._snapshot = dict(data)
        self._mtime = self._current_mtime()

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        self._listeners.notify(key)

    def remove(self, key: str) -> None:
        data = self._read()
        if key not in data:
            return
        del data[key]
        self._write(data)
        self._listeners.notify(key)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def check_external_changes(self) -> list[str]:
        """Notify listeners of keys another process changed since the last look."""
        mtime = self._current_mtime()
        if mtime == self._mtime:
            return []
        current = self._read()
        changed = sorted(
            key
            for key in set(current) | set(self._snapshot)
            if current.get(key) != self._snapshot.get(key)
        )
        self._snapshot = current
        self._mtime = mtime
        for key in changed:
            self._listeners.notify(key)
        return changed


@dataclass
class SessionLocalFlagStore:
    """Local mirror of which drawer is open, plus the carried opening amounts.

    The current-open pointer is written after its flag and removed whenever a
    flag of its day is removed, so it never names a key without a flag.
    """

    store: KeyValueStore
    clock: Callable[[], datetime] = _utcnow

    def is_open(self, day_key: str, shift_name: str) -> bool:
        return self.store.get(open_flag_key(day_key, shift_name)) == OPEN_FLAG_VALUE

    def mark_open(self, day_key: str, shift_name: str) -> LocalOpenFlag:
        flag = LocalOpenFlag(day_key=day_key, shift_name=shift_name, timestamp=self.clock())
        self.store.set(open_flag_key(day_key, shift_name), OPEN_FLAG_VALUE)
        pointer = {"day": day_key, "shift": shift_name, "ts": flag.timestamp.isoformat()}
        self.store.set(CURRENT_OPEN_KEY, json.dumps(pointer, ensure_ascii=False))
        return flag

    def clear(self, day_key: str, shift_name: str) -> None:
        self.store.remove(open_flag_key(day_key, shift_name))
        self.store.remove(CURRENT_OPEN_KEY)

    def clear_day(self, day_key: str, shift_names: Iterable[str]) -> None:
        for name in shift_names:
            self.store.remove(open_flag_key(day_key, name))
        pointer = self._read_pointer()
        if pointer is not None and pointer.day_key == day_key:
            self.store.remove(CURRENT_OPEN_KEY)

    def _read_pointer(self) -> LocalOpenFlag | None:
        raw = self.store.get(CURRENT_OPEN_KEY)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            return LocalOpenFlag(
                day_key=str(payload["day"]),
                shift_name=str(payload["shift"]),
                timestamp=payload.get("ts"),
            )
        except (ValueError, KeyError, TypeError):
            log_action(logger, "storage", "read_pointer", "corrupt")
            return None

    def current_open(self, day_key: str) -> LocalOpenFlag | None:
        pointer = self._read_pointer()
        if pointer is None or pointer.day_key != day_key:
            return None
        if not self.is_open(pointer.day_key, pointer.shift_name):
            return None
        return pointer

    def open_shifts(self, day_key: str, shift_names: Iterable[str]) -> list[str]:
        return [name for name in shift_names if self.is_open(day_key, name)]

    def read_suggestion(self, day_key: str, shift_name: str) -> Decimal | None:
        raw = self.store.get(suggest_key(day_key, shift_name))
        if raw is None:
            return None
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None

    def write_suggestion(self, day_key: str, shift_name: str, amount: Decimal | None) -> SuggestedAmount | None:
        key = suggest_key(day_key, shift_name)
        if amount is None:
            self.store.remove(key)
            return None
        self.store.set(key, str(amount))
        return SuggestedAmount(day_key=day_key, shift_name=shift_name, amount=amount)

    def read_history_cache(self) -> dict[str, list[dict[str, Any]]]:
        raw = self.store.get(HISTORY_CACHE_KEY)
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def write_history_cache(self, day_key: str, events: list[dict[str, Any]]) -> None:
        cache = self.read_history_cache()
        cache[day_key] = events
        self.store.set(HISTORY_CACHE_KEY, json.dumps(cache, ensure_ascii=False, default=str))

    def watched_keys(self, day_key: str, shift_names: Iterable[str]) -> set[str]:
        keys = {open_flag_key(day_key, name) for name in shift_names}
        keys.add(CURRENT_OPEN_KEY)
        return keys
