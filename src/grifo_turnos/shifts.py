from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from .logging import get_logger, log_action
from .models import FALLBACK_SHIFT, ShiftConfig, ShiftWindow, normalize_time

logger = get_logger(__name__)

_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_WINDOW_KEYS = ("shift_hours", "shiftHours", "turnos", "shifts")
_ORDER_KEYS = ("shift_order", "shiftOrder", "order")


@dataclass(frozen=True)
class ShiftRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @property
    def day_key(self) -> str:
        return day_key_for(self.start)


def to_minutes(hhmm: str | None) -> int:
    hours, _, minutes = (hhmm or "00:00").strip().partition(":")
    return int(hours or 0) * 60 + int(minutes or 0)


def in_range(t: int, s: int, e: int) -> bool:
    """Half-open minute window check; ``s > e`` wraps past midnight."""
    if s <= e:
        return s <= t < e
    return t >= s or t < e


def _minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def resolve_shift_name(config: ShiftConfig, now: datetime) -> str:
    minute = _minute_of_day(now)
    for name, window in config.windows.items():
        if in_range(minute, to_minutes(window.start), to_minutes(window.end)):
            return name
    return config.names[0] if config.names else FALLBACK_SHIFT


def _at(day: date, hhmm: str, tzinfo: Any) -> datetime:
    minutes = to_minutes(hhmm)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tzinfo)


def full_day_range(now: datetime) -> ShiftRange:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    return ShiftRange(start=start, end=end)


def get_shift_range(config: ShiftConfig, name: str, now: datetime) -> ShiftRange:
    """Concrete instants of the ``name`` window that belongs to ``now``'s day.

    For a window crossing midnight, the instance that ``now`` falls in is
    returned: before the end it started yesterday, at or after the start it
    ends tomorrow. Unknown names resolve to the whole calendar day.
    """
    window = config.windows.get(name)
    if window is None:
        return full_day_range(now)
    today = now.date()
    start = _at(today, window.start, now.tzinfo)
    end = _at(today, window.end, now.tzinfo)
    if to_minutes(window.start) <= to_minutes(window.end):
        return ShiftRange(start=start, end=end)
    minute = _minute_of_day(now)
    if minute < to_minutes(window.end):
        start -= timedelta(days=1)
    else:
        end += timedelta(days=1)
    return ShiftRange(start=start, end=end)


def next_shift(current: str, order: Sequence[str]) -> str:
    if not order:
        return current
    try:
        index = list(order).index(current)
    except ValueError:
        return order[0]
    return order[(index + 1) % len(order)]


def align_to(ts: datetime, reference: datetime) -> datetime:
    """Express ``ts`` in the same awareness and zone as ``reference``."""
    if reference.tzinfo is None:
        return ts.astimezone().replace(tzinfo=None) if ts.tzinfo is not None else ts
    if ts.tzinfo is None:
        return ts.replace(tzinfo=reference.tzinfo)
    return ts.astimezone(reference.tzinfo)


def shift_for_timestamp(config: ShiftConfig, ts: datetime, reference: datetime | None = None) -> str | None:
    """Shift whose window holds ``ts`` on the wall clock of ``reference`` (of ``ts`` itself when omitted)."""
    local = align_to(ts, reference) if reference is not None else ts
    for name in config.windows:
        if get_shift_range(config, name, local).contains(local):
            return name
    return None


def day_key_for(moment: datetime | date) -> str:
    return moment.strftime("%Y-%m-%d")


def shift_day_key(config: ShiftConfig, name: str, now: datetime) -> str:
    return get_shift_range(config, name, now).day_key


def shift_slug(name: str | None) -> str:
    decomposed = unicodedata.normalize("NFD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().lower()


def normalize_shift_label(name: Any) -> str:
    if name is None:
        return FALLBACK_SHIFT
    cleaned = " ".join(_ZERO_WIDTH.sub("", str(name)).split())
    return cleaned or FALLBACK_SHIFT


def _pick(payload: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _parse_window(value: Any) -> tuple[str, str] | None:
    if isinstance(value, str):
        start, sep, end = value.partition("-")
        if not sep:
            return None
    elif isinstance(value, Mapping):
        start, end = value.get("start"), value.get("end")
    else:
        return None
    start_norm, end_norm = normalize_time(start), normalize_time(end)
    if start_norm is None or end_norm is None:
        return None
    return start_norm, end_norm


def _collect_windows(raw: Any) -> dict[str, ShiftWindow]:
    windows: dict[str, ShiftWindow] = {}
    if isinstance(raw, list):
        entries = [
            (item.get("name"), item) for item in raw if isinstance(item, Mapping)
        ]
    elif isinstance(raw, Mapping):
        entries = list(raw.items())
    else:
        return windows
    for name, value in entries:
        label = str(name or "").strip()
        parsed = _parse_window(value)
        if not label or parsed is None:
            log_action(logger, "shifts", "parse_window", "skipped", shift=label or None)
            continue
        windows[label] = ShiftWindow(start=parsed[0], end=parsed[1])
    return windows


def shift_config_from_settings(payload: Mapping[str, Any] | None) -> ShiftConfig:
    """Build a ``ShiftConfig`` from the backend settings document."""
    payload = payload or {}
    nested = payload.get("settings") if isinstance(payload.get("settings"), Mapping) else {}
    raw_windows = _pick(payload, _WINDOW_KEYS)
    if raw_windows is None:
        raw_windows = nested.get("shift_hours")
    raw_order = _pick(payload, _ORDER_KEYS)
    if raw_order is None:
        raw_order = nested.get("shift_order")
    windows = _collect_windows(raw_windows)
    order = [str(item) for item in raw_order] if isinstance(raw_order, list) else None
    try:
        return ShiftConfig(windows=windows, order=order)
    except PydanticValidationError:
        log_action(logger, "shifts", "parse_settings", "invalid")
        return ShiftConfig()
