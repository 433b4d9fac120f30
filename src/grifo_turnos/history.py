from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from .logging import get_logger, log_action
from .models import FALLBACK_SHIFT, CashDrawerSession, CashEvent, HistoryDay, ShiftConfig
from .shifts import align_to, day_key_for, normalize_shift_label, shift_for_timestamp

logger = get_logger(__name__)


def _actor(name: str | None, user_id: Any) -> str:
    if name:
        return name
    if user_id is not None and user_id != "":
        return f"Usuario {user_id}"
    return FALLBACK_SHIFT


def _as_session(row: CashDrawerSession | Mapping[str, Any]) -> CashDrawerSession | None:
    if isinstance(row, CashDrawerSession):
        return row
    try:
        return CashDrawerSession.model_validate(row)
    except PydanticValidationError:
        log_action(logger, "history", "map_row", "skipped", row_id=row.get("id"))
        return None


def _local(ts: datetime, reference_now: datetime | None) -> datetime:
    return align_to(ts, reference_now) if reference_now is not None else ts


def sort_events(events: Iterable[CashEvent]) -> list[CashEvent]:
    """Newest first; on equal timestamps the close event comes before the open."""
    return sorted(
        events,
        key=lambda event: (event.timestamp.timestamp(), event.type == "close"),
        reverse=True,
    )


def _session_events(session: CashDrawerSession) -> list[CashEvent]:
    shift = normalize_shift_label(session.shift_name)
    events: list[CashEvent] = []
    if session.opened_at is not None:
        events.append(
            CashEvent(
                type="open",
                timestamp=session.opened_at,
                by=_actor(session.opened_by_name, session.opened_by),
                shift=shift,
                amount=session.opening_amount,
            )
        )
    if session.closed_at is not None:
        events.append(
            CashEvent(
                type="close",
                timestamp=session.closed_at,
                by=_actor(session.closed_by_name, session.closed_by),
                shift=shift,
                sales_amount=session.sales_amount if session.sales_amount is not None else Decimal("0"),
                closing_amount=session.closing_amount,
                notes=session.notes,
            )
        )
    return events


def map_sessions_to_events(rows: Iterable[CashDrawerSession | Mapping[str, Any]]) -> list[CashEvent]:
    events: list[CashEvent] = []
    for row in rows:
        session = _as_session(row)
        if session is not None:
            events.extend(_session_events(session))
    return sort_events(events)


def relabel_events(
    events: Iterable[CashEvent],
    config: ShiftConfig,
    reference_now: datetime | None = None,
) -> list[CashEvent]:
    """Recompute each event's shift from its own timestamp, keeping the server label otherwise.

    Timestamps are read on the wall clock of ``reference_now``; the backend
    serialises them in UTC.
    """
    relabelled = []
    for event in events:
        computed = shift_for_timestamp(config, event.timestamp, reference_now)
        relabelled.append(event.model_copy(update={"shift": computed or normalize_shift_label(event.shift)}))
    return relabelled


def group_by_day(
    rows: Iterable[CashDrawerSession | Mapping[str, Any]],
    reference_now: datetime | None = None,
) -> list[HistoryDay]:
    """Events grouped by the session's business day, newest day first."""
    days: dict[str, list[CashEvent]] = {}
    for row in rows:
        session = _as_session(row)
        if session is None:
            continue
        session_events = _session_events(session)
        if not session_events:
            continue
        if session.day_key:
            day_key = session.day_key[:10]
        else:
            day_key = day_key_for(_local(session_events[0].timestamp, reference_now))
        days.setdefault(day_key, []).extend(session_events)
    return [
        HistoryDay(day_key=day_key, events=sort_events(days[day_key]))
        for day_key in sorted(days, reverse=True)
    ]
