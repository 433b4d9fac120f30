from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable

from .exceptions import ApiError, SessionIdMissingError
from .history import map_sessions_to_events, relabel_events
from .logging import get_logger, log_action
from .models import CashDrawerSession, CloseSessionRequest, OpenSessionRequest, ShiftConfig
from .ports import SessionStore
from .shifts import next_shift, resolve_shift_name
from .storage import SessionLocalFlagStore

logger = get_logger(__name__)


class FallbackAction(str, Enum):
    KEEP_LOCAL_OPTIMISTIC = "keep_local_optimistic"
    STRICT_REMOTE = "strict_remote"


@dataclass(frozen=True)
class FallbackPolicy:
    on_open_failure: FallbackAction = FallbackAction.KEEP_LOCAL_OPTIMISTIC
    on_close_failure: FallbackAction = FallbackAction.KEEP_LOCAL_OPTIMISTIC


class StateSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class DrawerState:
    day_key: str
    shift_name: str | None
    is_open: bool
    session: CashDrawerSession | None = None
    source: StateSource = StateSource.LOCAL


def next_day_key(day_key: str) -> str:
    return (date.fromisoformat(day_key[:10]) + timedelta(days=1)).isoformat()


@dataclass
class CashDrawerSessionController:
    """Open/close lifecycle of the drawer for one ``(day_key, shift_name)`` at a time.

    The remote store is authoritative. Local flags mirror it so the drawer state
    survives an unreachable backend, within the limits of ``policy``.
    """

    sessions: SessionStore
    flags: SessionLocalFlagStore
    config: ShiftConfig
    policy: FallbackPolicy = field(default_factory=FallbackPolicy)
    clock: Callable[[], datetime] = datetime.now

    async def open(self, request: OpenSessionRequest) -> CashDrawerSession:
        try:
            session = await self.sessions.open_session(request)
        except ApiError as exc:
            optimistic = self.policy.on_open_failure is FallbackAction.KEEP_LOCAL_OPTIMISTIC
            if optimistic:
                self.flags.mark_open(request.day_key, request.shift_name)
            log_action(
                logger,
                "cash_drawer",
                "open",
                "local_fallback" if optimistic else "failed",
                trace_id=exc.trace_id,
                level=logging.WARNING,
                day_key=request.day_key,
                shift=request.shift_name,
                status_code=exc.status_code,
            )
            raise
        self.flags.mark_open(request.day_key, request.shift_name)
        log_action(
            logger,
            "cash_drawer",
            "open",
            "success",
            day_key=request.day_key,
            shift=request.shift_name,
            opening_amount=request.opening_amount,
            session_id=session.id,
        )
        return session

    async def close(self, request: CloseSessionRequest) -> CashDrawerSession:
        if not request.has_session_id:
            raise SessionIdMissingError(request.day_key, request.shift_name)

        try:
            session = await self.sessions.close_session(request)
        except ApiError as exc:
            if self.policy.on_close_failure is FallbackAction.STRICT_REMOTE:
                log_action(
                    logger,
                    "cash_drawer",
                    "close",
                    "failed",
                    trace_id=exc.trace_id,
                    level=logging.WARNING,
                    day_key=request.day_key,
                    shift=request.shift_name,
                    status_code=exc.status_code,
                )
                raise
            self._settle_close(request, failure=exc)
            raise
        self._settle_close(request)
        return session

    def _settle_close(self, request: CloseSessionRequest, failure: ApiError | None = None) -> None:
        """Drop the local open flag and carry the closing amount to the next shift."""
        self.flags.clear(request.day_key, request.shift_name)
        upcoming = next_shift(request.shift_name, self.config.rotation)
        upcoming_day = (
            next_day_key(request.day_key)
            if upcoming == self.config.first_in_rotation
            else request.day_key
        )
        self.flags.write_suggestion(upcoming_day, upcoming, request.closing_amount)
        log_action(
            logger,
            "cash_drawer",
            "close",
            "local_fallback" if failure else "success",
            trace_id=failure.trace_id if failure else None,
            level=logging.WARNING if failure else logging.INFO,
            day_key=request.day_key,
            shift=request.shift_name,
            closing_amount=request.closing_amount,
            next_day_key=upcoming_day,
            next_shift=upcoming,
        )

    def active_shift(self) -> str:
        return resolve_shift_name(self.config, self.clock())

    async def _last_open_shift(self, day_key: str) -> str | None:
        try:
            rows = await self.sessions.get_day_history(day_key)
        except (ApiError, ValueError) as exc:
            log_action(
                logger,
                "cash_drawer",
                "day_history",
                "unavailable",
                trace_id=getattr(exc, "trace_id", None),
                day_key=day_key,
            )
            return None
        events = relabel_events(map_sessions_to_events(rows), self.config, self.clock())
        if events and events[0].type == "open":
            return events[0].shift
        return None

    async def reconcile(self, day_key: str, active_shift: str | None = None) -> DrawerState:
        """Align local flags with the server for ``day_key``.

        The shift of the newest history event wins when that event is an open;
        otherwise the active shift is queried. Remote failures fall back to the
        local flags.
        """
        active = active_shift or self.active_shift()
        try:
            used = await self._last_open_shift(day_key) or active
            session = await self.sessions.get_session(day_key, used)
        except (ApiError, ValueError) as exc:
            state = self.state_for(day_key)
            log_action(
                logger,
                "cash_drawer",
                "reconcile",
                "local_fallback",
                trace_id=getattr(exc, "trace_id", None),
                level=logging.WARNING,
                day_key=day_key,
                shift=state.shift_name,
                is_open=state.is_open,
            )
            return state

        if session is not None and session.is_open:
            self.flags.mark_open(day_key, used)
            log_action(logger, "cash_drawer", "reconcile", "open", day_key=day_key, shift=used)
            return DrawerState(
                day_key=day_key,
                shift_name=used,
                is_open=True,
                session=session,
                source=StateSource.REMOTE,
            )
        self.flags.clear_day(day_key, {*self.config.names, used})
        log_action(logger, "cash_drawer", "reconcile", "closed", day_key=day_key, shift=active)
        return DrawerState(
            day_key=day_key,
            shift_name=active,
            is_open=False,
            session=session,
            source=StateSource.REMOTE,
        )

    def state_for(self, day_key: str) -> DrawerState:
        pointer = self.flags.current_open(day_key)
        if pointer is not None:
            return DrawerState(day_key=day_key, shift_name=pointer.shift_name, is_open=True)
        open_shifts = self.flags.open_shifts(day_key, self.config.names)
        if open_shifts:
            return DrawerState(day_key=day_key, shift_name=open_shifts[0], is_open=True)
        return DrawerState(day_key=day_key, shift_name=None, is_open=False)

    def suggest_opening_amount(
        self,
        day_key: str,
        shift_name: str,
        *,
        drawer_open: bool,
        typed_amount: Decimal | None = None,
    ) -> Decimal | None:
        """Amount to pre-fill in the opening form, or ``None`` to leave it untouched."""
        if drawer_open or typed_amount is not None:
            return None
        if shift_name == self.config.first_in_rotation:
            self.flags.write_suggestion(day_key, shift_name, None)
            return Decimal("0")
        return self.flags.read_suggestion(day_key, shift_name)
