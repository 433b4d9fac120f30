from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BASE_DIR / "src"))

from grifo_turnos.models import (  # noqa: E402
    CashDrawerSession,
    CloseSessionRequest,
    OpenSessionRequest,
    ShiftConfig,
)
from grifo_turnos.storage import InMemoryKeyValueStore, SessionLocalFlagStore  # noqa: E402

LIMA = timezone(timedelta(hours=-5))


def at(day: str, hhmm: str) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime.combine(date.fromisoformat(day), datetime.min.time(), tzinfo=LIMA).replace(
        hour=int(hours), minute=int(minutes)
    )


def make_shift_config() -> ShiftConfig:
    return ShiftConfig(
        windows={
            "León": {"start": "05:00", "end": "12:00"},
            "Lobo": {"start": "12:00", "end": "19:00"},
            "Búho": {"start": "19:00", "end": "05:00"},
        },
        order=["León", "Lobo", "Búho"],
    )


@dataclass
class MutableClock:
    current: datetime

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current = self.current + timedelta(**delta)


@dataclass
class FakeSessionStore:
    clock: MutableClock
    error: Exception | None = None
    open_error: Exception | None = None
    close_error: Exception | None = None
    history_error: Exception | None = None
    sessions: list[CashDrawerSession] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    next_id: int = 100

    def _check(self, name: str, specific: Exception | None = None) -> None:
        self.calls.append(name)
        if specific is not None:
            raise specific
        if self.error is not None:
            raise self.error

    async def get_session(self, day_key: str, shift_name: str) -> CashDrawerSession | None:
        self._check("get_session")
        for session in reversed(self.sessions):
            if session.day_key == day_key and session.shift_name == shift_name:
                return session
        return None

    async def open_session(self, request: OpenSessionRequest) -> CashDrawerSession:
        self._check("open_session", self.open_error)
        self.next_id += 1
        session = CashDrawerSession(
            id=self.next_id,
            day_key=request.day_key,
            shift_name=request.shift_name,
            status="open",
            opening_amount=request.opening_amount,
            opened_by=request.opened_by,
            opened_by_name=request.opened_by_name,
            opened_at=self.clock(),
        )
        self.sessions.append(session)
        return session

    async def close_session(self, request: CloseSessionRequest) -> CashDrawerSession:
        self._check("close_session", self.close_error)
        for index, session in enumerate(self.sessions):
            if session.id == request.session_id:
                closed = session.model_copy(
                    update={
                        "status": "closed",
                        "closing_amount": request.closing_amount,
                        "sales_amount": request.sales_amount,
                        "notes": request.notes,
                        "closed_by": request.closed_by,
                        "closed_by_name": request.closed_by_name,
                        "closed_at": self.clock(),
                    }
                )
                self.sessions[index] = closed
                return closed
        raise AssertionError(f"unknown session {request.session_id}")

    async def get_day_history(self, day_key: str) -> list[CashDrawerSession]:
        self._check("get_day_history", self.history_error)
        return [session for session in self.sessions if session.day_key == day_key]

    async def list_sessions(self, date_from: Any, date_to: Any) -> list[CashDrawerSession]:
        self._check("list_sessions")
        return [
            session
            for session in self.sessions
            if session.day_key and str(date_from) <= session.day_key <= str(date_to)
        ]


@dataclass
class FakeSettings:
    config: ShiftConfig | None = None
    error: Exception | None = None

    async def get_shift_config(self) -> ShiftConfig:
        if self.error is not None:
            raise self.error
        return self.config or make_shift_config()


@dataclass
class FakeSales:
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: Exception | None = None
    limits: list[int] = field(default_factory=list)

    async def get_recent_sales(self, limit: int) -> list[dict[str, Any]]:
        self.limits.append(limit)
        if self.error is not None:
            raise self.error
        return list(self.rows)


@dataclass
class FakePaymentMethods:
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: Exception | None = None

    async def get_active_payment_methods(self) -> list[dict[str, Any]]:
        if self.error is not None:
            raise self.error
        return list(self.rows)


@pytest.fixture
def shift_config() -> ShiftConfig:
    return make_shift_config()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def flags(kv_store: InMemoryKeyValueStore) -> SessionLocalFlagStore:
    return SessionLocalFlagStore(kv_store)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(at("2024-05-10", "08:00"))


@pytest.fixture
def session_store(clock: MutableClock) -> FakeSessionStore:
    return FakeSessionStore(clock=clock)
