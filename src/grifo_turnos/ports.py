from __future__ import annotations

from datetime import date
from typing import Any, Callable, Protocol

from .models import CashDrawerSession, CloseSessionRequest, OpenSessionRequest, ShiftConfig

StoreListener = Callable[[str], None]


class ShiftConfigProvider(Protocol):
    async def get_shift_config(self) -> ShiftConfig: ...


class SessionStore(Protocol):
    async def get_session(self, day_key: str, shift_name: str) -> CashDrawerSession | None: ...

    async def open_session(self, request: OpenSessionRequest) -> CashDrawerSession: ...

    async def close_session(self, request: CloseSessionRequest) -> CashDrawerSession: ...

    async def get_day_history(self, day_key: str) -> list[CashDrawerSession]: ...

    async def list_sessions(self, date_from: date | str, date_to: date | str) -> list[CashDrawerSession]: ...


class SalesProvider(Protocol):
    async def get_recent_sales(self, limit: int) -> list[dict[str, Any]]: ...


class PaymentMethodProvider(Protocol):
    async def get_active_payment_methods(self) -> list[dict[str, Any]]: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def subscribe(self, listener: StoreListener) -> Callable[[], None]: ...
