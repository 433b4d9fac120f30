from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Any, Callable, Iterator

from pydantic import ValidationError as PydanticValidationError

from .cash_drawer import CashDrawerSessionController, DrawerState, FallbackPolicy, StateSource
from .clients import CashBoxClient, PaymentMethodsClient, SalesClient, SettingsClient
from .config import ClientConfig
from .exceptions import ApiError
from .history import map_sessions_to_events
from .logging import get_logger, log_action
from .models import (
    CashDrawerSession,
    CashEvent,
    CloseSessionRequest,
    OpenSessionRequest,
    Operator,
    PaymentMethod,
    SaleRecord,
    ShiftConfig,
)
from .payments import BUILTIN_CATALOG, merge_catalog
from .ports import KeyValueStore, PaymentMethodProvider, SalesProvider, SessionStore, ShiftConfigProvider
from .sales import ShiftTotals, filter_by_shift, normalize_sales, summarize
from .shifts import get_shift_range, resolve_shift_name
from .storage import JsonFileKeyValueStore, SessionLocalFlagStore
from .http_client import HttpClient, TraceContext

logger = get_logger(__name__)

RemoteFailure = (ApiError, ValueError)


@dataclass
class SessionService:
    """Explicit holder of the shift screen state, refreshed on demand or on a timer.

    Remote failures never wipe the last known good state: they are recorded in
    ``last_error`` and logged.
    """

    settings: ShiftConfigProvider
    sessions: SessionStore
    sales: SalesProvider
    payment_methods: PaymentMethodProvider
    flags: SessionLocalFlagStore
    policy: FallbackPolicy = field(default_factory=FallbackPolicy)
    timezone: tzinfo | None = None
    recent_sales_limit: int = 25
    refresh_interval_seconds: float = 30.0
    clock: Callable[[], datetime] | None = None
    http: HttpClient | None = None

    config: ShiftConfig | None = None
    drawer: DrawerState | None = None
    recent_sales: list[SaleRecord] = field(default_factory=list)
    catalog: list[PaymentMethod] = field(default_factory=lambda: list(BUILTIN_CATALOG))
    last_error: Exception | None = None
    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _pending_reconcile: asyncio.Task[Any] | None = field(default=None, repr=False)
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)
    _own_writes: int = field(default=0, repr=False)
    _disposed: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self._unsubscribe = self.flags.store.subscribe(self._on_store_change)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        access_token: str | None = None,
        store: KeyValueStore | None = None,
        policy: FallbackPolicy | None = None,
    ) -> "SessionService":
        http = HttpClient(config=config, trace=TraceContext())
        store = store or JsonFileKeyValueStore(directory=config.state_dir)
        return cls(
            settings=SettingsClient(http=http, access_token=access_token),
            sessions=CashBoxClient(http=http, access_token=access_token),
            sales=SalesClient(http=http, access_token=access_token),
            payment_methods=PaymentMethodsClient(http=http, access_token=access_token),
            flags=SessionLocalFlagStore(store),
            policy=policy or FallbackPolicy(),
            timezone=config.tzinfo,
            recent_sales_limit=config.recent_sales_limit,
            refresh_interval_seconds=config.refresh_interval_seconds,
            http=http,
        )

    def now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.now(self.timezone)

    @property
    def shift_config(self) -> ShiftConfig:
        return self.config or ShiftConfig()

    @property
    def controller(self) -> CashDrawerSessionController:
        return CashDrawerSessionController(
            sessions=self.sessions,
            flags=self.flags,
            config=self.shift_config,
            policy=self.policy,
            clock=self.now,
        )

    def active_shift(self) -> str:
        return resolve_shift_name(self.shift_config, self.now())

    def day_key(self, shift_name: str | None = None) -> str:
        """Business day of the shift instance running now (a night shift keeps its start date)."""
        name = shift_name or self.active_shift()
        return get_shift_range(self.shift_config, name, self.now()).day_key

    @contextmanager
    def _writing(self) -> Iterator[None]:
        self._own_writes += 1
        try:
            yield
        finally:
            self._own_writes -= 1

    def _record_failure(self, action: str, exc: Exception) -> None:
        self.last_error = exc
        log_action(
            logger,
            "service",
            action,
            "remote_failure",
            trace_id=getattr(exc, "trace_id", None),
            level=logging.WARNING,
            error=type(exc).__name__,
        )

    async def load_config(self) -> ShiftConfig:
        self.config = await self.settings.get_shift_config()
        log_action(logger, "service", "load_config", "success", shifts=self.config.names)
        return self.config

    async def refresh(self) -> DrawerState:
        check_external = getattr(self.flags.store, "check_external_changes", None)
        if callable(check_external):
            with self._writing():
                check_external()

        failed = False
        if self.config is None:
            try:
                await self.load_config()
            except RemoteFailure as exc:
                failed = True
                self._record_failure("load_config", exc)

        with self._writing():
            state = await self.controller.reconcile(self.day_key(), self.active_shift())
        self.drawer = state
        failed = failed or state.source is StateSource.LOCAL

        sales_result, methods_result = await asyncio.gather(
            self.sales.get_recent_sales(self.recent_sales_limit),
            self.payment_methods.get_active_payment_methods(),
            return_exceptions=True,
        )
        for result in (methods_result, sales_result):
            if isinstance(result, BaseException) and not isinstance(result, RemoteFailure):
                raise result
        if isinstance(methods_result, BaseException):
            failed = True
            self._record_failure("payment_methods", methods_result)
        else:
            self.catalog = merge_catalog(methods_result)
        if isinstance(sales_result, BaseException):
            failed = True
            self._record_failure("recent_sales", sales_result)
        else:
            self.recent_sales = normalize_sales(sales_result, self.catalog)

        if not failed:
            self.last_error = None
        log_action(
            logger,
            "service",
            "refresh",
            "degraded" if failed else "success",
            day_key=state.day_key,
            shift=state.shift_name,
            is_open=state.is_open,
            sales=len(self.recent_sales),
        )
        return state

    def start(self, interval: float | None = None) -> asyncio.Task[None]:
        """Run ``refresh`` now and then every ``interval`` seconds until ``dispose``."""
        if self._disposed:
            raise RuntimeError("SessionService has been disposed")
        seconds = self.refresh_interval_seconds if interval is None else interval
        if seconds <= 0:
            raise ValueError(f"refresh interval must be positive, got {seconds}")
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run(seconds))
        return self._task

    async def _run(self, interval: float) -> None:
        while True:
            try:
                await self.refresh()
            except Exception as exc:
                self.last_error = exc
                logger.exception("periodic refresh failed")
            await asyncio.sleep(interval)

    async def dispose(self) -> None:
        self._disposed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in (self._task, self._pending_reconcile):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._pending_reconcile = None
        if self.http is not None:
            await self.http.aclose()

    def _on_store_change(self, key: str) -> None:
        if self._own_writes or self._disposed:
            return
        day_key = self.day_key()
        if key not in self.flags.watched_keys(day_key, self.shift_config.names):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.drawer = self.controller.state_for(day_key)
            return
        if self._pending_reconcile is None or self._pending_reconcile.done():
            self._pending_reconcile = loop.create_task(self._reconcile_after_change())

    async def _reconcile_after_change(self) -> None:
        with self._writing():
            self.drawer = await self.controller.reconcile(self.day_key(), self.active_shift())

    async def open_drawer(self, opening_amount: Decimal, operator: Operator | None = None) -> CashDrawerSession:
        shift_name = self.active_shift()
        day_key = self.day_key(shift_name)
        operator = operator or Operator()
        request = OpenSessionRequest(
            day_key=day_key,
            shift_name=shift_name,
            opening_amount=opening_amount,
            opened_by=operator.id,
            opened_by_name=operator.name,
        )
        controller = self.controller
        try:
            with self._writing():
                session = await controller.open(request)
        except ApiError as exc:
            self.last_error = exc
            self.drawer = controller.state_for(day_key)
            raise
        self.drawer = DrawerState(
            day_key=day_key,
            shift_name=shift_name,
            is_open=True,
            session=session,
            source=StateSource.REMOTE,
        )
        return session

    def _open_drawer_state(self) -> DrawerState:
        if self.drawer is not None and self.drawer.is_open:
            return self.drawer
        return self.controller.state_for(self.day_key())

    async def close_drawer(
        self,
        closing_amount: Decimal,
        operator: Operator | None = None,
        notes: str | None = None,
    ) -> CashDrawerSession:
        state = self._open_drawer_state()
        shift_name = state.shift_name or self.active_shift()
        session_id = state.session.id if state.session is not None and state.session.has_id else None
        operator = operator or Operator()
        request = CloseSessionRequest(
            session_id=session_id,
            day_key=state.day_key,
            shift_name=shift_name,
            closing_amount=closing_amount,
            sales_amount=self.totals_for(shift_name).gross_total,
            notes=notes,
            closed_by=operator.id,
            closed_by_name=operator.name,
        )
        controller = self.controller
        try:
            with self._writing():
                session = await controller.close(request)
        except ApiError as exc:
            self.last_error = exc
            self.drawer = controller.state_for(state.day_key)
            raise
        self.drawer = DrawerState(
            day_key=state.day_key,
            shift_name=self.active_shift(),
            is_open=False,
            session=session,
            source=StateSource.REMOTE,
        )
        return session

    def suggested_opening_amount(self, typed_amount: Decimal | None = None) -> Decimal | None:
        shift_name = self.active_shift()
        drawer_open = self.drawer is not None and self.drawer.is_open
        with self._writing():
            return self.controller.suggest_opening_amount(
                self.day_key(shift_name),
                shift_name,
                drawer_open=drawer_open,
                typed_amount=typed_amount,
            )

    def totals_for(self, shift_name: str) -> ShiftTotals:
        shift_sales = filter_by_shift(self.recent_sales, shift_name, self.shift_config, self.now())
        opening = Decimal("0")
        drawer = self.drawer
        if drawer is not None and drawer.is_open and drawer.shift_name == shift_name and drawer.session:
            opening = drawer.session.opening_amount
        return summarize(shift_sales, self.catalog, opening)

    def current_totals(self) -> ShiftTotals:
        drawer = self.drawer
        if drawer is not None and drawer.is_open and drawer.shift_name:
            return self.totals_for(drawer.shift_name)
        return self.totals_for(self.active_shift())

    def sale_context(self) -> dict[str, str]:
        """Shift and day a new sale should be recorded under while a drawer is open."""
        day_key = self.day_key()
        context = {"day_date": day_key}
        pointer = self.flags.current_open(day_key)
        if pointer is not None:
            context["shift_name"] = pointer.shift_name
        return context

    async def history(self, day_key: str) -> list[CashEvent]:
        try:
            rows = await self.sessions.get_day_history(day_key)
        except RemoteFailure as exc:
            self._record_failure("history", exc)
            return self._cached_history(day_key)
        events = map_sessions_to_events(rows)
        with self._writing():
            self.flags.write_history_cache(day_key, [event.model_dump(mode="json") for event in events])
        return events

    def _cached_history(self, day_key: str) -> list[CashEvent]:
        events: list[CashEvent] = []
        for raw in self.flags.read_history_cache().get(day_key, []):
            try:
                events.append(CashEvent.model_validate(raw))
            except PydanticValidationError:
                continue
        return events
