from .cash_drawer import (
    CashDrawerSessionController,
    DrawerState,
    FallbackAction,
    FallbackPolicy,
    StateSource,
)
from .config import ClientConfig, ConfigError, load_config
from .exceptions import (
    ApiError,
    ConflictError,
    NotFoundError,
    ServerError,
    SessionIdMissingError,
    TransportError,
    ValidationError,
)
from .history import group_by_day, map_sessions_to_events, relabel_events
from .http_client import HttpClient, TraceContext
from .logging import configure_logging
from .models import (
    CashDrawerSession,
    CashEvent,
    CloseSessionRequest,
    HistoryDay,
    OpenSessionRequest,
    Operator,
    PaymentMethod,
    SaleRecord,
    SessionStatus,
    ShiftConfig,
    ShiftWindow,
)
from .payments import merge_catalog, resolve_payment_label
from .sales import ShiftTotals, assign_shift, filter_by_shift, is_credit, summarize
from .service import SessionService
from .shifts import (
    ShiftRange,
    get_shift_range,
    in_range,
    next_shift,
    resolve_shift_name,
    shift_config_from_settings,
    to_minutes,
)
from .storage import InMemoryKeyValueStore, JsonFileKeyValueStore, SessionLocalFlagStore

__all__ = [
    "ApiError",
    "CashDrawerSession",
    "CashDrawerSessionController",
    "CashEvent",
    "ClientConfig",
    "CloseSessionRequest",
    "ConfigError",
    "ConflictError",
    "DrawerState",
    "FallbackAction",
    "FallbackPolicy",
    "HistoryDay",
    "HttpClient",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "NotFoundError",
    "OpenSessionRequest",
    "Operator",
    "PaymentMethod",
    "SaleRecord",
    "ServerError",
    "SessionIdMissingError",
    "SessionLocalFlagStore",
    "SessionService",
    "SessionStatus",
    "ShiftConfig",
    "ShiftRange",
    "ShiftTotals",
    "ShiftWindow",
    "StateSource",
    "TraceContext",
    "TransportError",
    "ValidationError",
    "assign_shift",
    "configure_logging",
    "filter_by_shift",
    "get_shift_range",
    "group_by_day",
    "in_range",
    "is_credit",
    "load_config",
    "map_sessions_to_events",
    "merge_catalog",
    "next_shift",
    "relabel_events",
    "resolve_payment_label",
    "resolve_shift_name",
    "shift_config_from_settings",
    "summarize",
    "to_minutes",
]
