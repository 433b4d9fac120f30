from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FALLBACK_SHIFT = "—"
_SHORT_OFFSET = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?[+-]\d{2})$")


def normalize_time(value: Any) -> str | None:
    """Normalize "H:M" style input to "HH:MM", clamping out-of-range parts."""
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    hour_part, _, minute_part = raw.partition(":")
    try:
        hours = int(float(hour_part))
        minutes = int(float((minute_part or "0")[:2]))
    except ValueError:
        return None
    hours = max(0, min(23, hours))
    minutes = max(0, min(59, minutes))
    return f"{hours:02d}:{minutes:02d}"


def coerce_timestamp(value: Any) -> Any:
    """Accept Postgres text timestamps such as ``2024-05-01 10:00:00.123-05``."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return _SHORT_OFFSET.sub(r"\1:00", text)
    return value


class SessionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ShiftWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> str:
        normalized = normalize_time(value)
        if normalized is None:
            raise ValueError(f"expected HH:MM, got {value!r}")
        return normalized

    @property
    def crosses_midnight(self) -> bool:
        return self.start > self.end


class ShiftConfig(BaseModel):
    """Named windows in declaration order plus the rotation order."""

    windows: dict[str, ShiftWindow] = Field(default_factory=dict)
    order: list[str] | None = None

    @field_validator("windows")
    @classmethod
    def _check_names(cls, windows: dict[str, ShiftWindow]) -> dict[str, ShiftWindow]:
        cleaned: dict[str, ShiftWindow] = {}
        for name, window in windows.items():
            key = str(name).strip()
            if not key:
                raise ValueError("shift names must be non-empty")
            cleaned[key] = window
        return cleaned

    @model_validator(mode="after")
    def _check_order(self) -> "ShiftConfig":
        if self.order is None:
            self.order = list(self.windows)
        else:
            seen: list[str] = []
            for name in self.order:
                key = str(name).strip()
                if key in self.windows and key not in seen:
                    seen.append(key)
            self.order = seen
        return self

    @property
    def names(self) -> list[str]:
        return list(self.windows)

    @property
    def rotation(self) -> list[str]:
        return list(self.order or [])

    @property
    def first_in_rotation(self) -> str | None:
        return self.order[0] if self.order else None

    @property
    def is_empty(self) -> bool:
        return not self.windows


class CashDrawerSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    day_key: str | None = None
    shift_name: str | None = None
    status: SessionStatus = SessionStatus.OPEN
    opening_amount: Decimal = Decimal("0")
    opened_by: int | str | None = None
    opened_by_name: str | None = None
    opened_at: datetime | None = None
    closing_amount: Decimal | None = None
    closed_by: int | str | None = None
    closed_by_name: str | None = None
    closed_at: datetime | None = None
    sales_amount: Decimal | None = None
    notes: str | None = None

    @field_validator("opened_at", "closed_at", mode="before")
    @classmethod
    def _parse_timestamps(cls, value: Any) -> Any:
        return coerce_timestamp(value)

    @model_validator(mode="before")
    @classmethod
    def _normalize_row(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        row = dict(data)
        if row.get("id") is None:
            for alias in ("session_id", "cash_box_session_id", "sessionId"):
                if row.get(alias) is not None:
                    row["id"] = row[alias]
                    break
        if row.get("day_key") is None:
            row["day_key"] = row.get("day_date") or row.get("date")
        if isinstance(row["day_key"], str):
            row["day_key"] = row["day_key"][:10]
        if row.get("shift_name") is None:
            row["shift_name"] = row.get("shift") or row.get("turno")
        if row.get("opening_amount") is None:
            row["opening_amount"] = 0
        row["status"] = _session_status(row)
        return row

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    @property
    def has_id(self) -> bool:
        return self.id not in (None, "", 0)


def _session_status(row: dict[str, Any]) -> SessionStatus:
    raw = str(row.get("status") or "").strip().lower()
    if raw in {"abierta", "open", "opened"}:
        return SessionStatus.OPEN
    if raw in {"cerrada", "closed"}:
        return SessionStatus.CLOSED
    if isinstance(row.get("is_closed"), bool):
        return SessionStatus.CLOSED if row["is_closed"] else SessionStatus.OPEN
    if row.get("closed_at"):
        return SessionStatus.CLOSED
    return SessionStatus.OPEN


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


class OpenSessionRequest(BaseModel):
    day_key: str
    shift_name: str
    opening_amount: Decimal = Field(ge=0)
    opened_by: int | str | None = None
    opened_by_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "day_date": self.day_key,
            "shift_name": self.shift_name,
            "opening_amount": _money(self.opening_amount),
            "opened_by": self.opened_by,
            "opened_by_name": self.opened_by_name,
        }
        return {key: value for key, value in payload.items() if value is not None}


class CloseSessionRequest(BaseModel):
    session_id: int | str | None = None
    day_key: str
    shift_name: str
    closing_amount: Decimal = Field(ge=0)
    sales_amount: Decimal | None = None
    notes: str | None = None
    closed_by: int | str | None = None
    closed_by_name: str | None = None

    @property
    def has_session_id(self) -> bool:
        return self.session_id not in (None, "", 0)

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "id": self.session_id,
            "is_closed": True,
            "closing_amount": _money(self.closing_amount),
            "sales_amount": _money(self.sales_amount),
            "notes": self.notes,
            "closed_by": self.closed_by,
            "closed_by_name": self.closed_by_name,
        }
        return {key: value for key, value in payload.items() if value is not None}


class LocalOpenFlag(BaseModel):
    day_key: str
    shift_name: str
    timestamp: datetime | None = None


class SuggestedAmount(BaseModel):
    day_key: str
    shift_name: str
    amount: Decimal


class PaymentMethod(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | None = None
    key: str
    label: str
    method_name: str
    order: int | None = None
    is_active: bool = True


class SaleRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    timestamp: datetime
    amount: Decimal = Decimal("0")
    net_amount: Decimal | None = None
    payment_method: str | None = None
    payment_method_id: int | None = None
    payment_method_label: str = FALLBACK_SHIFT
    payment_key: str | None = None
    product_name: str = FALLBACK_SHIFT
    gallons: Decimal | None = None
    client_name: str | None = None
    is_credit_flag: bool = False

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Any:
        return coerce_timestamp(value)

    @model_validator(mode="before")
    @classmethod
    def _normalize_row(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        row = dict(data)
        if row.get("id") is None and row.get("sale_id") is not None:
            row["id"] = row["sale_id"]
        if row.get("timestamp") is None:
            row["timestamp"] = row.get("sale_timestamp") or row.get("created_at")
        if row.get("net_amount") is None:
            net = row.get("final_amount", row.get("total_amount"))
            if net is not None:
                row["net_amount"] = net
        if row.get("amount") is None:
            row["amount"] = row.get("gross_amount") or row.get("net_amount") or 0
        if row.get("product_name") is None:
            product = row.get("product") if isinstance(row.get("product"), dict) else {}
            row["product_name"] = product.get("name") or FALLBACK_SHIFT
        if row.get("gallons") is None:
            row["gallons"] = row.get("volume_gallons", row.get("quantity_gallons"))
        if row.get("client_name") is None:
            row["client_name"] = _client_name(row.get("client"))
        if row.get("payment_method") is not None:
            row["payment_method"] = str(row["payment_method"])
        row["is_credit_flag"] = bool(
            row.get("is_credit_flag")
            or row.get("is_credit") is True
            or row.get("credit") is True
            or row.get("credit_id")
            or row.get("creditId")
            or row.get("payment_type") == "credit"
        )
        return row


def _client_name(client: Any) -> str | None:
    if not isinstance(client, dict):
        return None
    if client.get("name"):
        return str(client["name"])
    parts = [str(client[key]) for key in ("first_name", "last_name") if client.get(key)]
    return " ".join(parts) or None


class CashEvent(BaseModel):
    type: Literal["open", "close"]
    timestamp: datetime
    by: str
    shift: str
    amount: Decimal | None = None
    sales_amount: Decimal | None = None
    closing_amount: Decimal | None = None
    notes: str | None = None


class HistoryDay(BaseModel):
    day_key: str
    events: list[CashEvent] = Field(default_factory=list)


class Operator(BaseModel):
    id: int | str | None = None
    name: str | None = None
