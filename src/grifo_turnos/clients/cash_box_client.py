from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import NotFoundError
from ..idempotency import build_idempotency_headers
from ..logging import get_logger, log_action
from ..models import CashDrawerSession, CloseSessionRequest, OpenSessionRequest
from .base import BaseClient, extract_rows

logger = get_logger(__name__)

NO_SESSION_STATUS = "no_abierta"


def _coerce_model(payload: Any, model: type[Any]) -> Any:
    if isinstance(payload, model):
        return payload
    if isinstance(payload, Mapping):
        return model.model_validate(payload)
    raise TypeError(f"Unsupported payload type: {type(payload)!r}")


def _as_day(value: date | str) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


@dataclass
class CashBoxClient(BaseClient):
    """``SessionStore`` backed by the ``/cash-box`` endpoints."""

    async def get_session(self, day_key: str, shift_name: str) -> CashDrawerSession | None:
        try:
            data = await self._request(
                "GET",
                "/cash-box/today",
                params={"date": day_key, "shift": shift_name},
                module="cash_box",
                operation="get_session",
            )
        except NotFoundError:
            return None
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError("Expected cash-box session response to be a JSON object")
        if str(data.get("status") or "").lower() == NO_SESSION_STATUS:
            return None
        session = CashDrawerSession.model_validate(_drop_none(data))
        return session.model_copy(
            update={"day_key": session.day_key or day_key, "shift_name": session.shift_name or shift_name}
        )

    async def open_session(
        self,
        request: OpenSessionRequest | Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> CashDrawerSession:
        payload = _coerce_model(request, OpenSessionRequest)
        data = await self._request(
            "POST",
            "/cash-box/open",
            json_body=payload.to_payload(),
            headers=build_idempotency_headers(idempotency_key),
            module="cash_box",
            operation="open_session",
        )
        defaults = {
            "day_key": payload.day_key,
            "shift_name": payload.shift_name,
            "opening_amount": payload.opening_amount,
            "opened_by": payload.opened_by,
            "opened_by_name": payload.opened_by_name,
            "status": "open",
        }
        body = data if isinstance(data, dict) else {}
        return CashDrawerSession.model_validate({**defaults, **_drop_none(body)})

    async def close_session(
        self,
        request: CloseSessionRequest | Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> CashDrawerSession:
        payload = _coerce_model(request, CloseSessionRequest)
        data = await self._request(
            "POST",
            "/cash-box/close",
            json_body=payload.to_payload(),
            headers=build_idempotency_headers(idempotency_key),
            module="cash_box",
            operation="close_session",
        )
        defaults = {
            "id": payload.session_id,
            "day_key": payload.day_key,
            "shift_name": payload.shift_name,
            "closing_amount": payload.closing_amount,
            "sales_amount": payload.sales_amount,
            "notes": payload.notes,
            "closed_by": payload.closed_by,
            "closed_by_name": payload.closed_by_name,
            "status": "closed",
        }
        body = data if isinstance(data, dict) else {}
        return CashDrawerSession.model_validate({**defaults, **_drop_none(body)})

    async def list_sessions(self, date_from: date | str, date_to: date | str) -> list[CashDrawerSession]:
        data = await self._request(
            "GET",
            "/cash-box/list",
            params={"from": _as_day(date_from), "to": _as_day(date_to)},
            module="cash_box",
            operation="list_sessions",
        )
        sessions: list[CashDrawerSession] = []
        for row in extract_rows(data):
            try:
                sessions.append(CashDrawerSession.model_validate(row))
            except PydanticValidationError:
                log_action(logger, "cash_box", "list_sessions", "row_skipped", row_id=row.get("id"))
        return sessions

    async def get_day_history(self, day_key: str) -> list[CashDrawerSession]:
        return await self.list_sessions(day_key, day_key)


def _drop_none(data: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}
