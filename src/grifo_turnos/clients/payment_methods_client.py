from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..error_mapper import is_transient
from ..exceptions import ApiError
from ..logging import get_logger, log_action
from .base import BaseClient, extract_rows

logger = get_logger(__name__)


@dataclass
class PaymentMethodsClient(BaseClient):
    async def get_active_payment_methods(self) -> list[dict[str, Any]]:
        """Active methods, read from the settings document when the endpoint is unavailable."""
        try:
            data = await self._request(
                "GET",
                "/payment-methods/active",
                module="payment_methods",
                operation="get_active",
            )
        except ApiError as exc:
            if is_transient(exc):
                raise
            log_action(
                logger,
                "payment_methods",
                "get_active",
                "fallback_settings",
                trace_id=exc.trace_id,
                status_code=exc.status_code,
            )
            return await self._from_settings()
        return extract_rows(data)

    async def _from_settings(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/settings", module="payment_methods", operation="get_settings")
        methods = data.get("payment_methods") if isinstance(data, dict) else None
        if not isinstance(methods, list):
            return []
        return [item for item in methods if isinstance(item, dict) and item.get("enabled", True) is not False]
