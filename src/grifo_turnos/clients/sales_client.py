from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .base import BaseClient, extract_rows

MIN_RECENT_LIMIT = 1
MAX_RECENT_LIMIT = 100


@dataclass
class SalesClient(BaseClient):
    async def get_recent_sales(self, limit: int = 25) -> list[dict[str, Any]]:
        clamped = max(MIN_RECENT_LIMIT, min(MAX_RECENT_LIMIT, int(limit)))
        data = await self._request(
            "GET",
            "/sales/recent",
            params={"limit": clamped},
            module="sales",
            operation="get_recent_sales",
        )
        return extract_rows(data)
