from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..http_client import HttpClient, JsonPayload


def extract_rows(data: JsonPayload) -> list[dict[str, Any]]:
    """Rows from a bare list or a ``{"data": [...]}`` / ``{"rows": [...]}`` envelope."""
    if isinstance(data, list):
        rows = data
    elif isinstance(data, dict):
        rows = data.get("data") if isinstance(data.get("data"), list) else data.get("rows")
    else:
        rows = None
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


@dataclass
class BaseClient:
    http: HttpClient
    access_token: str | None = None

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> JsonPayload:
        headers = kwargs.pop("headers", {})
        merged = {**self._auth_headers(), **headers}
        return await self.http.request(method, path, headers=merged, **kwargs)
