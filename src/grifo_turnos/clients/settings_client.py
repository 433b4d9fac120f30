from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..models import ShiftConfig
from ..shifts import shift_config_from_settings
from .base import BaseClient


@dataclass
class SettingsClient(BaseClient):
    async def get_settings(self) -> dict[str, Any]:
        data = await self._request("GET", "/settings", module="settings", operation="get_settings")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("Expected settings response to be a JSON object")
        return data

    async def get_shift_config(self) -> ShiftConfig:
        return shift_config_from_settings(await self.get_settings())
