from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

DEFAULT_TIMEZONE = "America/Lima"
MIN_REFRESH_INTERVAL_SECONDS = 15.0
MAX_REFRESH_INTERVAL_SECONDS = 60.0


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ClientConfig:
    env_name: str
    api_base_url: str
    timeout_seconds: float = 10.0
    retries: int = 3
    retry_backoff_seconds: float = 0.3
    verify_ssl: bool = True
    refresh_interval_seconds: float = 30.0
    recent_sales_limit: int = 25
    timezone: str = DEFAULT_TIMEZONE
    state_dir: str | None = None

    @property
    def normalized_env(self) -> str:
        return self.env_name.lower().strip()

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _require(values: dict[str, str | None], required: Iterable[str]) -> None:
    missing = [key for key in required if not values.get(key)]
    if missing:
        raise ConfigError(f"Missing required config values: {', '.join(missing)}")


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected a number, got {raw!r}") from exc


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected an integer, got {raw!r}") from exc


def _validate(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def load_config(env_file: str | None = None) -> ClientConfig:
    """Load config from environment with optional .env override."""
    load_dotenv(env_file)

    env_name = (os.getenv("GRIFO_ENV") or "dev").strip()
    env_key = env_name.upper()

    api_base_url = (
        (os.getenv(f"GRIFO_API_BASE_URL_{env_key}") or "").strip()
        or (os.getenv("GRIFO_API_BASE_URL") or "").strip()
    )

    timeout_seconds = _read_float("GRIFO_TIMEOUT_SECONDS", "10")
    _validate(
        timeout_seconds > 0,
        f"Invalid GRIFO_TIMEOUT_SECONDS: expected > 0, got {timeout_seconds}",
    )

    retries = _read_int("GRIFO_RETRIES", "3")
    _validate(retries >= 0, f"Invalid GRIFO_RETRIES: expected >= 0, got {retries}")

    retry_backoff_seconds = _read_float("GRIFO_RETRY_BACKOFF_SECONDS", "0.3")
    _validate(
        retry_backoff_seconds >= 0,
        f"Invalid GRIFO_RETRY_BACKOFF_SECONDS: expected >= 0, got {retry_backoff_seconds}",
    )

    refresh_interval_seconds = _read_float("GRIFO_REFRESH_INTERVAL_SECONDS", "30")
    _validate(
        MIN_REFRESH_INTERVAL_SECONDS <= refresh_interval_seconds <= MAX_REFRESH_INTERVAL_SECONDS,
        (
            "Invalid GRIFO_REFRESH_INTERVAL_SECONDS: expected between "
            f"{MIN_REFRESH_INTERVAL_SECONDS:g} and {MAX_REFRESH_INTERVAL_SECONDS:g}, "
            f"got {refresh_interval_seconds}"
        ),
    )

    recent_sales_limit = _read_int("GRIFO_RECENT_SALES_LIMIT", "25")
    _validate(
        1 <= recent_sales_limit <= 100,
        f"Invalid GRIFO_RECENT_SALES_LIMIT: expected 1..100, got {recent_sales_limit}",
    )

    timezone = (os.getenv("GRIFO_TIMEZONE") or DEFAULT_TIMEZONE).strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid GRIFO_TIMEZONE: unknown zone {timezone!r}") from exc

    verify_ssl = _coerce_bool(os.getenv("GRIFO_VERIFY_SSL"), True)
    state_dir = (os.getenv("GRIFO_STATE_DIR") or "").strip() or None

    values = {"GRIFO_API_BASE_URL": api_base_url}
    _require(values, ["GRIFO_API_BASE_URL"])

    return ClientConfig(
        env_name=env_name,
        api_base_url=api_base_url.rstrip("/"),
        timeout_seconds=timeout_seconds,
        retries=retries,
        retry_backoff_seconds=retry_backoff_seconds,
        verify_ssl=verify_ssl,
        refresh_interval_seconds=refresh_interval_seconds,
        recent_sales_limit=recent_sales_limit,
        timezone=timezone,
        state_dir=state_dir,
    )
