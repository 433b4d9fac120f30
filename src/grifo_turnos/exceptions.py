from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ApiError(Exception):
    code: str
    message: str
    details: object | None
    trace_id: str | None
    status_code: int
    raw_payload: object | None = None

    def __str__(self) -> str:
        trace = f" trace_id={self.trace_id}" if self.trace_id else ""
        return f"[{self.status_code}] {self.code}: {self.message}{trace}"


class AuthError(ApiError):
    """Authentication failed or session is invalid."""


class PermissionError(ApiError):
    """Operator is not allowed to run the action."""


class NotFoundError(ApiError):
    pass


class ValidationError(ApiError):
    pass


class ConflictError(ApiError):
    """409, e.g. a session already exists for the day and shift."""


class RateLimitError(ApiError):
    pass


class ServerError(ApiError):
    """5xx server-side failures."""


class TransportError(ApiError):
    """Network/transport failure before an HTTP response was returned."""


class SessionIdMissingError(ValueError):
    """Close requested for a drawer whose session id was never received."""

    def __init__(self, day_key: str | None = None, shift_name: str | None = None) -> None:
        self.day_key = day_key
        self.shift_name = shift_name
        key = f" ({day_key}/{shift_name})" if day_key or shift_name else ""
        super().__init__(f"No hay sesión creada (id){key}. Abre caja primero.")
