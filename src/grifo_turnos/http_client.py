from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from .config import ClientConfig
from .error_mapper import map_error
from .exceptions import TransportError
from .logging import get_logger, log_action

logger = get_logger(__name__)

JsonPayload = dict[str, Any] | list[Any] | None
TRACE_HEADER = "X-Trace-ID"
_PAYLOAD_TRACE_KEYS = ("trace_id", "traceId", "requestId")


@dataclass
class TraceContext:
    """Trace id shared by the requests of one service, replaced by any id the backend echoes."""

    trace_id: str | None = None

    def ensure(self) -> str:
        if not self.trace_id:
            self.trace_id = uuid.uuid4().hex
        return self.trace_id

    def adopt(self, response: httpx.Response, payload: Mapping[str, Any] | None = None) -> str | None:
        echoed = response.headers.get(TRACE_HEADER)
        if echoed:
            self.trace_id = echoed
        for key in _PAYLOAD_TRACE_KEYS:
            value = (payload or {}).get(key)
            if isinstance(value, str) and value:
                self.trace_id = value
                break
        return self.trace_id


@dataclass
class LastOperation:
    module: str
    operation: str
    duration_ms: int
    result: str
    trace_id: str | None


@dataclass
class HttpClient:
    config: ClientConfig
    trace: TraceContext | None = None
    client: httpx.AsyncClient | None = None
    last_operation: LastOperation | None = None

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.config.api_base_url.rstrip("/") + "/",
                timeout=self.config.timeout_seconds,
                verify=self.config.verify_ssl,
            )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        module: str = "unknown",
        operation: str = "unknown",
    ) -> JsonPayload:
        if self.client is None:
            raise RuntimeError("HTTP client not initialized")
        request_headers = {"Accept": "application/json"}
        if headers:
            request_headers.update(headers)
        trace_context = self.trace or TraceContext()
        request_headers[TRACE_HEADER] = trace_context.ensure()

        normalized_method = method.upper()
        attempts = self.config.retries + 1 if normalized_method in {"GET", "HEAD"} else 1
        started = time.monotonic()
        response: httpx.Response | None = None
        for attempt in range(attempts):
            try:
                response = await self.client.request(
                    normalized_method,
                    path.lstrip("/"),
                    headers=request_headers,
                    json=json_body,
                    params=params,
                )
            except httpx.HTTPError as exc:
                if attempt >= attempts - 1:
                    self._record_operation(module, operation, started, "error", trace_context.trace_id)
                    log_action(
                        logger,
                        module,
                        operation,
                        "transport_error",
                        trace_id=trace_context.trace_id,
                        error=type(exc).__name__,
                    )
                    raise TransportError(
                        code="TRANSPORT_ERROR",
                        message=str(exc) or type(exc).__name__,
                        details={"type": type(exc).__name__},
                        trace_id=trace_context.trace_id,
                        status_code=0,
                        raw_payload=None,
                    ) from exc
            else:
                if response.status_code < 500 or attempt >= attempts - 1:
                    break
            await asyncio.sleep(self.config.retry_backoff_seconds * (attempt + 1))

        if response is None:
            raise RuntimeError("HTTP request failed without response")

        trace_context.adopt(response)
        if response.is_success:
            self._record_operation(module, operation, started, "success", trace_context.trace_id)
            if not response.content:
                return None
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}
        if not isinstance(payload, dict):
            payload = {"message": str(payload)}
        trace_context.adopt(response, payload)
        self._record_operation(module, operation, started, "error", trace_context.trace_id)
        raise map_error(response.status_code, payload, trace_context.trace_id)

    def _record_operation(self, module: str, operation: str, started: float, result: str, trace_id: str | None) -> None:
        self.last_operation = LastOperation(
            module=module,
            operation=operation,
            duration_ms=int((time.monotonic() - started) * 1000),
            result=result,
            trace_id=trace_id,
        )
