from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format="%(message)s")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_json(logger: logging.Logger, payload: dict, level: int = logging.INFO) -> None:
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))


def log_action(
    logger: logging.Logger,
    module: str,
    action: str,
    outcome: str,
    *,
    trace_id: str | None = None,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "module": module,
        "action": action,
        "outcome": outcome,
    }
    if trace_id:
        payload["trace_id"] = trace_id
    payload.update({key: value for key, value in context.items() if value is not None})
    log_json(logger, payload, level=level)
