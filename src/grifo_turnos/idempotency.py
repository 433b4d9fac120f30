from __future__ import annotations

import uuid
from dataclasses import dataclass

IDEMPOTENCY_HEADER = "Idempotency-Key"


@dataclass(frozen=True)
class IdempotencyKeys:
    transaction_id: str
    idempotency_key: str


def new_idempotency_keys() -> IdempotencyKeys:
    return IdempotencyKeys(transaction_id=str(uuid.uuid4()), idempotency_key=str(uuid.uuid4()))


def build_idempotency_headers(idempotency_key: str | None = None) -> dict[str, str]:
    return {IDEMPOTENCY_HEADER: idempotency_key or new_idempotency_keys().idempotency_key}
