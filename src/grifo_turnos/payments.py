from __future__ import annotations

import json
import re
import unicodedata
from typing import Any, Iterable, Mapping

from .models import FALLBACK_SHIFT, PaymentMethod

CREDIT_KEY = "CREDIT"
UNKNOWN_KEY = "UNKNOWN"
CREDIT_METHOD_NAME = "credito"
DEFAULT_ORDER = 999

BUILTIN_CATALOG: tuple[PaymentMethod, ...] = (
    PaymentMethod(id=1, key="CASH", label="Efectivo", method_name="efectivo"),
    PaymentMethod(id=2, key=CREDIT_KEY, label="Credito", method_name=CREDIT_METHOD_NAME),
    PaymentMethod(id=3, key="CARD", label="Tarjeta", method_name="tarjeta"),
    PaymentMethod(id=4, key="TRANSFER", label="Transferencia", method_name="transferencia"),
)

CASH_LABEL_PATTERN = re.compile(r"efectivo|cash|contado", re.IGNORECASE)
_KEY_FIELDS = ("payment_method", "paymentMethod", "method", "payment_mode", "pay_mode")
_NOTE_FIELDS = ("payment_method", "method", "pm", "type")


def normalize_method_name(value: Any) -> str:
    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value).strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_active_method(raw: Mapping[str, Any]) -> bool:
    for flag in ("is_active", "enabled", "active"):
        if raw.get(flag) is not None:
            return bool(raw[flag])
    return True


def to_payment_method(raw: Mapping[str, Any]) -> PaymentMethod:
    """Map a settings or ``/payment-methods`` row onto a catalog entry."""
    method_name = normalize_method_name(raw.get("method_name") or raw.get("code") or raw.get("label"))
    key = str(raw.get("key") or raw.get("code") or method_name).strip().upper()
    label = raw.get("label") or raw.get("name")
    if not label:
        label = method_name.capitalize() if method_name else FALLBACK_SHIFT
    return PaymentMethod(
        id=_as_int(raw.get("id")),
        key=key or UNKNOWN_KEY,
        label=str(label),
        method_name=method_name or "unknown",
        order=_as_int(raw.get("order")),
        is_active=is_active_method(raw),
    )


def merge_catalog(remote: Iterable[Mapping[str, Any]] | None) -> list[PaymentMethod]:
    """Active remote methods, then built-ins the remote catalog does not mention.

    Remote entries win on label and order. A built-in whose name or id matches a
    remote row switched off stays out. Result is sorted by ``order`` and then by
    label.
    """
    by_name: dict[str, PaymentMethod] = {}
    seen_names: set[str] = set()
    seen_ids: set[int] = set()
    for raw in remote or []:
        if not isinstance(raw, Mapping):
            continue
        method = to_payment_method(raw)
        seen_names.add(method.method_name)
        if method.id is not None:
            seen_ids.add(method.id)
        if method.is_active:
            by_name[method.method_name] = method
    for builtin in BUILTIN_CATALOG:
        if builtin.method_name in seen_names or builtin.id in seen_ids:
            continue
        by_name[builtin.method_name] = builtin
    return sorted(
        by_name.values(),
        key=lambda method: (method.order if method.order is not None else DEFAULT_ORDER, method.label.lower()),
    )


def _credit_method(catalog: Iterable[PaymentMethod]) -> PaymentMethod | None:
    for method in catalog:
        if method.method_name == CREDIT_METHOD_NAME or method.key == CREDIT_KEY:
            return method
    return None


def _match(value: Any, catalog: Iterable[PaymentMethod]) -> PaymentMethod | None:
    code = normalize_method_name(value)
    if not code:
        return None
    for method in catalog:
        if method.method_name == code or method.key.lower() == code:
            return method
    return None


def has_credit_flag(sale: Mapping[str, Any]) -> bool:
    return bool(
        sale.get("is_credit") is True
        or sale.get("credit") is True
        or sale.get("credit_id")
        or sale.get("creditId")
        or sale.get("payment_type") == "credit"
    )


def _notes_payload(sale: Mapping[str, Any]) -> dict[str, Any] | None:
    notes = sale.get("notes")
    if not isinstance(notes, str) or not notes.strip().startswith("{"):
        return None
    try:
        payload = json.loads(notes)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def resolve_payment_label(sale: Mapping[str, Any] | str, catalog: list[PaymentMethod]) -> str:
    if isinstance(sale, str):
        hit = _match(sale, catalog)
        return hit.label if hit else (sale or FALLBACK_SHIFT)

    name = normalize_method_name(sale.get("payment_method"))
    if name:
        for method in catalog:
            if method.method_name == name:
                return method.label
    method_id = _as_int(sale.get("payment_method_id"))
    if method_id is not None:
        for method in catalog:
            if method.id == method_id:
                return method.label
    if has_credit_flag(sale):
        credit = _credit_method(catalog)
        return credit.label if credit else "Credito"
    notes = _notes_payload(sale)
    if notes:
        for field in _NOTE_FIELDS:
            hit = _match(notes.get(field), catalog)
            if hit:
                return hit.label
        if notes.get("credit") is True:
            credit = _credit_method(catalog)
            return credit.label if credit else "Credito"
    return FALLBACK_SHIFT


def resolve_payment_key(sale: Mapping[str, Any], catalog: list[PaymentMethod]) -> str:
    if has_credit_flag(sale):
        credit = _credit_method(catalog)
        return credit.key if credit else CREDIT_KEY
    payment = sale.get("payment")
    candidates = [sale.get(field) for field in _KEY_FIELDS]
    if isinstance(payment, Mapping):
        candidates.append(payment.get("method"))
    for value in candidates:
        hit = _match(value, catalog)
        if hit:
            return hit.key
    notes = _notes_payload(sale)
    if notes:
        for field in _NOTE_FIELDS:
            hit = _match(notes.get(field), catalog)
            if hit:
                return hit.key
        if notes.get("credit") is True:
            credit = _credit_method(catalog)
            return credit.key if credit else CREDIT_KEY
    method_id = _as_int(sale.get("payment_method_id"))
    if method_id is not None:
        for method in catalog:
            if method.id == method_id:
                return method.key
    return UNKNOWN_KEY


def is_cash_box_key(key: str) -> bool:
    return key not in {CREDIT_KEY, UNKNOWN_KEY}


def find_cash_method(catalog: Iterable[PaymentMethod]) -> PaymentMethod | None:
    for method in catalog:
        if CASH_LABEL_PATTERN.search(method.label):
            return method
    return None
