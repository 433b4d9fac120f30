from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from .logging import get_logger, log_action
from .models import FALLBACK_SHIFT, PaymentMethod, SaleRecord, ShiftConfig
from .payments import (
    find_cash_method,
    is_cash_box_key,
    resolve_payment_key,
    resolve_payment_label,
)
from .shifts import align_to, get_shift_range, shift_for_timestamp

logger = get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
CREDIT_MARKERS = ("credito", "crédito", "credit")
NO_CLIENT = "Sin cliente"


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProductBucket:
    gallons: Decimal = ZERO
    amount: Decimal = ZERO

    def add(self, gallons: Decimal, amount: Decimal) -> "ProductBucket":
        return ProductBucket(gallons=self.gallons + gallons, amount=self.amount + amount)

    def rounded(self) -> "ProductBucket":
        return ProductBucket(gallons=money(self.gallons), amount=money(self.amount))


@dataclass(frozen=True)
class CreditClientLine:
    client: str
    product: str
    gallons: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ShiftTotals:
    gross_total: Decimal
    credit_total: Decimal
    credit_count: int
    transaction_count: int
    gallons_total: Decimal
    opening_amount: Decimal
    cash_total: Decimal
    cash_in_drawer: Decimal
    cash_box_total: Decimal
    by_method: dict[str, Decimal] = field(default_factory=dict)
    by_product: dict[str, ProductBucket] = field(default_factory=dict)
    credit_by_product: dict[str, ProductBucket] = field(default_factory=dict)
    credit_by_client: list[CreditClientLine] = field(default_factory=list)


def assign_shift(sale: SaleRecord, config: ShiftConfig, reference_now: datetime | None = None) -> str | None:
    """Shift of ``sale`` read on the station clock, taken from ``reference_now`` when given."""
    return shift_for_timestamp(config, sale.timestamp, reference_now)


def filter_by_shift(
    sales: Iterable[SaleRecord],
    shift_name: str,
    config: ShiftConfig,
    reference_now: datetime,
) -> list[SaleRecord]:
    window = get_shift_range(config, shift_name, reference_now)
    return [sale for sale in sales if window.contains(align_to(sale.timestamp, reference_now))]


def normalize_sale(raw: Mapping[str, Any], catalog: list[PaymentMethod]) -> SaleRecord:
    return SaleRecord.model_validate(
        {
            **raw,
            "payment_method_label": resolve_payment_label(raw, catalog),
            "payment_key": resolve_payment_key(raw, catalog),
        }
    )


def normalize_sales(rows: Iterable[Mapping[str, Any]], catalog: list[PaymentMethod]) -> list[SaleRecord]:
    sales: list[SaleRecord] = []
    for row in rows:
        try:
            sales.append(normalize_sale(row, catalog))
        except PydanticValidationError:
            log_action(logger, "sales", "normalize", "row_skipped", sale_id=row.get("id"))
    return sales


def is_credit(sale: SaleRecord) -> bool:
    label = sale.payment_method_label.lower()
    return sale.is_credit_flag or any(marker in label for marker in CREDIT_MARKERS)


def _sale_key(sale: SaleRecord, catalog: list[PaymentMethod]) -> str:
    if sale.payment_key:
        return sale.payment_key
    if sale.is_credit_flag:
        return resolve_payment_key({"is_credit": True}, catalog)
    return resolve_payment_key(sale.model_dump(), catalog)


def summarize(
    sales: Iterable[SaleRecord],
    active_methods: list[PaymentMethod],
    opening_amount: Decimal = ZERO,
) -> ShiftTotals:
    """Aggregate one shift's sales.

    Credit sales are kept out of the gross total and the per-product buckets.
    ``cash_in_drawer`` is the opening amount plus the total of the cash method
    (first active method whose label matches ``CASH_LABEL_PATTERN``).
    """
    records = list(sales)
    gross_total = ZERO
    credit_total = ZERO
    credit_count = 0
    gallons_total = ZERO
    by_product: dict[str, ProductBucket] = {}
    credit_by_product: dict[str, ProductBucket] = {}
    credit_by_client: dict[tuple[str, str], ProductBucket] = {}

    for sale in records:
        product = sale.product_name or FALLBACK_SHIFT
        gallons = sale.gallons or ZERO
        if is_credit(sale):
            credit_total += sale.amount
            credit_count += 1
            credit_by_product[product] = credit_by_product.get(product, ProductBucket()).add(gallons, sale.amount)
            key = (sale.client_name or NO_CLIENT, product)
            credit_by_client[key] = credit_by_client.get(key, ProductBucket()).add(gallons, sale.amount)
        else:
            gross_total += sale.amount
            gallons_total += gallons
            by_product[product] = by_product.get(product, ProductBucket()).add(gallons, sale.amount)

    by_key: dict[str, Decimal] = {method.key: ZERO for method in active_methods}
    for sale in records:
        key = _sale_key(sale, active_methods)
        if key in by_key:
            by_key[key] += sale.amount
    labels = {method.key: method.label for method in active_methods}
    by_method = {labels[key]: money(total) for key, total in by_key.items()}

    cash_method = find_cash_method(active_methods)
    cash_total = by_key.get(cash_method.key, ZERO) if cash_method else ZERO
    movements = sum((total for key, total in by_key.items() if is_cash_box_key(key)), ZERO)

    return ShiftTotals(
        gross_total=money(gross_total),
        credit_total=money(credit_total),
        credit_count=credit_count,
        transaction_count=len(records),
        gallons_total=money(gallons_total),
        opening_amount=money(opening_amount),
        cash_total=money(cash_total),
        cash_in_drawer=money(opening_amount + cash_total),
        cash_box_total=money(opening_amount + movements),
        by_method=by_method,
        by_product={name: bucket.rounded() for name, bucket in by_product.items()},
        credit_by_product={name: bucket.rounded() for name, bucket in credit_by_product.items()},
        credit_by_client=[
            CreditClientLine(client=client, product=product, gallons=money(bucket.gallons), amount=money(bucket.amount))
            for (client, product), bucket in credit_by_client.items()
        ],
    )
