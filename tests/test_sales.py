from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from conftest import LIMA, at, make_shift_config
from grifo_turnos.models import SaleRecord
from grifo_turnos.payments import merge_catalog
from grifo_turnos.sales import (
    align_to,
    assign_shift,
    filter_by_shift,
    is_credit,
    normalize_sales,
    summarize,
)


def _sale(hhmm: str, amount: str = "10.00", **extra: object) -> SaleRecord:
    return SaleRecord(timestamp=at("2024-05-10", hhmm), amount=Decimal(amount), **extra)


def test_late_sale_belongs_only_to_night_shift() -> None:
    config = make_shift_config()
    sale = _sale("23:30")
    now = at("2024-05-10", "23:30")

    assert filter_by_shift([sale], "Búho", config, now) == [sale]
    assert filter_by_shift([sale], "León", config, now) == []
    assert filter_by_shift([sale], "Lobo", config, now) == []
    assert assign_shift(sale, config) == "Búho"


def test_filter_by_shift_is_half_open() -> None:
    config = make_shift_config()
    now = at("2024-05-10", "13:00")
    sales = [_sale("12:00"), _sale("18:59"), _sale("19:00"), _sale("11:59")]

    assert [sale.timestamp.strftime("%H:%M") for sale in filter_by_shift(sales, "Lobo", config, now)] == [
        "12:00",
        "18:59",
    ]


def test_filter_by_shift_aligns_utc_timestamps() -> None:
    config = make_shift_config()
    utc_sale = SaleRecord(timestamp=datetime(2024, 5, 10, 18, 0, tzinfo=timezone.utc), amount=Decimal("5"))
    assert filter_by_shift([utc_sale], "Lobo", config, at("2024-05-10", "13:00")) == [utc_sale]


def test_align_to_handles_naive_inputs() -> None:
    reference = at("2024-05-10", "08:00")
    naive = datetime(2024, 5, 10, 7, 0)
    assert align_to(naive, reference).tzinfo is LIMA
    assert align_to(naive, datetime(2024, 5, 10, 8, 0)) == naive
    aware = datetime(2024, 5, 10, 12, 0, tzinfo=timezone(timedelta(hours=0)))
    assert align_to(aware, datetime(2024, 5, 10, 8, 0)).tzinfo is None


def test_is_credit_by_label_or_flag() -> None:
    assert is_credit(_sale("08:00", payment_method_label="Crédito"))
    assert is_credit(_sale("08:00", payment_method_label="Store CREDIT"))
    assert is_credit(_sale("08:00", is_credit_flag=True))
    assert not is_credit(_sale("08:00", payment_method_label="Efectivo"))


def test_normalize_sales_resolves_labels_and_skips_invalid_rows() -> None:
    catalog = merge_catalog([])
    sales = normalize_sales(
        [
            {
                "id": 1,
                "sale_timestamp": "2024-05-10T08:00:00-05:00",
                "final_amount": "40.00",
                "payment_method": "Efectivo",
                "product": {"name": "Regular"},
                "volume_gallons": "2.5",
            },
            {"id": 2, "timestamp": "2024-05-10T09:00:00-05:00", "total_amount": 25, "credit_id": 4,
             "client": {"first_name": "Luis", "last_name": "Paz"}},
            {"id": 3, "final_amount": 10},
        ],
        catalog,
    )

    assert [sale.id for sale in sales] == [1, 2]
    assert sales[0].payment_method_label == "Efectivo"
    assert sales[0].payment_key == "CASH"
    assert sales[0].amount == Decimal("40.00")
    assert sales[0].product_name == "Regular"
    assert sales[0].gallons == Decimal("2.5")
    assert sales[1].payment_method_label == "Credito"
    assert sales[1].is_credit_flag
    assert sales[1].client_name == "Luis Paz"


def test_summarize_totals() -> None:
    catalog = merge_catalog([])
    sales = normalize_sales(
        [
            {"timestamp": "2024-05-10T08:00:00-05:00", "final_amount": "40.00", "payment_method": "efectivo",
             "product_name": "Regular", "gallons": "2"},
            {"timestamp": "2024-05-10T08:10:00-05:00", "final_amount": "60.005", "payment_method": "tarjeta",
             "product_name": "Premium", "gallons": "3"},
            {"timestamp": "2024-05-10T08:20:00-05:00", "final_amount": "25.00", "is_credit": True,
             "product_name": "Diesel", "gallons": "1.5", "client": {"name": "Transportes Sur"}},
            {"timestamp": "2024-05-10T08:30:00-05:00", "final_amount": "5.00", "payment_method": "bitcoin"},
        ],
        catalog,
    )

    totals = summarize(sales, catalog, Decimal("50"))

    assert totals.transaction_count == 4
    assert totals.gross_total == Decimal("105.01")
    assert totals.credit_total == Decimal("25.00")
    assert totals.credit_count == 1
    assert totals.gallons_total == Decimal("5.00")
    assert totals.by_method == {
        "Credito": Decimal("25.00"),
        "Efectivo": Decimal("40.00"),
        "Tarjeta": Decimal("60.01"),
        "Transferencia": Decimal("0.00"),
    }
    assert totals.cash_total == Decimal("40.00")
    assert totals.cash_in_drawer == Decimal("90.00")
    assert totals.cash_box_total == Decimal("150.01")
    assert totals.by_product["Premium"].gallons == Decimal("3.00")
    assert totals.credit_by_product["Diesel"].amount == Decimal("25.00")
    assert totals.credit_by_client[0].client == "Transportes Sur"


def test_summarize_uses_active_catalog_only() -> None:
    catalog = merge_catalog([{"id": 9, "label": "Yape", "method_name": "yape", "order": 1}])
    sales = normalize_sales(
        [{"timestamp": "2024-05-10T08:00:00-05:00", "final_amount": "12.00", "payment_method": "yape"}],
        catalog,
    )

    totals = summarize(sales, catalog)

    assert totals.by_method["Yape"] == Decimal("12.00")
    assert totals.cash_in_drawer == Decimal("0.00")
    assert list(totals.by_method)[0] == "Yape"


def test_summarize_handles_records_built_directly() -> None:
    catalog = merge_catalog([])
    sales = [
        SaleRecord(timestamp=at("2024-05-10", "08:00"), amount=Decimal("10"), payment_method="efectivo"),
        SaleRecord(timestamp=at("2024-05-10", "08:05"), amount=Decimal("7"), is_credit_flag=True),
    ]

    totals = summarize(sales, catalog)

    assert totals.by_method["Efectivo"] == Decimal("10.00")
    assert totals.by_method["Credito"] == Decimal("7.00")
    assert totals.gross_total == Decimal("10.00")


def test_assign_shift_reads_utc_sale_on_station_clock() -> None:
    config = make_shift_config()
    now = at("2024-05-10", "10:00")
    sale = SaleRecord.model_validate({"sale_timestamp": "2024-05-10T13:00:00Z", "final_amount": "12.00"})

    assert assign_shift(sale, config, now) == "León"
    assert filter_by_shift([sale], "León", config, now) == [sale]
