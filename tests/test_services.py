from decimal import Decimal
from types import SimpleNamespace

from app.services import build_qr_payload, compute_item_amount, compute_totals, money_round


def item(quantity, rate):
    return SimpleNamespace(quantity=quantity, rate=rate)


def test_item_amount_is_quantity_times_rate():
    assert compute_item_amount(3, Decimal("19.99")) == Decimal("59.97")
    assert compute_item_amount(1, "0.005") == Decimal("0.01")


def test_totals_scenario_with_tax_only():
    totals = compute_totals([item(2, 50)], tax_rate=10, discount_rate=0)
    assert totals == {
        "subtotal": Decimal("100.00"),
        "discount_amount": Decimal("0.00"),
        "tax_amount": Decimal("10.00"),
        "total": Decimal("110.00"),
    }


def test_discount_applies_before_tax():
    totals = compute_totals([item(1, 200)], tax_rate=10, discount_rate=25)
    assert totals["discount_amount"] == Decimal("50.00")
    assert totals["tax_amount"] == Decimal("15.00")
    assert totals["total"] == Decimal("165.00")


def test_subtotal_is_sum_of_rounded_amounts():
    items = [item(3, Decimal("0.333")), item(7, Decimal("1.115")), item(1, Decimal("12"))]
    totals = compute_totals(items, tax_rate=Decimal("7.5"), discount_rate=Decimal("3"))
    expected = sum((money_round(Decimal(i.quantity) * i.rate) for i in items), Decimal("0"))
    assert totals["subtotal"] == expected
    assert totals["total"] == totals["subtotal"] - totals["discount_amount"] + totals["tax_amount"]


def test_float_rates_do_not_leak_binary_noise():
    totals = compute_totals([item(3, 0.1)], tax_rate=0, discount_rate=0)
    assert totals["subtotal"] == Decimal("0.30")


def test_empty_item_list():
    totals = compute_totals([], tax_rate=10, discount_rate=5)
    assert all(value == Decimal("0.00") for value in totals.values())


def test_qr_payload_text():
    from datetime import date

    payload = build_qr_payload("INV-1", "USD", Decimal("110"), date(2026, 2, 1))
    assert payload == "Invoice: INV-1\nAmount: USD 110.00\nDue: 2026-02-01"
