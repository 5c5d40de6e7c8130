from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable

HUNDRED = Decimal("100")


def money_round(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging in binary noise
    return Decimal(str(value))


def compute_item_amount(quantity, rate) -> Decimal:
    return money_round(to_decimal(quantity) * to_decimal(rate))


def compute_totals(items: Iterable, tax_rate, discount_rate) -> Dict[str, Decimal]:
    """Aggregate an invoice from its full item list.

    Each item exposes ``quantity`` and ``rate``. Every returned amount is
    rounded to cents, and ``total`` is built from the rounded parts so
    ``total == subtotal - discount_amount + tax_amount`` holds exactly.
    """
    subtotal = Decimal("0")
    for item in items:
        subtotal += compute_item_amount(item.quantity, item.rate)
    subtotal = money_round(subtotal)

    discount_amount = money_round(subtotal * to_decimal(discount_rate) / HUNDRED)
    taxable = subtotal - discount_amount
    tax_amount = money_round(taxable * to_decimal(tax_rate) / HUNDRED)
    total = money_round(taxable + tax_amount)

    return {
        "subtotal": subtotal,
        "discount_amount": discount_amount,
        "tax_amount": tax_amount,
        "total": total,
    }


def apply_totals(invoice) -> None:
    """Refresh stored item amounts and aggregate totals on ``invoice`` in place."""
    for item in invoice.items:
        item.amount = compute_item_amount(item.quantity, item.rate)
    totals = compute_totals(invoice.items, invoice.tax_rate, invoice.discount_rate)
    for key, value in totals.items():
        setattr(invoice, key, value)


def build_qr_payload(invoice_number: str, currency: str, total, due_date: date) -> str:
    return (
        f"Invoice: {invoice_number}\n"
        f"Amount: {currency} {money_round(to_decimal(total)):.2f}\n"
        f"Due: {due_date.isoformat()}"
    )
