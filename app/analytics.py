from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from .models import INVOICE_STATUSES, Invoice
from .services import money_round, to_decimal


def _month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def _last_months(today: date, count: int) -> List[str]:
    keys = []
    year, month = today.year, today.month
    for _ in range(count):
        keys.append(_month_key(year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def _revenue(invoices: Iterable[Invoice]) -> Decimal:
    return money_round(sum((to_decimal(inv.total) for inv in invoices), Decimal("0")))


def summarize(invoices: Iterable[Invoice], today: date, months: int = 6) -> Dict:
    invoices = list(invoices)
    by_status = {status: [inv for inv in invoices if inv.status == status] for status in INVOICE_STATUSES}

    count = len(invoices)
    total_revenue = _revenue(invoices)
    average = money_round(total_revenue / count) if count else Decimal("0.00")
    payment_rate = (
        money_round(Decimal(len(by_status["paid"])) * 100 / count) if count else Decimal("0.00")
    )

    monthly = []
    for key in _last_months(today, months):
        in_month = [
            inv for inv in invoices if _month_key(inv.created_at.year, inv.created_at.month) == key
        ]
        monthly.append({"month": key, "count": len(in_month), "revenue": _revenue(in_month)})

    return {
        "totalRevenue": total_revenue,
        "paidRevenue": _revenue(by_status["paid"]),
        "pendingRevenue": _revenue(by_status["sent"]),
        "overdueRevenue": _revenue(by_status["overdue"]),
        "statusCounts": {"total": count, **{s: len(v) for s, v in by_status.items()}},
        "averageInvoiceValue": average,
        "paymentRate": payment_rate,
        "monthly": monthly,
    }
