from typing import Iterable, List, Optional

from .models import Invoice
from .schemas import InvoiceFilters
from .services import to_decimal


def search_invoices(invoices: Iterable[Invoice], query: Optional[str]) -> List[Invoice]:
    """Case-insensitive substring search over number, client name and notes.

    A blank query returns every invoice. Order is preserved.
    """
    invoices = list(invoices)
    if not query or not query.strip():
        return invoices
    needle = query.lower()
    return [
        invoice
        for invoice in invoices
        if needle in (invoice.invoice_number or "").lower()
        or needle in (invoice.client_name or "").lower()
        or needle in (invoice.notes or "").lower()
    ]


def _matches(invoice: Invoice, filters: InvoiceFilters) -> bool:
    if filters.status is not None and invoice.status != filters.status:
        return False
    if filters.date_from is not None and invoice.issue_date < filters.date_from:
        return False
    if filters.date_to is not None and invoice.issue_date > filters.date_to:
        return False
    total = to_decimal(invoice.total)
    if filters.min_amount is not None and total < filters.min_amount:
        return False
    if filters.max_amount is not None and total > filters.max_amount:
        return False
    return True


def filter_invoices(invoices: Iterable[Invoice], filters: InvoiceFilters) -> List[Invoice]:
    return [invoice for invoice in invoices if _matches(invoice, filters)]
