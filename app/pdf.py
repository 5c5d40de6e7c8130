from decimal import Decimal
from io import BytesIO
from typing import Dict

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .models import Identity, Invoice
from .services import to_decimal

TEMPLATE_FONTS = {
    "modern": ("Helvetica", "Helvetica-Bold"),
    "classic": ("Times-Roman", "Times-Bold"),
    "minimal": ("Courier", "Courier-Bold"),
}


def build_invoice_pdf_payload(invoice: Invoice, identity: Identity) -> Dict:
    return {
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "template": invoice.template,
        "company_name": identity.company or identity.name,
        "company_email": identity.email,
        "client_name": invoice.client_name,
        "client_email": invoice.client_email,
        "client_address": invoice.client_address,
        "issue_date": invoice.issue_date,
        "due_date": invoice.due_date,
        "currency": invoice.currency,
        "tax_rate": to_decimal(invoice.tax_rate),
        "discount_rate": to_decimal(invoice.discount_rate),
        "totals": {
            "subtotal": to_decimal(invoice.subtotal),
            "discount": to_decimal(invoice.discount_amount),
            "tax": to_decimal(invoice.tax_amount),
            "total": to_decimal(invoice.total),
        },
        "lines": [
            {
                "index": idx,
                "description": item.description or "",
                "quantity": item.quantity,
                "rate": to_decimal(item.rate),
                "amount": to_decimal(item.amount),
            }
            for idx, item in enumerate(invoice.items, start=1)
        ],
        "notes": invoice.notes or "",
        "qr_code": invoice.qr_code or "",
    }


def render_invoice_pdf(payload: Dict) -> bytes:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    regular, bold = TEMPLATE_FONTS.get(payload["template"], TEMPLATE_FONTS["modern"])
    currency = payload["currency"]

    y = height - 40
    pdf.setFont(bold, 16)
    pdf.drawString(40, y, payload["company_name"] or "Invoice")
    pdf.drawRightString(width - 40, y, f"Invoice {payload['invoice_number']}")

    pdf.setFont(regular, 10)
    y -= 18
    pdf.drawString(40, y, payload["company_email"])
    pdf.drawRightString(width - 40, y, f"Status: {payload['status']}")
    y -= 22
    pdf.setFont(bold, 11)
    pdf.drawString(40, y, "Bill To")
    pdf.setFont(regular, 10)
    for text in (payload["client_name"], payload["client_email"], payload["client_address"]):
        if text:
            y -= 14
            pdf.drawString(40, y, text[:90])
    y -= 14
    pdf.drawString(
        40, y, f"Issue date: {payload['issue_date']}   Due date: {payload['due_date']}"
    )

    y -= 22
    pdf.setFont(bold, 11)
    pdf.drawString(40, y, "Items")
    y -= 16
    pdf.setFont(regular, 9)
    headers = ["#", "Description", "Qty", "Rate", "Amount"]
    col_x = [40, 70, 360, 430, 500]
    for hx, text in zip(col_x, headers):
        pdf.drawString(hx, y, text)
    y -= 12

    for item in payload["lines"]:
        if y < 60:
            pdf.showPage()
            y = height - 60
            pdf.setFont(regular, 9)
        pdf.drawString(col_x[0], y, str(item["index"]))
        pdf.drawString(col_x[1], y, item["description"][:60])
        pdf.drawRightString(col_x[2] + 30, y, str(item["quantity"]))
        pdf.drawRightString(col_x[3] + 50, y, f"{item['rate']:.2f}")
        pdf.drawRightString(col_x[4] + 50, y, f"{item['amount']:.2f}")
        y -= 12

    totals = payload["totals"]
    y -= 18
    pdf.setFont(bold, 11)
    pdf.drawString(40, y, "Totals")
    pdf.setFont(regular, 10)
    y -= 14
    pdf.drawString(40, y, f"Subtotal: {totals['subtotal']:.2f} {currency}")
    if totals["discount"] != Decimal("0"):
        y -= 14
        pdf.drawString(
            40, y, f"Discount ({payload['discount_rate']}%): -{totals['discount']:.2f} {currency}"
        )
    y -= 14
    pdf.drawString(40, y, f"Tax ({payload['tax_rate']}%): {totals['tax']:.2f} {currency}")
    y -= 14
    pdf.setFont(bold, 10)
    pdf.drawString(40, y, f"Total: {totals['total']:.2f} {currency}")

    pdf.setFont(regular, 9)
    if payload["notes"]:
        y -= 22
        pdf.drawString(40, y, f"Notes: {payload['notes'][:100]}")
    if payload["qr_code"]:
        for line in payload["qr_code"].splitlines():
            y -= 12
            pdf.drawString(40, y, line[:100])

    pdf.save()
    buffer.seek(0)
    return buffer.getvalue()
