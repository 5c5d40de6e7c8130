from datetime import date
from decimal import Decimal

import pytest

from app.pdf import TEMPLATE_FONTS, build_invoice_pdf_payload, render_invoice_pdf
from app.schemas import InvoiceCreate, LineItemIn


def _invoice(store, **overrides):
    data = dict(
        invoice_number="INV-PDF",
        client_name="Client PDF",
        client_email="pdf@x.com",
        client_address="2 Rd",
        issue_date=date(2026, 1, 1),
        due_date=date(2026, 1, 31),
        items=[LineItemIn(description="l1", quantity=1, rate=Decimal("10"))],
        tax_rate=Decimal("10"),
        notes="Thanks",
    )
    data.update(overrides)
    return store.create_invoice(InvoiceCreate(**data))


def test_build_invoice_pdf_payload(store):
    inv = _invoice(store, discount_rate=Decimal("50"))
    payload = build_invoice_pdf_payload(inv, store.identity)
    assert payload["company_name"] == "Owner Co"
    assert payload["company_email"] == "owner@test.com"
    assert payload["totals"]["subtotal"] == Decimal("10.00")
    assert payload["totals"]["discount"] == Decimal("5.00")
    assert payload["totals"]["tax"] == Decimal("0.50")
    assert payload["totals"]["total"] == Decimal("5.50")
    assert payload["lines"][0]["index"] == 1
    assert payload["lines"][0]["description"] == "l1"


@pytest.mark.parametrize("template", sorted(TEMPLATE_FONTS))
def test_render_invoice_pdf_for_each_template(store, template):
    inv = _invoice(store, template=template)
    pdf_bytes = render_invoice_pdf(build_invoice_pdf_payload(inv, store.identity))
    assert pdf_bytes.startswith(b"%PDF")


def test_pdf_endpoint_returns_pdf(client, auth_headers):
    created = client.post(
        "/invoices",
        json={"invoiceNumber": "INV-9", "items": [{"description": "a", "quantity": 1, "rate": 10}]},
        headers=auth_headers,
    ).json()
    resp = client.get(f"/invoices/{created['id']}/pdf", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/pdf")
    assert 'filename="invoice-INV-9.pdf"' in resp.headers["content-disposition"]
    assert resp.content.startswith(b"%PDF")


def test_pdf_endpoint_missing_invoice(client, auth_headers):
    assert client.get("/invoices/missing/pdf", headers=auth_headers).status_code == 404


def test_html_export(client, auth_headers):
    created = client.post(
        "/invoices",
        json={
            "invoiceNumber": "INV-10",
            "clientName": "Acme",
            "template": "classic",
            "items": [{"description": "Design", "quantity": 2, "rate": 50}],
            "taxRate": 10,
        },
        headers=auth_headers,
    ).json()
    resp = client.get(f"/invoices/{created['id']}/html", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert 'filename="invoice-INV-10.html"' in resp.headers["content-disposition"]
    body = resp.text
    assert "Api Co" in body
    assert "Acme" in body
    assert "Design" in body
    assert "110.00" in body
    assert "Georgia" in body


def test_csv_export_for_one_invoice(client, auth_headers):
    created = client.post(
        "/invoices",
        json={"invoiceNumber": "INV-11", "clientName": "Acme", "notes": "a, b"},
        headers=auth_headers,
    ).json()
    resp = client.get(f"/invoices/{created['id']}/csv", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.splitlines()
    assert len(lines) == 2
    assert lines[1].startswith('"INV-11","Acme",')
    assert lines[1].endswith('"a, b"')
