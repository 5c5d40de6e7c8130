import csv
import io
import json
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app import export as export_module
from app.export import (
    CSV_HEADERS,
    BackupScheduler,
    InvalidImportDocument,
    export_csv,
    export_data,
    export_filename,
    generate_backup,
    import_data,
    list_backups,
    load_backup,
    restore_backup,
)
from app.models import Backup
from app.schemas import ClientCreate, InvoiceCreate, LineItemIn
from app.sessions import SessionStore
from app.store import RecordStore


def _seed(store):
    acme = store.create_client(ClientCreate(name="Acme", email="a@x.com", address="1 Rd"))
    store.create_client(ClientCreate(name="Globex", email="g@x.com"))
    store.create_invoice(
        InvoiceCreate(
            invoice_number="INV-1",
            client_id=acme.id,
            items=[LineItemIn(description="Work", quantity=2, rate=Decimal("50"))],
            tax_rate=Decimal("10"),
            notes='Net 30, "thanks"',
        )
    )
    store.create_invoice(InvoiceCreate(invoice_number="INV-2", client_name="Walk-in"))
    return acme


def _other_store(db_session):
    sessions = SessionStore(db_session)
    assert sessions.register("other@test.com", "pw", "Other", "Other Co")
    return RecordStore(db_session, sessions.identity)


def test_export_filename():
    assert export_filename(date(2024, 3, 9)) == "invoice-data-2024-03-09.json"


def test_import_of_export_reproduces_collections(store, db_session):
    _seed(store)
    document = export_data(store)
    assert document.version == "1.0"

    other = _other_store(db_session)
    other.create_client(ClientCreate(name="Replaced", email="r@x.com"))
    result = import_data(other, document)
    assert result.invoices == 2
    assert result.clients == 2

    assert [c.name for c in other.list_clients()] == ["Globex", "Acme"]
    invoices = other.list_invoices()
    assert [inv.invoice_number for inv in invoices] == ["INV-2", "INV-1"]
    assert all(inv.user_id == other.user_id for inv in invoices)
    first = invoices[1]
    assert first.total == Decimal("110.00")
    assert first.items[0].description == "Work"
    assert first.client_name == "Acme"
    # the source identity is untouched
    assert len(store.list_invoices()) == 2


def test_import_replaces_only_present_collections(store):
    _seed(store)
    result = import_data(store, {"clients": []})
    assert result.clients == 0
    assert result.invoices is None
    assert store.list_clients() == []
    assert len(store.list_invoices()) == 2


def test_import_endpoint_rejects_invalid_documents(client, auth_headers):
    resp = client.post("/import", json={"invoices": [{"id": "x"}]}, headers=auth_headers)
    assert resp.status_code == 400

    client_doc = {"id": "c1", "name": "A", "email": "a@x.com", "createdAt": "2024-01-01T00:00:00Z"}
    resp = client.post("/import", json={"clients": [client_doc, client_doc]}, headers=auth_headers)
    assert resp.status_code == 400

    resp = client.post("/import", json={"clients": [client_doc]}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"invoices": None, "clients": 1}


def test_export_endpoint(client, auth_headers):
    client.post("/clients", json={"name": "Acme", "email": "a@x.com"}, headers=auth_headers)
    resp = client.get("/export", headers=auth_headers)
    assert resp.status_code == 200
    assert "invoice-data-" in resp.headers["content-disposition"]
    body = json.loads(resp.content)
    assert body["version"] == "1.0"
    assert body["invoices"] == []
    assert [c["name"] for c in body["clients"]] == ["Acme"]
    assert "exportDate" in body


def test_export_csv(store):
    _seed(store)
    text = export_csv(store.list_invoices())
    lines = text.splitlines()
    assert lines[0] == ",".join(CSV_HEADERS)
    assert len(lines) == 3
    assert lines[2] == (
        '"INV-1","Acme","a@x.com","{issue}","{due}","draft","USD",100.00,10,10.00,0,0.00,110.00,'
        '"Net 30, ""thanks"""'
    ).format(issue=date.today().isoformat(), due=store.list_invoices()[1].due_date.isoformat())
    assert lines[1].endswith(',""')


def test_export_csv_escapes_notes(store):
    notes = 'Line one, with comma\nLine "two"'
    store.create_invoice(InvoiceCreate(invoice_number="INV-9", client_name="O'Brien, Ltd", notes=notes))
    rows = list(csv.reader(io.StringIO(export_csv(store.list_invoices()))))
    assert rows[0] == CSV_HEADERS
    assert len(rows) == 2
    assert rows[1][0] == "INV-9"
    assert rows[1][1] == "O'Brien, Ltd"
    assert rows[1][-1] == notes


def test_invoices_csv_endpoint_honours_filters(client, auth_headers):
    client.post("/invoices", json={"invoiceNumber": "A", "status": "paid"}, headers=auth_headers)
    client.post("/invoices", json={"invoiceNumber": "B", "status": "draft"}, headers=auth_headers)
    resp = client.get("/invoices.csv", params={"status": "paid"}, headers=auth_headers)
    assert resp.status_code == 200
    lines = resp.text.splitlines()
    assert len(lines) == 2
    assert lines[1].startswith('"A",')


def test_backup_retention_keeps_newest_five(store, db_session):
    _seed(store)
    keys = [generate_backup(store, retention=5) for _ in range(6)]
    assert keys == sorted(keys)
    assert all(key.startswith(f"backup_{store.user_id}_") for key in keys)

    remaining = [backup.key for backup in list_backups(store)]
    assert len(remaining) == 5
    assert keys[0] not in remaining
    assert remaining == list(reversed(keys[1:]))


def test_backup_payload_and_restore(store):
    _seed(store)
    key = generate_backup(store)
    data = load_backup(store, key)
    assert data["user"]["email"] == "owner@test.com"
    assert len(data["invoices"]) == 2
    assert len(data["clients"]) == 2
    assert data["backupDate"]

    for invoice in store.list_invoices():
        store.delete_invoice(invoice.id)
    result = restore_backup(store, key)
    assert result.invoices == 2
    assert [inv.invoice_number for inv in store.list_invoices()] == ["INV-2", "INV-1"]


def test_backups_are_private(store, db_session):
    _seed(store)
    key = generate_backup(store)
    other = _other_store(db_session)
    assert load_backup(other, key) is None
    assert restore_backup(other, key) is None
    assert list_backups(other) == []


def test_corrupt_backup_loads_empty(store, db_session):
    key = f"backup_{store.user_id}_0000000000001"
    db_session.add(Backup(key=key, user_id=store.user_id, payload="{not json"))
    db_session.commit()
    data = load_backup(store, key)
    assert data["invoices"] == []
    assert data["clients"] == []


def test_backup_endpoints(client, auth_headers):
    client.post("/invoices", json={"invoiceNumber": "INV-1"}, headers=auth_headers)
    created = client.post("/backups", headers=auth_headers)
    assert created.status_code == 201
    key = created.json()["key"]

    listed = client.get("/backups", headers=auth_headers).json()
    assert [b["key"] for b in listed] == [key]

    invoice_id = client.get("/invoices", headers=auth_headers).json()[0]["id"]
    client.delete(f"/invoices/{invoice_id}", headers=auth_headers)
    restored = client.post(f"/backups/{key}/restore", headers=auth_headers)
    assert restored.status_code == 200
    assert restored.json()["invoices"] == 1
    assert client.get("/invoices", headers=auth_headers).json()[0]["id"] == invoice_id

    assert client.post("/backups/missing/restore", headers=auth_headers).status_code == 404


def test_scheduler_snapshots_identities_with_records(SessionTesting, store, db_session):
    _seed(store)
    idle = _other_store(db_session)

    scheduler = BackupScheduler(SessionTesting, interval_seconds=60, retention=5)
    keys = scheduler.run_once()
    assert len(keys) == 1
    assert keys[0].startswith(f"backup_{store.user_id}_")
    assert list_backups(idle) == []
    assert not scheduler.running


def test_failed_import_keeps_previous_records(store, monkeypatch):
    _seed(store)

    def broken_replace(records):
        raise IntegrityError("INSERT INTO invoices", {}, Exception("constraint failed"))

    monkeypatch.setattr(store, "replace_invoices", broken_replace)
    document = {
        "clients": [
            {"id": "n1", "name": "New", "email": "n@x.com", "createdAt": "2024-01-01T00:00:00Z"}
        ],
        "invoices": [],
    }
    with pytest.raises(InvalidImportDocument):
        import_data(store, document)

    assert sorted(c.name for c in store.list_clients()) == ["Acme", "Globex"]
    assert len(store.list_invoices()) == 2


def test_import_rejects_duplicate_child_ids(client, auth_headers):
    client.post("/clients", json={"name": "Keep", "email": "k@x.com"}, headers=auth_headers)
    log = {
        "id": "e",
        "sentAt": "2024-01-01T00:00:00Z",
        "recipient": "a@x.com",
        "subject": "Invoice",
        "status": "sent",
    }
    invoice = {
        "id": "i1",
        "invoiceNumber": "INV-1",
        "issueDate": "2024-01-01",
        "dueDate": "2024-01-31",
        "status": "sent",
        "subtotal": 0,
        "taxRate": 0,
        "taxAmount": 0,
        "discountRate": 0,
        "discountAmount": 0,
        "total": 0,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
        "emailLogs": [log, log],
    }
    new_client = {"id": "c1", "name": "New", "email": "n@x.com", "createdAt": "2024-01-01T00:00:00Z"}
    resp = client.post(
        "/import", json={"clients": [new_client], "invoices": [invoice]}, headers=auth_headers
    )
    assert resp.status_code == 400
    names = [c["name"] for c in client.get("/clients", headers=auth_headers).json()]
    assert names == ["Keep"]


def test_backups_within_one_millisecond_stay_ordered(store, monkeypatch):
    _seed(store)
    monkeypatch.setattr(export_module, "_now_ms", lambda: 1700000000000)

    keys = [generate_backup(store, retention=5) for _ in range(8)]
    assert keys == sorted(keys)
    assert len(set(keys)) == 8

    remaining = [backup.key for backup in list_backups(store)]
    assert remaining == list(reversed(keys[-5:]))
    assert all(load_backup(store, key) is not None for key in keys[-5:])


def test_backup_endpoint_survives_rapid_calls(client, auth_headers, monkeypatch):
    client.post("/invoices", json={"invoiceNumber": "INV-1"}, headers=auth_headers)
    monkeypatch.setattr(export_module, "_now_ms", lambda: 1700000000000)

    created = []
    for _ in range(7):
        resp = client.post("/backups", headers=auth_headers)
        assert resp.status_code == 201
        created.append(resp.json()["key"])

    listed = [b["key"] for b in client.get("/backups", headers=auth_headers).json()]
    assert listed == list(reversed(created[-5:]))
