import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .models import Client, EmailLog, Identity, Invoice, InvoiceItem, new_id, utcnow
from .schemas import (
    ClientCreate,
    ClientOut,
    ClientUpdate,
    InvoiceCreate,
    InvoiceOut,
    InvoiceUpdate,
)
from .services import apply_totals, build_qr_payload

logger = logging.getLogger(__name__)

CLIENT_SNAPSHOT_FIELDS = {
    "client_name": "name",
    "client_email": "email",
    "client_address": "address",
    "client_phone": "phone",
}


class Unauthenticated(Exception):
    pass


class InvalidReference(ValueError):
    pass


class ConcurrentModification(Exception):
    pass


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RecordStore:
    """Clients and invoices of one identity. Every mutation commits before returning."""

    def __init__(self, db: Session, identity: Optional[Identity]):
        self.db = db
        self._identity = identity

    @property
    def identity(self) -> Identity:
        if self._identity is None:
            raise Unauthenticated("No active identity")
        return self._identity

    @property
    def user_id(self) -> str:
        return self.identity.id

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentModification(str(exc)) from exc

    def _next_sort_key(self, model) -> int:
        current = (
            self.db.query(func.max(model.sort_key))
            .filter(model.user_id == self.user_id)
            .scalar()
        )
        return (current or 0) + 1

    # Clients

    def list_clients(self) -> List[Client]:
        return (
            self.db.query(Client)
            .filter(Client.user_id == self.user_id)
            .order_by(Client.sort_key.desc())
            .all()
        )

    def get_client(self, client_id: str) -> Optional[Client]:
        return self.db.get(Client, (self.user_id, client_id))

    def create_client(self, data: ClientCreate) -> Client:
        client = Client(
            user_id=self.user_id,
            id=new_id(),
            sort_key=self._next_sort_key(Client),
            created_at=utcnow(),
            **data.model_dump(),
        )
        self.db.add(client)
        self._commit()
        logger.info("Created client %s", client.id)
        return client

    def update_client(self, client_id: str, data: ClientUpdate) -> Optional[Client]:
        client = self.get_client(client_id)
        if client is None:
            return None
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(client, key, value)
        self._commit()
        return client

    def delete_client(self, client_id: str) -> bool:
        """Remove a client. Invoices keep their snapshot but lose the reference."""
        client = self.get_client(client_id)
        if client is None:
            return False
        referencing = (
            self.db.query(Invoice)
            .filter(Invoice.user_id == self.user_id, Invoice.client_id == client_id)
            .all()
        )
        for invoice in referencing:
            invoice.client_id = None
        self.db.delete(client)
        self._commit()
        logger.info("Deleted client %s (%d invoices unlinked)", client_id, len(referencing))
        return True

    # Invoices

    def list_invoices(self) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.user_id == self.user_id)
            .order_by(Invoice.sort_key.desc())
            .all()
        )

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self.db.get(Invoice, (self.user_id, invoice_id))

    def has_records(self) -> bool:
        for model in (Invoice, Client):
            if self.db.query(model.id).filter(model.user_id == self.user_id).first():
                return True
        return False

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        fields = data.model_dump(exclude={"items"})
        if not (fields.get("invoice_number") or "").strip():
            fields["invoice_number"] = f"INV-{int(time.time() * 1000)}"
        if fields.get("client_id"):
            self._fill_client_snapshot(fields, fields.keys())

        now = utcnow()
        invoice = Invoice(
            user_id=self.user_id,
            id=new_id(),
            sort_key=self._next_sort_key(Invoice),
            created_at=now,
            updated_at=now,
            **fields,
        )
        invoice.items = self._build_items(invoice, data.items, existing={})
        apply_totals(invoice)
        self.db.add(invoice)
        self._commit()
        logger.info("Created invoice %s (%s)", invoice.id, invoice.invoice_number)
        return invoice

    def update_invoice(self, invoice_id: str, data: InvoiceUpdate) -> Optional[Invoice]:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            return None

        changes = data.model_dump(exclude_unset=True)
        expected = changes.pop("expected_revision", None)
        if expected is not None and expected != invoice.revision:
            raise ConcurrentModification(
                f"Invoice {invoice_id} is at revision {invoice.revision}, not {expected}"
            )
        items = changes.pop("items", None)
        if changes.get("client_id"):
            self._fill_client_snapshot(changes, changes.keys())

        for key, value in changes.items():
            setattr(invoice, key, value)
        if items is not None:
            existing = {item.id: item for item in invoice.items}
            invoice.items = self._build_items(invoice, data.items, existing)
        apply_totals(invoice)
        invoice.updated_at = utcnow()
        self._commit()
        return invoice

    def delete_invoice(self, invoice_id: str) -> bool:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            return False
        self.db.delete(invoice)
        self._commit()
        logger.info("Deleted invoice %s", invoice_id)
        return True

    def refresh_qr_code(self, invoice_id: str) -> Optional[Invoice]:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            return None
        invoice.qr_code = build_qr_payload(
            invoice.invoice_number, invoice.currency, invoice.total, invoice.due_date
        )
        invoice.updated_at = utcnow()
        self._commit()
        return invoice

    def record_email(
        self,
        invoice_id: str,
        recipient: str,
        subject: str,
        status: str,
        error: Optional[str] = None,
    ) -> Optional[EmailLog]:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            return None
        sent_at = utcnow()
        log = EmailLog(
            user_id=self.user_id,
            invoice_id=invoice.id,
            id=new_id(),
            sent_at=sent_at,
            recipient=recipient,
            subject=subject,
            status=status,
            error=error,
        )
        invoice.email_logs.append(log)
        invoice.last_email_sent = sent_at
        invoice.updated_at = sent_at
        self._commit()
        return log

    # Wholesale replacement for import and restore. Flushes only; the caller commits.

    def replace_clients(self, records: List[ClientOut]) -> int:
        for client in self.list_clients():
            self.db.delete(client)
        self.db.flush()
        total = len(records)
        for index, record in enumerate(records):
            self.db.add(
                Client(
                    user_id=self.user_id,
                    id=record.id,
                    sort_key=total - index,
                    name=record.name,
                    email=record.email,
                    address=record.address,
                    phone=record.phone,
                    company=record.company,
                    created_at=_naive_utc(record.created_at),
                )
            )
        self.db.flush()
        return total

    def replace_invoices(self, records: List[InvoiceOut]) -> int:
        for invoice in self.list_invoices():
            self.db.delete(invoice)
        self.db.flush()
        total = len(records)
        for index, record in enumerate(records):
            fields = record.model_dump(
                exclude={"id", "user_id", "items", "email_logs", "created_at", "updated_at",
                         "last_email_sent"}
            )
            invoice = Invoice(
                user_id=self.user_id,
                id=record.id,
                sort_key=total - index,
                created_at=_naive_utc(record.created_at),
                updated_at=_naive_utc(record.updated_at),
                last_email_sent=(
                    _naive_utc(record.last_email_sent) if record.last_email_sent else None
                ),
                **fields,
            )
            invoice.items = self._build_items(invoice, record.items, existing={})
            invoice.email_logs = [
                EmailLog(
                    user_id=self.user_id,
                    invoice_id=record.id,
                    id=log.id,
                    sent_at=_naive_utc(log.sent_at),
                    recipient=log.recipient,
                    subject=log.subject,
                    status=log.status,
                    error=log.error,
                )
                for log in record.email_logs
            ]
            apply_totals(invoice)
            self.db.add(invoice)
        self.db.flush()
        return total

    def _fill_client_snapshot(self, fields: Dict, explicit: Iterable[str]) -> None:
        """Copy client details into blank snapshot fields of ``fields``."""
        client = self.get_client(fields["client_id"])
        if client is None:
            raise InvalidReference(f"Client {fields['client_id']} not found")
        explicit = set(explicit)
        for field, attr in CLIENT_SNAPSHOT_FIELDS.items():
            if field in explicit and fields.get(field):
                continue
            fields[field] = getattr(client, attr) or ("" if field != "client_phone" else None)

    def _build_items(
        self, invoice: Invoice, items: Iterable, existing: Dict[str, InvoiceItem]
    ) -> List[InvoiceItem]:
        built: List[InvoiceItem] = []
        seen = set()
        for position, data in enumerate(items, start=1):
            item_id = data.id if data.id and data.id not in seen else new_id()
            seen.add(item_id)
            item = existing.get(item_id)
            if item is None:
                item = InvoiceItem(user_id=invoice.user_id, invoice_id=invoice.id, id=item_id)
            item.description = data.description
            item.quantity = data.quantity
            item.rate = data.rate
            item.position = position
            built.append(item)
        return built
