"""JSON/CSV export, import and per-identity backups."""

import asyncio
import csv
import io
import json
import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuthSession, Backup, Identity, Invoice, utcnow
from .schemas import (
    ClientOut,
    ExportDocument,
    IdentityOut,
    ImportDocument,
    ImportResult,
    InvoiceOut,
)
from .services import money_round, to_decimal
from .store import RecordStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
DEFAULT_RETENTION = 5

CSV_HEADERS = [
    "Invoice Number",
    "Client Name",
    "Client Email",
    "Issue Date",
    "Due Date",
    "Status",
    "Currency",
    "Subtotal",
    "Tax Rate",
    "Tax Amount",
    "Discount Rate",
    "Discount Amount",
    "Total",
    "Notes",
]


class InvalidImportDocument(ValueError):
    pass


def export_data(store: RecordStore) -> ExportDocument:
    return ExportDocument(
        invoices=[InvoiceOut.model_validate(inv) for inv in store.list_invoices()],
        clients=[ClientOut.model_validate(client) for client in store.list_clients()],
        export_date=datetime.now(timezone.utc),
        version=EXPORT_VERSION,
    )


def export_filename(today: date) -> str:
    return f"invoice-data-{today.isoformat()}.json"


def parse_import_document(payload: Any) -> ImportDocument:
    if isinstance(payload, ImportDocument):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    try:
        return ImportDocument.model_validate(payload)
    except ValidationError as exc:
        raise InvalidImportDocument(str(exc)) from exc


def import_data(store: RecordStore, payload: Any) -> ImportResult:
    """Replace the active identity's collections with the document's.

    Each collection is replaced only when the document carries it. Records are
    re-owned by the active identity whatever ``userId`` the document says. The
    import commits as a whole or not at all.
    """
    document = parse_import_document(payload)
    result = ImportResult()
    try:
        if document.clients is not None:
            result.clients = store.replace_clients(document.clients)
        if document.invoices is not None:
            result.invoices = store.replace_invoices(document.invoices)
        store.db.commit()
    except SQLAlchemyError as exc:
        store.db.rollback()
        logger.warning("Import for %s rolled back: %s", store.user_id, exc)
        raise InvalidImportDocument(str(exc)) from exc
    logger.info(
        "Imported data for %s (invoices=%s, clients=%s)",
        store.user_id,
        result.invoices,
        result.clients,
    )
    return result


def _rate_value(value) -> Decimal:
    rate = to_decimal(value)
    if rate == rate.to_integral_value():
        return rate.quantize(Decimal("1"))
    return rate.normalize()


def export_csv(invoices: Iterable[Invoice]) -> str:
    """One row per invoice. Text columns are quoted, numeric columns are bare."""
    output = io.StringIO()
    csv.writer(output, lineterminator="\n").writerow(CSV_HEADERS)
    writer = csv.writer(output, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for inv in invoices:
        writer.writerow(
            [
                inv.invoice_number or "",
                inv.client_name or "",
                inv.client_email or "",
                inv.issue_date.isoformat(),
                inv.due_date.isoformat(),
                inv.status,
                inv.currency or "",
                money_round(to_decimal(inv.subtotal)),
                _rate_value(inv.tax_rate),
                money_round(to_decimal(inv.tax_amount)),
                _rate_value(inv.discount_rate),
                money_round(to_decimal(inv.discount_amount)),
                money_round(to_decimal(inv.total)),
                inv.notes or "",
            ]
        )
    return output.getvalue()


# Backups


def _now_ms() -> int:
    return int(time.time() * 1000)


def _backup_prefix(user_id: str) -> str:
    return f"backup_{user_id}_"


def _backup_keys(db: Session, user_id: str) -> List[str]:
    rows = db.query(Backup.key).filter(Backup.user_id == user_id).order_by(Backup.key).all()
    return [row[0] for row in rows]


def generate_backup(store: RecordStore, retention: int = DEFAULT_RETENTION) -> str:
    """Snapshot invoices, clients and identity under a timestamped key.

    Keys sort chronologically; only the newest ``retention`` are kept.
    """
    db = store.db
    user_id = store.user_id
    document = export_data(store)
    payload = {
        "invoices": [inv.model_dump(mode="json", by_alias=True) for inv in document.invoices],
        "clients": [client.model_dump(mode="json", by_alias=True) for client in document.clients],
        "user": IdentityOut.model_validate(store.identity).model_dump(mode="json", by_alias=True),
        "backupDate": document.export_date.isoformat(),
    }

    prefix = _backup_prefix(user_id)
    stamp = _now_ms()
    existing = _backup_keys(db, user_id)
    if existing:
        # New keys must sort after every kept key, even within one millisecond.
        stamp = max(stamp, int(existing[-1][len(prefix):]) + 1)
    key = f"{prefix}{stamp:013d}"

    db.add(Backup(key=key, user_id=user_id, created_at=utcnow(), payload=json.dumps(payload)))
    db.flush()

    keys = _backup_keys(db, user_id)
    if len(keys) > retention:
        evicted = keys[: len(keys) - retention]
        db.query(Backup).filter(Backup.key.in_(evicted)).delete(synchronize_session=False)
        logger.debug("Evicted backups %s", evicted)
    db.commit()
    logger.info("Stored backup %s", key)
    return key


def list_backups(store: RecordStore) -> List[Backup]:
    return (
        store.db.query(Backup)
        .filter(Backup.user_id == store.user_id)
        .order_by(Backup.key.desc())
        .all()
    )


def load_backup(store: RecordStore, key: str) -> Optional[Dict[str, Any]]:
    """Return the snapshot stored under ``key``; unreadable payloads load as empty."""
    backup = store.db.get(Backup, key)
    if backup is None or backup.user_id != store.user_id:
        return None
    try:
        data = json.loads(backup.payload)
        if not isinstance(data, Mapping):
            raise ValueError("payload is not an object")
    except ValueError:
        logger.warning("Backup %s is corrupt; treating it as empty", key)
        return {"invoices": [], "clients": [], "user": None, "backupDate": None}
    data.setdefault("invoices", [])
    data.setdefault("clients", [])
    return data


def restore_backup(store: RecordStore, key: str) -> Optional[ImportResult]:
    data = load_backup(store, key)
    if data is None:
        return None
    return import_data(store, {"invoices": data["invoices"], "clients": data["clients"]})


class BackupScheduler:
    """Periodically snapshots every identity with a live session and some records."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_seconds: float,
        retention: int = DEFAULT_RETENTION,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.retention = retention
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> List[str]:
        db = self.session_factory()
        try:
            identities = (
                db.query(Identity)
                .join(AuthSession, AuthSession.identity_id == Identity.id)
                .filter(AuthSession.expires_at > utcnow())
                .distinct()
                .all()
            )
            keys = []
            for identity in identities:
                store = RecordStore(db, identity)
                if store.has_records():
                    keys.append(generate_backup(store, self.retention))
            return keys
        finally:
            db.close()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Scheduled backup failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Backup scheduler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")
