import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from .analytics import summarize
from .config import get_settings
from .database import SessionLocal, get_db
from .export import (
    BackupScheduler,
    InvalidImportDocument,
    export_csv,
    export_data,
    export_filename,
    generate_backup,
    import_data,
    list_backups,
    restore_backup,
)
from .logging_config import setup_logging
from .mailer import (
    EmailDeliveryError,
    EmailNotConfigured,
    email_subject,
    send_invoice_email,
)
from .models import Client, Invoice
from .pdf import build_invoice_pdf_payload, render_invoice_pdf
from .queries import filter_invoices, search_invoices
from .schemas import (
    BackupOut,
    ClientCreate,
    ClientOut,
    ClientUpdate,
    EmailInvoice,
    EmailLogOut,
    IdentityOut,
    ImportResult,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceEmailRequest,
    InvoiceFilters,
    InvoiceOut,
    InvoiceStatus,
    InvoiceUpdate,
    LineItemOut,
    LoginRequest,
    RegisterRequest,
    SendInvoiceRequest,
    SendInvoiceResponse,
    TokenResponse,
)
from .sessions import SessionStore, seed_demo_identity
from .store import ConcurrentModification, InvalidReference, RecordStore, Unauthenticated

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging()
    if settings.seed_demo_user:
        db = SessionLocal()
        try:
            seed_demo_identity(db)
        finally:
            db.close()
    scheduler = None
    if settings.backup_scheduler_enabled:
        scheduler = BackupScheduler(
            SessionLocal, settings.backup_interval_seconds, settings.backup_retention
        )
        scheduler.start()
    yield
    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(title="Invoice Desk", lifespan=lifespan)
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


@app.exception_handler(Unauthenticated)
def handle_unauthenticated(request: Request, exc: Unauthenticated) -> JSONResponse:
    return JSONResponse(
        {"detail": "Not authenticated"},
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(ConcurrentModification)
def handle_conflict(request: Request, exc: ConcurrentModification) -> JSONResponse:
    return JSONResponse(
        {"detail": "The invoice was modified by another request. Reload and retry."},
        status_code=status.HTTP_409_CONFLICT,
    )


@app.exception_handler(InvalidReference)
def handle_invalid_reference(request: Request, exc: InvalidReference) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


def get_session_store(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None)
) -> SessionStore:
    sessions = SessionStore(db)
    if authorization and authorization.startswith("Bearer "):
        sessions.restore(authorization.split(" ", 1)[1])
    return sessions


def get_record_store(sessions: SessionStore = Depends(get_session_store)) -> RecordStore:
    return RecordStore(sessions.db, sessions.identity)


def get_email_transport():
    # Overridden in tests with an httpx.MockTransport.
    return None


def _get_client_or_404(store: RecordStore, client_id: str) -> Client:
    client = store.get_client(client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


def _get_invoice_or_404(store: RecordStore, invoice_id: str) -> Invoice:
    invoice = store.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


def _token_response(sessions: SessionStore) -> TokenResponse:
    return TokenResponse(token=sessions.token, identity=IdentityOut.model_validate(sessions.identity))


# Session


@app.post("/auth/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, sessions: SessionStore = Depends(get_session_store)):
    if not sessions.register(data.email, data.password, data.name, data.company):
        raise HTTPException(status_code=400, detail="Registration failed")
    return _token_response(sessions)


@app.post("/auth/login", response_model=TokenResponse)
def login(data: LoginRequest, sessions: SessionStore = Depends(get_session_store)):
    if not sessions.login(data.email, data.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _token_response(sessions)


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(sessions: SessionStore = Depends(get_session_store)) -> Response:
    sessions.logout()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/auth/me", response_model=IdentityOut)
def me(store: RecordStore = Depends(get_record_store)):
    return store.identity


# Clients


@app.get("/clients", response_model=List[ClientOut])
def list_clients(store: RecordStore = Depends(get_record_store)):
    return store.list_clients()


@app.post("/clients", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(data: ClientCreate, store: RecordStore = Depends(get_record_store)):
    return store.create_client(data)


@app.get("/clients/{client_id}", response_model=ClientOut)
def get_client(client_id: str, store: RecordStore = Depends(get_record_store)):
    return _get_client_or_404(store, client_id)


@app.patch("/clients/{client_id}", response_model=ClientOut)
def update_client(
    client_id: str, data: ClientUpdate, store: RecordStore = Depends(get_record_store)
):
    client = store.update_client(client_id, data)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(client_id: str, store: RecordStore = Depends(get_record_store)) -> Response:
    store.delete_client(client_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Invoices


def _listed_invoices(
    store: RecordStore,
    q: Optional[str],
    status_filter: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    min_amount: Optional[Decimal],
    max_amount: Optional[Decimal],
) -> List[Invoice]:
    invoices = store.list_invoices()
    if q and q.strip():
        return search_invoices(invoices, q)
    filters = InvoiceFilters(
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    return filter_invoices(invoices, filters)


@app.get("/invoices", response_model=List[InvoiceOut])
def list_invoices(
    q: Optional[str] = None,
    status_filter: Optional[InvoiceStatus] = Query(default=None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    store: RecordStore = Depends(get_record_store),
):
    return _listed_invoices(store, q, status_filter, date_from, date_to, min_amount, max_amount)


@app.get("/invoices.csv")
def invoices_csv(
    q: Optional[str] = None,
    status_filter: Optional[InvoiceStatus] = Query(default=None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    store: RecordStore = Depends(get_record_store),
) -> Response:
    invoices = _listed_invoices(store, q, status_filter, date_from, date_to, min_amount, max_amount)
    return Response(
        content=export_csv(invoices),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="invoices.csv"'},
    )


@app.post("/invoices", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(data: InvoiceCreate, store: RecordStore = Depends(get_record_store)):
    return store.create_invoice(data)


@app.get("/invoices/{invoice_id}", response_model=InvoiceDetail)
def invoice_detail(invoice_id: str, store: RecordStore = Depends(get_record_store)):
    return _get_invoice_or_404(store, invoice_id)


@app.patch("/invoices/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(
    invoice_id: str, data: InvoiceUpdate, store: RecordStore = Depends(get_record_store)
):
    invoice = store.update_invoice(invoice_id, data)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@app.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(invoice_id: str, store: RecordStore = Depends(get_record_store)) -> Response:
    store.delete_invoice(invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/invoices/{invoice_id}/qr", response_model=InvoiceDetail)
def invoice_qr(invoice_id: str, store: RecordStore = Depends(get_record_store)):
    invoice = store.refresh_qr_code(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@app.get("/invoices/{invoice_id}/pdf")
def invoice_pdf(invoice_id: str, store: RecordStore = Depends(get_record_store)) -> Response:
    invoice = _get_invoice_or_404(store, invoice_id)
    pdf_bytes = render_invoice_pdf(build_invoice_pdf_payload(invoice, store.identity))
    filename = f"invoice-{invoice.invoice_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@app.get("/invoices/{invoice_id}/html")
def invoice_html(
    invoice_id: str, request: Request, store: RecordStore = Depends(get_record_store)
) -> Response:
    invoice = _get_invoice_or_404(store, invoice_id)
    filename = f"invoice-{invoice.invoice_number}.html"
    return templates.TemplateResponse(
        request,
        "invoices/document.html",
        {"invoice": invoice, "company": store.identity},
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/invoices/{invoice_id}/csv")
def invoice_csv(invoice_id: str, store: RecordStore = Depends(get_record_store)) -> Response:
    invoice = _get_invoice_or_404(store, invoice_id)
    filename = f"invoice-{invoice.invoice_number}.csv"
    return Response(
        content=export_csv([invoice]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _email_invoice(invoice: Invoice, store: RecordStore, recipient: str) -> EmailInvoice:
    identity = store.identity
    return EmailInvoice(
        invoice_number=invoice.invoice_number,
        client_name=invoice.client_name,
        client_email=recipient,
        company_name=identity.company or identity.name,
        company_email=identity.email,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        items=[LineItemOut.model_validate(item) for item in invoice.items],
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        tax_amount=invoice.tax_amount,
        total=invoice.total,
        currency=invoice.currency,
        notes=invoice.notes,
    )


@app.post("/invoices/{invoice_id}/email", response_model=EmailLogOut)
def email_invoice(
    invoice_id: str,
    data: Optional[InvoiceEmailRequest] = None,
    store: RecordStore = Depends(get_record_store),
    transport=Depends(get_email_transport),
):
    """Send a stored invoice and append the outcome to its email log."""
    data = data or InvoiceEmailRequest()
    invoice = _get_invoice_or_404(store, invoice_id)
    recipient = data.to or invoice.client_email
    if not recipient:
        raise HTTPException(status_code=400, detail="Invoice has no client email")
    payload = _email_invoice(invoice, store, recipient)
    subject = data.subject or email_subject(payload)
    try:
        send_invoice_email(payload, data.message, subject=subject, transport=transport)
    except (EmailNotConfigured, EmailDeliveryError) as exc:
        error = str(exc)
        if getattr(exc, "details", None):
            error = f"{error}: {exc.details}"
        log = store.record_email(invoice_id, recipient, subject, "failed", error=error)
        return JSONResponse(
            EmailLogOut.model_validate(log).model_dump(mode="json", by_alias=True),
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
    return store.record_email(invoice_id, recipient, subject, "sent")


# Export / backup


@app.get("/export")
def export_document(store: RecordStore = Depends(get_record_store)) -> Response:
    document = export_data(store)
    filename = export_filename(document.export_date.date())
    return Response(
        content=document.model_dump_json(by_alias=True, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/import", response_model=ImportResult)
def import_document(
    payload: Dict[str, Any] = Body(...), store: RecordStore = Depends(get_record_store)
):
    try:
        return import_data(store, payload)
    except InvalidImportDocument as exc:
        raise HTTPException(status_code=400, detail=f"Invalid import document: {exc}")


@app.get("/backups", response_model=List[BackupOut])
def backups(store: RecordStore = Depends(get_record_store)):
    return list_backups(store)


@app.post("/backups", response_model=BackupOut, status_code=status.HTTP_201_CREATED)
def create_backup(store: RecordStore = Depends(get_record_store)):
    key = generate_backup(store, get_settings().backup_retention)
    return next(backup for backup in list_backups(store) if backup.key == key)


@app.post("/backups/{key}/restore", response_model=ImportResult)
def restore(key: str, store: RecordStore = Depends(get_record_store)):
    try:
        result = restore_backup(store, key)
    except InvalidImportDocument as exc:
        raise HTTPException(status_code=400, detail=f"Backup {key} cannot be restored: {exc}")
    if result is None:
        raise HTTPException(status_code=404, detail="Backup not found")
    return result


@app.get("/analytics")
def analytics(store: RecordStore = Depends(get_record_store)) -> Dict[str, Any]:
    return summarize(store.list_invoices(), date.today())


# Stateless email relay


@app.post("/api/send-invoice", response_model=SendInvoiceResponse)
def send_invoice(data: SendInvoiceRequest, transport=Depends(get_email_transport)):
    try:
        email_id = send_invoice_email(data.invoice, data.custom_message, transport=transport)
    except EmailNotConfigured as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)
    except EmailDeliveryError as exc:
        return JSONResponse(
            {"error": exc.message, "details": exc.details}, status_code=exc.status_code
        )
    return SendInvoiceResponse(email_id=email_id)
