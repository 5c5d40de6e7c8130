import logging
from pathlib import Path
from typing import Any, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import Settings, get_settings
from .schemas import EmailInvoice

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class EmailNotConfigured(Exception):
    pass


class EmailDeliveryError(Exception):
    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


def email_subject(invoice: EmailInvoice) -> str:
    if invoice.company_name:
        return f"Invoice {invoice.invoice_number} from {invoice.company_name}"
    return f"Invoice {invoice.invoice_number}"


def default_message(invoice: EmailInvoice) -> str:
    return (
        f"Please find attached your invoice {invoice.invoice_number}. "
        f"Payment is due by {invoice.due_date.isoformat()}."
    )


def render_invoice_email(invoice: EmailInvoice, custom_message: Optional[str] = None) -> str:
    template = _env.get_template("email/invoice.html")
    return template.render(invoice=invoice, message=custom_message or default_message(invoice))


def send_invoice_email(
    invoice: EmailInvoice,
    custom_message: Optional[str] = None,
    subject: Optional[str] = None,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Optional[str]:
    """Send ``invoice`` to its client through Resend and return the provider message id."""
    settings = settings or get_settings()
    if not settings.resend_api_key:
        raise EmailNotConfigured(
            "Email service not configured. Please add RESEND_API_KEY to environment variables."
        )

    sender = settings.email_from_address
    if invoice.company_name:
        sender = f"{invoice.company_name} <{settings.email_from_address}>"
    payload = {
        "from": sender,
        "to": [invoice.client_email],
        "subject": subject or email_subject(invoice),
        "html": render_invoice_email(invoice, custom_message),
    }
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}

    with httpx.Client(transport=transport, timeout=settings.email_timeout_seconds) as client:
        try:
            response = client.post(settings.resend_api_url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Email provider unreachable: %s", exc)
            raise EmailDeliveryError("Failed to send email", status_code=502, details=str(exc)) from exc

    if response.status_code >= 400:
        try:
            details = response.json()
        except ValueError:
            details = response.text
        logger.error("Email sending error (%s): %s", response.status_code, details)
        raise EmailDeliveryError("Failed to send email", status_code=500, details=details)

    try:
        body = response.json()
    except ValueError:
        logger.warning("Email provider returned a non-JSON body: %s", response.text)
        body = None
    email_id = body.get("id") if isinstance(body, dict) else None
    logger.info("Sent invoice %s to %s (%s)", invoice.invoice_number, invoice.client_email, email_id)
    return email_id
