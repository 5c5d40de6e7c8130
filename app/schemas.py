from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

InvoiceStatus = Literal["draft", "sent", "paid", "overdue"]
InvoiceTemplate = Literal["modern", "classic", "minimal"]
EmailStatus = Literal["sent", "failed"]

# Amounts travel as JSON numbers, as in exported documents.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
Rate = Annotated[
    Decimal,
    Field(ge=0, le=100),
    PlainSerializer(float, return_type=float, when_used="json"),
]


def _default_due_date() -> date:
    return date.today() + timedelta(days=30)


def _check_email(value: str) -> str:
    value = value.strip()
    if "@" not in value or value.startswith("@") or value.endswith("@"):
        raise ValueError("Invalid email address.")
    return value


def _reject_nulls(model: BaseModel, nullable: frozenset) -> BaseModel:
    """Refuse explicit nulls for fields whose columns are NOT NULL."""
    for name in sorted(model.model_fields_set - nullable):
        if getattr(model, name) is None:
            raise ValueError(f"{to_camel(name)} cannot be null.")
    return model


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Session


class RegisterRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)
    name: str = ""
    company: str = ""

    email_valid = field_validator("email")(_check_email)


class LoginRequest(CamelModel):
    email: str
    password: str


class IdentityOut(CamelModel):
    id: str
    email: str
    name: str
    company: str
    created_at: datetime


class TokenResponse(CamelModel):
    token: str
    identity: IdentityOut


# Clients


class ClientCreate(CamelModel):
    name: str = Field(min_length=1)
    email: str
    address: str = ""
    phone: Optional[str] = None
    company: Optional[str] = None

    email_valid = field_validator("email")(_check_email)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required.")
        return value


class ClientUpdate(CamelModel):
    """Mutable client fields. Only the fields that are set are merged."""

    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Name is required.")
        return value.strip() if value is not None else value

    @field_validator("email")
    @classmethod
    def email_valid(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value) if value is not None else value

    @model_validator(mode="after")
    def required_not_null(self):
        return _reject_nulls(self, frozenset({"phone", "company"}))


class ClientOut(CamelModel):
    id: str
    user_id: Optional[str] = None
    name: str
    email: str
    address: str = ""
    phone: Optional[str] = None
    company: Optional[str] = None
    created_at: datetime


# Invoices


class LineItemIn(CamelModel):
    id: Optional[str] = None
    description: str = ""
    quantity: int = Field(default=1, gt=0)
    rate: Decimal = Field(default=Decimal("0"), ge=0)


class LineItemOut(CamelModel):
    id: str
    description: str
    quantity: int = Field(gt=0)
    rate: Money = Field(ge=0)
    amount: Money


class EmailLogOut(CamelModel):
    id: str
    sent_at: datetime
    recipient: str
    subject: str
    status: EmailStatus
    error: Optional[str] = None


class InvoiceCreate(CamelModel):
    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    client_name: str = ""
    client_email: str = ""
    client_address: str = ""
    client_phone: Optional[str] = None
    issue_date: date = Field(default_factory=date.today)
    due_date: date = Field(default_factory=_default_due_date)
    status: InvoiceStatus = "draft"
    items: List[LineItemIn] = Field(default_factory=list)
    tax_rate: Rate = Decimal("10")
    discount_rate: Rate = Decimal("0")
    notes: str = ""
    template: InvoiceTemplate = "modern"
    currency: str = Field(default="USD", min_length=1, max_length=10)
    signature: Optional[str] = None
    qr_code: Optional[str] = None


class InvoiceUpdate(CamelModel):
    """Mutable invoice fields. Only the fields that are set are merged.

    ``expected_revision`` is not stored: when given, the update is refused if
    the invoice has been written since the caller read it.
    """

    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_address: Optional[str] = None
    client_phone: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[InvoiceStatus] = None
    items: Optional[List[LineItemIn]] = None
    tax_rate: Optional[Rate] = None
    discount_rate: Optional[Rate] = None
    notes: Optional[str] = None
    template: Optional[InvoiceTemplate] = None
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)
    signature: Optional[str] = None
    qr_code: Optional[str] = None
    expected_revision: Optional[int] = None

    @model_validator(mode="after")
    def required_not_null(self):
        return _reject_nulls(
            self,
            frozenset(
                {"client_id", "client_phone", "signature", "qr_code", "expected_revision"}
            ),
        )


class InvoiceOut(CamelModel):
    id: str
    user_id: Optional[str] = None
    invoice_number: str
    client_id: Optional[str] = None
    client_name: str = ""
    client_email: str = ""
    client_address: str = ""
    client_phone: Optional[str] = None
    issue_date: date
    due_date: date
    status: InvoiceStatus
    items: List[LineItemOut] = Field(default_factory=list)
    subtotal: Money
    tax_rate: Rate
    tax_amount: Money
    discount_rate: Rate
    discount_amount: Money
    total: Money
    notes: str = ""
    template: InvoiceTemplate = "modern"
    currency: str = "USD"
    created_at: datetime
    updated_at: datetime
    signature: Optional[str] = None
    qr_code: Optional[str] = None
    email_logs: List[EmailLogOut] = Field(default_factory=list)
    last_email_sent: Optional[datetime] = None


class InvoiceDetail(InvoiceOut):
    revision: int


class InvoiceFilters(CamelModel):
    status: Optional[InvoiceStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


# Export / import


class ExportDocument(CamelModel):
    invoices: List[InvoiceOut]
    clients: List[ClientOut]
    export_date: datetime
    version: str = "1.0"


class ImportDocument(CamelModel):
    """Incoming backup document. Each collection is replaced only if present."""

    invoices: Optional[List[InvoiceOut]] = None
    clients: Optional[List[ClientOut]] = None
    export_date: Optional[datetime] = None
    version: Optional[str] = None

    @model_validator(mode="after")
    def unique_ids(self):
        for label, records in (("invoice", self.invoices), ("client", self.clients)):
            if not records:
                continue
            ids = [record.id for record in records]
            if len(ids) != len(set(ids)):
                raise ValueError(f"Duplicate {label} ids in document.")
        for invoice in self.invoices or []:
            for label, children in (("item", invoice.items), ("email log", invoice.email_logs)):
                ids = [child.id for child in children]
                if len(ids) != len(set(ids)):
                    raise ValueError(f"Duplicate {label} ids in invoice {invoice.id}.")
        return self


class ImportResult(CamelModel):
    invoices: Optional[int] = None
    clients: Optional[int] = None


class BackupOut(CamelModel):
    key: str
    created_at: datetime


# Email relay


class EmailInvoice(CamelModel):
    """Invoice fields the relay needs to compose a message."""

    model_config = ConfigDict(extra="ignore")

    invoice_number: str
    client_name: str = ""
    client_email: str
    company_name: str = ""
    company_email: str = ""
    issue_date: Optional[date] = None
    due_date: date
    items: List[LineItemOut] = Field(default_factory=list)
    subtotal: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    tax_amount: Money = Decimal("0")
    total: Money = Decimal("0")
    currency: str = "USD"
    notes: str = ""

    client_email_valid = field_validator("client_email")(_check_email)


class SendInvoiceRequest(CamelModel):
    invoice: EmailInvoice
    custom_message: Optional[str] = None


class SendInvoiceResponse(CamelModel):
    success: bool = True
    email_id: Optional[str] = None
    message: str = "Invoice sent successfully!"


class InvoiceEmailRequest(CamelModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None

    @field_validator("to")
    @classmethod
    def to_valid(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value) if value is not None else value
