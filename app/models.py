import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base

INVOICE_STATUSES = ("draft", "sent", "paid", "overdue")
INVOICE_TEMPLATES = ("modern", "classic", "minimal")
EMAIL_STATUSES = ("sent", "failed")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    # Stored naive, always UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Identity(Base):
    __tablename__ = "identities"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False, default="")
    company = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True)  # token jti
    identity_id = Column(
        String(36), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    identity = relationship("Identity")


class Client(Base):
    __tablename__ = "clients"

    user_id = Column(
        String(36), ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True
    )
    id = Column(String(36), primary_key=True, default=new_id)
    sort_key = Column(Integer, nullable=False, default=1)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, default="")
    address = Column(String(500), nullable=False, default="")
    phone = Column(String(100), nullable=True)
    company = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Invoice(Base):
    __tablename__ = "invoices"

    user_id = Column(
        String(36), ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True
    )
    id = Column(String(36), primary_key=True, default=new_id)
    sort_key = Column(Integer, nullable=False, default=1)
    invoice_number = Column(String(50), nullable=False)
    # Reference by id only; the client_* columns are a snapshot.
    client_id = Column(String(36), nullable=True)
    client_name = Column(String(255), nullable=False, default="")
    client_email = Column(String(255), nullable=False, default="")
    client_address = Column(String(500), nullable=False, default="")
    client_phone = Column(String(100), nullable=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_rate = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    notes = Column(Text, nullable=False, default="")
    template = Column(String(20), nullable=False, default="modern")
    currency = Column(String(10), nullable=False, default="USD")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    signature = Column(Text, nullable=True)
    qr_code = Column(Text, nullable=True)
    last_email_sent = Column(DateTime, nullable=True)
    revision = Column(Integer, nullable=False)

    items = relationship(
        "InvoiceItem",
        cascade="all, delete-orphan",
        back_populates="invoice",
        order_by="InvoiceItem.position",
    )
    email_logs = relationship(
        "EmailLog",
        cascade="all, delete-orphan",
        back_populates="invoice",
        order_by="EmailLog.sent_at",
    )

    __mapper_args__ = {"version_id_col": revision}


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "invoice_id"],
            ["invoices.user_id", "invoices.id"],
            ondelete="CASCADE",
        ),
    )

    user_id = Column(String(36), primary_key=True)
    invoice_id = Column(String(36), primary_key=True)
    id = Column(String(36), primary_key=True, default=new_id)
    description = Column(String(500), nullable=False, default="")
    quantity = Column(Integer, nullable=False, default=1)
    rate = Column(Numeric(12, 4), nullable=False, default=0)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    position = Column(Integer, nullable=False, default=1)

    invoice = relationship("Invoice", back_populates="items")


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "invoice_id"],
            ["invoices.user_id", "invoices.id"],
            ondelete="CASCADE",
        ),
    )

    user_id = Column(String(36), primary_key=True)
    invoice_id = Column(String(36), primary_key=True)
    id = Column(String(36), primary_key=True, default=new_id)
    sent_at = Column(DateTime, nullable=False, default=utcnow)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)

    invoice = relationship("Invoice", back_populates="email_logs")


class Backup(Base):
    __tablename__ = "backups"

    key = Column(String(120), primary_key=True)
    user_id = Column(
        String(36), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    payload = Column(Text, nullable=False)
