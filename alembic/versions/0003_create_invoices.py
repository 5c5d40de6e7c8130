"""create invoices, invoice items and email logs"""

from alembic import op
import sqlalchemy as sa

revision = "0003_create_invoices"
down_revision = "0002_create_clients"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "invoices",
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("sort_key", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("invoice_number", sa.String(length=50), nullable=False),
        sa.Column("client_id", sa.String(length=36), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("client_email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("client_address", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("client_phone", sa.String(length=100), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("template", sa.String(length=20), nullable=False, server_default="modern"),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="USD"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("last_email_sent", sa.DateTime(), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
    )

    op.create_table(
        "invoice_items",
        sa.Column("user_id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_id", sa.String(length=36), primary_key=True),
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("rate", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(
            ["user_id", "invoice_id"],
            ["invoices.user_id", "invoices.id"],
            ondelete="CASCADE",
        ),
    )

    op.create_table(
        "email_logs",
        sa.Column("user_id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_id", sa.String(length=36), primary_key=True),
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id", "invoice_id"],
            ["invoices.user_id", "invoices.id"],
            ondelete="CASCADE",
        ),
    )


def downgrade():
    op.drop_table("email_logs")
    op.drop_table("invoice_items")
    op.drop_table("invoices")
