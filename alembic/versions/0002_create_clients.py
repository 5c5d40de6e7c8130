"""create clients table"""

from alembic import op
import sqlalchemy as sa

revision = "0002_create_clients"
down_revision = "0001_create_identities"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "clients",
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("sort_key", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=100), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("clients")
