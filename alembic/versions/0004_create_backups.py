"""create backups table"""

from alembic import op
import sqlalchemy as sa

revision = "0004_create_backups"
down_revision = "0003_create_invoices"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "backups",
        sa.Column("key", sa.String(length=120), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
    )
    op.create_index("ix_backups_user_id", "backups", ["user_id"])


def downgrade():
    op.drop_index("ix_backups_user_id", table_name="backups")
    op.drop_table("backups")
