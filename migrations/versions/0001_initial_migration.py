"""Initial migration

Revision ID: 0001
Revises:
Create Date: 2025-06-01 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create enrichment jobs table
    op.create_table(
        "enrichment_jobs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("enrichment_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.String(length=50), nullable=False),
        sa.Column("updated_at", sa.String(length=50), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_enrichment_jobs_status", "enrichment_jobs", ["status"])
    op.create_index("idx_enrichment_jobs_owner", "enrichment_jobs", ["owner_id"])
    op.create_index("idx_enrichment_jobs_updated_at", "enrichment_jobs", ["updated_at"])

    # Create products table
    op.create_table(
        "products",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=True),
        sa.Column("ean", sa.String(length=32), nullable=True),
        sa.Column("enrichment_status", sa.String(length=20), nullable=False),
        sa.Column("enrichment_error_message", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_products_enrichment_status", "products", ["enrichment_status"])

    # Create alert log
    op.create_table(
        "alert_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("alert_type", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create Amazon credentials table
    op.create_table(
        "amazon_credentials",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("client_id", sa.String(length=255), nullable=True),
        sa.Column("expires_at", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create session tokens table
    op.create_table(
        "user_sessions",
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_table("amazon_credentials")
    op.drop_table("alert_events")

    op.drop_index("idx_products_enrichment_status", table_name="products")
    op.drop_table("products")

    # Drop indexes
    op.drop_index("idx_enrichment_jobs_updated_at", table_name="enrichment_jobs")
    op.drop_index("idx_enrichment_jobs_owner", table_name="enrichment_jobs")
    op.drop_index("idx_enrichment_jobs_status", table_name="enrichment_jobs")

    # Drop table
    op.drop_table("enrichment_jobs")
