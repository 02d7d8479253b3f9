"""Create account directory and partner link tables

Revision ID: 001_partner_links
Revises:
Create Date: 2026-10-18

Creates:
- accounts: Internal accounts (exposed to partners as outfit_user_id)
- partner_agent_links: (partner_id, partner_agent_id) -> account
- partner_client_links: (partner_id, partner_client_id) -> account,
  including pending disambiguations and their candidate snapshot
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001_partner_links"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Trigram similarity for the candidate blocking pass
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")

    # =========================
    # Accounts Table
    # =========================
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("first_name", sa.String(200), nullable=False),
        sa.Column("last_name", sa.String(200), nullable=False),
        # normalize_name(last_name), written by the application
        sa.Column("last_name_key", sa.String(200), nullable=False, server_default=""),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("bio_blurb", sa.Text, nullable=True),
        sa.Column("last_search_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )

    op.execute("CREATE INDEX idx_accounts_email ON accounts (lower(email))")
    op.execute(
        "CREATE INDEX idx_accounts_last_name_trgm "
        "ON accounts USING gin (last_name_key gin_trgm_ops)"
    )
    op.create_index("idx_accounts_last_search", "accounts", ["last_search_at"])

    # =========================
    # Partner Agent Links Table
    # =========================
    op.create_table(
        "partner_agent_links",
        sa.Column("partner_id", sa.String(100), nullable=False),
        sa.Column("partner_agent_id", sa.String(255), nullable=False),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("existing_account", sa.Boolean, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("partner_id", "partner_agent_id"),
    )

    op.create_index(
        "idx_agent_links_account", "partner_agent_links", ["partner_id", "account_id"]
    )

    # =========================
    # Partner Client Links Table
    # =========================
    op.create_table(
        "partner_client_links",
        sa.Column("partner_id", sa.String(100), nullable=False),
        sa.Column("partner_client_id", sa.String(255), nullable=False),
        sa.Column("partner_agent_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id"),
            nullable=True,
        ),
        sa.Column("action", sa.String(20), nullable=True),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("client_info", postgresql.JSONB, nullable=False),
        sa.Column(
            "candidates",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("partner_id", "partner_client_id"),
        sa.CheckConstraint(
            "status IN ('pending_disambiguation', 'linked')",
            name="ck_client_links_status",
        ),
        sa.CheckConstraint(
            "status <> 'linked' OR account_id IS NOT NULL",
            name="ck_client_links_linked_account",
        ),
        sa.CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 1)",
            name="ck_client_links_confidence",
        ),
    )

    op.create_index("idx_client_links_status", "partner_client_links", ["status"])
    op.create_index("idx_client_links_account", "partner_client_links", ["account_id"])
    op.create_index("idx_client_links_agent", "partner_client_links", ["partner_id", "partner_agent_id"])


def downgrade() -> None:
    op.drop_table("partner_client_links")
    op.drop_table("partner_agent_links")
    op.drop_table("accounts")
