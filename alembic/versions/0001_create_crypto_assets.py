"""create crypto_assets table

Revision ID: 0001_create_crypto_assets
Revises:
Create Date: 2026-09-28 10:00:00.000000

``external_id`` carries the unique constraint; ``symbol`` is indexed but not
unique because the feed reuses tickers across distinct assets.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_create_crypto_assets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "crypto_assets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("external_id", sa.String(100), nullable=False, comment="Feed identifier (e.g. 'bitcoin')"),
        sa.Column("symbol", sa.String(30), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("current_price", sa.Float(), nullable=True),
        sa.Column("market_cap", sa.Float(), nullable=True),
        sa.Column("market_cap_rank", sa.Integer(), nullable=True),
        sa.Column("total_volume", sa.Float(), nullable=True),
        sa.Column("high_24h", sa.Float(), nullable=True),
        sa.Column("low_24h", sa.Float(), nullable=True),
        sa.Column("price_change_percentage_24h", sa.Float(), nullable=True),
        sa.Column("price_change_percentage_7d", sa.Float(), nullable=True),
        sa.Column("price_change_percentage_30d", sa.Float(), nullable=True),
        sa.Column("circulating_supply", sa.Float(), nullable=True),
        sa.Column("total_supply", sa.Float(), nullable=True),
        sa.Column("max_supply", sa.Float(), nullable=True),
        sa.Column("all_time_high", sa.Float(), nullable=True),
        sa.Column("all_time_high_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("all_time_low", sa.Float(), nullable=True),
        sa.Column("all_time_low_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("image", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("homepage", sa.String(500), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("source_updated_at", sa.DateTime(timezone=True), nullable=True, comment="Feed-side last_updated"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_index("ix_crypto_assets_external_id", "crypto_assets", ["external_id"], unique=True)
    op.create_index("ix_crypto_assets_symbol", "crypto_assets", ["symbol"])
    op.create_index("ix_crypto_assets_market_cap_rank", "crypto_assets", ["market_cap_rank"])
    op.create_index("ix_crypto_assets_price_change_percentage_24h", "crypto_assets", ["price_change_percentage_24h"])
    op.create_index("ix_crypto_assets_is_active", "crypto_assets", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_crypto_assets_is_active", "crypto_assets")
    op.drop_index("ix_crypto_assets_price_change_percentage_24h", "crypto_assets")
    op.drop_index("ix_crypto_assets_market_cap_rank", "crypto_assets")
    op.drop_index("ix_crypto_assets_symbol", "crypto_assets")
    op.drop_index("ix_crypto_assets_external_id", "crypto_assets")
    op.drop_table("crypto_assets")
