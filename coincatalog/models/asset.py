"""Catalog table - one row per tracked currency, keyed by the feed's id."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from coincatalog.models.base import Base


# Columns the sync pass overwrites on every observation (null included).
MARKET_FIELDS = (
    "symbol",
    "name",
    "current_price",
    "market_cap",
    "market_cap_rank",
    "total_volume",
    "high_24h",
    "low_24h",
    "price_change_percentage_24h",
    "price_change_percentage_7d",
    "price_change_percentage_30d",
    "circulating_supply",
    "total_supply",
    "max_supply",
    "all_time_high",
    "all_time_high_date",
    "all_time_low",
    "all_time_low_date",
    "source_updated_at",
)

# Columns the sync pass only writes when the feed actually carries them.
DESCRIPTIVE_FIELDS = ("image", "description", "homepage", "categories")


class CryptoAsset(Base):
    """A cryptocurrency tracked by the catalog.

    ``external_id`` is the sole join key against the feed. ``symbol`` is not
    unique: distinct assets may share a ticker, so it is indexed but never
    used for reconciliation.
    """

    __tablename__ = "crypto_assets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    external_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True, comment="Feed identifier (e.g. 'bitcoin')")
    symbol: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_cap: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_cap_rank: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    total_volume: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    low_24h: Mapped[float | None] = mapped_column(Float, nullable=True)

    price_change_percentage_24h: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    price_change_percentage_7d: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_change_percentage_30d: Mapped[float | None] = mapped_column(Float, nullable=True)

    circulating_supply: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_supply: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_supply: Mapped[float | None] = mapped_column(Float, nullable=True)

    all_time_high: Mapped[float | None] = mapped_column(Float, nullable=True)
    all_time_high_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    all_time_low: Mapped[float | None] = mapped_column(Float, nullable=True)
    all_time_low_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    image: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    homepage: Mapped[str | None] = mapped_column(String(500), nullable=True)
    categories: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Soft exclusion; sync never deletes rows
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, comment="Feed-side last_updated")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
