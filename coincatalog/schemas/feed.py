"""Feed row schema - one element of the CoinGecko /coins/markets response."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from coincatalog.models.asset import DESCRIPTIVE_FIELDS, MARKET_FIELDS


class FeedAsset(BaseModel):
    """Normalized market row as delivered by the feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_id: str = Field(validation_alias=AliasChoices("id", "external_id"), min_length=1)
    symbol: str = Field(min_length=1)
    name: str = Field(min_length=1)

    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = None
    total_volume: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None

    price_change_percentage_24h: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices(
            "price_change_percentage_24h_in_currency",
            "price_change_percentage_24h",
        ),
    )
    price_change_percentage_7d: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("price_change_percentage_7d_in_currency", "price_change_percentage_7d"),
    )
    price_change_percentage_30d: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("price_change_percentage_30d_in_currency", "price_change_percentage_30d"),
    )

    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None

    all_time_high: Optional[float] = Field(default=None, validation_alias=AliasChoices("ath", "all_time_high"))
    all_time_high_date: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("ath_date", "all_time_high_date"))
    all_time_low: Optional[float] = Field(default=None, validation_alias=AliasChoices("atl", "all_time_low"))
    all_time_low_date: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("atl_date", "all_time_low_date"))

    source_updated_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("last_updated", "source_updated_at"))

    image: Optional[str] = None
    description: Optional[str] = None
    homepage: Optional[str] = None
    categories: Optional[List[str]] = None

    # Only set when the provider explicitly flags a listing status
    is_active: Optional[bool] = None

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("all_time_high_date", "all_time_low_date", "source_updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_fields(self) -> Dict[str, Any]:
        """Column values for the catalog store upsert.

        Market fields are always present so a null from the feed clears the
        stored value; descriptive fields and ``is_active`` only when sent.
        """
        fields: Dict[str, Any] = {name: getattr(self, name) for name in MARKET_FIELDS}
        for name in DESCRIPTIVE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                fields[name] = value
        if self.is_active is not None:
            fields["is_active"] = self.is_active
        return fields


@dataclass
class FeedPage:
    """One feed page: the rows that validated, plus how many rows the feed sent.

    ``raw_count`` drives end-of-feed detection; skipped rows never make a
    full page look short.
    """

    assets: List[FeedAsset] = field(default_factory=list)
    raw_count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.raw_count == 0
