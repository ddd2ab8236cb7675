"""Catalog store - keyed persistence and filtered reads over CryptoAsset."""

from __future__ import annotations

import enum
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Tuple

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coincatalog.core.errors import ServiceUnavailable
from coincatalog.core.logging import get_logger
from coincatalog.models.asset import CryptoAsset

log = get_logger("catalog_store")

SortOrder = Literal["asc", "desc"]
AggregateOp = Literal["sum", "avg", "min", "max"]

SORTABLE_FIELDS: Dict[str, Any] = {
    "market_cap_rank": CryptoAsset.market_cap_rank,
    "current_price": CryptoAsset.current_price,
    "market_cap": CryptoAsset.market_cap,
    "total_volume": CryptoAsset.total_volume,
    "price_change_percentage_24h": CryptoAsset.price_change_percentage_24h,
    "price_change_percentage_7d": CryptoAsset.price_change_percentage_7d,
    "price_change_percentage_30d": CryptoAsset.price_change_percentage_30d,
    "name": CryptoAsset.name,
    "symbol": CryptoAsset.symbol,
    "created_at": CryptoAsset.created_at,
    "last_synced_at": CryptoAsset.last_synced_at,
}

AGGREGATE_FIELDS: Dict[str, Any] = {
    "market_cap": CryptoAsset.market_cap,
    "total_volume": CryptoAsset.total_volume,
    "current_price": CryptoAsset.current_price,
    "price_change_percentage_24h": CryptoAsset.price_change_percentage_24h,
    "last_synced_at": CryptoAsset.last_synced_at,
}

_AGGREGATE_FUNCS = {"sum": func.sum, "avg": func.avg, "min": func.min, "max": func.max}


class UpsertOutcome(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass
class UpsertResult:
    outcome: UpsertOutcome
    asset: CryptoAsset


@dataclass
class AssetFilter:
    """Conjunctive filter over the catalog. Range bounds are inclusive."""

    search: Optional[str] = None
    symbols: Optional[Sequence[str]] = None
    min_rank: Optional[int] = None
    max_rank: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_change_24h: Optional[float] = None
    max_change_24h: Optional[float] = None
    change_direction: Optional[Literal["up", "down"]] = None
    active_only: bool = False
    require_fields: Tuple[str, ...] = ()


@dataclass
class SortSpec:
    field: str = "market_cap_rank"
    order: SortOrder = "asc"


def _as_utc(value: Any) -> Any:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _same(current: Any, incoming: Any) -> bool:
    return _as_utc(current) == _as_utc(incoming)


def _escape_like(term: str) -> str:
    """Make user input match literally inside a LIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CatalogStore:
    """Owns CryptoAsset persistence for one session.

    Writes are not committed here; the caller decides the unit of work.
    Every SQLAlchemy failure is surfaced as ``ServiceUnavailable``.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _access(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            log.error(f"Catalog store failure during {operation}: {exc}")
            raise ServiceUnavailable(f"Catalog store unavailable ({operation})") from exc

    # -------------------------------------------------------------------------
    # Point lookups
    # -------------------------------------------------------------------------
    def find_by_key(self, external_id: str) -> Optional[CryptoAsset]:
        with self._access("find_by_key"):
            stmt = select(CryptoAsset).where(CryptoAsset.external_id == external_id)
            return self.db.execute(stmt).scalar_one_or_none()

    def find_by_id(self, asset_id: uuid.UUID) -> Optional[CryptoAsset]:
        with self._access("find_by_id"):
            return self.db.get(CryptoAsset, asset_id)

    # -------------------------------------------------------------------------
    # Upsert
    # -------------------------------------------------------------------------
    def upsert(self, external_id: str, fields: Dict[str, Any], synced_at: datetime) -> UpsertResult:
        """Insert or update the asset keyed by ``external_id``.

        ``is_active`` is only touched when present in ``fields``. On update,
        ``updated_at`` moves only if a stored value actually changed, while
        ``last_synced_at`` always moves.
        """
        with self._access("upsert"):
            existing = self.find_by_key(external_id)
            if existing is None:
                values = dict(fields)
                asset = CryptoAsset(
                    external_id=external_id,
                    is_active=values.pop("is_active", True),
                    last_synced_at=synced_at,
                    created_at=synced_at,
                    updated_at=synced_at,
                    **values,
                )
                self.db.add(asset)
                self.db.flush()
                return UpsertResult(UpsertOutcome.INSERTED, asset)

            changed = False
            for column, value in fields.items():
                if not _same(getattr(existing, column), value):
                    setattr(existing, column, value)
                    changed = True
            if changed:
                existing.updated_at = synced_at
            existing.last_synced_at = synced_at
            self.db.flush()
            return UpsertResult(UpsertOutcome.UPDATED, existing)

    def commit(self) -> None:
        with self._access("commit"):
            self.db.commit()

    # -------------------------------------------------------------------------
    # Filtered reads
    # -------------------------------------------------------------------------
    def _apply_filter(self, stmt: Select, flt: Optional[AssetFilter]) -> Select:
        if flt is None:
            return stmt

        if flt.search:
            pattern = f"%{_escape_like(flt.search.strip())}%"
            stmt = stmt.where(
                or_(
                    CryptoAsset.name.ilike(pattern, escape="\\"),
                    CryptoAsset.symbol.ilike(pattern, escape="\\"),
                    CryptoAsset.external_id.ilike(pattern, escape="\\"),
                )
            )
        if flt.symbols is not None:
            stmt = stmt.where(func.upper(CryptoAsset.symbol).in_([s.upper() for s in flt.symbols]))
        if flt.min_rank is not None:
            stmt = stmt.where(CryptoAsset.market_cap_rank >= flt.min_rank)
        if flt.max_rank is not None:
            stmt = stmt.where(CryptoAsset.market_cap_rank <= flt.max_rank)
        if flt.min_price is not None:
            stmt = stmt.where(CryptoAsset.current_price >= flt.min_price)
        if flt.max_price is not None:
            stmt = stmt.where(CryptoAsset.current_price <= flt.max_price)
        if flt.min_change_24h is not None:
            stmt = stmt.where(CryptoAsset.price_change_percentage_24h >= flt.min_change_24h)
        if flt.max_change_24h is not None:
            stmt = stmt.where(CryptoAsset.price_change_percentage_24h <= flt.max_change_24h)
        if flt.change_direction == "up":
            stmt = stmt.where(CryptoAsset.price_change_percentage_24h > 0)
        elif flt.change_direction == "down":
            stmt = stmt.where(CryptoAsset.price_change_percentage_24h < 0)
        if flt.active_only:
            stmt = stmt.where(CryptoAsset.is_active.is_(True))
        for name in flt.require_fields:
            stmt = stmt.where(getattr(CryptoAsset, name).is_not(None))
        return stmt

    @staticmethod
    def _order_by(stmt: Select, sort: Optional[SortSpec]) -> Select:
        sort = sort or SortSpec()
        column = SORTABLE_FIELDS.get(sort.field)
        if column is None:
            raise ValueError(f"Unsortable field: {sort.field}")
        primary = column.desc() if sort.order == "desc" else column.asc()
        # external_id breaks ties so paging is deterministic
        return stmt.order_by(primary.nulls_last(), CryptoAsset.external_id.asc())

    def find_many(
        self,
        flt: Optional[AssetFilter] = None,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[CryptoAsset], int]:
        """Return one page of matching assets plus the total match count."""
        with self._access("find_many"):
            total = self.count(flt)
            stmt = self._order_by(self._apply_filter(select(CryptoAsset), flt), sort)
            stmt = stmt.offset(offset).limit(limit)
            return list(self.db.execute(stmt).scalars().all()), total

    def find_all(self, flt: Optional[AssetFilter] = None, sort: Optional[SortSpec] = None) -> List[CryptoAsset]:
        with self._access("find_all"):
            stmt = self._order_by(self._apply_filter(select(CryptoAsset), flt), sort)
            return list(self.db.execute(stmt).scalars().all())

    def count(self, flt: Optional[AssetFilter] = None) -> int:
        with self._access("count"):
            stmt = self._apply_filter(select(func.count()).select_from(CryptoAsset), flt)
            return self.db.execute(stmt).scalar() or 0

    def aggregate(self, op: AggregateOp, field: str, flt: Optional[AssetFilter] = None) -> Any:
        """Single aggregate over matching rows; ``None`` when nothing matches."""
        if op not in _AGGREGATE_FUNCS:
            raise ValueError(f"Unsupported aggregate: {op}")
        column = AGGREGATE_FIELDS.get(field)
        if column is None:
            raise ValueError(f"Unsupported aggregate field: {field}")
        with self._access("aggregate"):
            stmt = self._apply_filter(select(_AGGREGATE_FUNCS[op](column)), flt)
            return _as_utc(self.db.execute(stmt).scalar())
