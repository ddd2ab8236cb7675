from coincatalog.store.catalog import (
    AssetFilter,
    CatalogStore,
    SortSpec,
    UpsertOutcome,
    UpsertResult,
)

__all__ = [
    "AssetFilter",
    "CatalogStore",
    "SortSpec",
    "UpsertOutcome",
    "UpsertResult",
]
