from coincatalog.models.base import Base
from coincatalog.models.asset import CryptoAsset
from coincatalog.models.runs import SyncRun

__all__ = [
    "Base",
    "CryptoAsset",
    "SyncRun",
]
