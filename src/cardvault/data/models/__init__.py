"""Data models."""

from .card import VENDORS, CardPrices, CardRecord, ImageUris, SetInfo, VendorQuote
from .collection import (
    SET_COLLECTION_PREFIX,
    Collection,
    CollectionWithStats,
    Membership,
    SetCompletion,
)
from .lorcana import LorcanaCard
from .prices import PriceHistoryStats, PriceSnapshot
from .scan import ScanHistoryEntry, ScanInput, ScanOutcome, ScanStage, ScanStatus

__all__ = [
    "SET_COLLECTION_PREFIX",
    "VENDORS",
    "CardPrices",
    "CardRecord",
    "Collection",
    "CollectionWithStats",
    "ImageUris",
    "LorcanaCard",
    "Membership",
    "PriceHistoryStats",
    "PriceSnapshot",
    "ScanHistoryEntry",
    "ScanInput",
    "ScanOutcome",
    "ScanStage",
    "ScanStatus",
    "SetCompletion",
    "SetInfo",
    "VendorQuote",
]
