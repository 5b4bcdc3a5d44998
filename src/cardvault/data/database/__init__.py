"""Database access module."""

from .aggregator import CollectionAggregator, completion_percentage
from .app import ApplicationDatabase, CachedMembership, decode_card
from .base import BaseDatabase
from .cache import CacheEntry, TTLCache
from .collections import CollectionStore
from .lorcana import LorcanaDatabase
from .manager import DatabaseManager
from .prices import PriceHistoryEngine
from .reconciler import CacheReconciler, merge_with_catalog
from .reference import ReferenceDatabase

__all__ = [
    "ApplicationDatabase",
    "BaseDatabase",
    "CacheEntry",
    "CacheReconciler",
    "CachedMembership",
    "CollectionAggregator",
    "CollectionStore",
    "DatabaseManager",
    "LorcanaDatabase",
    "PriceHistoryEngine",
    "ReferenceDatabase",
    "TTLCache",
    "completion_percentage",
    "decode_card",
    "merge_with_catalog",
]
