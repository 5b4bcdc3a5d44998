"""CardVault: the public entry point of the local data layer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from types import TracebackType

from .config import Settings, get_settings
from .data.database import (
    ApplicationDatabase,
    CacheReconciler,
    CollectionAggregator,
    DatabaseManager,
    LorcanaDatabase,
    PriceHistoryEngine,
    ReferenceDatabase,
)
from .data.models import (
    CardRecord,
    Collection,
    CollectionWithStats,
    PriceHistoryStats,
    PriceSnapshot,
    ScanHistoryEntry,
    ScanInput,
    ScanOutcome,
    SetCompletion,
)
from .exceptions import CollectionNotFoundError, StoreError
from .scanning import LorcanaScanPipeline, ScanDeduplicator, ScanPipeline
from .setup import PriceImporter, SetupManager, SetupProgress

logger = logging.getLogger(__name__)


class CardVault:
    """Collections, scans, prices and set completion over the local stores.

    Usage:
        async with CardVault(settings) as vault:
            collection = await vault.get_or_create_collection("Binder")
            await vault.add_card_to_collection(uuid, collection.id)

    If the reference catalog cannot be downloaded or fails its integrity
    check, the vault still opens: catalog_available is False, catalog reads
    return empty results, set completion raises NotInitializedError and scans
    resolve through Scryfall.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        manager: DatabaseManager | None = None,
    ):
        self.settings = settings or get_settings()
        self.manager = manager or DatabaseManager(self.settings, setup=SetupManager(self.settings))
        self._reconciler: CacheReconciler | None = None
        self._aggregator: CollectionAggregator | None = None
        self._pipeline: ScanPipeline | None = None
        self._lorcana_pipeline: LorcanaScanPipeline | None = None

    async def __aenter__(self) -> CardVault:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def open(self, progress_callback: Callable[[SetupProgress], None] | None = None) -> None:
        """Open the stores, downloading the reference catalog on first run."""
        await self.manager.start(progress_callback)
        settings = self.settings
        self._reconciler = CacheReconciler(
            self.manager.app,
            self.manager.reference,
            source=self.manager.scryfall,
            tasks=self.manager.tasks,
            stale_after=timedelta(hours=settings.price_stale_hours),
        )
        self._aggregator = CollectionAggregator(self.manager.app, self.manager.reference, self._reconciler)
        self._pipeline = ScanPipeline(
            self.manager.app,
            self._reconciler,
            reference=self.manager.reference,
            source=self.manager.scryfall,
            deduplicator=ScanDeduplicator(
                cooldown_ms=settings.scan_cooldown_ms,
                min_length=settings.scan_min_length,
                recent_window_ms=settings.scan_recent_window_ms,
            ),
            history_guard=settings.scan_history_guard_size,
        )
        if not self.catalog_available:
            logger.warning("Card catalog unavailable; catalog lookups will return no results")

    async def close(self) -> None:
        await self.manager.stop()
        self._reconciler = None
        self._aggregator = None
        self._pipeline = None
        self._lorcana_pipeline = None

    # ─────────────────────────────────────────────────────────────────────────
    # Store access
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def catalog_available(self) -> bool:
        return self.manager.reference is not None

    @property
    def app(self) -> ApplicationDatabase:
        return self.manager.app

    @property
    def reference(self) -> ReferenceDatabase | None:
        return self.manager.reference

    @property
    def reconciler(self) -> CacheReconciler:
        if self._reconciler is None:
            raise RuntimeError("CardVault not open. Call open() first.")
        return self._reconciler

    @property
    def aggregator(self) -> CollectionAggregator:
        if self._aggregator is None:
            raise RuntimeError("CardVault not open. Call open() first.")
        return self._aggregator

    @property
    def pipeline(self) -> ScanPipeline:
        if self._pipeline is None:
            raise RuntimeError("CardVault not open. Call open() first.")
        return self._pipeline

    @property
    def lorcana(self) -> LorcanaDatabase | None:
        """The Lorcana store, once opened with open_lorcana()."""
        return self.manager.lorcana

    async def open_lorcana(self, import_catalog: bool = True) -> LorcanaDatabase:
        store = await self.manager.start_lorcana(import_catalog)
        if self._lorcana_pipeline is None:
            self._lorcana_pipeline = LorcanaScanPipeline(
                store,
                ScanDeduplicator(
                    cooldown_ms=self.settings.scan_cooldown_ms,
                    min_length=self.settings.scan_min_length,
                    recent_window_ms=self.settings.scan_recent_window_ms,
                ),
            )
        return store

    # ─────────────────────────────────────────────────────────────────────────
    # Catalog
    # ─────────────────────────────────────────────────────────────────────────

    async def search_catalog(self, query: str, limit: int = 50) -> list[CardRecord]:
        if self.reference is None:
            return []
        return await self.reference.search_catalog(query, limit)

    # ─────────────────────────────────────────────────────────────────────────
    # Collections
    # ─────────────────────────────────────────────────────────────────────────

    async def get_or_create_collection(self, name: str, description: str | None = None) -> Collection:
        return await self.app.get_or_create_collection(name, description)

    async def list_collections(self) -> list[CollectionWithStats]:
        return await self.aggregator.list_collections()

    async def delete_collection(self, collection_id: int) -> bool:
        return await self.app.delete_collection(collection_id)

    async def add_card_to_collection(self, card_uuid: str, collection_id: int, quantity: int = 1) -> int:
        """Add a catalog card to a collection by uuid.

        The card's cache entry is written from the catalog first when it has
        none; without a catalog the membership is still recorded and the entry
        is filled in later by ensure_cache_populated().

        Returns:
            The card's quantity in the collection.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
        """
        if await self.app.get_collection(collection_id) is None:
            raise CollectionNotFoundError(collection_id)

        if await self.app.get_cached_card(card_uuid) is None and self.reference is not None:
            card = await self.reference.get_card(card_uuid)
            if card is not None:
                await self.app.put_cached_card(card)
            else:
                logger.warning("Card %s is not in the catalog; adding without cache entry", card_uuid)
        return await self.app.add_card_to_collection(card_uuid, collection_id, quantity)

    async def add_card_record_to_collection(
        self, card: CardRecord, collection_id: int, quantity: int = 1
    ) -> CardRecord:
        """Add a card record from any source, resolving it against the catalog first.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            ValueError: If the card has no catalog match and no uuid.
        """
        if await self.app.get_collection(collection_id) is None:
            raise CollectionNotFoundError(collection_id)
        cached = await self.reconciler.add_to_cache(card)
        if cached.uuid is None:
            raise ValueError(f"Cannot resolve card {card.name!r}: no catalog match and no uuid")
        await self.app.add_card_to_collection(cached.uuid, collection_id, quantity)
        return cached

    async def remove_card_from_collection(self, card_uuid: str, collection_id: int) -> bool:
        return await self.app.remove_card_from_collection(card_uuid, collection_id)

    async def get_collection_cards(self, collection_id: int) -> list[tuple[CardRecord, int]]:
        return await self.aggregator.get_collection_cards(collection_id)

    async def get_set_completion(self, set_code: str) -> SetCompletion:
        return await self.aggregator.get_set_completion(set_code)

    async def get_set_collections(self) -> list[SetCompletion]:
        return await self.aggregator.get_set_collections()

    async def ensure_cache_populated(self) -> int:
        return await self.reconciler.ensure_cache_populated()

    # ─────────────────────────────────────────────────────────────────────────
    # Scans
    # ─────────────────────────────────────────────────────────────────────────

    async def record_scan(self, scan: ScanInput | str) -> ScanOutcome:
        if isinstance(scan, str):
            scan = ScanInput(text=scan)
        return await self.pipeline.record_scan(scan)

    async def record_lorcana_scan(self, scan: ScanInput | str) -> ScanOutcome:
        if self._lorcana_pipeline is None:
            await self.open_lorcana()
        if self._lorcana_pipeline is None:
            raise RuntimeError("Lorcana store could not be opened")
        if isinstance(scan, str):
            scan = ScanInput(text=scan)
        return await self._lorcana_pipeline.record_scan(scan)

    async def get_scan_history(self, limit: int = 50, offset: int = 0) -> list[ScanHistoryEntry]:
        return await self.app.get_scan_history(limit, offset)

    # ─────────────────────────────────────────────────────────────────────────
    # Prices
    # ─────────────────────────────────────────────────────────────────────────

    async def _history_engine(self, card_uuid: str) -> PriceHistoryEngine:
        """The catalog's engine when it has history for the card, else the app mirror."""
        if self.reference is not None:
            try:
                if await self.reference.prices.get_price_history(card_uuid):
                    return self.reference.prices
            except StoreError:
                logger.warning("Reference price history unavailable for %s", card_uuid)
        return self.app.prices

    async def get_price_history(self, card_uuid: str) -> list[PriceSnapshot]:
        """Snapshots for a card, oldest first ([] when there are none)."""
        engine = await self._history_engine(card_uuid)
        return await engine.get_price_history(card_uuid)

    async def get_price_history_stats(self, card_uuid: str) -> PriceHistoryStats:
        engine = await self._history_engine(card_uuid)
        return await engine.get_price_history_stats(card_uuid)

    async def refresh_prices(self, force: bool = False) -> int:
        """Import today's price file into the catalog and queue stale cache refreshes.

        Returns:
            Number of cards whose catalog price was imported (0 if already done
            today or the catalog is unavailable).
        """
        imported = 0
        if self.reference is not None:
            importer = PriceImporter(self.reference, self.settings)
            imported = await importer.refresh(force=force)
        queued = await self.reconciler.refresh_stale()
        if queued:
            logger.info("Queued %d cached price refreshes", queued)
        return imported
