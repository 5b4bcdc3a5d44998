"""Cache reconciler: keeps collection_cache consistent with membership.

Nothing here spans the two stores transactionally. Every operation reads the
reference store first and writes the application store last, so a failure in
between leaves the cache stale rather than pointing at a card the catalog
does not have.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from ...exceptions import StoreError
from ..models import CardPrices, CardRecord

if TYPE_CHECKING:
    from ...sources import ScryfallSource
    from ...tasks import BackgroundTaskQueue
    from .app import ApplicationDatabase
    from .reference import ReferenceDatabase

logger = logging.getLogger(__name__)

# Fields whose catalog value always wins over the incoming record
_AUTHORITATIVE = frozenset({"uuid"})


def _utc_now() -> datetime:
    return datetime.now(UTC)


def merge_with_catalog(card: CardRecord, catalog: CardRecord) -> CardRecord:
    """Fill the gaps of an incoming record from its catalog row.

    The catalog uuid always wins; other catalog fields are used only where the
    incoming record has none. Incoming prices are kept if they carry a price.
    """
    merged: dict[str, Any] = catalog.model_dump()
    for field, value in card.model_dump(exclude_none=True).items():
        if field in _AUTHORITATIVE or field == "prices":
            continue
        merged[field] = value
    merged["prices"] = (card.prices if card.prices.has_price else catalog.prices).model_dump()
    return CardRecord.model_validate(merged)


class CacheReconciler:
    """Writes and repairs the application store's card cache."""

    def __init__(
        self,
        app: ApplicationDatabase,
        reference: ReferenceDatabase | None,
        source: ScryfallSource | None = None,
        tasks: BackgroundTaskQueue | None = None,
        stale_after: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the reconciler.

        Args:
            app: Application store holding membership and the cache.
            reference: Reference store, or None when the catalog is unavailable.
            source: Network source for price refreshes.
            tasks: Queue for background refreshes (refresh_stale()).
            stale_after: Age after which a cached price is refreshed.
            clock: Source of "now" for staleness checks.
        """
        self.app = app
        self.reference = reference
        self.source = source
        self.tasks = tasks
        self.stale_after = stale_after
        self._clock = clock or _utc_now
        # uuids with a refresh queued or running
        self._refreshing: set[str] = set()

    async def resolve(self, card: CardRecord) -> CardRecord:
        """Resolve a record to its authoritative uuid without writing anything.

        Looks up (name, set code) in the reference store; the incoming uuid is
        used only when the catalog has no match.

        Raises:
            ValueError: If there is neither a catalog match nor an incoming uuid.
        """
        catalog = None
        if self.reference is not None and card.name:
            catalog = await self.reference.find_card(card.name, card.set_code)

        if catalog is not None:
            if card.uuid and card.uuid != catalog.uuid:
                logger.debug("Replacing client uuid %s with catalog uuid %s", card.uuid, catalog.uuid)
            return merge_with_catalog(card, catalog)
        if card.uuid:
            logger.debug("No catalog match for %s (%s), keeping client uuid", card.name, card.set_code)
            return card
        raise ValueError(f"Cannot resolve card {card.name!r}: no catalog match and no uuid")

    async def add_to_cache(self, card: CardRecord) -> CardRecord:
        """Resolve a record and write it to the cache. Returns what was cached."""
        resolved = await self.resolve(card)
        await self.app.put_cached_card(resolved)
        return resolved

    async def ensure_cache_populated(self) -> int:
        """Re-derive cache entries for owned cards that have none.

        Returns:
            Number of cache entries written. Cards missing from the catalog are
            logged and skipped.
        """
        missing = await self.app.find_uncached_uuids()
        if not missing:
            return 0
        if self.reference is None:
            logger.warning("%d owned cards have no cache entry; catalog unavailable", len(missing))
            return 0

        cards = await self.reference.get_cards(missing)
        skipped = [uuid for uuid in missing if uuid not in cards]
        if skipped:
            logger.warning("Cannot repair %d cache entries missing from catalog: %s", len(skipped), skipped[:10])
        if cards:
            await self.app.put_cached_cards(list(cards.values()))
            logger.info("Repaired %d missing cache entries", len(cards))
        return len(cards)

    # ─────────────────────────────────────────────────────────────────────────
    # Background price refresh
    # ─────────────────────────────────────────────────────────────────────────

    def is_stale(self, last_updated: datetime | None) -> bool:
        if last_updated is None:
            return True
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=UTC)
        return self._clock() - last_updated > self.stale_after

    async def refresh_stale(self, limit: int = 100) -> int:
        """Queue price refreshes for cache entries older than stale_after.

        Returns:
            Number of refreshes queued (0 without a task queue).
        """
        if self.tasks is None:
            return 0
        cutoff = self._clock() - self.stale_after
        uuids = await self.app.get_stale_cached_uuids(cutoff, limit=limit)
        return sum(self.schedule_refresh(uuid) for uuid in uuids)

    def schedule_refresh(self, uuid: str) -> bool:
        """Queue a background refresh unless one is already pending for the card."""
        if self.tasks is None or uuid in self._refreshing:
            return False
        self._refreshing.add(uuid)
        if not self.tasks.submit(lambda: self._tracked_refresh(uuid), name=f"refresh-price-{uuid}"):
            self._refreshing.discard(uuid)
            return False
        return True

    async def _tracked_refresh(self, uuid: str) -> None:
        try:
            await self.refresh_card(uuid)
        finally:
            self._refreshing.discard(uuid)

    async def refresh_card(self, uuid: str) -> CardPrices | None:
        """Fetch a fresh price for a cached card and rewrite its cache entry.

        The reference store's current price is preferred; the network source is
        asked only when the catalog has none. Returns the new prices, or None
        if no price was found (the cache entry is left as is).
        """
        card = await self.app.get_cached_card(uuid)
        if card is None:
            return None

        prices: CardPrices | None = None
        if self.reference is not None:
            try:
                prices = await self.reference.prices.get_current_price(uuid)
            except StoreError:
                logger.warning("Reference price lookup failed for %s", uuid)
        if (prices is None or not prices.has_price) and self.source is not None:
            prices = await self.source.get_card_prices(card)
        if prices is None or not prices.has_price:
            return None

        await self.app.put_cached_card(card.model_copy(update={"prices": prices}))
        await self.app.prices.record_prices({uuid: prices})
        return prices
