"""Tests for CacheReconciler."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
import respx

from cardvault.config import Settings
from cardvault.data.database import ApplicationDatabase, CacheReconciler, ReferenceDatabase
from cardvault.data.database.reconciler import merge_with_catalog
from cardvault.data.models import CardPrices, CardRecord
from cardvault.sources import ScryfallSource
from cardvault.tasks import BackgroundTaskQueue


@pytest.fixture
def reconciler(app_db: ApplicationDatabase, reference_db: ReferenceDatabase, clock) -> CacheReconciler:
    return CacheReconciler(app_db, reference_db, clock=clock)


class TestResolve:
    """Test uuid resolution against the catalog."""

    async def test_catalog_uuid_wins(self, reconciler: CacheReconciler):
        """Test that a matching catalog row replaces the client uuid."""
        incoming = CardRecord(uuid="scryfall-id", name="Black Lotus", set_code="LEA")

        resolved = await reconciler.resolve(incoming)

        assert resolved.uuid == "lea-black-lotus"
        assert resolved.set_name == "Limited Edition Alpha"
        assert resolved.collector_number == "232"

    async def test_incoming_price_kept(self, reconciler: CacheReconciler):
        incoming = CardRecord(uuid="x", name="Black Lotus", set_code="LEA", prices=CardPrices(normal=9.0))
        resolved = await reconciler.resolve(incoming)
        assert resolved.prices.normal == 9.0

    async def test_client_uuid_fallback(self, reconciler: CacheReconciler):
        """Test that an unknown card keeps its client uuid."""
        incoming = CardRecord(uuid="client-1", name="Homebrew Card", set_code="XYZ")
        resolved = await reconciler.resolve(incoming)
        assert resolved == incoming

    async def test_no_match_and_no_uuid(self, reconciler: CacheReconciler):
        with pytest.raises(ValueError):
            await reconciler.resolve(CardRecord(name="Homebrew Card"))

    async def test_without_catalog(self, app_db: ApplicationDatabase):
        reconciler = CacheReconciler(app_db, None)
        incoming = CardRecord(uuid="client-1", name="Black Lotus", set_code="LEA")
        assert (await reconciler.resolve(incoming)).uuid == "client-1"

    def test_merge_fills_gaps_only(self):
        catalog = CardRecord(uuid="cat", name="Bolt", set_code="LEA", rarity="common", text="Deal 3.")
        incoming = CardRecord(uuid="inc", name="Bolt", set_code="LEA", text="Custom text")

        merged = merge_with_catalog(incoming, catalog)

        assert merged.uuid == "cat"
        assert merged.text == "Custom text"
        assert merged.rarity == "common"

    async def test_add_to_cache_writes_resolved_uuid(
        self, reconciler: CacheReconciler, app_db: ApplicationDatabase
    ):
        await reconciler.add_to_cache(CardRecord(uuid="scryfall-id", name="Lightning Bolt", set_code="LEA"))

        assert await app_db.get_cached_card("scryfall-id") is None
        cached = await app_db.get_cached_card("lea-lightning-bolt")
        assert cached is not None
        assert cached.name == "Lightning Bolt"


class TestEnsureCachePopulated:
    """Test repair of missing cache entries."""

    async def test_repairs_missing_entries(
        self, reconciler: CacheReconciler, app_db: ApplicationDatabase
    ):
        """Test that owned cards without a cache entry are rebuilt from the catalog."""
        collection = await app_db.get_or_create_collection("Foo")
        await app_db.add_card_to_collection("lea-black-lotus", collection.id)
        await app_db.add_card_to_collection("isd-brimstone-volley", collection.id)

        assert await reconciler.ensure_cache_populated() == 2
        assert await app_db.find_uncached_uuids() == []

        cached = await app_db.get_cached_card("isd-brimstone-volley")
        assert cached is not None
        assert cached.set_name == "Innistrad"

    async def test_nothing_to_repair(self, reconciler: CacheReconciler):
        assert await reconciler.ensure_cache_populated() == 0

    async def test_skips_cards_missing_from_catalog(
        self, reconciler: CacheReconciler, app_db: ApplicationDatabase
    ):
        collection = await app_db.get_or_create_collection("Foo")
        await app_db.add_card_to_collection("lea-black-lotus", collection.id)
        await app_db.add_card_to_collection("not-in-catalog", collection.id)

        assert await reconciler.ensure_cache_populated() == 1
        assert await app_db.find_uncached_uuids() == ["not-in-catalog"]

    async def test_without_catalog(self, app_db: ApplicationDatabase):
        collection = await app_db.get_or_create_collection("Foo")
        await app_db.add_card_to_collection("lea-black-lotus", collection.id)

        assert await CacheReconciler(app_db, None).ensure_cache_populated() == 0


class TestRefresh:
    """Test background price refresh."""

    def test_is_stale(self, reconciler: CacheReconciler, clock):
        assert reconciler.is_stale(None)
        assert not reconciler.is_stale(clock.now - timedelta(hours=1))
        assert reconciler.is_stale(clock.now - timedelta(hours=25))

    async def test_refresh_from_reference_price(
        self,
        reconciler: CacheReconciler,
        app_db: ApplicationDatabase,
        reference_db: ReferenceDatabase,
    ):
        """Test that the catalog's current price is copied into the cache."""
        await app_db.put_cached_card(CardRecord(uuid="lea-black-lotus", name="Black Lotus", set_code="LEA"))
        await reference_db.prices.record_prices({"lea-black-lotus": CardPrices(normal=25000.0)})

        prices = await reconciler.refresh_card("lea-black-lotus")

        assert prices is not None
        assert prices.normal == 25000.0
        cached = await app_db.get_cached_card("lea-black-lotus")
        assert cached is not None
        assert cached.prices.normal == 25000.0
        assert len(await app_db.prices.get_price_history("lea-black-lotus")) == 1

    async def test_refresh_uncached_card(self, reconciler: CacheReconciler):
        assert await reconciler.refresh_card("lea-black-lotus") is None

    @respx.mock
    async def test_refresh_from_scryfall(
        self, settings: Settings, app_db: ApplicationDatabase, reference_db: ReferenceDatabase, clock
    ):
        """Test the network fallback when the catalog has no price."""
        route = respx.get("https://api.scryfall.test/cards/named").mock(
            return_value=httpx.Response(
                200, json={"name": "Lightning Bolt", "prices": {"usd": "450.00", "eur": "100.00"}}
            )
        )
        async with ScryfallSource(settings) as source:
            reconciler = CacheReconciler(app_db, reference_db, source=source, clock=clock)
            await app_db.put_cached_card(
                CardRecord(uuid="lea-lightning-bolt", name="Lightning Bolt", set_code="LEA")
            )

            prices = await reconciler.refresh_card("lea-lightning-bolt")

        assert route.called
        assert route.calls.last.request.url.params["set"] == "lea"
        assert prices is not None
        assert prices.normal == 450.0
        assert prices.vendors["cardmarket"].normal == 110.0

    @respx.mock
    async def test_no_price_leaves_entry(
        self, settings: Settings, app_db: ApplicationDatabase, clock
    ):
        respx.get("https://api.scryfall.test/cards/named").mock(return_value=httpx.Response(404))
        card = CardRecord(uuid="x", name="Unpriced", set_code="LEA")
        await app_db.put_cached_card(card)
        async with ScryfallSource(settings) as source:
            reconciler = CacheReconciler(app_db, None, source=source, clock=clock)
            assert await reconciler.refresh_card("x") is None

        assert await app_db.get_cached_card("x") == card

    async def test_refresh_stale_queues_owned_entries(
        self,
        app_db: ApplicationDatabase,
        reference_db: ReferenceDatabase,
        clock,
    ):
        """Test that stale owned entries are refreshed through the task queue."""
        collection = await app_db.get_or_create_collection("Foo")
        await app_db.add_card_to_collection("lea-black-lotus", collection.id)
        await app_db.put_cached_card(CardRecord(uuid="lea-black-lotus", name="Black Lotus", set_code="LEA"))
        await reference_db.prices.record_prices({"lea-black-lotus": CardPrices(normal=1.0)})
        clock.advance(days=2)

        tasks = BackgroundTaskQueue()
        reconciler = CacheReconciler(app_db, reference_db, tasks=tasks, clock=clock)
        assert await reconciler.refresh_stale() == 1
        await tasks.drain()

        assert tasks.completed == 1
        cached = await app_db.get_cached_card("lea-black-lotus")
        assert cached is not None
        assert cached.prices.normal == 1.0

    async def test_refresh_stale_without_queue(self, reconciler: CacheReconciler):
        assert await reconciler.refresh_stale() == 0

    async def test_pending_refresh_not_queued_twice(
        self, app_db: ApplicationDatabase, reference_db: ReferenceDatabase, clock
    ):
        await app_db.put_cached_card(CardRecord(uuid="lea-black-lotus", name="Black Lotus", set_code="LEA"))
        tasks = BackgroundTaskQueue()
        reconciler = CacheReconciler(app_db, reference_db, tasks=tasks, clock=clock)

        assert reconciler.schedule_refresh("lea-black-lotus")
        assert not reconciler.schedule_refresh("lea-black-lotus")
        assert reconciler.schedule_refresh("lea-lightning-bolt")
        await tasks.drain()

        assert tasks.completed == 2
        assert reconciler.schedule_refresh("lea-black-lotus")
        await tasks.drain()

    async def test_closed_queue_does_not_block_later_refresh(
        self, app_db: ApplicationDatabase, reference_db: ReferenceDatabase, clock
    ):
        tasks = BackgroundTaskQueue()
        await tasks.close()
        reconciler = CacheReconciler(app_db, reference_db, tasks=tasks, clock=clock)

        assert not reconciler.schedule_refresh("lea-black-lotus")
        reconciler.tasks = BackgroundTaskQueue()
        assert reconciler.schedule_refresh("lea-black-lotus")
        await reconciler.tasks.drain()
