"""Tests for PriceHistoryEngine."""

from __future__ import annotations

from cardvault.data.database import ApplicationDatabase
from cardvault.data.models import CardPrices, VendorQuote


def _prices(normal: float, foil: float = 0.0) -> CardPrices:
    return CardPrices.from_vendors({"tcgplayer": VendorQuote(normal=normal, foil=foil)})


class TestRecordPrices:
    """Test current prices and daily snapshots."""

    async def test_first_record_writes_snapshot(self, app_db: ApplicationDatabase):
        """Test that the first batch of the day adds one snapshot per card."""
        await app_db.prices.record_prices({"a": _prices(1.0), "b": _prices(2.0)})

        assert await app_db.prices.count_snapshots() == 2
        current = await app_db.prices.get_current_price("a")
        assert current is not None
        assert current.normal == 1.0
        assert current.vendors["tcgplayer"].normal == 1.0

    async def test_same_day_rerun_updates_current_only(self, app_db: ApplicationDatabase):
        """Test that recording twice on one day keeps one snapshot per card."""
        await app_db.prices.record_prices({"a": _prices(1.0)})
        await app_db.prices.record_prices({"a": _prices(5.0)})

        assert await app_db.prices.count_snapshots() == 1
        history = await app_db.prices.get_price_history("a")
        assert [s.normal for s in history] == [1.0]
        current = await app_db.prices.get_current_price("a")
        assert current is not None
        assert current.normal == 5.0

    async def test_snapshot_check_is_scoped_to_batch(self, app_db: ApplicationDatabase):
        """Test that a later batch of other cards still gets today's snapshot."""
        await app_db.prices.record_prices({"a": _prices(1.0)})
        await app_db.prices.record_prices({"b": _prices(2.0)})

        assert await app_db.prices.count_snapshots() == 2

    async def test_next_day_adds_snapshot(self, app_db: ApplicationDatabase, clock):
        """Test one snapshot per calendar day."""
        await app_db.prices.record_prices({"a": _prices(1.0)})
        clock.advance(days=1)
        await app_db.prices.record_prices({"a": _prices(1.5)})

        history = await app_db.prices.get_price_history("a")
        assert [s.date for s in history] == ["2026-03-01", "2026-03-02"]
        assert [s.normal for s in history] == [1.0, 1.5]

    async def test_empty_batch_is_noop(self, app_db: ApplicationDatabase):
        await app_db.prices.record_prices({})
        assert await app_db.prices.count_snapshots() == 0

    async def test_small_batch_size_writes_every_chunk(self, app_db: ApplicationDatabase):
        """Test that chunked writes cover the whole batch."""
        app_db.prices.batch_size = 2
        batch = {f"card-{i}": _prices(float(i + 1)) for i in range(5)}

        await app_db.prices.record_prices(batch)

        assert await app_db.prices.count_snapshots() == 5
        current = await app_db.prices.get_current_prices(list(batch))
        assert len(current) == 5
        assert current["card-4"].normal == 5.0


class TestRetention:
    """Test purging of old snapshots."""

    async def test_old_snapshots_are_purged(self, app_db: ApplicationDatabase, clock):
        """Test that snapshots older than the retention window are removed on record."""
        await app_db.prices.record_prices({"a": _prices(1.0)})
        clock.advance(days=31)
        await app_db.prices.record_prices({"a": _prices(2.0)})

        history = await app_db.prices.get_price_history("a")
        assert [s.date for s in history] == ["2026-04-01"]

    async def test_snapshot_at_retention_boundary_is_kept(
        self, app_db: ApplicationDatabase, clock
    ):
        """Test that a snapshot exactly retention_days old survives."""
        await app_db.prices.record_prices({"a": _prices(1.0)})
        clock.advance(days=30)
        await app_db.prices.record_prices({"a": _prices(2.0)})

        history = await app_db.prices.get_price_history("a")
        assert len(history) == 2

    async def test_purge_applies_to_all_cards(self, app_db: ApplicationDatabase, clock):
        """Test that purging is not limited to the cards in the batch."""
        await app_db.prices.record_prices({"a": _prices(1.0), "b": _prices(1.0)})
        clock.advance(days=40)
        await app_db.prices.record_prices({"a": _prices(2.0)})

        assert await app_db.prices.get_price_history("b") == []


class TestHistoryStats:
    """Test statistics derived from snapshots."""

    async def test_no_history(self, app_db: ApplicationDatabase):
        """Test that a card without snapshots has empty history and zero stats."""
        assert await app_db.prices.get_price_history("missing") == []

        stats = await app_db.prices.get_price_history_stats("missing")
        assert stats.snapshot_count == 0
        assert stats.max_price == 0
        assert stats.change_7d == 0
        assert stats.change_30d == 0

    async def test_single_snapshot_has_no_change(self, app_db: ApplicationDatabase):
        await app_db.prices.record_prices({"a": _prices(3.0)})

        stats = await app_db.prices.get_price_history_stats("a")
        assert stats.snapshot_count == 1
        assert stats.max_price == 3.0
        assert stats.min_price == 3.0
        assert stats.avg_price == 3.0
        assert stats.change_7d == 0
        assert stats.change_30d == 0

    async def test_two_snapshots_give_30d_change_only(
        self, app_db: ApplicationDatabase, clock
    ):
        """Test that the 7-day change needs eight snapshots."""
        await app_db.prices.record_prices({"a": _prices(2.0)})
        clock.advance(days=1)
        await app_db.prices.record_prices({"a": _prices(3.0)})

        stats = await app_db.prices.get_price_history_stats("a")
        assert stats.change_7d == 0
        assert stats.change_30d == 1.0
        assert stats.change_30d_percent == 50.0

    async def test_eight_snapshots(self, app_db: ApplicationDatabase, clock):
        """Test max/min/avg and both changes over eight daily snapshots."""
        for i in range(8):
            await app_db.prices.record_prices({"a": _prices(float(i + 1))})
            clock.advance(days=1)

        stats = await app_db.prices.get_price_history_stats("a")
        assert stats.snapshot_count == 8
        assert stats.max_price == 8.0
        assert stats.min_price == 1.0
        assert stats.avg_price == 4.5
        assert stats.change_7d == 7.0
        assert stats.change_7d_percent == 700.0
        assert stats.change_30d == 7.0
