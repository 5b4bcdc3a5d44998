"""Tests for ReferenceDatabase."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from cardvault.config import Settings
from cardvault.data.database import ReferenceDatabase
from cardvault.data.database.reference import fallback_words
from cardvault.data.models import CardPrices, VendorQuote
from cardvault.exceptions import CorruptStoreError


class TestIntegrity:
    """Test the catalog integrity check."""

    async def test_valid_catalog(self, reference_db: ReferenceDatabase):
        assert await reference_db.verify_integrity() == 7

    async def test_empty_cards_table(self, settings: Settings, make_reference):
        """Test that a catalog with zero cards is rejected like a missing file."""
        path = make_reference(settings.reference_db_path, cards=[])
        db = ReferenceDatabase(path, settings=settings)
        await db.connect()
        try:
            with pytest.raises(CorruptStoreError, match="empty"):
                await db.verify_integrity()
        finally:
            await db.close()

    async def test_missing_cards_table(self, settings: Settings, tmp_path: Path):
        path = tmp_path / "no_cards.sqlite"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE sets (code TEXT)")
        conn.close()

        db = ReferenceDatabase(path, settings=settings)
        await db.connect()
        try:
            with pytest.raises(CorruptStoreError, match="cards table missing"):
                await db.verify_integrity()
        finally:
            await db.close()

    async def test_price_tables_created_on_connect(self, reference_db: ReferenceDatabase):
        assert await reference_db.table_exists("prices")
        assert await reference_db.table_exists("price_history")
        assert await reference_db.table_exists("app_settings")


class TestCardLookups:
    """Test lookups by uuid and name."""

    async def test_get_card(self, reference_db: ReferenceDatabase):
        """Test that a card comes back with its set name and image URLs."""
        card = await reference_db.get_card("lea-black-lotus")
        assert card is not None
        assert card.name == "Black Lotus"
        assert card.set_code == "LEA"
        assert card.set_name == "Limited Edition Alpha"
        assert card.collector_number == "232"
        assert card.image_uris is not None
        assert card.image_uris.normal.endswith("/front/b/d/bd8fa327-dd41-4737-8f19-2cf5eb1f7cdd.jpg")
        assert card.prices.normal is None

    async def test_get_missing_card(self, reference_db: ReferenceDatabase):
        assert await reference_db.get_card("nope") is None

    async def test_get_card_includes_current_price(self, reference_db: ReferenceDatabase):
        await reference_db.prices.record_prices(
            {"lea-black-lotus": CardPrices.from_vendors({"tcgplayer": VendorQuote(normal=25000.0)})}
        )
        card = await reference_db.get_card("lea-black-lotus")
        assert card is not None
        assert card.prices.normal == 25000.0

    async def test_get_cards(self, reference_db: ReferenceDatabase):
        cards = await reference_db.get_cards(["lea-black-lotus", "isd-delver-a", "unknown"])
        assert set(cards) == {"lea-black-lotus", "isd-delver-a"}

    async def test_find_card_by_name_and_set(self, reference_db: ReferenceDatabase):
        """Test case-insensitive name and set code matching."""
        card = await reference_db.find_card("black lotus", "leb")
        assert card is not None
        assert card.uuid == "leb-black-lotus"

    async def test_find_card_without_set_prefers_newest(self, reference_db: ReferenceDatabase):
        card = await reference_db.find_card("Black Lotus", None)
        assert card is not None
        assert card.uuid == "leb-black-lotus"

    async def test_find_card_wrong_set(self, reference_db: ReferenceDatabase):
        assert await reference_db.find_card("Black Lotus", "ISD") is None

    async def test_find_printings_newest_first(self, reference_db: ReferenceDatabase):
        printings = await reference_db.find_printings("Black Lotus")
        assert [c.uuid for c in printings] == ["leb-black-lotus", "lea-black-lotus"]

    async def test_find_printings_by_front_face_name(self, reference_db: ReferenceDatabase):
        """Test that a multi-faced card is found by its front face name, once."""
        printings = await reference_db.find_printings("Delver of Secrets")
        assert [c.uuid for c in printings] == ["isd-delver-a"]


class TestSearch:
    """Test catalog search."""

    async def test_substring_search(self, reference_db: ReferenceDatabase):
        results = await reference_db.search_catalog("lotus")
        assert {c.uuid for c in results} == {"lea-black-lotus", "leb-black-lotus"}

    async def test_word_fallback(self, reference_db: ReferenceDatabase):
        """Test that an unmatched multi-word query is retried word by word."""
        results = await reference_db.search_catalog("Lightning Volley")
        assert {c.name for c in results} == {"Lightning Bolt", "Brimstone Volley"}

    async def test_single_word_has_no_fallback(self, reference_db: ReferenceDatabase):
        assert await reference_db.search_catalog("Zebra") == []

    async def test_blank_query(self, reference_db: ReferenceDatabase):
        assert await reference_db.search_catalog("   ") == []

    async def test_limit(self, reference_db: ReferenceDatabase):
        results = await reference_db.search_catalog("o", limit=2)
        assert len(results) == 2

    def test_fallback_words_skips_short_words(self):
        assert fallback_words("Jace of the Mind") == ["Jace", "the", "Mind"]
        assert fallback_words("Ow Ox") == []
        assert fallback_words("Lotus") == []


class TestSets:
    """Test set queries and their caches."""

    async def test_list_sets(self, reference_db: ReferenceDatabase):
        sets = await reference_db.list_sets()
        assert {s.code for s in sets} == {"LEA", "LEB", "ISD"}

    async def test_list_sets_is_cached(self, reference_db: ReferenceDatabase):
        """Test that the set list is served from cache until cleared."""
        first = await reference_db.list_sets()
        await reference_db.conn.execute(
            "INSERT INTO sets VALUES ('M10', 'Magic 2010', '2009-07-17', 'core', 249)"
        )
        await reference_db.conn.commit()

        assert len(await reference_db.list_sets()) == len(first)
        await reference_db.clear_caches()
        assert len(await reference_db.list_sets()) == len(first) + 1

    async def test_get_set(self, reference_db: ReferenceDatabase):
        set_info = await reference_db.get_set("lea")
        assert set_info is not None
        assert set_info.name == "Limited Edition Alpha"
        assert set_info.total_set_size == 295

    async def test_get_set_cards_paginates(self, reference_db: ReferenceDatabase):
        page_one = await reference_db.get_set_cards("LEA", page=1, page_size=2)
        page_two = await reference_db.get_set_cards("LEA", page=2, page_size=2)
        assert len(page_one) == 2
        assert len(page_two) == 1
        assert not {c.uuid for c in page_one} & {c.uuid for c in page_two}

    async def test_count_set_cards_counts_faces_once(self, reference_db: ReferenceDatabase):
        """Test the distinct collector number count for a set with a double-faced card."""
        assert await reference_db.count_set_cards("ISD") == 2
        assert await reference_db.count_set_cards("LEA") == 3
        assert await reference_db.count_set_cards("XXX") == 0

    async def test_logical_cards(self, reference_db: ReferenceDatabase):
        cards = await reference_db.get_set_logical_cards("ISD")
        assert [c.uuid for c in cards] == ["isd-delver-a", "isd-brimstone-volley"]

    async def test_expensive_cards(self, reference_db: ReferenceDatabase):
        await reference_db.prices.record_prices(
            {
                "lea-black-lotus": CardPrices(normal=25000.0),
                "lea-lightning-bolt": CardPrices(normal=400.0),
            }
        )
        cards = await reference_db.get_expensive_cards(limit=5)
        assert [c.uuid for c in cards] == ["lea-black-lotus", "lea-lightning-bolt"]
