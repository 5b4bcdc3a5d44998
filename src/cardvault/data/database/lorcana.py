"""Disney Lorcana store: bulk-imported catalog, collections and prices in one file."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ...exceptions import CardNotFoundError, CollectionNotFoundError
from ..games import LORCANA
from ..models import (
    SET_COLLECTION_PREFIX,
    CardPrices,
    Collection,
    CollectionWithStats,
    LorcanaCard,
    SetCompletion,
)
from .aggregator import completion_percentage
from .base import BaseDatabase
from .collections import CollectionStore
from .reference import fallback_words

if TYPE_CHECKING:
    import aiosqlite

    from ...config import Settings
    from ...sources import LorcanaSource
    from ...tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)

IMPORT_BATCH_SIZE = 100

# Bulk API field names double as column names
CARD_COLUMNS: tuple[str, ...] = (
    "Unique_ID",
    "Name",
    "Artist",
    "Body_Text",
    "Card_Num",
    "Classifications",
    "Color",
    "Cost",
    "Flavor_Text",
    "Franchise",
    "Image",
    "Inkable",
    "Lore",
    "Rarity",
    "Set_ID",
    "Set_Name",
    "Set_Num",
    "Strength",
    "Type",
    "Willpower",
)

LORCANA_CARDS_SCHEMA: tuple[str, ...] = (
    """
CREATE TABLE IF NOT EXISTS lorcana_cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    Unique_ID TEXT UNIQUE,
    Name TEXT,
    Artist TEXT,
    Body_Text TEXT,
    Card_Num INTEGER,
    Classifications TEXT,
    Color TEXT,
    Cost INTEGER,
    Flavor_Text TEXT,
    Franchise TEXT,
    Image TEXT,
    Inkable INTEGER,
    Lore INTEGER,
    Rarity TEXT,
    Set_ID TEXT,
    Set_Name TEXT,
    Set_Num INTEGER,
    Strength INTEGER,
    Type TEXT,
    Willpower INTEGER,
    price_usd REAL,
    price_usd_foil REAL,
    last_updated TEXT,
    collected INTEGER NOT NULL DEFAULT 0
)
""",
    "CREATE INDEX IF NOT EXISTS idx_lorcana_name ON lorcana_cards(Name)",
    "CREATE INDEX IF NOT EXISTS idx_lorcana_set ON lorcana_cards(Set_ID)",
)

# Re-import refreshes catalog fields; prices and the collected flag are kept
_UPSERT_CARD = f"""
INSERT INTO lorcana_cards ({", ".join(CARD_COLUMNS)})
VALUES ({", ".join("?" for _ in CARD_COLUMNS)})
ON CONFLICT (Unique_ID) DO UPDATE SET
    {", ".join(f"{col} = excluded.{col}" for col in CARD_COLUMNS if col != "Unique_ID")}
"""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _card_values(card: LorcanaCard) -> tuple[Any, ...]:
    data = card.model_dump(by_alias=True)
    data["Inkable"] = int(card.inkable)
    return tuple(data[col] for col in CARD_COLUMNS)


def _row_to_card(row: aiosqlite.Row) -> LorcanaCard:
    return LorcanaCard.model_validate(dict(row))


class LorcanaDatabase(BaseDatabase):
    """Single-file store for Lorcana.

    Uses the same CollectionStore as the MTG application store; membership
    rows reference lorcana_cards directly, and a card's current price lives on
    its catalog row.
    """

    store_name = "Lorcana store"

    def __init__(
        self,
        db_path: Path,
        source: LorcanaSource | None = None,
        tasks: BackgroundTaskQueue | None = None,
        max_connections: int = 5,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(db_path, max_connections=max_connections, settings=settings)
        self.source = source
        self.tasks = tasks
        self._clock = clock or _utc_now
        self.collection_store = CollectionStore(self, LORCANA, clock=self._clock)
        self.stale_after = timedelta(hours=self._settings.price_stale_hours)

    async def _create_schema(self) -> None:
        for statement in LORCANA_CARDS_SCHEMA:
            await self.conn.execute(statement)
        await self.collection_store.create_schema()

    # ─────────────────────────────────────────────────────────────────────────
    # Catalog import
    # ─────────────────────────────────────────────────────────────────────────

    async def initialize(self) -> int:
        """Connect and, if the catalog has no named cards, bulk import it.

        Returns:
            Number of cards imported (0 if the catalog was already populated).

        Raises:
            NetworkFailureError: If an import is needed and the download fails.
        """
        await self._ensure_connected()
        count = await self.count_cards()
        if count > 0:
            logger.debug("Lorcana catalog already has %d cards", count)
            return 0

        await self._write("DELETE FROM lorcana_cards WHERE Name IS NULL")
        return await self.reload()

    async def reload(self) -> int:
        """Download the bulk card list and upsert it. Collections are kept."""
        if self.source is None:
            logger.warning("No Lorcana source configured, skipping import")
            return 0
        raw_cards = await self.source.fetch_all_cards()
        return await self.import_cards(raw_cards)

    async def import_cards(self, raw_cards: Iterable[dict[str, Any]]) -> int:
        """Upsert bulk API card objects in batches of IMPORT_BATCH_SIZE.

        Cards without a name or Unique_ID, or that fail validation, are skipped.
        """
        cards: list[LorcanaCard] = []
        skipped = 0
        for raw in raw_cards:
            try:
                card = LorcanaCard.model_validate(raw)
            except ValidationError as e:
                logger.debug("Skipping invalid Lorcana card %s: %s", raw.get("Name"), e)
                skipped += 1
                continue
            if not card.name or not card.unique_id:
                skipped += 1
                continue
            cards.append(card)

        for i in range(0, len(cards), IMPORT_BATCH_SIZE):
            batch = cards[i : i + IMPORT_BATCH_SIZE]
            await self._write_many(_UPSERT_CARD, [_card_values(card) for card in batch])
            logger.debug(
                "Imported Lorcana batch %d/%d",
                i // IMPORT_BATCH_SIZE + 1,
                (len(cards) + IMPORT_BATCH_SIZE - 1) // IMPORT_BATCH_SIZE,
            )

        logger.info("Imported %d Lorcana cards (%d skipped)", len(cards), skipped)
        return len(cards)

    async def count_cards(self) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) AS count FROM lorcana_cards WHERE Name IS NOT NULL"
        )
        return row["count"] if row else 0

    # ─────────────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────────────

    async def get_card(self, unique_id: str) -> LorcanaCard | None:
        row = await self._fetchone("SELECT * FROM lorcana_cards WHERE Unique_ID = ?", (unique_id,))
        return _row_to_card(row) if row else None

    async def search_cards(self, name: str, limit: int = 100) -> list[LorcanaCard]:
        """Substring search on names, retrying word by word when nothing matches."""
        term = name.strip()
        if not term:
            return []

        rows = await self._search(term, limit)
        if not rows:
            for word in fallback_words(term):
                rows = await self._search(word, limit)
                if rows:
                    break
        return [_row_to_card(row) for row in rows]

    async def _search(self, term: str, limit: int) -> list[aiosqlite.Row]:
        return await self._fetchall(
            """
            SELECT * FROM lorcana_cards
            WHERE Name IS NOT NULL AND Name LIKE ?
            ORDER BY Name, Set_Num, Card_Num
            LIMIT ?
            """,
            (f"%{term}%", limit),
        )

    async def count_set_cards(self, set_id: str) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) AS count FROM lorcana_cards WHERE Set_ID = ?", (set_id,)
        )
        return row["count"] if row else 0

    # ─────────────────────────────────────────────────────────────────────────
    # Prices
    # ─────────────────────────────────────────────────────────────────────────

    async def get_card_price(self, card: LorcanaCard) -> CardPrices:
        """Remote price for a card; empty prices when unavailable."""
        if self.source is None:
            return CardPrices()
        return await self.source.get_card_price(card)

    async def refresh_card_price(self, unique_id: str) -> CardPrices:
        """Fetch and store the current price of a card."""
        card = await self.get_card(unique_id)
        if card is None:
            return CardPrices()
        prices = await self.get_card_price(card)
        if prices.has_price:
            await self._write(
                """
                UPDATE lorcana_cards
                SET price_usd = ?, price_usd_foil = ?, last_updated = ?
                WHERE Unique_ID = ?
                """,
                (prices.normal, prices.foil, self._clock().isoformat(), unique_id),
            )
        return prices

    def _is_stale(self, card: LorcanaCard) -> bool:
        if not card.last_updated:
            return True
        updated = datetime.fromisoformat(card.last_updated)
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return self._clock() - updated > self.stale_after

    def _schedule_refresh(self, cards: Iterable[LorcanaCard]) -> int:
        if self.tasks is None:
            return 0
        queued = 0
        for card in cards:
            if card.unique_id and card.name and card.set_num and card.rarity and self._is_stale(card):
                unique_id = card.unique_id
                queued += self.tasks.submit(
                    lambda uid=unique_id: self.refresh_card_price(uid),
                    name=f"refresh-lorcana-price-{unique_id}",
                )
        return queued

    # ─────────────────────────────────────────────────────────────────────────
    # Collections
    # ─────────────────────────────────────────────────────────────────────────

    async def get_or_create_collection(self, name: str, description: str | None = None) -> Collection:
        return await self.collection_store.get_or_create_collection(name, description)

    async def get_or_create_set_collection(self, set_id: str, set_name: str) -> Collection:
        if not set_id or not set_name:
            raise ValueError("Set ID and name are required")
        return await self.collection_store.get_or_create_set_collection(set_id, set_name)

    async def add_card_to_collection(self, card_id: str, collection_id: int) -> int:
        """Add a card to a collection, storing its latest price alongside.

        The price lookup happens before the transaction and is not required to
        succeed. Membership, the collection timestamp and the card's price and
        collected flag are then written atomically.

        Returns:
            The card's quantity in the collection.

        Raises:
            CardNotFoundError: If the card is not in the catalog.
            CollectionNotFoundError: If the collection does not exist.
        """
        card = await self.get_card(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        if await self.collection_store.get_collection(collection_id) is None:
            raise CollectionNotFoundError(collection_id)

        prices = await self.get_card_price(card)
        now = self._clock().isoformat()

        async with self.transaction() as conn:
            quantity = await self.collection_store.add_card_in(conn, collection_id, card_id)
            if prices.has_price:
                await conn.execute(
                    """
                    UPDATE lorcana_cards
                    SET collected = 1, price_usd = ?, price_usd_foil = ?, last_updated = ?
                    WHERE Unique_ID = ?
                    """,
                    (prices.normal, prices.foil, now, card_id),
                )
            else:
                await conn.execute(
                    "UPDATE lorcana_cards SET collected = 1 WHERE Unique_ID = ?", (card_id,)
                )
        return quantity

    async def remove_card_from_collection(self, card_id: str, collection_id: int) -> bool:
        """Remove a card; it is marked uncollected when no collection holds it."""
        removed = await self.collection_store.remove_card(collection_id, card_id)
        if removed and not await self.collection_store.is_collected(card_id):
            await self._write(
                "UPDATE lorcana_cards SET collected = 0 WHERE Unique_ID = ?", (card_id,)
            )
        return removed

    async def get_collection_cards(
        self, collection_id: int, page: int = 1, page_size: int = 20
    ) -> list[LorcanaCard]:
        """One page of a collection's cards; stale prices refresh in the background."""
        page = max(page, 1)
        rows = await self._fetchall(
            f"""
            SELECT lc.*
            FROM lorcana_cards lc
            JOIN {self.collection_store.memberships} cc ON cc.card_uuid = lc.Unique_ID
            WHERE cc.collection_id = ?
            ORDER BY lc.Card_Num ASC
            LIMIT ? OFFSET ?
            """,
            (collection_id, page_size, (page - 1) * page_size),
        )
        cards = [_row_to_card(row).model_copy(update={"collected": True}) for row in rows]
        queued = self._schedule_refresh(cards)
        if queued:
            logger.debug("Queued %d Lorcana price refreshes", queued)
        return cards

    async def list_collections(self) -> list[CollectionWithStats]:
        """Collections with card count and value (price_usd × quantity)."""
        collections = await self.collection_store.list_collections()
        values = await self._collection_values()
        return [
            c.model_copy(update={"total_value": values.get(c.id, 0.0)}) for c in collections
        ]

    async def _collection_values(self) -> dict[int, float]:
        rows = await self._fetchall(
            f"""
            SELECT cc.collection_id, COALESCE(SUM(COALESCE(lc.price_usd, 0) * cc.quantity), 0) AS value
            FROM {self.collection_store.memberships} cc
            JOIN lorcana_cards lc ON lc.Unique_ID = cc.card_uuid
            GROUP BY cc.collection_id
            """
        )
        return {row["collection_id"]: round(row["value"], 2) for row in rows}

    async def get_set_collections(self) -> list[SetCompletion]:
        """Completion and value of every "Set: <name>" collection.

        total_cards counts the catalog cards with the collection's Set_ID.
        Stale prices of member cards are refreshed in the background.
        """
        values = await self._collection_values()
        completions: list[SetCompletion] = []
        for collection in await self.collection_store.list_set_collections():
            set_id = collection.set_code
            total = await self.count_set_cards(set_id) if set_id else 0
            collected = await self.collection_store.count_cards(collection.id)
            completions.append(
                SetCompletion(
                    set_code=set_id or "",
                    set_name=collection.name.removeprefix(SET_COLLECTION_PREFIX),
                    collection_id=collection.id,
                    total_cards=total,
                    collected_cards=collected,
                    percentage=completion_percentage(collected, total),
                    total_value=values.get(collection.id, 0.0),
                )
            )
            self._schedule_refresh(await self._member_cards(collection.id))
        return completions

    async def _member_cards(self, collection_id: int) -> list[LorcanaCard]:
        rows = await self._fetchall(
            f"""
            SELECT lc.*
            FROM lorcana_cards lc
            JOIN {self.collection_store.memberships} cc ON cc.card_uuid = lc.Unique_ID
            WHERE cc.collection_id = ?
            """,
            (collection_id,),
        )
        return [_row_to_card(row) for row in rows]
