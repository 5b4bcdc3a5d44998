"""Reference store: the downloaded, read-mostly card catalog."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ...exceptions import CorruptStoreError, StoreError
from ..games import MTG, CardGame
from ..models import CardPrices, CardRecord, ImageUris, SetInfo
from .base import APP_SETTINGS_SCHEMA, BaseDatabase
from .cache import TTLCache
from .prices import PRICE_COLUMNS, PRICE_SCHEMA_STATEMENTS, PriceHistoryEngine, prices_from_row

if TYPE_CHECKING:
    from collections.abc import Sequence

    import aiosqlite

    from ...config import Settings

logger = logging.getLogger(__name__)

SCRYFALL_IMAGE_BASE = "https://cards.scryfall.io"

# Catalog row + set name + current price
CARD_SELECT = f"""
SELECT
    c.uuid, c.name, c.setCode, c.number, c.side, c.rarity, c.type, c.text,
    c.manaCost, c.scryfallId,
    s.name AS setName,
    {", ".join(f"p.{col}" for col in PRICE_COLUMNS)}
FROM cards c
LEFT JOIN sets s ON s.code = c.setCode
LEFT JOIN prices p ON p.uuid = c.uuid
"""

# Multi-faced cards have one row per face; only the front face is a card of its own
FRONT_FACE = "(c.side IS NULL OR c.side = 'a')"

MIN_FALLBACK_WORD_LENGTH = 3


def _image_uris(scryfall_id: str | None) -> ImageUris | None:
    if not scryfall_id or len(scryfall_id) < 2:
        return None
    path = f"front/{scryfall_id[0]}/{scryfall_id[1]}/{scryfall_id}.jpg"
    return ImageUris(
        small=f"{SCRYFALL_IMAGE_BASE}/small/{path}",
        normal=f"{SCRYFALL_IMAGE_BASE}/normal/{path}",
        large=f"{SCRYFALL_IMAGE_BASE}/large/{path}",
        art_crop=f"{SCRYFALL_IMAGE_BASE}/art_crop/{path}",
    )


def row_to_card(row: aiosqlite.Row) -> CardRecord:
    """Convert a CARD_SELECT row into a CardRecord."""
    prices = prices_from_row(row) if row["normal_price"] is not None else CardPrices()
    image_uris = _image_uris(row["scryfallId"])
    return CardRecord(
        uuid=row["uuid"],
        name=row["name"],
        set_code=row["setCode"],
        set_name=row["setName"],
        collector_number=row["number"],
        rarity=row["rarity"],
        type_line=row["type"],
        text=row["text"],
        mana_cost=row["manaCost"],
        prices=prices,
        image_url=image_uris.normal if image_uris else None,
        image_uris=image_uris,
        scryfall_id=row["scryfallId"],
    )


def fallback_words(query: str) -> list[str]:
    """Words of a multi-word query long enough to search on their own."""
    words = query.split()
    if len(words) < 2:
        return []
    return [w for w in words if len(w) >= MIN_FALLBACK_WORD_LENGTH]


class ReferenceDatabase(BaseDatabase):
    """Catalog of card printings and sets, plus the derived price tables.

    The cards and sets tables come from the downloaded file and are never
    written here; prices, price_history and app_settings are created on
    connect so the price importer can write into the same file.
    """

    store_name = "Reference store"

    def __init__(
        self,
        db_path: Path,
        max_connections: int = 5,
        settings: Settings | None = None,
        game: CardGame = MTG,
    ):
        super().__init__(db_path, max_connections=max_connections, settings=settings)
        self.game = game
        self.prices = PriceHistoryEngine(
            self,
            retention_days=self._settings.price_retention_days,
            batch_size=self._settings.price_batch_size,
        )
        self._set_list_cache: TTLCache[list[SetInfo]] = TTLCache(
            ttl_seconds=self._settings.set_list_ttl_seconds
        )
        self._set_page_cache: TTLCache[list[CardRecord]] = TTLCache(
            ttl_seconds=self._settings.set_page_ttl_seconds
        )
        self._expensive_cache: TTLCache[list[CardRecord]] = TTLCache(
            ttl_seconds=self._settings.expensive_cards_ttl_seconds
        )

    async def _create_schema(self) -> None:
        for statement in (*PRICE_SCHEMA_STATEMENTS, APP_SETTINGS_SCHEMA):
            await self.conn.execute(statement)

    async def verify_integrity(self) -> int:
        """Check that the catalog is usable.

        Returns:
            Number of rows in the cards table.

        Raises:
            CorruptStoreError: If the file is not a database, the cards table is
                missing, or it has no rows.
        """
        path = str(self.db_path)
        try:
            if not await self.table_exists("cards"):
                raise CorruptStoreError(path, "cards table missing")
            row = await self._fetchone("SELECT COUNT(*) AS count FROM cards")
        except CorruptStoreError:
            raise
        except StoreError as e:
            raise CorruptStoreError(path, e.message) from e

        count = row["count"] if row else 0
        if count < 1:
            raise CorruptStoreError(path, "cards table is empty")
        return count

    async def clear_caches(self) -> None:
        """Drop all in-memory query caches (after a new download or price import)."""
        await self._set_list_cache.clear()
        await self._set_page_cache.clear()
        await self._expensive_cache.clear()

    # ─────────────────────────────────────────────────────────────────────────
    # Card lookups
    # ─────────────────────────────────────────────────────────────────────────

    async def get_card(self, uuid: str) -> CardRecord | None:
        """Get a printing by uuid with its set name and current price."""
        row = await self._fetchone(f"{CARD_SELECT} WHERE c.uuid = ?", (uuid,))
        return row_to_card(row) if row else None

    async def get_cards(self, uuids: Sequence[str]) -> dict[str, CardRecord]:
        """Get several printings by uuid. Unknown uuids are omitted."""
        result: dict[str, CardRecord] = {}
        unique = list(dict.fromkeys(uuids))
        for i in range(0, len(unique), 500):
            chunk = unique[i : i + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = await self._fetchall(f"{CARD_SELECT} WHERE c.uuid IN ({placeholders})", chunk)
            for row in rows:
                result[row["uuid"]] = row_to_card(row)
        return result

    async def find_card(self, name: str, set_code: str | None) -> CardRecord | None:
        """Find the printing of a card in a set by exact (case-insensitive) name."""
        if not set_code:
            printings = await self.find_printings(name, limit=1)
            return printings[0] if printings else None
        row = await self._fetchone(
            f"""
            {CARD_SELECT}
            WHERE c.name = ? COLLATE NOCASE AND c.setCode = ? COLLATE NOCASE
            ORDER BY {FRONT_FACE} DESC, c.number
            LIMIT 1
            """,
            (name, set_code),
        )
        return row_to_card(row) if row else None

    async def find_printings(self, name: str, limit: int = 50) -> list[CardRecord]:
        """All printings of a card by exact (case-insensitive) name, newest set first.

        Faces of multi-faced cards are matched by their face name as well.
        """
        rows = await self._fetchall(
            f"""
            {CARD_SELECT}
            WHERE (c.name = ? COLLATE NOCASE OR c.name LIKE ? || ' // %')
              AND {FRONT_FACE}
            ORDER BY s.releaseDate DESC, c.number
            LIMIT ?
            """,
            (name, name, limit),
        )
        return [row_to_card(row) for row in rows]

    async def search_catalog(self, query: str, limit: int = 50) -> list[CardRecord]:
        """Substring search on card names.

        When nothing matches and the query has several words, each word of at
        least three characters is searched for instead.
        """
        query = query.strip()
        if not query:
            return []

        rows = await self._search_names([query], limit)
        if not rows:
            words = fallback_words(query)
            if words:
                logger.debug("No match for %r, retrying with words %s", query, words)
                rows = await self._search_names(words, limit)
        return [row_to_card(row) for row in rows]

    async def _search_names(self, terms: list[str], limit: int) -> list[aiosqlite.Row]:
        conditions = " OR ".join("c.name LIKE ?" for _ in terms)
        return await self._fetchall(
            f"""
            {CARD_SELECT}
            WHERE ({conditions}) AND {FRONT_FACE}
            ORDER BY c.name, s.releaseDate DESC
            LIMIT ?
            """,
            (*(f"%{term}%" for term in terms), limit),
        )

    async def get_expensive_cards(self, limit: int = 20) -> list[CardRecord]:
        """Printings with the highest current normal price (cached)."""

        async def load() -> list[CardRecord]:
            rows = await self._fetchall(
                f"""
                {CARD_SELECT}
                WHERE p.normal_price > 0
                ORDER BY p.normal_price DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [row_to_card(row) for row in rows]

        return await self._expensive_cache.get_or_load(str(limit), load)

    # ─────────────────────────────────────────────────────────────────────────
    # Sets
    # ─────────────────────────────────────────────────────────────────────────

    async def list_sets(self) -> list[SetInfo]:
        """All sets, newest first (cached)."""

        async def load() -> list[SetInfo]:
            rows = await self._fetchall(
                """
                SELECT code, name, type, releaseDate, totalSetSize
                FROM sets
                ORDER BY releaseDate DESC, name
                """
            )
            return [self._row_to_set(row) for row in rows]

        return await self._set_list_cache.get_or_load("all", load)

    async def get_set(self, code: str) -> SetInfo | None:
        row = await self._fetchone(
            """
            SELECT code, name, type, releaseDate, totalSetSize
            FROM sets WHERE code = ? COLLATE NOCASE
            """,
            (code,),
        )
        return self._row_to_set(row) if row else None

    async def get_set_cards(self, code: str, page: int = 1, page_size: int = 50) -> list[CardRecord]:
        """One page of a set's cards in collector-number order (cached per page)."""
        page = max(page, 1)

        async def load() -> list[CardRecord]:
            rows = await self._fetchall(
                f"""
                {CARD_SELECT}
                WHERE c.setCode = ? COLLATE NOCASE AND {FRONT_FACE}
                ORDER BY CAST(c.number AS INTEGER), c.number
                LIMIT ? OFFSET ?
                """,
                (code, page_size, (page - 1) * page_size),
            )
            return [row_to_card(row) for row in rows]

        key = f"{code.upper()}:{page}:{page_size}"
        return await self._set_page_cache.get_or_load(key, load)

    async def get_set_logical_cards(self, code: str) -> list[CardRecord]:
        """One printing per logical card of a set, in collector-number order.

        Printings sharing a collector key (see CardGame.collector_key) are one
        logical card; the front face (side NULL or 'a') represents it.
        """
        rows = await self._fetchall(
            f"""
            {CARD_SELECT}
            WHERE c.setCode = ? COLLATE NOCASE AND {FRONT_FACE}
            ORDER BY CAST(c.number AS INTEGER), c.number, c.side
            """,
            (code,),
        )
        logical: dict[str, CardRecord] = {}
        for row in rows:
            card = row_to_card(row)
            key = self.game.collector_key(card.collector_number) or card.uuid or card.name
            logical.setdefault(key, card)
        return list(logical.values())

    async def count_set_cards(self, code: str) -> int:
        """Distinct collector-number count of a set (multi-faced cards count once)."""
        rows = await self._fetchall(
            f"SELECT c.number FROM cards c WHERE c.setCode = ? COLLATE NOCASE AND {FRONT_FACE}",
            (code,),
        )
        keys = {self.game.collector_key(row["number"]) for row in rows}
        keys.discard(None)
        return len(keys)

    @staticmethod
    def _row_to_set(row: aiosqlite.Row) -> SetInfo:
        return SetInfo(
            code=row["code"],
            name=row["name"],
            type=row["type"],
            release_date=row["releaseDate"],
            total_set_size=row["totalSetSize"],
        )
