"""Application store: collections, card cache, scan history and settings."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from pydantic import ValidationError

from ..games import MTG
from ..models import CardRecord, Collection, CollectionWithStats, Membership, ScanHistoryEntry
from .base import APP_SETTINGS_SCHEMA, BaseDatabase
from .collections import CollectionStore
from .prices import PRICE_SCHEMA_STATEMENTS, PriceHistoryEngine

if TYPE_CHECKING:
    import aiosqlite

    from ...config import Settings

logger = logging.getLogger(__name__)

APP_SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
CREATE TABLE IF NOT EXISTS collection_cache (
    uuid TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    last_updated TEXT NOT NULL
)
""",
    "CREATE INDEX IF NOT EXISTS idx_collection_cache_updated ON collection_cache(last_updated)",
    """
CREATE TABLE IF NOT EXISTS scan_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_uuid TEXT NOT NULL,
    card_name TEXT NOT NULL,
    card_data TEXT,
    scanned_at_ms INTEGER NOT NULL,
    added_to_collection INTEGER,
    collection_id INTEGER
)
""",
    "CREATE INDEX IF NOT EXISTS idx_scan_history_time ON scan_history(scanned_at_ms DESC)",
    APP_SETTINGS_SCHEMA,
)


class CachedMembership(NamedTuple):
    """A membership row with its raw cache blob (None when the cache has no entry)."""

    collection_id: int
    card_uuid: str
    quantity: int
    data: str | None
    last_updated: datetime | None = None


def decode_card(data: str | None) -> CardRecord | None:
    """Decode a cached card blob, returning None if it is missing or invalid."""
    if not data:
        return None
    try:
        return CardRecord.model_validate_json(data)
    except ValidationError:
        logger.debug("Ignoring undecodable cached card: %.80s", data)
        return None


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ApplicationDatabase(BaseDatabase):
    """The small, mutable per-device database.

    Membership is the ground truth of what the user owns; collection_cache
    holds the merged CardRecord shown for each owned card and may lose
    entries, which CacheReconciler repairs.
    """

    store_name = "Application store"

    def __init__(
        self,
        db_path: Path,
        max_connections: int = 5,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(db_path, max_connections=max_connections, settings=settings)
        self._clock = clock or _utc_now
        self.collection_store = CollectionStore(self, MTG, clock=self._clock)
        self.prices = PriceHistoryEngine(
            self,
            clock=self._clock,
            retention_days=self._settings.price_retention_days,
            batch_size=self._settings.price_batch_size,
        )

    async def _create_schema(self) -> None:
        await self.collection_store.create_schema()
        for statement in (*APP_SCHEMA_STATEMENTS, *PRICE_SCHEMA_STATEMENTS):
            await self.conn.execute(statement)

    # ─────────────────────────────────────────────────────────────────────────
    # Collections
    # ─────────────────────────────────────────────────────────────────────────

    async def get_or_create_collection(self, name: str, description: str | None = None) -> Collection:
        return await self.collection_store.get_or_create_collection(name, description)

    async def get_or_create_set_collection(self, set_code: str, set_name: str | None) -> Collection:
        return await self.collection_store.get_or_create_set_collection(set_code, set_name)

    async def get_collection(self, collection_id: int) -> Collection | None:
        return await self.collection_store.get_collection(collection_id)

    async def get_collection_by_name(self, name: str) -> Collection | None:
        return await self.collection_store.get_collection_by_name(name)

    async def list_collection_counts(self) -> list[CollectionWithStats]:
        return await self.collection_store.list_collections()

    async def update_collection(
        self, collection_id: int, name: str | None = None, description: str | None = None
    ) -> bool:
        return await self.collection_store.update_collection(collection_id, name, description)

    async def delete_collection(self, collection_id: int) -> bool:
        return await self.collection_store.delete_collection(collection_id)

    async def add_card_to_collection(self, card_uuid: str, collection_id: int, quantity: int = 1) -> int:
        """Add a card to a collection; returns the resulting quantity."""
        return await self.collection_store.add_card(collection_id, card_uuid, quantity)

    async def remove_card_from_collection(self, card_uuid: str, collection_id: int) -> bool:
        return await self.collection_store.remove_card(collection_id, card_uuid)

    async def set_card_quantity(self, card_uuid: str, collection_id: int, quantity: int) -> None:
        await self.collection_store.set_quantity(collection_id, card_uuid, quantity)

    async def get_membership(self, card_uuid: str, collection_id: int) -> Membership | None:
        return await self.collection_store.get_membership(collection_id, card_uuid)

    async def get_collection_card_uuids(self, collection_id: int) -> list[str]:
        return await self.collection_store.get_card_uuids(collection_id)

    async def get_cached_memberships(self, collection_id: int | None = None) -> list[CachedMembership]:
        """Membership rows joined with their cache blobs, for one or all collections."""
        query = """
            SELECT cc.collection_id, cc.card_uuid, cc.quantity, cache.data, cache.last_updated
            FROM collection_cards cc
            LEFT JOIN collection_cache cache ON cache.uuid = cc.card_uuid
        """
        params: tuple[int, ...] = ()
        if collection_id is not None:
            query += " WHERE cc.collection_id = ?"
            params = (collection_id,)
        query += " ORDER BY cc.added_at DESC"
        rows = await self._fetchall(query, params)
        return [
            CachedMembership(
                row["collection_id"],
                row["card_uuid"],
                row["quantity"],
                row["data"],
                datetime.fromisoformat(row["last_updated"]) if row["last_updated"] else None,
            )
            for row in rows
        ]

    # ─────────────────────────────────────────────────────────────────────────
    # Card cache
    # ─────────────────────────────────────────────────────────────────────────

    async def put_cached_card(self, card: CardRecord) -> None:
        """Insert or replace the cached record for a card (keyed by its uuid)."""
        if not card.uuid:
            raise ValueError(f"Cannot cache card without uuid: {card.name}")
        await self._write(
            """
            INSERT INTO collection_cache (uuid, data, last_updated) VALUES (?, ?, ?)
            ON CONFLICT (uuid) DO UPDATE SET
                data = excluded.data,
                last_updated = excluded.last_updated
            """,
            (card.uuid, card.model_dump_json(), self._clock().isoformat()),
        )

    async def put_cached_cards(self, cards: Sequence[CardRecord]) -> None:
        now = self._clock().isoformat()
        await self._write_many(
            """
            INSERT INTO collection_cache (uuid, data, last_updated) VALUES (?, ?, ?)
            ON CONFLICT (uuid) DO UPDATE SET
                data = excluded.data,
                last_updated = excluded.last_updated
            """,
            [(card.uuid, card.model_dump_json(), now) for card in cards if card.uuid],
        )

    async def get_cached_card(self, uuid: str) -> CardRecord | None:
        row = await self._fetchone("SELECT data FROM collection_cache WHERE uuid = ?", (uuid,))
        return decode_card(row["data"]) if row else None

    async def get_cached_cards(self, uuids: Sequence[str]) -> dict[str, CardRecord]:
        """Cached records by uuid; missing or undecodable entries are omitted."""
        result: dict[str, CardRecord] = {}
        unique = list(dict.fromkeys(uuids))
        for i in range(0, len(unique), 500):
            chunk = unique[i : i + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = await self._fetchall(
                f"SELECT uuid, data FROM collection_cache WHERE uuid IN ({placeholders})", chunk
            )
            for row in rows:
                card = decode_card(row["data"])
                if card is not None:
                    result[row["uuid"]] = card
        return result

    async def get_cache_timestamp(self, uuid: str) -> datetime | None:
        row = await self._fetchone(
            "SELECT last_updated FROM collection_cache WHERE uuid = ?", (uuid,)
        )
        return datetime.fromisoformat(row["last_updated"]) if row else None

    async def get_stale_cached_uuids(self, older_than: datetime, limit: int = 100) -> list[str]:
        """Uuids of owned cards whose cache entry was last updated before older_than."""
        rows = await self._fetchall(
            """
            SELECT DISTINCT cache.uuid
            FROM collection_cache cache
            JOIN collection_cards cc ON cc.card_uuid = cache.uuid
            WHERE cache.last_updated < ?
            ORDER BY cache.last_updated
            LIMIT ?
            """,
            (older_than.isoformat(), limit),
        )
        return [row["uuid"] for row in rows]

    async def find_uncached_uuids(self) -> list[str]:
        """Owned card uuids with no cache entry."""
        rows = await self._fetchall(
            """
            SELECT DISTINCT cc.card_uuid
            FROM collection_cards cc
            LEFT JOIN collection_cache cache ON cache.uuid = cc.card_uuid
            WHERE cache.uuid IS NULL
            """
        )
        return [row["card_uuid"] for row in rows]

    async def invalidate_cached_card(self, uuid: str) -> bool:
        deleted = await self._write("DELETE FROM collection_cache WHERE uuid = ?", (uuid,))
        return deleted > 0

    async def clear_cache(self) -> int:
        """Drop every cache entry. Returns the number removed."""
        return await self._write("DELETE FROM collection_cache")

    # ─────────────────────────────────────────────────────────────────────────
    # Scan history
    # ─────────────────────────────────────────────────────────────────────────

    async def add_scan_history(self, card: CardRecord, scanned_at_ms: int) -> int:
        """Persist a scan with a snapshot of the card. Returns the entry id."""
        if not card.uuid:
            raise ValueError(f"Cannot record scan of card without uuid: {card.name}")
        async with self.transaction() as conn, conn.execute(
            """
            INSERT INTO scan_history (card_uuid, card_name, card_data, scanned_at_ms)
            VALUES (?, ?, ?, ?)
            """,
            (card.uuid, card.name, card.model_dump_json(), scanned_at_ms),
        ) as cursor:
            return cursor.lastrowid  # type: ignore[return-value]

    async def mark_scan_filed(self, history_id: int, collection_id: int) -> None:
        await self._write(
            "UPDATE scan_history SET added_to_collection = 1, collection_id = ? WHERE id = ?",
            (collection_id, history_id),
        )

    async def get_recent_scans(self, limit: int = 5) -> list[ScanHistoryEntry]:
        """The most recently persisted scans, newest first."""
        return await self.get_scan_history(limit=limit)

    async def get_scan_history(self, limit: int = 50, offset: int = 0) -> list[ScanHistoryEntry]:
        rows = await self._fetchall(
            """
            SELECT * FROM scan_history
            ORDER BY scanned_at_ms DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [self._row_to_scan(row) for row in rows]

    async def count_scans(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS count FROM scan_history")
        return row["count"] if row else 0

    async def clear_scan_history(self) -> int:
        return await self._write("DELETE FROM scan_history")

    @staticmethod
    def _row_to_scan(row: aiosqlite.Row) -> ScanHistoryEntry:
        added = row["added_to_collection"]
        return ScanHistoryEntry(
            id=row["id"],
            card_uuid=row["card_uuid"],
            card_name=row["card_name"],
            card=decode_card(row["card_data"]),
            scanned_at_ms=row["scanned_at_ms"],
            added_to_collection=None if added is None else bool(added),
            collection_id=row["collection_id"],
        )
