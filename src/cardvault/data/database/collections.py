"""Collections and collection membership, shared by every card game."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ...exceptions import StoreError
from ..games import CardGame
from ..models import Collection, CollectionWithStats, Membership

if TYPE_CHECKING:
    import aiosqlite

    from .base import BaseDatabase

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CollectionStore:
    """Collection and membership tables of one game on a host store.

    Table names and the card foreign key come from the CardGame, so MTG
    (cards in another file, no foreign key) and Lorcana (cards in the same
    file) share this implementation. Card count and value are never stored;
    they are computed from membership on every read.
    """

    def __init__(
        self,
        db: BaseDatabase,
        game: CardGame,
        clock: Callable[[], datetime] | None = None,
    ):
        self._db = db
        self.game = game
        self._clock = clock or _utc_now
        self.collections = game.collections_table
        self.memberships = game.membership_table

    def _now(self) -> str:
        return self._clock().isoformat()

    def schema_statements(self) -> tuple[str, ...]:
        card_fk = ""
        if self.game.card_reference:
            card_fk = f",\n    FOREIGN KEY (card_uuid) REFERENCES {self.game.card_reference} ON DELETE CASCADE"
        return (
            f"""
CREATE TABLE IF NOT EXISTS {self.collections} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    set_code TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
""",
            f"""
CREATE TABLE IF NOT EXISTS {self.memberships} (
    collection_id INTEGER NOT NULL REFERENCES {self.collections}(id) ON DELETE CASCADE,
    card_uuid TEXT NOT NULL,
    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
    added_at TEXT NOT NULL,
    PRIMARY KEY (collection_id, card_uuid){card_fk}
)
""",
            f"CREATE INDEX IF NOT EXISTS idx_{self.memberships}_card ON {self.memberships}(card_uuid)",
            f"CREATE INDEX IF NOT EXISTS idx_{self.collections}_set ON {self.collections}(set_code)",
        )

    async def create_schema(self) -> None:
        """Create the tables. Called from the host store's _create_schema()."""
        for statement in self.schema_statements():
            await self._db.conn.execute(statement)

    # ─────────────────────────────────────────────────────────────────────────
    # Collection CRUD
    # ─────────────────────────────────────────────────────────────────────────

    async def _insert_or_get(
        self,
        conn: aiosqlite.Connection,
        name: str,
        description: str | None,
        set_code: str | None,
    ) -> Collection:
        now = self._now()
        await conn.execute(
            f"""
            INSERT INTO {self.collections} (name, description, set_code, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (name) DO NOTHING
            """,
            (name, description, set_code, now, now),
        )
        async with conn.execute(f"SELECT * FROM {self.collections} WHERE name = ?", (name,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise StoreError(f"Collection {name!r} could not be created")
        return self._row_to_collection(row)

    async def get_or_create_collection(
        self,
        name: str,
        description: str | None = None,
        set_code: str | None = None,
    ) -> Collection:
        """Return the collection with this name, creating it if needed.

        An existing collection keeps its description.
        """
        async with self._db.transaction() as conn:
            return await self._insert_or_get(conn, name, description, set_code)

    async def get_or_create_set_collection(self, set_code: str, set_name: str | None) -> Collection:
        """Return the auto-created collection for a set ("Set: <name>").

        The set code identifies the collection, so a set gets one collection
        whether or not its name was known when it was first created.
        """
        display_name = set_name or set_code
        async with self._db.transaction() as conn:
            async with conn.execute(
                f"SELECT * FROM {self.collections} WHERE set_code = ? COLLATE NOCASE ORDER BY id LIMIT 1",
                (set_code,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is not None:
                return self._row_to_collection(row)
            return await self._insert_or_get(
                conn,
                self.game.set_collection_name(display_name),
                self.game.set_collection_description(set_code, display_name),
                set_code,
            )

    async def get_collection(self, collection_id: int) -> Collection | None:
        row = await self._db._fetchone(
            f"SELECT * FROM {self.collections} WHERE id = ?", (collection_id,)
        )
        return self._row_to_collection(row) if row else None

    async def get_collection_by_name(self, name: str) -> Collection | None:
        row = await self._db._fetchone(
            f"SELECT * FROM {self.collections} WHERE name = ?", (name,)
        )
        return self._row_to_collection(row) if row else None

    async def get_set_collection(self, set_code: str) -> Collection | None:
        row = await self._db._fetchone(
            f"SELECT * FROM {self.collections} WHERE set_code = ? COLLATE NOCASE ORDER BY id LIMIT 1",
            (set_code,),
        )
        return self._row_to_collection(row) if row else None

    async def list_collections(self) -> list[CollectionWithStats]:
        """All collections with their live membership count (value left at 0)."""
        rows = await self._db._fetchall(
            f"""
            SELECT c.*, COUNT(cc.card_uuid) AS card_count
            FROM {self.collections} c
            LEFT JOIN {self.memberships} cc ON cc.collection_id = c.id
            GROUP BY c.id
            ORDER BY c.updated_at DESC, c.id DESC
            """
        )
        return [
            CollectionWithStats(**self._row_to_collection(row).model_dump(), card_count=row["card_count"])
            for row in rows
        ]

    async def list_set_collections(self) -> list[Collection]:
        """Collections auto-created per set."""
        rows = await self._db._fetchall(
            f"""
            SELECT * FROM {self.collections}
            WHERE set_code IS NOT NULL OR name LIKE ?
            ORDER BY name
            """,
            (self.game.set_collection_name("%"),),
        )
        return [self._row_to_collection(row) for row in rows]

    async def update_collection(
        self,
        collection_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> bool:
        """Rename or re-describe a collection. Returns True if it exists."""
        updates: list[str] = []
        params: list[str | int] = []

        if name is not None:
            updates.append("name = ?")
            params.append(name)
        if description is not None:
            updates.append("description = ?")
            params.append(description)

        if not updates:
            return await self.get_collection(collection_id) is not None

        updates.append("updated_at = ?")
        params.append(self._now())
        params.append(collection_id)
        updated = await self._db._write(
            f"UPDATE {self.collections} SET {', '.join(updates)} WHERE id = ?", params
        )
        return updated > 0

    async def delete_collection(self, collection_id: int) -> bool:
        """Delete a collection and its membership rows. Returns True if it existed."""
        deleted = await self._db._write(
            f"DELETE FROM {self.collections} WHERE id = ?", (collection_id,)
        )
        return deleted > 0

    # ─────────────────────────────────────────────────────────────────────────
    # Membership
    # ─────────────────────────────────────────────────────────────────────────

    async def add_card(self, collection_id: int, card_uuid: str, quantity: int = 1) -> int:
        """Add a card to a collection, incrementing the quantity if present.

        Membership and the collection's updated_at change in one transaction.

        Returns:
            The card's quantity in the collection after the add.

        Raises:
            ConstraintViolationError: If the collection (or, where the catalog
                is local, the card) does not exist.
        """
        async with self._db.transaction() as conn:
            return await self.add_card_in(conn, collection_id, card_uuid, quantity)

    async def add_card_in(
        self,
        conn: aiosqlite.Connection,
        collection_id: int,
        card_uuid: str,
        quantity: int = 1,
    ) -> int:
        """add_card() inside a transaction the caller already holds."""
        if quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {quantity}")
        now = self._now()
        await conn.execute(
            f"""
            INSERT INTO {self.memberships} (collection_id, card_uuid, quantity, added_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (collection_id, card_uuid)
            DO UPDATE SET quantity = quantity + excluded.quantity
            """,
            (collection_id, card_uuid, quantity, now),
        )
        await conn.execute(
            f"UPDATE {self.collections} SET updated_at = ? WHERE id = ?",
            (now, collection_id),
        )
        async with conn.execute(
            f"SELECT quantity FROM {self.memberships} WHERE collection_id = ? AND card_uuid = ?",
            (collection_id, card_uuid),
        ) as cursor:
            row = await cursor.fetchone()
        return row["quantity"] if row else 0

    async def remove_card(self, collection_id: int, card_uuid: str) -> bool:
        """Remove a card entirely from a collection. Returns True if it was present."""
        async with self._db.transaction() as conn:
            async with conn.execute(
                f"DELETE FROM {self.memberships} WHERE collection_id = ? AND card_uuid = ?",
                (collection_id, card_uuid),
            ) as cursor:
                removed = cursor.rowcount > 0
            if removed:
                await conn.execute(
                    f"UPDATE {self.collections} SET updated_at = ? WHERE id = ?",
                    (self._now(), collection_id),
                )
        return removed

    async def set_quantity(self, collection_id: int, card_uuid: str, quantity: int) -> None:
        """Set the quantity of a card. If quantity is 0, removes the card."""
        if quantity <= 0:
            await self.remove_card(collection_id, card_uuid)
            return

        async with self._db.transaction() as conn:
            await conn.execute(
                f"""
                UPDATE {self.memberships} SET quantity = ?
                WHERE collection_id = ? AND card_uuid = ?
                """,
                (quantity, collection_id, card_uuid),
            )
            await conn.execute(
                f"UPDATE {self.collections} SET updated_at = ? WHERE id = ?",
                (self._now(), collection_id),
            )

    async def get_membership(self, collection_id: int, card_uuid: str) -> Membership | None:
        row = await self._db._fetchone(
            f"SELECT * FROM {self.memberships} WHERE collection_id = ? AND card_uuid = ?",
            (collection_id, card_uuid),
        )
        return self._row_to_membership(row) if row else None

    async def get_memberships(self, collection_id: int) -> list[Membership]:
        """Membership rows of a collection, most recently added first."""
        rows = await self._db._fetchall(
            f"""
            SELECT * FROM {self.memberships}
            WHERE collection_id = ?
            ORDER BY added_at DESC, card_uuid
            """,
            (collection_id,),
        )
        return [self._row_to_membership(row) for row in rows]

    async def get_card_uuids(self, collection_id: int) -> list[str]:
        rows = await self._db._fetchall(
            f"SELECT card_uuid FROM {self.memberships} WHERE collection_id = ?",
            (collection_id,),
        )
        return [row["card_uuid"] for row in rows]

    async def count_cards(self, collection_id: int) -> int:
        """Number of distinct cards in a collection."""
        row = await self._db._fetchone(
            f"SELECT COUNT(*) AS count FROM {self.memberships} WHERE collection_id = ?",
            (collection_id,),
        )
        return row["count"] if row else 0

    async def is_collected(self, card_uuid: str) -> bool:
        """Whether the card is in any collection."""
        row = await self._db._fetchone(
            f"SELECT 1 FROM {self.memberships} WHERE card_uuid = ? LIMIT 1", (card_uuid,)
        )
        return row is not None

    @staticmethod
    def _row_to_collection(row: aiosqlite.Row) -> Collection:
        return Collection(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            set_code=row["set_code"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_membership(row: aiosqlite.Row) -> Membership:
        return Membership(
            collection_id=row["collection_id"],
            card_uuid=row["card_uuid"],
            quantity=row["quantity"],
            added_at=datetime.fromisoformat(row["added_at"]),
        )
