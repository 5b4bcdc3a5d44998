"""Price history engine: current prices plus bounded daily snapshots.

The engine writes two tables on whichever store hosts it:

- prices: the single latest known price per card uuid
- price_history: at most one row per (uuid, calendar day), kept for a fixed
  retention window

Both carry the headline normal/foil price and the per-vendor breakdown as
columns. All date arithmetic in one record_prices() call uses a single reading
of the engine clock, so a batch that straddles midnight is still treated as one
day's snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from ...exceptions import StoreError
from ..models import VENDORS, CardPrices, PriceHistoryStats, PriceSnapshot, VendorQuote

if TYPE_CHECKING:
    import aiosqlite

    from .base import BaseDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETENTION_DAYS = 30
DEFAULT_BATCH_SIZE = 1000

# SQLite's default host parameter limit is 999 on older builds
_IN_CHUNK = 500

VENDOR_COLUMNS: tuple[str, ...] = tuple(f"{v}_{kind}" for v in VENDORS for kind in ("normal", "foil"))

PRICE_COLUMNS = ("normal_price", "foil_price", *VENDOR_COLUMNS)
_PRICE_COLUMN_DEFS = ",\n    ".join(f"{col} REAL NOT NULL DEFAULT 0" for col in PRICE_COLUMNS)

PRICE_SCHEMA_STATEMENTS: tuple[str, ...] = (
    f"""
CREATE TABLE IF NOT EXISTS prices (
    uuid TEXT PRIMARY KEY,
    {_PRICE_COLUMN_DEFS},
    last_updated TEXT NOT NULL
)
""",
    f"""
CREATE TABLE IF NOT EXISTS price_history (
    uuid TEXT NOT NULL,
    date TEXT NOT NULL,
    {_PRICE_COLUMN_DEFS},
    PRIMARY KEY (uuid, date)
)
""",
    "CREATE INDEX IF NOT EXISTS idx_price_history_date ON price_history(date)",
)

_UPSERT_CURRENT = f"""
INSERT INTO prices (uuid, {", ".join(PRICE_COLUMNS)}, last_updated)
VALUES (?, {", ".join("?" for _ in PRICE_COLUMNS)}, ?)
ON CONFLICT (uuid) DO UPDATE SET
    {", ".join(f"{col} = excluded.{col}" for col in PRICE_COLUMNS)},
    last_updated = excluded.last_updated
"""

_INSERT_SNAPSHOT = f"""
INSERT INTO price_history (uuid, date, {", ".join(PRICE_COLUMNS)})
VALUES (?, ?, {", ".join("?" for _ in PRICE_COLUMNS)})
ON CONFLICT (uuid, date) DO NOTHING
"""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _price_values(prices: CardPrices) -> list[float]:
    values = [prices.normal or 0.0, prices.foil or 0.0]
    for vendor in VENDORS:
        quote = prices.vendors.get(vendor)
        values.append(quote.normal if quote else 0.0)
        values.append(quote.foil if quote else 0.0)
    return values


def _vendors_from_row(row: Mapping[str, Any]) -> dict[str, VendorQuote]:
    vendors: dict[str, VendorQuote] = {}
    for vendor in VENDORS:
        normal = row[f"{vendor}_normal"] or 0.0
        foil = row[f"{vendor}_foil"] or 0.0
        if normal or foil:
            vendors[vendor] = VendorQuote(normal=normal, foil=foil)
    return vendors


def prices_from_row(row: Mapping[str, Any]) -> CardPrices:
    """Convert a prices/price_history row into CardPrices."""
    return CardPrices(
        normal=row["normal_price"],
        foil=row["foil_price"],
        vendors=_vendors_from_row(row),
    )


def _percent(change: float, base: float) -> float:
    if not base:
        return 0.0
    return round(change / base * 100, 2)


class PriceHistoryEngine:
    """Owns the current-price and daily snapshot tables of one store."""

    def __init__(
        self,
        db: BaseDatabase,
        clock: Callable[[], datetime] | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """Initialize the engine.

        Args:
            db: Store hosting the prices and price_history tables.
            clock: Source of "now"; read once per record_prices() call.
            retention_days: Snapshots older than this many days are purged.
            batch_size: Rows written per transaction.
        """
        self._db = db
        self._clock = clock or _utc_now
        self.retention_days = retention_days
        self.batch_size = batch_size
        self._schema_ready = False

    async def ensure_schema(self) -> None:
        """Create the price tables on the host store if needed."""
        if self._schema_ready:
            return
        async with self._db.transaction() as conn:
            for statement in PRICE_SCHEMA_STATEMENTS:
                await conn.execute(statement)
        self._schema_ready = True

    def today(self) -> date:
        return self._clock().date()

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    async def record_prices(self, batch: Mapping[str, CardPrices]) -> None:
        """Record a batch of prices keyed by card uuid.

        Purges expired snapshots, then writes current prices. A snapshot row per
        card is added only if none of the batch's cards has a snapshot dated
        today; re-running the same day refreshes current prices only.

        Raises:
            StoreError: If the writes fail. Chunks committed before the failure
                stay committed.
        """
        if not batch:
            return

        await self.ensure_schema()

        now = self._clock()
        today = now.date().isoformat()
        timestamp = now.isoformat()

        purged = await self.purge_expired(now.date())
        if purged:
            logger.info("Purged %d price snapshots older than %d days", purged, self.retention_days)

        items = list(batch.items())
        write_snapshots = not await self._has_snapshot_on(today, [uuid for uuid, _ in items])

        for chunk in _chunks(items, self.batch_size):
            async with self._db.transaction() as conn:
                await conn.executemany(
                    _UPSERT_CURRENT,
                    [(uuid, *_price_values(prices), timestamp) for uuid, prices in chunk],
                )
                if write_snapshots:
                    await conn.executemany(
                        _INSERT_SNAPSHOT,
                        [(uuid, today, *_price_values(prices)) for uuid, prices in chunk],
                    )

        logger.info(
            "Recorded prices for %d cards (%s)",
            len(items),
            "with daily snapshot" if write_snapshots else "current prices only",
        )

    async def purge_expired(self, today: date | None = None) -> int:
        """Delete snapshots older than the retention window. Returns rows removed."""
        await self.ensure_schema()
        today = today or self.today()
        cutoff = (today - timedelta(days=self.retention_days)).isoformat()
        return await self._db._write("DELETE FROM price_history WHERE date < ?", (cutoff,))

    async def _has_snapshot_on(self, day: str, uuids: Sequence[str]) -> bool:
        for chunk in _chunks(uuids, _IN_CHUNK):
            placeholders = ",".join("?" * len(chunk))
            row = await self._db._fetchone(
                f"SELECT 1 FROM price_history WHERE date = ? AND uuid IN ({placeholders}) LIMIT 1",
                (day, *chunk),
            )
            if row is not None:
                return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    async def get_current_price(self, uuid: str) -> CardPrices | None:
        """Latest known price for a card, or None."""
        await self.ensure_schema()
        row = await self._db._fetchone("SELECT * FROM prices WHERE uuid = ?", (uuid,))
        return prices_from_row(row) if row else None

    async def get_current_prices(self, uuids: Sequence[str]) -> dict[str, CardPrices]:
        """Latest known prices for several cards (missing uuids are omitted)."""
        await self.ensure_schema()
        result: dict[str, CardPrices] = {}
        for chunk in _chunks(list(uuids), _IN_CHUNK):
            placeholders = ",".join("?" * len(chunk))
            rows = await self._db._fetchall(
                f"SELECT * FROM prices WHERE uuid IN ({placeholders})", tuple(chunk)
            )
            for row in rows:
                result[row["uuid"]] = prices_from_row(row)
        return result

    async def get_price_history(self, uuid: str) -> list[PriceSnapshot]:
        """All retained snapshots for a card, oldest first."""
        await self.ensure_schema()
        rows = await self._db._fetchall(
            "SELECT * FROM price_history WHERE uuid = ? ORDER BY date ASC", (uuid,)
        )
        return [self._row_to_snapshot(row) for row in rows]

    async def get_price_history_stats(self, uuid: str) -> PriceHistoryStats:
        """Max/min/avg and 7/30-day changes of the normal price.

        A change needs enough snapshots to look back (8 for 7 days, 2 for the
        retention window); otherwise it is 0. Storage failures yield all-zero stats.
        """
        try:
            history = await self.get_price_history(uuid)
        except StoreError:
            logger.exception("Failed to load price history for %s", uuid)
            return PriceHistoryStats()

        prices = [snapshot.normal for snapshot in history]
        if not prices:
            return PriceHistoryStats()

        latest = prices[-1]
        change_7d = 0.0
        change_7d_percent = 0.0
        if len(prices) >= 8:
            change_7d = latest - prices[-8]
            change_7d_percent = _percent(change_7d, prices[-8])

        change_30d = 0.0
        change_30d_percent = 0.0
        if len(prices) >= 2:
            change_30d = latest - prices[0]
            change_30d_percent = _percent(change_30d, prices[0])

        return PriceHistoryStats(
            snapshot_count=len(prices),
            max_price=max(prices),
            min_price=min(prices),
            avg_price=round(sum(prices) / len(prices), 2),
            change_7d=round(change_7d, 2),
            change_7d_percent=change_7d_percent,
            change_30d=round(change_30d, 2),
            change_30d_percent=change_30d_percent,
        )

    async def count_snapshots(self, day: str | None = None) -> int:
        """Number of stored snapshot rows, optionally for one day."""
        await self.ensure_schema()
        if day is None:
            row = await self._db._fetchone("SELECT COUNT(*) AS count FROM price_history")
        else:
            row = await self._db._fetchone(
                "SELECT COUNT(*) AS count FROM price_history WHERE date = ?", (day,)
            )
        return row["count"] if row else 0

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> PriceSnapshot:
        return PriceSnapshot(
            date=row["date"],
            normal=row["normal_price"],
            foil=row["foil_price"],
            vendors=_vendors_from_row(row),
        )
