"""Daily import of the bulk price file into the reference store."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterator, Mapping
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

import ijson

from ..data.models import CardPrices, VendorQuote
from ..exceptions import DownloadFailedError, StoreError
from .downloader import DataDownloader

if TYPE_CHECKING:
    from ..config import Settings
    from ..data.database.reference import ReferenceDatabase

logger = logging.getLogger(__name__)

LAST_DOWNLOAD_KEY = "last_price_download"

# (market, vendor) paths in the price file; cardmarket quotes EUR
_VENDOR_PATHS: tuple[tuple[str, str], ...] = (
    ("paper", "tcgplayer"),
    ("paper", "cardmarket"),
    ("paper", "cardkingdom"),
    ("paper", "cardsphere"),
    ("mtgo", "cardhoarder"),
)
_EUR_VENDORS = frozenset({"cardmarket"})
EUR_TO_USD = 1.1


def _latest(series: Any) -> float:
    """Price at the latest date of a {date: price} series (0 if none)."""
    if not isinstance(series, Mapping) or not series:
        return 0.0
    value = series[max(series)]
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


def parse_card_prices(entry: Mapping[str, Any]) -> CardPrices | None:
    """Turn one card's entry from the price file into CardPrices.

    Each vendor's retail normal and foil prices are taken at their latest
    date. Returns None when no vendor quotes a price.
    """
    vendors: dict[str, VendorQuote] = {}
    for market, vendor in _VENDOR_PATHS:
        retail = ((entry.get(market) or {}).get(vendor) or {}).get("retail") or {}
        normal = _latest(retail.get("normal"))
        foil = _latest(retail.get("foil"))
        if vendor in _EUR_VENDORS:
            normal = round(normal * EUR_TO_USD, 2)
            foil = round(foil * EUR_TO_USD, 2)
        if normal or foil:
            vendors[vendor] = VendorQuote(normal=normal, foil=foil)

    if not vendors:
        return None
    return CardPrices.from_vendors(vendors)


def iter_price_file(path: Path) -> Iterator[tuple[str, CardPrices]]:
    """Stream (uuid, prices) pairs from the price file without loading it whole."""
    with path.open("rb") as f:
        for uuid, entry in ijson.kvitems(f, "data", use_float=True):
            if not isinstance(entry, Mapping):
                continue
            prices = parse_card_prices(entry)
            if prices is not None:
                yield uuid, prices


class PriceImporter:
    """Downloads today's price file at most once a day and records it."""

    def __init__(
        self,
        reference: ReferenceDatabase,
        settings: Settings,
        downloader: DataDownloader | None = None,
    ):
        self.reference = reference
        self.settings = settings
        self.downloader = downloader or DataDownloader(user_agent=settings.user_agent)

    async def needs_refresh(self, today: date | None = None) -> bool:
        today = today or self.reference.prices.today()
        last = await self.reference.get_setting(LAST_DOWNLOAD_KEY)
        return last != today.isoformat()

    async def refresh(self, force: bool = False) -> int:
        """Download and import today's prices.

        Skipped (returning 0) when prices were already downloaded today, unless
        forced. The download date is stored only after a successful import.

        Raises:
            DownloadFailedError: If the file could not be fetched or is empty.
            StoreError: If recording fails.
        """
        today = self.reference.prices.today()
        if not force and not await self.needs_refresh(today):
            logger.info("Prices already downloaded today, skipping")
            return 0

        self.settings.download_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.settings.download_dir) as tmpdir:
            json_path = await self.downloader.download_price_file(
                self.settings.price_data_url, Path(tmpdir)
            )
            count = await self.import_file(json_path)

        if count == 0:
            raise DownloadFailedError(self.settings.price_data_url, "price file has no prices")

        await self.reference.set_setting(LAST_DOWNLOAD_KEY, today.isoformat())
        await self.reference.clear_caches()
        return count

    async def import_file(self, path: Path) -> int:
        """Record every priced card of a price file. Returns the number of cards."""
        engine = self.reference.prices
        batch: dict[str, CardPrices] = {}
        total = 0
        try:
            for uuid, prices in iter_price_file(path):
                batch[uuid] = prices
                if len(batch) >= engine.batch_size:
                    await engine.record_prices(batch)
                    total += len(batch)
                    batch = {}
            if batch:
                await engine.record_prices(batch)
                total += len(batch)
        except ijson.JSONError as e:
            raise StoreError(f"Malformed price file {path}: {e}") from e

        logger.info("Imported prices for %d cards from %s", total, path.name)
        return total
