"""Scryfall API client used as the network catalog and price source."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import httpx

from ..config import Settings, get_settings
from ..data.games import MTG
from ..data.models import CardPrices, CardRecord, ImageUris, VendorQuote

logger = logging.getLogger(__name__)

# Cardmarket quotes are in EUR
EUR_TO_USD = 1.1


def _price(value: Any) -> float:
    try:
        return float(value) if value else 0.0
    except (TypeError, ValueError):
        return 0.0


def prices_from_scryfall(prices: dict[str, Any] | None) -> CardPrices:
    """Convert a Scryfall "prices" object into CardPrices.

    Scryfall's USD prices come from TCGplayer and its EUR prices from Cardmarket.
    """
    prices = prices or {}
    vendors: dict[str, VendorQuote] = {}
    usd = _price(prices.get("usd"))
    usd_foil = _price(prices.get("usd_foil")) or _price(prices.get("usd_etched"))
    if usd or usd_foil:
        vendors["tcgplayer"] = VendorQuote(normal=usd, foil=usd_foil)
    eur = _price(prices.get("eur"))
    eur_foil = _price(prices.get("eur_foil"))
    if eur or eur_foil:
        vendors["cardmarket"] = VendorQuote(
            normal=round(eur * EUR_TO_USD, 2), foil=round(eur_foil * EUR_TO_USD, 2)
        )
    return CardPrices.from_vendors(vendors)


def card_from_scryfall(data: dict[str, Any]) -> CardRecord:
    """Convert a Scryfall card object into a CardRecord.

    The Scryfall id doubles as the record's uuid until the card is resolved
    against the reference catalog.
    """
    image_uris = data.get("image_uris")
    if image_uris is None and data.get("card_faces"):
        image_uris = data["card_faces"][0].get("image_uris")
    uris = ImageUris(**{k: image_uris.get(k) for k in ImageUris.model_fields}) if image_uris else None
    set_code = data.get("set")
    return CardRecord(
        uuid=data.get("id"),
        name=data["name"],
        set_code=set_code.upper() if set_code else None,
        set_name=data.get("set_name"),
        collector_number=data.get("collector_number"),
        rarity=data.get("rarity"),
        type_line=data.get("type_line"),
        text=data.get("oracle_text"),
        mana_cost=data.get("mana_cost"),
        prices=prices_from_scryfall(data.get("prices")),
        image_url=uris.normal if uris else None,
        image_uris=uris,
        scryfall_id=data.get("id"),
    )


class ScryfallSource:
    """Throttled, failure-tolerant Scryfall client.

    Requests are spaced at least min_request_interval_ms apart. Non-2xx
    responses, transport errors and unparseable bodies all mean "no data":
    lookups return None or an empty list and never raise.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._sleep = sleep
        self._min_interval = self._settings.min_request_interval_ms / 1000
        self._last_request: float | None = None
        self._throttle_lock = asyncio.Lock()

    async def __aenter__(self) -> ScryfallSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.scryfall_api_base,
                timeout=httpx.Timeout(self._settings.http_timeout_seconds),
                headers={"User-Agent": self._settings.user_agent, "Accept": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _throttle(self) -> None:
        async with self._throttle_lock:
            if self._last_request is not None:
                wait = self._min_interval - (self._clock() - self._last_request)
                if wait > 0:
                    await self._sleep(wait)
            self._last_request = self._clock()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        await self._throttle()
        client = self._get_client()
        url = f"{self._settings.scryfall_api_base.rstrip('/')}{path}"
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.warning("Scryfall request %s failed: %s", path, e)
            return None

        if response.status_code == 404:
            logger.debug("Scryfall: not found %s %s", path, params)
            return None
        if not response.is_success:
            logger.warning("Scryfall API error %d for %s", response.status_code, path)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Scryfall returned invalid JSON for %s", path)
            return None
        return data if isinstance(data, dict) else None

    async def get_card_by_name(self, name: str, set_code: str | None = None) -> CardRecord | None:
        """Look up a card by exact name, optionally in one set."""
        params = {"exact": name}
        if set_code:
            params["set"] = set_code.lower()
        data = await self._get("/cards/named", params)
        if not data or not data.get("name"):
            return None
        return card_from_scryfall(data)

    async def get_card_by_id(self, scryfall_id: str) -> CardRecord | None:
        data = await self._get(f"/cards/{scryfall_id}")
        if not data or not data.get("name"):
            return None
        return card_from_scryfall(data)

    async def search_cards(self, query: str, page: int = 1) -> list[CardRecord]:
        """Full-text Scryfall search. Returns one page of results."""
        data = await self._get("/cards/search", {"q": query, "page": page})
        if not data:
            return []
        return [card_from_scryfall(item) for item in data.get("data", []) if item.get("name")]

    async def get_card_prices(self, card: CardRecord) -> CardPrices | None:
        """Current prices for a printing, or None when no price is available."""
        data = await self._get("/cards/named", MTG.price_query(card))
        if not data:
            return None
        prices = prices_from_scryfall(data.get("prices"))
        return prices if prices.has_price else None
