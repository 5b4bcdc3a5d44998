"""Lorcana bulk card API and Lorcast price search."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from ..config import Settings, get_settings
from ..data.games import LORCANA
from ..data.models import CardPrices, LorcanaCard, VendorQuote
from ..exceptions import NetworkFailureError

logger = logging.getLogger(__name__)


def _price(value: Any) -> float:
    try:
        return float(value) if value else 0.0
    except (TypeError, ValueError):
        return 0.0


class LorcanaSource:
    """Client for the Lorcana card and price APIs."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> LorcanaSource:
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
            # Bulk card list is a few MB; allow a longer read
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self._settings.http_timeout_seconds, read=120.0),
                headers={"User-Agent": self._settings.user_agent},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def fetch_all_cards(self) -> list[dict[str, Any]]:
        """Download the full card list.

        Raises:
            NetworkFailureError: If the request fails or the body is not a list.
        """
        url = self._settings.lorcana_bulk_url
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise NetworkFailureError(f"Lorcana bulk download failed: {e}") from e
        except ValueError as e:
            raise NetworkFailureError(f"Lorcana bulk data is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise NetworkFailureError("Lorcana bulk data is not a list of cards")
        logger.info("Fetched %d Lorcana cards", len(data))
        return data

    async def get_card_price(self, card: LorcanaCard) -> CardPrices:
        """Search Lorcast for the card's price. Any failure yields empty prices."""
        if not card.name:
            return CardPrices()
        query = LORCANA.price_query(card)
        try:
            response = await self._get_client().get(
                self._settings.lorcast_search_url, params={"q": query}
            )
        except httpx.HTTPError as e:
            logger.warning("Lorcast price lookup for %r failed: %s", card.name, e)
            return CardPrices()

        if not response.is_success:
            logger.warning("Lorcast returned %d for %r", response.status_code, card.name)
            return CardPrices()
        try:
            data = response.json()
        except ValueError:
            logger.warning("Lorcast returned invalid JSON for %r", card.name)
            return CardPrices()

        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            logger.debug("No Lorcast results for %s", query)
            return CardPrices()

        prices = results[0].get("prices") or {}
        normal = _price(prices.get("regular")) or _price(prices.get("usd"))
        foil = _price(prices.get("foil")) or _price(prices.get("usd_foil"))
        if not normal and not foil:
            return CardPrices()
        return CardPrices.from_vendors({"tcgplayer": VendorQuote(normal=normal, foil=foil)})
