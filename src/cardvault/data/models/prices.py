"""Price history models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from .card import VendorQuote


class PriceSnapshot(BaseModel):
    """Prices for one card on one calendar day."""

    date: str  # ISO date, YYYY-MM-DD
    normal: float = 0.0
    foil: float = 0.0
    vendors: dict[str, VendorQuote] = Field(default_factory=dict)


class PriceHistoryStats(BaseModel):
    """Statistics derived from a card's stored snapshots (normal price)."""

    snapshot_count: int = 0
    max_price: float = 0.0
    min_price: float = 0.0
    avg_price: float = 0.0
    change_7d: float = 0.0
    change_7d_percent: float = 0.0
    change_30d: float = 0.0
    change_30d_percent: float = 0.0
