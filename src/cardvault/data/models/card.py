"""Card-related models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Vendors tracked in the per-vendor price breakdown, in headline-price priority order
VENDORS: tuple[str, ...] = ("tcgplayer", "cardmarket", "cardkingdom", "cardsphere", "cardhoarder")


class VendorQuote(BaseModel):
    """Normal and foil retail price from a single vendor (USD)."""

    normal: float = Field(default=0.0, ge=0)
    foil: float = Field(default=0.0, ge=0)


class CardPrices(BaseModel):
    """Price snapshot for a card: headline prices plus per-vendor breakdown."""

    normal: float | None = Field(default=None, ge=0)
    foil: float | None = Field(default=None, ge=0)
    vendors: dict[str, VendorQuote] = Field(default_factory=dict)

    @classmethod
    def from_vendors(cls, vendors: dict[str, VendorQuote]) -> CardPrices:
        """Build prices whose headline values are the first non-zero vendor quote."""
        normal = next((vendors[v].normal for v in VENDORS if v in vendors and vendors[v].normal), 0.0)
        foil = next((vendors[v].foil for v in VENDORS if v in vendors and vendors[v].foil), 0.0)
        return cls(normal=normal, foil=foil, vendors=vendors)

    @property
    def has_price(self) -> bool:
        return bool(self.normal or self.foil)


class ImageUris(BaseModel):
    """Image URLs for a card in various sizes."""

    small: str | None = None
    normal: str | None = None
    large: str | None = None
    art_crop: str | None = None


class CardRecord(BaseModel):
    """Canonical representation of a single physical printing."""

    model_config = ConfigDict(populate_by_name=True)

    uuid: str | None = None
    name: str

    # Set info
    set_code: str | None = Field(default=None, alias="setCode")
    set_name: str | None = Field(default=None, alias="setName")
    collector_number: str | None = Field(default=None, alias="collectorNumber")
    rarity: str | None = None

    # Card text
    type_line: str | None = Field(default=None, alias="type")
    text: str | None = None
    mana_cost: str | None = Field(default=None, alias="manaCost")

    prices: CardPrices = Field(default_factory=CardPrices)

    image_url: str | None = Field(default=None, alias="imageUrl")
    image_uris: ImageUris | None = Field(default=None, alias="imageUris")

    # External ids (Scryfall id for MTG)
    scryfall_id: str | None = Field(default=None, alias="scryfallId")

    @property
    def normal_price(self) -> float:
        """Normal price, treating a missing price as zero."""
        return self.prices.normal or 0.0

    def to_summary(self) -> str:
        """Return a one-line summary of the card."""
        parts = [self.name]
        if self.set_code:
            number = f" #{self.collector_number}" if self.collector_number else ""
            parts.append(f" ({self.set_code}{number})")
        if self.prices.normal:
            parts.append(f" ${self.prices.normal:.2f}")
        return "".join(parts)


class SetInfo(BaseModel):
    """A card set from the reference catalog."""

    model_config = ConfigDict(populate_by_name=True)

    code: str
    name: str
    type: str | None = None
    release_date: str | None = Field(default=None, alias="releaseDate")
    total_set_size: int | None = Field(default=None, alias="totalSetSize", ge=0)
