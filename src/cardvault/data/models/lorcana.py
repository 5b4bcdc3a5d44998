"""Lorcana card model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LorcanaCard(BaseModel):
    """A Disney Lorcana card as served by the bulk card API."""

    model_config = ConfigDict(populate_by_name=True)

    unique_id: str | None = Field(default=None, alias="Unique_ID")
    name: str | None = Field(default=None, alias="Name")
    artist: str | None = Field(default=None, alias="Artist")
    body_text: str | None = Field(default=None, alias="Body_Text")
    card_num: int | None = Field(default=None, alias="Card_Num")
    classifications: str | None = Field(default=None, alias="Classifications")
    color: str | None = Field(default=None, alias="Color")
    cost: int | None = Field(default=None, alias="Cost")
    flavor_text: str | None = Field(default=None, alias="Flavor_Text")
    franchise: str | None = Field(default=None, alias="Franchise")
    image: str | None = Field(default=None, alias="Image")
    inkable: bool = Field(default=False, alias="Inkable")
    lore: int | None = Field(default=None, alias="Lore")
    rarity: str | None = Field(default=None, alias="Rarity")
    set_id: str | None = Field(default=None, alias="Set_ID")
    set_name: str | None = Field(default=None, alias="Set_Name")
    set_num: int | None = Field(default=None, alias="Set_Num")
    strength: int | None = Field(default=None, alias="Strength")
    type: str | None = Field(default=None, alias="Type")
    willpower: int | None = Field(default=None, alias="Willpower")

    price_usd: float | None = None
    price_usd_foil: float | None = None
    last_updated: str | None = None
    collected: bool = False

    @field_validator("classifications", mode="before")
    @classmethod
    def _join_classifications(cls, value: object) -> object:
        if isinstance(value, list):
            return ",".join(str(v) for v in value)
        return value

    @field_validator("price_usd", "price_usd_foil", mode="before")
    @classmethod
    def _blank_price_is_none(cls, value: object) -> object:
        if value == "":
            return None
        return value

    @property
    def base_name(self) -> str:
        """Name without the version suffix ("Elsa - Snow Queen" -> "Elsa")."""
        return (self.name or "").split("-")[0].strip()

    @property
    def version(self) -> str:
        """Version suffix of the name, or an empty string."""
        parts = (self.name or "").split("-")
        return " ".join(p.strip() for p in parts[1:])
