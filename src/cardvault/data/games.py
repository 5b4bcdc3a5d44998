"""Per-game capabilities shared by the collection stores.

The collection and membership logic is identical for every supported game; what
differs is where the tables live, how a set collection is named and how a card's
price is looked up remotely. Those differences are captured by a CardGame.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .models import SET_COLLECTION_PREFIX, CardRecord, LorcanaCard

_SIDE_SUFFIX = re.compile(r"^(\d+)[a-z]$")


@dataclass(frozen=True)
class CardGame:
    """Capabilities of a card game used by the generic collection store."""

    key: str
    table_prefix: str = ""
    # "table(column)" of the local card catalog, when it lives in the same store
    card_reference: str | None = None

    @property
    def collections_table(self) -> str:
        return f"{self.table_prefix}collections"

    @property
    def membership_table(self) -> str:
        return f"{self.table_prefix}collection_cards"

    def set_collection_name(self, set_name: str) -> str:
        return f"{SET_COLLECTION_PREFIX}{set_name}"

    def set_collection_description(self, set_code: str, set_name: str) -> str:
        return f"Collection for {set_name} ({set_code})"

    def collector_key(self, collector_number: str | None) -> str | None:
        """Key under which printings count as the same logical card."""
        return collector_number


@dataclass(frozen=True)
class MagicGame(CardGame):
    """Magic: The Gathering.

    Card ids are catalog uuids resolved by (name, set code); prices are quoted by
    Scryfall per exact name and set.
    """

    key: str = "mtg"

    def collector_key(self, collector_number: str | None) -> str | None:
        # Some catalogs number the faces of a multi-faced card "12a"/"12b".
        # Both faces count as one card; the side-'a' preference is an assumption.
        if collector_number is None:
            return None
        match = _SIDE_SUFFIX.match(collector_number)
        return match.group(1) if match else collector_number

    def price_query(self, card: CardRecord) -> dict[str, str]:
        params = {"exact": card.name}
        if card.set_code:
            params["set"] = card.set_code.lower()
        return params


@dataclass(frozen=True)
class LorcanaGame(CardGame):
    """Disney Lorcana.

    Card ids are the bulk API's Unique_ID; prices come from Lorcast searched by
    base name, version, set number and rarity.
    """

    key: str = "lorcana"
    table_prefix: str = "lorcana_"
    card_reference: str | None = "lorcana_cards(Unique_ID)"

    def price_query(self, card: LorcanaCard) -> str:
        rarity = (card.rarity or "").replace(" ", "_", 1).replace("_R", "_r", 1)
        parts = [f'name:"{card.base_name}"']
        if card.version:
            parts.append(f'version:"{card.version}"')
        if card.set_num:
            parts.append(f"set:{card.set_num}")
        if rarity:
            parts.append(f"rarity:{rarity}")
        return " ".join(parts)


MTG = MagicGame()
LORCANA = LorcanaGame()
