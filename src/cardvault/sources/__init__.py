"""Network catalog and price sources."""

from .lorcana import LorcanaSource
from .scryfall import ScryfallSource, card_from_scryfall, prices_from_scryfall

__all__ = [
    "LorcanaSource",
    "ScryfallSource",
    "card_from_scryfall",
    "prices_from_scryfall",
]
