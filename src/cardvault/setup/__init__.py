"""Reference catalog bootstrap and daily price import.

Handles downloading the card catalog, checking it is usable, and
importing the bulk price file into the price history.
"""

from .downloader import DataDownloader
from .manager import SetupManager, SetupPhase, SetupProgress
from .prices import PriceImporter, parse_card_prices

__all__ = [
    "DataDownloader",
    "PriceImporter",
    "SetupManager",
    "SetupPhase",
    "SetupProgress",
    "parse_card_prices",
]
