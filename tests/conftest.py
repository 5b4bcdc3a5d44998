"""Pytest fixtures for cardvault tests."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from cardvault.config import Settings
from cardvault.data.database import ApplicationDatabase, ReferenceDatabase

SETS: list[tuple[Any, ...]] = [
    ("LEA", "Limited Edition Alpha", "1993-08-05", "core", 295),
    ("LEB", "Limited Edition Beta", "1993-10-04", "core", 302),
    ("ISD", "Innistrad", "2011-09-30", "expansion", 264),
]

# uuid, name, setCode, number, side, rarity, type, text, manaCost, layout, scryfallId
CARDS: list[tuple[Any, ...]] = [
    ("lea-black-lotus", "Black Lotus", "LEA", "232", None, "rare", "Artifact",
     "{T}, Sacrifice Black Lotus: Add three mana of any one color.", "{0}", "normal",
     "bd8fa327-dd41-4737-8f19-2cf5eb1f7cdd"),
    ("lea-lightning-bolt", "Lightning Bolt", "LEA", "161", None, "common", "Instant",
     "Lightning Bolt deals 3 damage to any target.", "{R}", "normal",
     "ce711943-c1a1-43a0-8b89-8d169cfb8e06"),
    ("lea-ancestral-recall", "Ancestral Recall", "LEA", "48", None, "rare", "Instant",
     "Target player draws three cards.", "{U}", "normal",
     "2398892d-28e6-4d44-a0d0-86f5b0e1d2cd"),
    ("leb-black-lotus", "Black Lotus", "LEB", "233", None, "rare", "Artifact",
     "{T}, Sacrifice Black Lotus: Add three mana of any one color.", "{0}", "normal",
     "4a2e428c-dd25-484c-bbc8-2d6ce10ef42c"),
    ("isd-delver-a", "Delver of Secrets // Insectile Aberration", "ISD", "51", "a", "common",
     "Creature — Human Wizard", "At the beginning of your upkeep, look at the top card.", "{U}",
     "transform", "11bf83bb-c95b-4b4f-9a56-ce7a1816307a"),
    ("isd-delver-b", "Delver of Secrets // Insectile Aberration", "ISD", "51", "b", "common",
     "Creature — Human Insect", "Flying", None, "transform",
     "11bf83bb-c95b-4b4f-9a56-ce7a1816307a"),
    ("isd-brimstone-volley", "Brimstone Volley", "ISD", "136", None, "common", "Instant",
     "Brimstone Volley deals 3 damage to any target.", "{2}{R}", "normal",
     "a0a9bd8c-5f8e-4fe5-9a6d-8f8a1a2c9e3e"),
]


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def build_reference_file(
    path: Path,
    cards: Sequence[tuple[Any, ...]] = CARDS,
    sets: Sequence[tuple[Any, ...]] = SETS,
) -> Path:
    """Write a small MTGJSON-shaped catalog file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            """
            CREATE TABLE cards (
                uuid TEXT PRIMARY KEY, name TEXT, setCode TEXT, number TEXT, side TEXT,
                rarity TEXT, type TEXT, text TEXT, manaCost TEXT, layout TEXT, scryfallId TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE sets (
                code TEXT PRIMARY KEY, name TEXT, releaseDate TEXT, type TEXT, totalSetSize INTEGER
            )
            """
        )
        conn.executemany("INSERT INTO cards VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", cards)
        conn.executemany("INSERT INTO sets VALUES (?, ?, ?, ?, ?)", sets)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every file and URL at the test sandbox."""
    return Settings(
        _env_file=None,
        reference_db_path=tmp_path / "reference.sqlite",
        app_db_path=tmp_path / "app_data.sqlite",
        lorcana_db_path=tmp_path / "lorcana.sqlite",
        download_dir=tmp_path / "downloads",
        reference_db_url="https://data.example.test/AllPrintings.sqlite",
        price_data_url="https://data.example.test/AllPricesToday.json.zip",
        scryfall_api_base="https://api.scryfall.test",
        lorcana_bulk_url="https://lorcana.example.test/bulk/cards",
        lorcast_search_url="https://lorcast.example.test/v0/cards/search",
        min_request_interval_ms=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_reference() -> Callable[..., Path]:
    """Builder for catalog files: make_reference(path, cards=..., sets=...)."""
    return build_reference_file


@pytest.fixture
def reference_file(settings: Settings) -> Path:
    return build_reference_file(settings.reference_db_path)


@pytest.fixture
async def reference_db(
    settings: Settings, reference_file: Path
) -> AsyncGenerator[ReferenceDatabase, None]:
    """Open reference store over the test catalog."""
    db = ReferenceDatabase(reference_file, settings=settings)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def app_db(settings: Settings, clock: FakeClock) -> AsyncGenerator[ApplicationDatabase, None]:
    """Empty application store driven by the fake clock."""
    db = ApplicationDatabase(settings.app_db_path, settings=settings, clock=clock)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def alpha_reference_file(settings: Settings) -> Path:
    """Catalog holding only the Alpha printings."""
    return build_reference_file(settings.reference_db_path, cards=[c for c in CARDS if c[2] == "LEA"])
