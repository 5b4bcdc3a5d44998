"""Collection-related models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .card import CardRecord

SET_COLLECTION_PREFIX = "Set: "


class Collection(BaseModel):
    """A named, user-created grouping of cards.

    Card count and value are never stored; see CollectionWithStats.
    """

    id: int
    name: str
    description: str | None = None
    set_code: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_set_collection(self) -> bool:
        return self.name.startswith(SET_COLLECTION_PREFIX)


class CollectionWithStats(Collection):
    """A collection with its derived card count and total value."""

    card_count: int = 0
    total_value: float = 0.0


class Membership(BaseModel):
    """A card's membership in a collection."""

    collection_id: int
    card_uuid: str
    quantity: int = Field(ge=1)
    added_at: datetime


class SetCompletion(BaseModel):
    """Completion statistics for a set."""

    set_code: str
    set_name: str | None = None
    collection_id: int | None = None
    total_cards: int = 0
    collected_cards: int = 0
    percentage: float = Field(default=0.0, ge=0, le=100)
    total_value: float = 0.0
    missing_cards: list[CardRecord] = Field(default_factory=list)
