"""Scan-related models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .card import CardRecord
from .lorcana import LorcanaCard


class ScanStatus(str, Enum):
    """Result of recording a scan."""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"


class ScanStage(str, Enum):
    """Furthest state a scan reached on its way into a collection."""

    SCANNED = "scanned"
    RESOLVED = "resolved"
    CACHED = "cached"
    RECORDED = "recorded"
    AUTO_FILED = "auto_filed"
    UNRESOLVED = "unresolved"


class ScanInput(BaseModel):
    """A detection emitted by the text-recognition pipeline.

    Either plain recognized text, or a structured result where main_name and
    subtype were split out of the text.
    """

    text: str
    main_name: str | None = None
    subtype: str | None = None
    timestamp_ms: int | None = None

    @property
    def lookup_name(self) -> str:
        """Name to resolve against the catalog."""
        return (self.main_name or self.text).strip()


class ScanOutcome(BaseModel):
    """What happened to a scan."""

    status: ScanStatus
    stage: ScanStage
    card: CardRecord | LorcanaCard | None = None
    history_id: int | None = None
    collection_id: int | None = None
    error: str | None = None


class ScanHistoryEntry(BaseModel):
    """A persisted scan with a denormalized snapshot of the card."""

    id: int
    card_uuid: str
    card_name: str
    card: CardRecord | None = None
    scanned_at_ms: int
    added_to_collection: bool | None = None
    collection_id: int | None = None
