"""From a recognized text to a card filed in its set collection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..data.models import CardRecord, ScanInput, ScanOutcome, ScanStage, ScanStatus
from ..exceptions import CardVaultError
from .deduplicator import ScanDeduplicator, ScanVerdict

if TYPE_CHECKING:
    from ..data.database.app import ApplicationDatabase
    from ..data.database.lorcana import LorcanaDatabase
    from ..data.database.reconciler import CacheReconciler
    from ..data.database.reference import ReferenceDatabase
    from ..sources import ScryfallSource

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_GUARD = 5


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def lorcana_lookup_name(scan: ScanInput) -> str:
    """Lorcana cards are named "<main> - <subtype>"."""
    if scan.main_name and scan.subtype:
        return f"{scan.main_name.strip()} - {scan.subtype.strip()}"
    return scan.lookup_name


class ScanPipeline:
    """Runs scans through Scanned -> Resolved -> Cached -> Recorded -> AutoFiled.

    Every step after resolution writes independently. When a step fails, the
    earlier writes stay and the outcome reports the furthest stage reached
    together with the error.
    """

    def __init__(
        self,
        app: ApplicationDatabase,
        reconciler: CacheReconciler,
        reference: ReferenceDatabase | None = None,
        source: ScryfallSource | None = None,
        deduplicator: ScanDeduplicator | None = None,
        history_guard: int = DEFAULT_HISTORY_GUARD,
        clock: Callable[[], int] = _wall_clock_ms,
    ):
        self.app = app
        self.reconciler = reconciler
        self.reference = reference
        self.source = source
        self.deduplicator = deduplicator or ScanDeduplicator()
        self.history_guard = history_guard
        self._clock = clock

    async def record_scan(self, scan: ScanInput) -> ScanOutcome:
        """Record one detection from the recognizer.

        Returns:
            DUPLICATE for repeats within the cooldown, UNRESOLVED for input too
            short to look up, without a catalog match or whose lookup failed,
            and ACCEPTED otherwise.
        """
        now_ms = scan.timestamp_ms if scan.timestamp_ms is not None else self._clock()

        verdict = self.deduplicator.check(scan.text, now_ms)
        if verdict is ScanVerdict.TOO_SHORT:
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED)
        if verdict is ScanVerdict.DUPLICATE:
            return ScanOutcome(status=ScanStatus.DUPLICATE, stage=ScanStage.SCANNED)

        try:
            card = await self._resolve(scan.lookup_name)
        except CardVaultError as e:
            logger.warning("Lookup of scan %r failed: %s", scan.text, e.message)
            self.deduplicator.clear_last()
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED, error=e.message)

        if card is None:
            logger.debug("No catalog match for scan %r", scan.text)
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED)

        if await self._recently_recorded(card.name, now_ms):
            return ScanOutcome(status=ScanStatus.DUPLICATE, stage=ScanStage.RESOLVED, card=card)

        return await self._file(card, now_ms)

    async def _resolve(self, name: str) -> CardRecord | None:
        if self.reference is not None:
            printings = await self.reference.find_printings(name, limit=1)
            return printings[0] if printings else None
        if self.source is not None:
            return await self.source.get_card_by_name(name)
        return None

    async def _recently_recorded(self, name: str, now_ms: int) -> bool:
        """Same-name scan persisted within the cooldown by a concurrent frame."""
        cooldown = self.deduplicator.cooldown_ms
        for entry in await self.app.get_recent_scans(self.history_guard):
            if entry.card_name.lower() == name.lower() and abs(now_ms - entry.scanned_at_ms) < cooldown:
                logger.debug("Scan of %s already recorded %d ms ago", name, now_ms - entry.scanned_at_ms)
                return True
        return False

    async def _file(self, card: CardRecord, now_ms: int) -> ScanOutcome:
        outcome = ScanOutcome(status=ScanStatus.ACCEPTED, stage=ScanStage.RESOLVED, card=card)
        try:
            card = await self.reconciler.add_to_cache(card)
            outcome = outcome.model_copy(update={"stage": ScanStage.CACHED, "card": card})

            history_id = await self.app.add_scan_history(card, now_ms)
            outcome = outcome.model_copy(update={"stage": ScanStage.RECORDED, "history_id": history_id})

            if not card.set_code or card.uuid is None:
                return outcome
            collection = await self.app.get_or_create_set_collection(card.set_code, card.set_name)
            await self.app.add_card_to_collection(card.uuid, collection.id)
            await self.app.mark_scan_filed(history_id, collection.id)
            return outcome.model_copy(
                update={"stage": ScanStage.AUTO_FILED, "collection_id": collection.id}
            )
        except (CardVaultError, ValueError) as e:
            message = e.message if isinstance(e, CardVaultError) else str(e)
            logger.exception("Scan of %s stopped at %s", card.name, outcome.stage.value)
            return outcome.model_copy(update={"error": message})


class LorcanaScanPipeline:
    """Resolves Lorcana scans and files them in their set collection."""

    def __init__(
        self,
        store: LorcanaDatabase,
        deduplicator: ScanDeduplicator | None = None,
        clock: Callable[[], int] = _wall_clock_ms,
    ):
        self.store = store
        self.deduplicator = deduplicator or ScanDeduplicator()
        self._clock = clock

    async def record_scan(self, scan: ScanInput) -> ScanOutcome:
        now_ms = scan.timestamp_ms if scan.timestamp_ms is not None else self._clock()
        verdict = self.deduplicator.check(lorcana_lookup_name(scan), now_ms)
        if verdict is ScanVerdict.TOO_SHORT:
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED)
        if verdict is ScanVerdict.DUPLICATE:
            return ScanOutcome(status=ScanStatus.DUPLICATE, stage=ScanStage.SCANNED)

        try:
            matches = await self.store.search_cards(lorcana_lookup_name(scan), limit=1)
        except CardVaultError as e:
            self.deduplicator.clear_last()
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED, error=e.message)
        if not matches or matches[0].unique_id is None:
            return ScanOutcome(status=ScanStatus.UNRESOLVED, stage=ScanStage.UNRESOLVED)

        card = matches[0]
        outcome = ScanOutcome(status=ScanStatus.ACCEPTED, stage=ScanStage.RESOLVED, card=card)
        if not card.set_id or not card.set_name:
            return outcome
        try:
            collection = await self.store.get_or_create_set_collection(card.set_id, card.set_name)
            await self.store.add_card_to_collection(card.unique_id, collection.id)
        except CardVaultError as e:
            logger.exception("Filing Lorcana scan of %s failed", card.name)
            return outcome.model_copy(update={"error": e.message})
        return outcome.model_copy(
            update={"stage": ScanStage.AUTO_FILED, "collection_id": collection.id}
        )
