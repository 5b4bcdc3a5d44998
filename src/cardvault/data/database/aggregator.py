"""Collection aggregator: derived counts, values and set completion."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from ...exceptions import NotInitializedError, StoreError
from ..models import CardRecord, CollectionWithStats, SetCompletion
from .app import decode_card

if TYPE_CHECKING:
    from .app import ApplicationDatabase, CachedMembership
    from .reconciler import CacheReconciler
    from .reference import ReferenceDatabase

logger = logging.getLogger(__name__)


def completion_percentage(collected: int, total: int) -> float:
    """collected / total as a percentage in [0, 100]; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return max(0.0, min(100.0, collected / total * 100))


def sum_values(rows: list[CachedMembership]) -> dict[int, float]:
    """Total normal-price value per collection.

    Each cache blob is decoded once; a missing or undecodable blob, or a card
    without a price, contributes 0.
    """
    decoded: dict[str, CardRecord | None] = {}
    totals: dict[int, float] = defaultdict(float)
    for row in rows:
        if row.card_uuid not in decoded:
            decoded[row.card_uuid] = decode_card(row.data)
        card = decoded[row.card_uuid]
        totals[row.collection_id] += (card.normal_price if card else 0.0) * row.quantity
    return {cid: round(total, 2) for cid, total in totals.items()}


class CollectionAggregator:
    """Read-side views joining membership, cache and reference data.

    Counts and values are computed on every call; nothing here is stored.
    """

    def __init__(
        self,
        app: ApplicationDatabase,
        reference: ReferenceDatabase | None,
        reconciler: CacheReconciler | None = None,
    ):
        self.app = app
        self.reference = reference
        self.reconciler = reconciler

    async def list_collections(self) -> list[CollectionWithStats]:
        """All collections with card count and total value.

        Counts come from one grouped membership query; values from a second
        pass over the cached records. Storage failures are logged and yield [].
        """
        try:
            collections = await self.app.list_collection_counts()
            if not collections:
                return []
            values = sum_values(await self.app.get_cached_memberships())
        except StoreError:
            logger.exception("Failed to list collections")
            return []

        return [
            c.model_copy(update={"total_value": values.get(c.id, 0.0)}) for c in collections
        ]

    async def get_collection_value(self, collection_id: int) -> float:
        rows = await self.app.get_cached_memberships(collection_id)
        return sum_values(rows).get(collection_id, 0.0)

    async def get_collection_cards(self, collection_id: int) -> list[tuple[CardRecord, int]]:
        """Cached records of a collection with their quantities.

        Entries whose price is stale are queued for a background refresh;
        the stale values are returned without waiting.
        """
        memberships = await self.app.get_cached_memberships(collection_id)
        result: list[tuple[CardRecord, int]] = []
        for row in memberships:
            card = decode_card(row.data)
            if card is None:
                continue
            result.append((card, row.quantity))
            if self.reconciler is not None and self.reconciler.is_stale(row.last_updated):
                self.reconciler.schedule_refresh(row.card_uuid)
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Set completion
    # ─────────────────────────────────────────────────────────────────────────

    async def get_set_completion(self, set_code: str) -> SetCompletion:
        """Completion of a set by the cards in its "Set: <name>" collection.

        total_cards is the reference store's distinct collector-number count
        and collected_cards the number of those owned. Storage errors propagate
        so a failed read is never shown as 0%.

        Raises:
            NotInitializedError: If the reference store is unavailable.
        """
        if self.reference is None:
            raise NotInitializedError("Reference store")
        game = self.app.collection_store.game
        set_info = await self.reference.get_set(set_code)
        total_cards = await self.reference.count_set_cards(set_code)
        logical = await self.reference.get_set_logical_cards(set_code)

        set_name = set_info.name if set_info else None
        collection = await self.app.collection_store.get_set_collection(set_code)
        if collection is None:
            collection = await self.app.get_collection_by_name(
                game.set_collection_name(set_name or set_code)
            )

        owned_keys: set[str] = set()
        total_value = 0.0
        if collection is not None:
            rows = await self.app.get_cached_memberships(collection.id)
            total_value = sum_values(rows).get(collection.id, 0.0)
            owned_keys = await self._owned_collector_keys(set_code, [row.card_uuid for row in rows], logical)

        missing = [
            card for card in logical if game.collector_key(card.collector_number) not in owned_keys
        ]
        logical_keys = {game.collector_key(card.collector_number) for card in logical}
        collected = len(owned_keys & logical_keys)
        return SetCompletion(
            set_code=set_code.upper(),
            set_name=set_name,
            collection_id=collection.id if collection else None,
            total_cards=total_cards,
            collected_cards=collected,
            percentage=completion_percentage(collected, total_cards),
            total_value=total_value,
            missing_cards=missing,
        )

    async def _owned_collector_keys(
        self, set_code: str, owned: list[str], logical: list[CardRecord]
    ) -> set[str]:
        """Collector keys of the set's cards among the owned uuids.

        Owned back faces and alternate printings count for the logical card
        sharing their collector key; cards of other sets are ignored.
        """
        game = self.app.collection_store.game
        by_uuid = {card.uuid: card for card in logical}
        others = [uuid for uuid in owned if uuid not in by_uuid]
        if others and self.reference is not None:
            by_uuid.update(await self.reference.get_cards(others))

        keys: set[str] = set()
        for uuid in owned:
            card = by_uuid.get(uuid)
            if card is None or (card.set_code or "").upper() != set_code.upper():
                continue
            key = game.collector_key(card.collector_number)
            if key is not None:
                keys.add(key)
        return keys

    async def get_set_collections(self) -> list[SetCompletion]:
        """Completion for every auto-created set collection.

        Raises:
            NotInitializedError: If the reference store is unavailable.
        """
        if self.reference is None:
            raise NotInitializedError("Reference store")
        completions: list[SetCompletion] = []
        for collection in await self.app.collection_store.list_set_collections():
            set_code = collection.set_code
            if set_code is None:
                continue
            completions.append(await self.get_set_completion(set_code))
        return completions
