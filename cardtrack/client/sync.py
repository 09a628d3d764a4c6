"""
Sync orchestrator.

Keeps the local replica consistent with the server:

1. No dirty records: pull the full collection and apply it.
2. Dirty records: push them as one batch, settle the outcome (mark sent
   records synced, overwrite rejected ones with the server copy), then
   pull to pick up rows written by other devices.

A transport failure during the push leaves the replica untouched, so
every dirty record is sent again next time. The server may already have
applied part of a batch whose response was lost; resending is safe
because reconciliation is idempotent per record.
"""

import logging
from datetime import datetime
from typing import Any

from cardtrack.client.api import CollectionAPIClient
from cardtrack.client.replica import LocalReplicaStore
from cardtrack.config import settings
from cardtrack.models.collection import CollectionRecord, utc_now
from cardtrack.models.failure import KnownError, UnauthenticatedError
from cardtrack.models.sync import SyncOutcome, SyncStatus

logger = logging.getLogger(__name__)


def record_to_entry(record: CollectionRecord) -> dict[str, Any]:
    """
    Serialize a local record as a sync batch entry.

    Entries are not validated client-side; the server skips malformed ones.
    """
    return {
        "card_id": record.card_id,
        "name": record.name,
        "set_id": record.set_id,
        "set_name": record.set_name,
        "number": record.number,
        "rarity": record.rarity,
        "image_small": record.image_small,
        "image_large": record.image_large,
        "quantity": record.quantity,
        "purchase_price": record.purchase_price,
        "current_price": record.current_price,
        "date_added": record.date_added.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


class SyncOrchestrator:
    """
    Pushes local changes and pulls server state for one user.

    At most one sync runs at a time: calling sync() while one is in
    flight returns a SKIPPED outcome immediately, nothing is queued.
    """

    def __init__(
        self,
        api: CollectionAPIClient,
        replica: LocalReplicaStore,
        page_size: int | None = None,
    ) -> None:
        self.api = api
        self.replica = replica
        self.page_size = page_size or settings.sync_page_size

        self.is_syncing = False
        self.last_sync_at: datetime | None = None
        self.last_error: str | None = None

    async def sync(self) -> SyncOutcome:
        """
        Run one sync attempt.

        Authentication and transport failures are reported on the
        returned outcome, never raised. Local store errors propagate.
        """
        if self.is_syncing:
            logger.debug("Sync already in progress, ignoring call")
            return SyncOutcome(status=SyncStatus.SKIPPED)

        self.is_syncing = True
        self.last_error = None
        try:
            outcome = await self._run()
        except KnownError as e:
            outcome = SyncOutcome(status=SyncStatus.FAILED, error=e.message, failure_kind=e.kind)
        finally:
            self.is_syncing = False

        if outcome.succeeded:
            self.last_sync_at = utc_now()
        else:
            self.last_error = outcome.error
            logger.warning("Sync failed: %s", outcome.error)
        return outcome

    async def _run(self) -> SyncOutcome:
        if not self.api.has_credential():
            raise UnauthenticatedError(detail="No credential available")

        dirty = self.replica.get_dirty()
        if not dirty:
            pulled = await self.pull()
            return SyncOutcome(status=SyncStatus.PULLED, pulled=pulled)

        outcome = await self.push(dirty)

        try:
            outcome.pulled = await self.pull()
        except KnownError as e:
            # The pushed batch stays settled; only the refresh failed.
            outcome.status = SyncStatus.FAILED
            outcome.error = e.message
            outcome.failure_kind = e.kind
        return outcome

    async def push(self, dirty: list[CollectionRecord]) -> SyncOutcome:
        """
        Send dirty records and settle the result into the replica.

        Raises:
            KnownError: If the call fails. The replica is left unchanged.
        """
        logger.info("Pushing %d changed cards", len(dirty))
        result = await self.api.sync_collection([record_to_entry(r) for r in dirty])

        self.replica.settle_batch(dirty, result.conflicts)

        logger.info(
            "Push complete: %d inserted, %d updated, %d conflicts",
            result.inserted,
            result.updated,
            len(result.conflicts),
        )
        return SyncOutcome(
            status=SyncStatus.PUSHED,
            inserted=result.inserted,
            updated=result.updated,
            conflicts=result.conflicts,
        )

    async def pull(self) -> int:
        """
        Fetch the full server collection and apply it to the replica.

        Nothing is applied unless every page was fetched.

        Returns:
            Number of server rows applied
        """
        cards = await self.api.fetch_all_cards(self.page_size)
        for card in cards:
            self.replica.upsert_from_server(card)

        logger.info("Pulled %d cards", len(cards))
        return len(cards)

    async def delete_card(self, card_id: str) -> None:
        """
        Delete a card on the server, then locally.

        Deletes bypass the batch: they are sent immediately.

        Raises:
            KnownError: If the server delete fails; the local record is kept.
        """
        await self.api.delete_card(card_id)
        self.replica.delete_card(card_id)
        logger.info("Deleted %s", card_id)
