"""
Batch reconciliation of client-proposed writes.

Each batch entry is decided on its own against the authoritative row for
(user_id, card_id):

- no row: insert it.
- client `updated_at` later than the server's: last writer wins, the row
  is overwritten and its `updated_at` advanced to server time.
- server `updated_at` later than the client's: the write is rejected and
  reported as a conflict carrying both versions.
- equal timestamps: the server copy wins. The entry is a no-op when the
  client already holds the server's values, otherwise a conflict.

Resending an already-applied batch never mutates anything again: every
applied entry now has a server timestamp later than the one submitted.
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrack.config import MAX_RECONCILE_ATTEMPTS
from cardtrack.db.operations import (
    compare_and_swap_card,
    get_collection_card,
    insert_card_if_absent,
)
from cardtrack.models.collection import as_utc
from cardtrack.models.db import CollectionCardDB
from cardtrack.models.sync import CollectionCardPayload, ServerCard, SyncConflict, SyncResult

logger = logging.getLogger(__name__)

# Entries without a client timestamp lose to any server copy.
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class Decision(str, Enum):
    """What a batch entry does to an existing row."""

    UPDATE = "update"
    CONFLICT = "conflict"
    UNCHANGED = "unchanged"


def _matches_row(row: CollectionCardDB, card: CollectionCardPayload) -> bool:
    return all(getattr(row, key) == value for key, value in card.row_values().items())


def decide(row: CollectionCardDB, card: CollectionCardPayload) -> Decision:
    """Compare a client entry with the existing row for the same card."""
    client_updated = card.updated_at or _EPOCH
    server_updated = as_utc(row.updated_at)

    if client_updated > server_updated:
        return Decision.UPDATE
    if server_updated > client_updated:
        return Decision.CONFLICT

    # Tie: server wins
    if _matches_row(row, card):
        return Decision.UNCHANGED
    return Decision.CONFLICT


def _conflict(row: CollectionCardDB, card: CollectionCardPayload) -> SyncConflict:
    return SyncConflict(
        card_id=card.card_id,
        server_version=ServerCard.model_validate(row),
        client_version=card,
    )


async def reconcile_entry(
    session: AsyncSession,
    user_id: str,
    card: CollectionCardPayload,
    result: SyncResult,
) -> None:
    """
    Reconcile one client entry and record its outcome on `result`.

    A write that loses a race with a concurrent writer (insert beaten by
    another insert, compare-and-swap beaten by another update) re-reads the
    row and decides again.
    """
    for _ in range(MAX_RECONCILE_ATTEMPTS):
        existing = await get_collection_card(session, user_id, card.card_id)

        if existing is None:
            if await insert_card_if_absent(session, user_id, card) is not None:
                logger.debug("Inserted %s for %s", card.card_id, user_id)
                result.inserted += 1
                return
            continue

        decision = decide(existing, card)
        logger.debug("Entry %s for %s: %s", card.card_id, user_id, decision.value)

        if decision is Decision.UPDATE:
            updated = await compare_and_swap_card(
                session, existing, card.row_values(), not_before=card.updated_at
            )
            if updated is not None:
                result.updated += 1
                return
            continue

        if decision is Decision.CONFLICT:
            result.conflicts.append(_conflict(existing, card))
        return

    logger.warning(
        "Gave up reconciling %s for %s after %d attempts",
        card.card_id,
        user_id,
        MAX_RECONCILE_ATTEMPTS,
    )
    latest = await get_collection_card(session, user_id, card.card_id)
    if latest is not None:
        result.conflicts.append(_conflict(latest, card))


async def reconcile_batch(session: AsyncSession, user_id: str, entries: list[Any]) -> SyncResult:
    """
    Reconcile a batch of client entries against a user's collection.

    Malformed entries are skipped and not counted anywhere; they never
    fail the rest of the batch.

    Args:
        session: Database session for the authoritative store
        user_id: Owner of the collection
        entries: Raw entries as sent by the client

    Returns:
        SyncResult with insert/update counts and conflicts
    """
    result = SyncResult()

    for index, entry in enumerate(entries):
        try:
            card = CollectionCardPayload.model_validate(entry)
        except ValidationError as e:
            logger.debug(
                "Skipping invalid sync entry %d for %s (%d errors)",
                index,
                user_id,
                e.error_count(),
            )
            continue

        await reconcile_entry(session, user_id, card, result)

    logger.info(
        "Reconciled %d entries for %s: %d inserted, %d updated, %d conflicts",
        len(entries),
        user_id,
        result.inserted,
        result.updated,
        len(result.conflicts),
    )
    return result
