"""
Authoritative store operations.

Provides async functions for reading and writing collection rows. Two
write policies exist for the same row type and stay separate:

- add_or_merge_card: merge-on-insert, an add for an owned card increases
  its quantity.
- insert_card_if_absent / compare_and_swap_card: the building blocks of
  batch reconciliation, where the later `updated_at` wins.

Every write is a conditional insert or an UPDATE guarded by the row
version, so concurrent writers never lose an update and never create a
second row for the same (user_id, card_id). Every update moves
`updated_at` strictly past the row's previous value.
"""

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrack.config import MAX_WRITE_ATTEMPTS
from cardtrack.models.collection import (
    Collection,
    CollectionRecord,
    as_utc,
    next_timestamp,
)
from cardtrack.models.db import CollectionCardDB
from cardtrack.models.failure import WriteConflictError
from cardtrack.models.sync import CollectionCardPayload

_UNIQUE_KEY = ["user_id", "card_id"]


def _dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    """Return the INSERT construct supporting ON CONFLICT for the session's backend."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    msg = f"Unsupported database dialect for upserts: {dialect}"
    raise RuntimeError(msg)


def _new_row_values(user_id: str, card: CollectionCardPayload, now: datetime) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "card_id": card.card_id,
        **card.row_values(),
        "date_added": card.date_added or now,
        "updated_at": now,
        "version": 1,
    }


# --- Reads ---


async def get_collection_card(
    session: AsyncSession, user_id: str, card_id: str
) -> CollectionCardDB | None:
    """
    Get one collection row by its natural key.

    Always reloads column values, so a re-read after a lost
    compare-and-swap sees the winning write.
    """
    result = await session.execute(
        select(CollectionCardDB)
        .where(
            CollectionCardDB.user_id == user_id,
            CollectionCardDB.card_id == card_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_collection_cards(
    session: AsyncSession, user_id: str, page: int = 1, limit: int = 50
) -> tuple[list[CollectionCardDB], int]:
    """
    Get one page of a user's collection, newest additions first.

    Returns:
        Tuple of (rows on this page, total row count for the user).
    """
    total = await session.scalar(
        select(func.count())
        .select_from(CollectionCardDB)
        .where(CollectionCardDB.user_id == user_id)
    )
    result = await session.execute(
        select(CollectionCardDB)
        .where(CollectionCardDB.user_id == user_id)
        .order_by(CollectionCardDB.date_added.desc(), CollectionCardDB.card_id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def list_all_collection_cards(
    session: AsyncSession, user_id: str
) -> list[CollectionCardDB]:
    """Get every row of a user's collection."""
    result = await session.execute(
        select(CollectionCardDB).where(CollectionCardDB.user_id == user_id)
    )
    return list(result.scalars().all())


# --- Insertion merge path ---


async def add_or_merge_card(
    session: AsyncSession, user_id: str, card: CollectionCardPayload
) -> tuple[CollectionCardDB, bool]:
    """
    Add a card, merging into an existing row by quantity.

    A missing card is inserted if still absent; an owned card is merged
    with a version-guarded update. Either step retries after losing to a
    concurrent writer, so concurrent adds of the same card produce a
    single row whose quantity is the sum of all requests.

    Returns:
        Tuple of (row, merged) where merged is True if the card was
        already owned.

    Raises:
        WriteConflictError: If every attempt lost to another writer.
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        existing = await get_collection_card(session, user_id, card.card_id)
        if existing is None:
            row = await insert_card_if_absent(session, user_id, card)
            if row is not None:
                return row, False
            continue

        row = await compare_and_swap_card(
            session, existing, {"quantity": existing.quantity + card.quantity}
        )
        if row is not None:
            return row, True

    raise WriteConflictError(card.card_id)


# --- Reconciliation primitives ---


async def insert_card_if_absent(
    session: AsyncSession, user_id: str, card: CollectionCardPayload
) -> CollectionCardDB | None:
    """
    Insert a row for a card the user does not own yet.

    The row takes server time, kept strictly later than the client's
    `updated_at`.

    Returns None if a row for (user_id, card_id) already exists, e.g.
    inserted concurrently since the caller last looked.
    """
    insert = _dialect_insert(session)
    stmt = (
        insert(CollectionCardDB)
        .values(**_new_row_values(user_id, card, next_timestamp(card.updated_at)))
        .on_conflict_do_nothing(index_elements=_UNIQUE_KEY)
        .returning(CollectionCardDB)
    )
    result = await session.scalars(stmt, execution_options={"populate_existing": True})
    return result.one_or_none()


async def compare_and_swap_card(
    session: AsyncSession,
    existing: CollectionCardDB,
    values: dict[str, Any],
    not_before: datetime | None = None,
) -> CollectionCardDB | None:
    """
    Overwrite a row only if it is still at the version the caller read.

    Advances `updated_at` to server time, kept strictly later than both the
    row's previous value and `not_before`, and bumps `version`.

    Returns:
        The updated row, or None if another writer changed it first.
    """
    previous = as_utc(existing.updated_at)
    if not_before is not None and as_utc(not_before) > previous:
        previous = as_utc(not_before)

    stmt = (
        update(CollectionCardDB)
        .where(
            CollectionCardDB.id == existing.id,
            CollectionCardDB.version == existing.version,
        )
        .values(
            **values,
            updated_at=next_timestamp(previous),
            version=existing.version + 1,
        )
        .returning(CollectionCardDB)
    )
    result = await session.scalars(stmt, execution_options={"populate_existing": True})
    return result.one_or_none()


# --- Direct edits ---


async def update_collection_card(
    session: AsyncSession, user_id: str, card_id: str, changes: dict[str, Any]
) -> CollectionCardDB | None:
    """
    Apply a partial edit (quantity and prices) to an existing row.

    Returns None if the user does not own the card.

    Raises:
        WriteConflictError: If every attempt lost to another writer.
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        existing = await get_collection_card(session, user_id, card_id)
        if existing is None:
            return None

        row = await compare_and_swap_card(session, existing, changes)
        if row is not None:
            return row

    raise WriteConflictError(card_id)


async def delete_collection_card(session: AsyncSession, user_id: str, card_id: str) -> bool:
    """
    Remove a card from a user's collection.

    Returns True if a row was deleted, False if none existed.
    """
    result = await session.execute(
        delete(CollectionCardDB).where(
            CollectionCardDB.user_id == user_id,
            CollectionCardDB.card_id == card_id,
        )
    )
    # rowcount is available on DELETE results; type stubs incomplete for async
    return int(result.rowcount) > 0  # type: ignore[attr-defined]


# --- Conversions ---


def card_to_record(row: CollectionCardDB) -> CollectionRecord:
    """Convert a database row to a domain record."""
    return CollectionRecord(
        owner_id=row.user_id,
        card_id=row.card_id,
        name=row.name,
        set_id=row.set_id,
        set_name=row.set_name,
        number=row.number,
        image_small=row.image_small,
        image_large=row.image_large,
        rarity=row.rarity,
        quantity=row.quantity,
        purchase_price=row.purchase_price,
        current_price=row.current_price,
        date_added=as_utc(row.date_added),
        updated_at=as_utc(row.updated_at),
        server_id=row.id,
        dirty=False,
    )


def collection_to_model(rows: list[CollectionCardDB]) -> Collection:
    """Convert a user's rows to a domain collection."""
    return Collection.from_records([card_to_record(row) for row in rows])
