"""
Device-local replica of one user's collection.

Backed by a synchronous SQLAlchemy engine (a SQLite file by default), so
every operation is local and never waits on the network. One store
instance serves one owner.

Writers are serialized by a process-local lock and each operation runs in
a single database transaction, so `dirty` is never read and rewritten by
two operations at once.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from cardtrack.models.collection import (
    Collection,
    CollectionRecord,
    as_utc,
    next_timestamp,
    utc_now,
)
from cardtrack.models.db import LocalCollectionCardDB, ReplicaBase
from cardtrack.models.sync import CollectionCardPayload, ServerCard, SyncConflict

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"quantity", "purchase_price", "current_price"})


def _to_record(row: LocalCollectionCardDB) -> CollectionRecord:
    return CollectionRecord(
        owner_id=row.owner_id,
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
        server_id=row.server_id,
        dirty=row.dirty,
        last_synced_at=as_utc(row.last_synced_at) if row.last_synced_at else None,
    )


def _copy_server_fields(row: LocalCollectionCardDB, card: ServerCard) -> None:
    row.name = card.name
    row.set_id = card.set_id
    row.set_name = card.set_name
    row.number = card.number
    row.rarity = card.rarity
    row.image_small = card.image_small
    row.image_large = card.image_large
    row.quantity = card.quantity
    row.purchase_price = card.purchase_price
    row.current_price = card.current_price
    row.date_added = card.date_added
    row.updated_at = card.updated_at
    row.server_id = card.id


class LocalReplicaStore:
    """Read/write local record store keyed by card_id for a single owner."""

    def __init__(self, engine: Engine, owner_id: str) -> None:
        self.engine = engine
        self.owner_id = owner_id
        self._session_factory = sessionmaker(engine, expire_on_commit=False)
        self._lock = threading.RLock()

    @classmethod
    def from_url(cls, url: str, owner_id: str) -> "LocalReplicaStore":
        """Open (creating if needed) a replica database at `url`."""
        engine = create_engine(url)
        ReplicaBase.metadata.create_all(engine)
        return cls(engine, owner_id)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self._lock, self._session_factory.begin() as session:
            yield session

    def _get(self, session: Session, card_id: str) -> LocalCollectionCardDB | None:
        result = session.execute(
            select(LocalCollectionCardDB).where(
                LocalCollectionCardDB.owner_id == self.owner_id,
                LocalCollectionCardDB.card_id == card_id,
            )
        )
        return result.scalar_one_or_none()

    # --- Reads ---

    def get(self, card_id: str) -> CollectionRecord | None:
        with self._transaction() as session:
            row = self._get(session, card_id)
            return _to_record(row) if row else None

    def all(self) -> list[CollectionRecord]:
        with self._transaction() as session:
            result = session.execute(
                select(LocalCollectionCardDB)
                .where(LocalCollectionCardDB.owner_id == self.owner_id)
                .order_by(LocalCollectionCardDB.card_id)
            )
            return [_to_record(row) for row in result.scalars()]

    def collection(self) -> Collection:
        return Collection.from_records(self.all())

    def get_dirty(self) -> list[CollectionRecord]:
        """All records with local mutations not yet confirmed by the server."""
        with self._transaction() as session:
            result = session.execute(
                select(LocalCollectionCardDB)
                .where(
                    LocalCollectionCardDB.owner_id == self.owner_id,
                    LocalCollectionCardDB.dirty.is_(True),
                )
                .order_by(LocalCollectionCardDB.card_id)
            )
            return [_to_record(row) for row in result.scalars()]

    # --- Local mutations (always mark dirty) ---

    def add_card(self, card: CollectionCardPayload) -> CollectionRecord:
        """
        Add a card locally.

        Adding an owned card increases its quantity, matching the server's
        add-item behaviour. A purchase price, when given, replaces the
        stored one.
        """
        with self._transaction() as session:
            row = self._get(session, card.card_id)
            if row is None:
                now = utc_now()
                row = LocalCollectionCardDB(
                    owner_id=self.owner_id,
                    card_id=card.card_id,
                    **card.row_values(),
                    date_added=card.date_added or now,
                    updated_at=now,
                    dirty=True,
                )
                session.add(row)
            else:
                row.quantity += card.quantity
                if card.purchase_price is not None:
                    row.purchase_price = card.purchase_price
                if card.current_price is not None:
                    row.current_price = card.current_price
                row.updated_at = next_timestamp(row.updated_at)
                row.dirty = True
            session.flush()
            return _to_record(row)

    def update_card(self, card_id: str, changes: dict[str, Any]) -> CollectionRecord | None:
        """
        Edit quantity or prices of a local record.

        Returns None if the card is not in the replica.

        Raises:
            ValueError: If a field is not editable or quantity is not positive
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {sorted(unknown)}")
        if "quantity" in changes and (changes["quantity"] is None or changes["quantity"] <= 0):
            raise ValueError("Quantity must be positive")

        with self._transaction() as session:
            row = self._get(session, card_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = next_timestamp(row.updated_at)
            row.dirty = True
            return _to_record(row)

    def delete_card(self, card_id: str) -> bool:
        """Remove a record. Returns False if it was not present."""
        with self._transaction() as session:
            row = self._get(session, card_id)
            if row is None:
                return False
            session.delete(row)
            return True

    # --- Sync-driven writes ---

    def upsert_from_server(self, card: ServerCard) -> CollectionRecord:
        """
        Apply a server row to the replica.

        Creates the record if missing. Otherwise overwrites its
        server-sourced fields, except when the record holds a dirty local
        edit newer than the server copy: that edit wins on the next push,
        so only the server id is recorded. `dirty` is never changed here.
        """
        with self._transaction() as session:
            row = self._get(session, card.card_id)
            if row is None:
                row = LocalCollectionCardDB(
                    owner_id=self.owner_id,
                    card_id=card.card_id,
                    dirty=False,
                    last_synced_at=utc_now(),
                )
                _copy_server_fields(row, card)
                session.add(row)
            elif row.dirty and as_utc(row.updated_at) > card.updated_at:
                logger.debug("Keeping newer local edit of %s over server copy", card.card_id)
                row.server_id = card.id
            else:
                _copy_server_fields(row, card)
                if not row.dirty:
                    row.last_synced_at = utc_now()
            session.flush()
            return _to_record(row)

    def _mark_synced(
        self,
        session: Session,
        card_id: str,
        server_id: str | None,
        sent_updated_at: datetime | None,
    ) -> bool:
        row = self._get(session, card_id)
        if row is None:
            return False
        if server_id:
            row.server_id = server_id
        if sent_updated_at is not None and as_utc(row.updated_at) != as_utc(sent_updated_at):
            logger.debug("%s changed after it was sent; leaving it dirty", card_id)
            return False
        row.dirty = False
        row.last_synced_at = utc_now()
        return True

    def mark_synced(
        self,
        card_id: str,
        server_id: str | None = None,
        sent_updated_at: datetime | None = None,
    ) -> bool:
        """
        Clear the dirty flag after a confirmed round trip.

        Args:
            card_id: Record to mark
            server_id: Server id to record, if known
            sent_updated_at: `updated_at` of the copy that was pushed. If the
                record has been edited since, it stays dirty.

        Returns:
            True if the record is now clean
        """
        with self._transaction() as session:
            return self._mark_synced(session, card_id, server_id, sent_updated_at)

    def apply_conflict(self, card_id: str, server_version: ServerCard) -> None:
        """Overwrite a record with the server's version and mark it clean."""
        with self._transaction() as session:
            row = self._get(session, card_id)
            if row is None:
                logger.debug("Conflict for %s has no local record", card_id)
                return
            _copy_server_fields(row, server_version)
            row.dirty = False
            row.last_synced_at = utc_now()

    def settle_batch(self, sent: list[CollectionRecord], conflicts: list[SyncConflict]) -> None:
        """
        Record the outcome of a pushed batch in one transaction.

        Every sent record is marked synced, including those the server
        rejected, and every rejected record is overwritten with the
        server's version in the same transaction. No window exists in
        which a rejected record is clean but still holds the losing data.
        """
        with self._transaction() as session:
            for record in sent:
                self._mark_synced(session, record.card_id, None, record.updated_at)

            for conflict in conflicts:
                row = self._get(session, conflict.card_id)
                if row is None:
                    continue
                server_version = conflict.server_version
                if row.dirty and as_utc(row.updated_at) > server_version.updated_at:
                    # Edited again while the batch was in flight.
                    row.server_id = server_version.id
                    continue
                _copy_server_fields(row, server_version)
                row.dirty = False
                row.last_synced_at = utc_now()
