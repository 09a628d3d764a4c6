"""
SQLAlchemy ORM models for persistent storage.

Two separate metadata trees live here: `Base` for the authoritative
server store and `ReplicaBase` for the device-local replica. They never
share a database.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cardtrack.models.collection import utc_now


def _new_server_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for server-side ORM models."""

    pass


class ReplicaBase(DeclarativeBase):
    """Base class for device-local ORM models."""

    pass


class CollectionCardDB(Base):
    """
    Authoritative collection row.

    One row per (user_id, card_id). `version` increases on every mutation
    and is the token for compare-and-swap writes; `updated_at` is the
    last-writer-wins clock exposed to clients.
    """

    __tablename__ = "collection_cards"
    __table_args__ = (UniqueConstraint("user_id", "card_id", name="uq_user_card"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_server_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    card_id: Mapped[str] = mapped_column(String(255))

    name: Mapped[str] = mapped_column(String(255))
    set_id: Mapped[str] = mapped_column(String(64))
    set_name: Mapped[str] = mapped_column(String(255))
    number: Mapped[str] = mapped_column(String(32))
    rarity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_small: Mapped[str] = mapped_column(String(1024))
    image_large: Mapped[str] = mapped_column(String(1024))

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    purchase_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    version: Mapped[int] = mapped_column(Integer, default=1)

    def __repr__(self) -> str:
        return (
            f"<CollectionCardDB(user={self.user_id}, card={self.card_id}, "
            f"qty={self.quantity}, v={self.version})>"
        )


class LocalCollectionCardDB(ReplicaBase):
    """
    Device-local copy of a collection row.

    `dirty` marks an unsynced local mutation; `server_id` stays empty until
    the record has been pulled from the server at least once.
    """

    __tablename__ = "local_collection_cards"
    __table_args__ = (UniqueConstraint("owner_id", "card_id", name="uq_owner_card"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    card_id: Mapped[str] = mapped_column(String(255))

    name: Mapped[str] = mapped_column(String(255))
    set_id: Mapped[str] = mapped_column(String(64))
    set_name: Mapped[str] = mapped_column(String(255))
    number: Mapped[str] = mapped_column(String(32))
    rarity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_small: Mapped[str] = mapped_column(String(1024))
    image_large: Mapped[str] = mapped_column(String(1024))

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    purchase_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    server_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    dirty: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LocalCollectionCardDB(card={self.card_id}, qty={self.quantity}, "
            f"dirty={self.dirty})>"
        )
