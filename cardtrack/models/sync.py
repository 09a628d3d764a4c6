"""
Wire contracts shared by the sync client and the reconciliation endpoint.

Payloads are snake_case JSON. Timestamps travel as ISO-8601 strings and
are normalized to aware UTC on both sides.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from cardtrack.models.collection import as_utc
from cardtrack.models.failure import FailureKind


class CollectionCardPayload(BaseModel):
    """
    One card as proposed by a client.

    Used for add-item requests and as a single entry of a sync batch.
    `updated_at` is the client's view of the last mutation and drives
    last-writer-wins during reconciliation; a missing value loses to any
    server copy.
    """

    card_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    set_id: str = Field(..., min_length=1)
    set_name: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)
    rarity: str | None = None
    image_small: HttpUrl
    image_large: HttpUrl
    quantity: int = Field(default=1, gt=0)
    purchase_price: float | None = None
    current_price: float | None = None
    date_added: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("date_added", "updated_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def row_values(self) -> dict[str, Any]:
        """Column values a write of this payload may set on a server row."""
        return {
            "name": self.name,
            "set_id": self.set_id,
            "set_name": self.set_name,
            "number": self.number,
            "rarity": self.rarity,
            "image_small": str(self.image_small),
            "image_large": str(self.image_large),
            "quantity": self.quantity,
            "purchase_price": self.purchase_price,
            "current_price": self.current_price,
        }


class ServerCard(BaseModel):
    """A collection row as held by the authoritative store."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    card_id: str
    name: str
    set_id: str
    set_name: str
    number: str
    rarity: str | None = None
    image_small: str
    image_large: str
    quantity: int
    purchase_price: float | None = None
    current_price: float | None = None
    date_added: datetime
    updated_at: datetime

    @field_validator("date_added", "updated_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CollectionPage(BaseModel):
    """One page of a user's collection."""

    data: list[ServerCard] = Field(default_factory=list)
    pagination: Pagination


class CardResponse(BaseModel):
    """Result of an add-item or update call."""

    data: ServerCard
    merged: bool = Field(
        default=False,
        description="True when an add merged into an existing row by increasing its quantity",
    )


class SyncConflict(BaseModel):
    """A client write rejected because the server copy is at least as new."""

    card_id: str
    server_version: ServerCard
    client_version: CollectionCardPayload


class SyncResult(BaseModel):
    """Per-batch outcome returned by the reconciliation endpoint."""

    inserted: int = 0
    updated: int = 0
    conflicts: list[SyncConflict] = Field(default_factory=list)


# --- Client-side outcome ---


class SyncStatus(str, Enum):
    """How a sync attempt ended."""

    PULLED = "pulled"
    PUSHED = "pushed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    """Result of one SyncOrchestrator.sync() call."""

    status: SyncStatus
    inserted: int = 0
    updated: int = 0
    conflicts: list[SyncConflict] = field(default_factory=list)
    pulled: int = 0
    error: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (SyncStatus.PULLED, SyncStatus.PUSHED)
