from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns;
    those are stored as UTC, so naive values are interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def next_timestamp(previous: datetime | None = None) -> datetime:
    """
    Timestamp for a new mutation of a record last changed at `previous`.

    Always strictly later than `previous`, even if the wall clock is not.
    """
    now = utc_now()
    if previous is not None and now <= as_utc(previous):
        return as_utc(previous) + timedelta(microseconds=1)
    return now


@dataclass
class CollectionRecord:
    """
    One owned quantity of one catalog card for one user.

    Identity is (owner_id, card_id). `dirty` and `last_synced_at` only
    exist on the device-local copy; `server_id` is absent until the
    record has been seen by the server.
    """

    owner_id: str
    card_id: str
    name: str
    set_id: str
    set_name: str
    number: str
    image_small: str
    image_large: str
    rarity: str | None = None
    quantity: int = 1
    purchase_price: float | None = None
    current_price: float | None = None
    date_added: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    server_id: str | None = None
    dirty: bool = True
    last_synced_at: datetime | None = None

    @property
    def total_value(self) -> float:
        """Quantity times current price, 0 when the price is unknown."""
        if self.current_price is None:
            return 0.0
        return self.current_price * self.quantity

    @property
    def total_cost(self) -> float | None:
        """Quantity times purchase price, None when no purchase price."""
        if self.purchase_price is None:
            return None
        return self.purchase_price * self.quantity

    @property
    def profit_loss(self) -> float | None:
        cost = self.total_cost
        if cost is None:
            return None
        return self.total_value - cost

    @property
    def profit_loss_percent(self) -> float | None:
        cost = self.total_cost
        if cost is None or cost <= 0:
            return None
        return (self.total_value - cost) / cost * 100


@dataclass
class Collection:
    """
    A user's card collection.

    Records are keyed by card_id; at most one record exists per card.
    """

    records: dict[str, CollectionRecord] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: list[CollectionRecord]) -> "Collection":
        return cls(records={record.card_id: record for record in records})

    def owns(self, card_id: str, quantity: int = 1) -> bool:
        """Check if collection contains at least `quantity` of a card."""
        return self.get_quantity(card_id) >= quantity

    def get_quantity(self, card_id: str) -> int:
        """Get quantity owned of a specific card."""
        record = self.records.get(card_id)
        return record.quantity if record else 0

    def total_cards(self) -> int:
        """Total number of cards in collection."""
        return sum(record.quantity for record in self.records.values())

    def unique_cards(self) -> int:
        """Number of unique cards in collection."""
        return len(self.records)

    def total_value(self) -> float:
        """Market value of the whole collection at current prices."""
        return sum(record.total_value for record in self.records.values())

    def total_cost(self) -> float:
        """Sum of known purchase costs. Cards without a purchase price count as 0."""
        return sum(record.total_cost or 0.0 for record in self.records.values())
