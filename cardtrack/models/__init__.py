from cardtrack.models.collection import (
    Collection,
    CollectionRecord,
    as_utc,
    next_timestamp,
    utc_now,
)
from cardtrack.models.failure import (
    FailureKind,
    KnownError,
    ServerError,
    TransportError,
    UnauthenticatedError,
)
from cardtrack.models.sync import (
    CardResponse,
    CollectionCardPayload,
    CollectionPage,
    Pagination,
    ServerCard,
    SyncConflict,
    SyncOutcome,
    SyncResult,
    SyncStatus,
)

__all__ = [
    "CardResponse",
    "Collection",
    "CollectionCardPayload",
    "CollectionPage",
    "CollectionRecord",
    "FailureKind",
    "KnownError",
    "Pagination",
    "ServerCard",
    "ServerError",
    "SyncConflict",
    "SyncOutcome",
    "SyncResult",
    "SyncStatus",
    "TransportError",
    "UnauthenticatedError",
    "as_utc",
    "next_timestamp",
    "utc_now",
]
