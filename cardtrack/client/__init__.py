"""
CardTrack sync client.

Device-side replica, API client and the orchestrator that keeps them in
step with the server.
"""

from cardtrack.client.api import CollectionAPIClient, TokenProvider
from cardtrack.client.replica import LocalReplicaStore
from cardtrack.client.sync import SyncOrchestrator, record_to_entry

__all__ = [
    "CollectionAPIClient",
    "LocalReplicaStore",
    "SyncOrchestrator",
    "TokenProvider",
    "record_to_entry",
]
