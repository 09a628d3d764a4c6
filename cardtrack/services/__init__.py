"""
CardTrack services.

Server-side business logic for collection synchronization.
"""

from cardtrack.services.reconciliation import (
    Decision,
    decide,
    reconcile_batch,
    reconcile_entry,
)

__all__ = [
    "Decision",
    "decide",
    "reconcile_batch",
    "reconcile_entry",
]
