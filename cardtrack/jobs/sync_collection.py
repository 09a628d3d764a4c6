"""
Run one collection sync from the command line.

Uses the client settings (API URL, token, owner, replica location).
Can be run as a standalone script or called from a scheduler.
"""

import asyncio
import logging
import sys

from cardtrack.client import CollectionAPIClient, LocalReplicaStore, SyncOrchestrator
from cardtrack.config import settings
from cardtrack.models.sync import SyncOutcome

logger = logging.getLogger(__name__)


def build_orchestrator() -> SyncOrchestrator:
    """Wire an orchestrator from settings."""
    api = CollectionAPIClient(token_provider=lambda: settings.api_token)
    replica = LocalReplicaStore.from_url(settings.replica_url, settings.owner_id)
    return SyncOrchestrator(api, replica)


async def run_sync(orchestrator: SyncOrchestrator | None = None) -> SyncOutcome:
    """
    Run a single sync attempt and log its result.

    Args:
        orchestrator: Orchestrator to use. Built from settings if None.

    Returns:
        The sync outcome
    """
    if orchestrator is None:
        orchestrator = build_orchestrator()

    logger.info("Starting sync for %s", orchestrator.replica.owner_id or "<unknown owner>")
    outcome = await orchestrator.sync()

    if outcome.succeeded:
        logger.info(
            "Sync %s: %d inserted, %d updated, %d conflicts, %d pulled",
            outcome.status.value,
            outcome.inserted,
            outcome.updated,
            len(outcome.conflicts),
            outcome.pulled,
        )
    else:
        logger.error("Sync %s: %s", outcome.status.value, outcome.error)
    return outcome


def main() -> None:
    """CLI entry point for running a sync."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    outcome = asyncio.run(run_sync())
    if not outcome.succeeded:
        sys.exit(1)


if __name__ == "__main__":
    main()
