"""Standalone orchestrator entry point. Run from project root: python -m tourney.main"""
import asyncio
import logging

import config
from tourney.models import init_db
from tourney.services.orchestrator import TournamentOrchestrator

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tourney")


async def run() -> None:
    """Create tables, then run the orchestrator until cancelled."""
    await init_db()
    orchestrator = TournamentOrchestrator()
    orchestrator.start()
    try:
        # The loop task never finishes on its own
        await asyncio.Event().wait()
    finally:
        await orchestrator.stop()


def main() -> None:
    """Run the orchestrator."""
    logger.info("Starting tournament orchestrator (database: %s)", config.DATABASE_URL)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
